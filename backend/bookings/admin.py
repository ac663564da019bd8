from django.contrib import admin

from .models import Reservation


@admin.register(Reservation)
class ReservationAdmin(admin.ModelAdmin):
    list_display = ("confirmation_id", "venue", "service", "user", "status", "check_in_date", "total_amount")
    list_filter = ("status", "venue")
    search_fields = ("confirmation_id", "user__email", "venue__name", "service__name")
    readonly_fields = ("confirmation_id", "created_at", "updated_at")
