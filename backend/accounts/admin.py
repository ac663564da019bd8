from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import User


@admin.register(User)
class ReservAppUserAdmin(UserAdmin):
    list_display = ("email", "first_name", "last_name", "role", "stripe_customer_id", "is_active")
    list_filter = ("role", "is_active", "is_superuser")
    search_fields = ("email", "first_name", "last_name", "stripe_customer_id")
    fieldsets = UserAdmin.fieldsets + (
        ("ReservApp", {"fields": ("display_name", "role", "phone", "stripe_customer_id")}),
    )
