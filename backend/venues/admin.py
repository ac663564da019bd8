from django.contrib import admin

from .models import Service, Venue


class ServiceInline(admin.TabularInline):
    model = Service
    extra = 0
    fields = ("name", "category", "price", "currency", "capacity", "is_active")


@admin.register(Venue)
class VenueAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "category", "owner", "city", "is_active")
    list_filter = ("category", "is_active")
    search_fields = ("name", "slug", "contact_email", "owner__email")
    inlines = [ServiceInline]


@admin.register(Service)
class ServiceAdmin(admin.ModelAdmin):
    list_display = ("name", "venue", "price", "currency", "is_active")
    list_filter = ("is_active", "currency")
    search_fields = ("name", "venue__name")
