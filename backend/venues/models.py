from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


def default_currency():
    return settings.DEFAULT_CURRENCY


class Venue(models.Model):
    HOTEL = "HOTEL"
    RESTAURANT = "RESTAURANT"
    SPA = "SPA"
    TOUR = "TOUR"
    EVENT = "EVENT"
    CATEGORIES = [
        (HOTEL, "Hotel"),
        (RESTAURANT, "Restaurant"),
        (SPA, "Spa"),
        (TOUR, "Tour"),
        (EVENT, "Event"),
    ]

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="venues",
    )
    name = models.CharField(max_length=200)
    slug = models.SlugField(unique=True)
    category = models.CharField(max_length=20, choices=CATEGORIES, default=HOTEL)
    city = models.CharField(max_length=120, blank=True)
    contact_email = models.EmailField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Service(models.Model):
    """Bookable offering of a venue (room type, table, treatment, tour slot)."""

    venue = models.ForeignKey("Venue", on_delete=models.CASCADE, related_name="services")
    name = models.CharField(max_length=200)
    category = models.CharField(max_length=60, blank=True)
    description = models.TextField(blank=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    currency = models.CharField(max_length=3, default=default_currency)
    duration_minutes = models.PositiveIntegerField(null=True, blank=True)
    capacity = models.PositiveIntegerField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["venue__name", "name"]

    def __str__(self):
        return f"{self.venue.name}: {self.name}"
