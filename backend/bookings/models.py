import secrets

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from core.exceptions import ConflictError


def generate_confirmation_id() -> str:
    return f"RSV-{secrets.token_hex(4).upper()}"


class Reservation(models.Model):
    """A booked service at a venue. Never deleted, only status-transitioned."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    STATUSES = [
        (PENDING, "Pending"),
        (CONFIRMED, "Confirmed"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    ]
    TRANSITIONS = {
        PENDING: {CONFIRMED, CANCELLED},
        CONFIRMED: {COMPLETED, CANCELLED},
        COMPLETED: set(),
        CANCELLED: set(),
    }

    confirmation_id = models.CharField(max_length=20, unique=True, default=generate_confirmation_id, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="reservations",
    )
    venue = models.ForeignKey("venues.Venue", on_delete=models.PROTECT, related_name="reservations")
    service = models.ForeignKey("venues.Service", on_delete=models.PROTECT, related_name="reservations")
    status = models.CharField(max_length=12, choices=STATUSES, default=PENDING)
    check_in_date = models.DateField()
    check_out_date = models.DateField()
    guests = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)
    notes = models.TextField(blank=True)
    cancel_reason = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.confirmation_id} ({self.status})"

    def can_transition_to(self, status: str) -> bool:
        return status in self.TRANSITIONS.get(self.status, set())

    def transition_to(self, status: str) -> None:
        """Move to ``status`` in memory; callers persist with ``save``."""
        if not self.can_transition_to(status):
            raise ConflictError(
                f"Reservation cannot move from {self.status} to {status}.",
                code="invalid_transition",
            )
        self.status = status
