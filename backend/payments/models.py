from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Optional, Union

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from core.exceptions import ConflictError
from venues.models import default_currency


@dataclass(frozen=True)
class ReservationBacking:
    reservation: Any


@dataclass(frozen=True)
class SubscriptionBacking:
    plan: str


PaymentBacking = Union[ReservationBacking, SubscriptionBacking]


class Payment(models.Model):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    STATUSES = [
        (PENDING, "Pending"),
        (COMPLETED, "Completed"),
        (FAILED, "Failed"),
        (REFUNDED, "Refunded"),
        (PARTIALLY_REFUNDED, "Partially refunded"),
    ]
    TRANSITIONS = {
        PENDING: {COMPLETED, FAILED},
        COMPLETED: {REFUNDED, PARTIALLY_REFUNDED},
        PARTIALLY_REFUNDED: {PARTIALLY_REFUNDED, REFUNDED},
        FAILED: {COMPLETED},
        REFUNDED: set(),
    }

    KIND_RESERVATION = "RESERVATION"
    KIND_SUBSCRIPTION = "SUBSCRIPTION"
    KINDS = [
        (KIND_RESERVATION, "Reservation"),
        (KIND_SUBSCRIPTION, "Subscription"),
    ]

    reservation = models.ForeignKey(
        "bookings.Reservation",
        on_delete=models.PROTECT,
        related_name="payments",
        null=True,
        blank=True,
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments",
    )
    kind = models.CharField(max_length=20, choices=KINDS, default=KIND_RESERVATION)
    subscription_plan = models.CharField(max_length=60, blank=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default=default_currency)
    status = models.CharField(max_length=20, choices=STATUSES, default=PENDING)
    payment_method = models.CharField(max_length=40, default="card")
    stripe_payment_id = models.CharField(max_length=255, null=True, blank=True, db_index=True)
    stripe_customer_id = models.CharField(max_length=255, blank=True)
    description = models.CharField(max_length=500, blank=True)
    transaction_date = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["stripe_payment_id"],
                condition=Q(stripe_payment_id__isnull=False) & ~Q(stripe_payment_id=""),
                name="unique_gateway_payment_reference",
            ),
        ]

    def __str__(self):
        return f"Payment {self.pk} {self.amount} {self.currency} ({self.status})"

    @property
    def backing(self) -> Optional[PaymentBacking]:
        if self.reservation_id:
            return ReservationBacking(reservation=self.reservation)
        if self.kind == self.KIND_SUBSCRIPTION:
            return SubscriptionBacking(plan=self.subscription_plan or "premium")
        return None

    def can_transition_to(self, status: str) -> bool:
        return status in self.TRANSITIONS.get(self.status, set())

    def transition_to(self, status: str) -> None:
        if not self.can_transition_to(status):
            raise ConflictError(
                f"Payment cannot move from {self.status} to {status}.",
                code="invalid_transition",
            )
        self.status = status
        if status == self.COMPLETED and self.transaction_date is None:
            self.transaction_date = timezone.now()


def generate_receipt_number() -> str:
    return f"INV-{timezone.now():%Y%m%d}-{secrets.token_hex(3).upper()}"


class Receipt(models.Model):
    TYPE_INVOICE = "INVOICE"
    TYPE_RECEIPT = "RECEIPT"
    TYPES = [
        (TYPE_INVOICE, "Invoice"),
        (TYPE_RECEIPT, "Receipt"),
    ]

    PENDING = "PENDING"
    PAID = "PAID"
    VOID = "VOID"
    UNCOLLECTIBLE = "UNCOLLECTIBLE"
    STATUSES = [
        (PENDING, "Pending"),
        (PAID, "Paid"),
        (VOID, "Void"),
        (UNCOLLECTIBLE, "Uncollectible"),
    ]

    payment = models.ForeignKey("Payment", on_delete=models.PROTECT, related_name="receipts")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="receipts",
    )
    receipt_number = models.CharField(max_length=40, unique=True, default=generate_receipt_number)
    type = models.CharField(max_length=10, choices=TYPES, default=TYPE_INVOICE)
    status = models.CharField(max_length=15, choices=STATUSES, default=PENDING)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    subtotal_amount = models.DecimalField(max_digits=10, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default=default_currency)
    issue_date = models.DateTimeField(default=timezone.now)
    due_date = models.DateTimeField(null=True, blank=True)
    stripe_invoice_id = models.CharField(max_length=255, blank=True, db_index=True)
    stripe_invoice_url = models.URLField(max_length=500, blank=True)
    stripe_invoice_pdf = models.URLField(max_length=500, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["payment"],
                condition=Q(type="INVOICE"),
                name="unique_invoice_per_payment",
            ),
        ]

    def __str__(self):
        return f"{self.receipt_number} ({self.status})"


class PaymentRefund(models.Model):
    PROCESSED = "PROCESSED"
    MANUAL = "MANUAL"
    STATUSES = [
        (PROCESSED, "Processed by gateway"),
        (MANUAL, "Recorded manually"),
    ]

    payment = models.ForeignKey("Payment", on_delete=models.PROTECT, related_name="refunds")
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    reason = models.TextField()
    stripe_refund_id = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=12, choices=STATUSES, default=PROCESSED)
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="processed_refunds",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"Refund {self.amount} of payment {self.payment_id}"


class PaymentAuditLog(models.Model):
    """Append-only trail of operator actions on payments."""

    ACTION_REFUND = "PAYMENT_REFUND"
    ACTION_STATUS_UPDATE = "PAYMENT_STATUS_UPDATE"
    ACTION_MANUAL_VERIFICATION = "PAYMENT_MANUAL_VERIFICATION"
    ACTIONS = [
        (ACTION_REFUND, "Payment refund"),
        (ACTION_STATUS_UPDATE, "Payment status update"),
        (ACTION_MANUAL_VERIFICATION, "Payment manual verification"),
    ]

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="payment_audit_entries",
    )
    payment = models.ForeignKey("Payment", on_delete=models.PROTECT, related_name="audit_entries")
    action = models.CharField(max_length=30, choices=ACTIONS)
    old_values = models.JSONField(default=dict)
    new_values = models.JSONField(default=dict)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.action} on payment {self.payment_id}"
