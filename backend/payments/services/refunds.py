"""Operator corrections to payment state: refunds, manual status fixes and verifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from bookings.models import Reservation
from core.exceptions import ConflictError, NotFoundError, ValidationError
from payments.audit import payment_snapshot, record_payment_action
from payments.commission import quantize_money
from payments.gateway import get_gateway
from payments.models import Payment, PaymentAuditLog, PaymentRefund
from payments.scoping import Requester, ensure_unrestricted

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = {Payment.COMPLETED, Payment.PARTIALLY_REFUNDED}
CANCELLABLE_RESERVATION_STATUSES = {Reservation.PENDING, Reservation.CONFIRMED}


@dataclass
class RefundOutcome:
    payment: Payment
    refund: PaymentRefund
    refunded_total: Decimal


def _load_payment(payment_id: int) -> Payment:
    payment = Payment.objects.select_related("reservation").filter(pk=payment_id).first()
    if payment is None:
        raise NotFoundError.for_entity("Payment")
    return payment


def refunded_total(payment: Payment) -> Decimal:
    total = payment.refunds.aggregate(total=Sum("amount"))["total"]
    return quantize_money(total or 0)


def _parse_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Refund amount must be a number.", code="invalid_amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Refund amount must be greater than zero.", code="invalid_amount")
    return amount


def validate_refund(payment: Payment, amount, reason: Optional[str], already_refunded: Decimal) -> Decimal:
    amount = _parse_amount(amount)
    # Compared before quantizing: huge values overflow the money context.
    if amount > payment.amount:
        raise ValidationError("Refund amount cannot exceed the original payment amount.", code="exceeds_original")
    amount = quantize_money(amount)
    if amount <= 0:
        raise ValidationError("Refund amount must be at least 0.01.", code="invalid_amount")
    if amount > payment.amount - already_refunded:
        raise ValidationError(
            f"Only {payment.amount - already_refunded} {payment.currency} remain refundable.",
            code="exceeds_remaining",
        )
    if not (reason or "").strip():
        raise ValidationError("A refund reason is required.", code="reason_required")
    return amount


def ensure_refundable(payment: Payment) -> None:
    if payment.status not in REFUNDABLE_STATUSES:
        raise ConflictError(
            f"Payments in status {payment.status} cannot be refunded.",
            code="payment_not_refundable",
        )


def refund_payment(requester: Requester, payment_id: int, amount, reason: str, *, gateway=None) -> RefundOutcome:
    ensure_unrestricted(requester, "Only super admins can refund payments.")
    payment = _load_payment(payment_id)
    ensure_refundable(payment)

    already_refunded = refunded_total(payment)
    if amount is None or amount == "":
        amount = payment.amount - already_refunded
    amount = validate_refund(payment, amount, reason, already_refunded)
    return issue_refund(actor_id=requester.user_id, payment=payment, amount=amount, reason=reason, gateway=gateway)


def issue_refund(*, actor_id: int, payment: Payment, amount: Decimal, reason: str, gateway=None) -> RefundOutcome:
    """
    Refund a validated amount: gateway refund first, then the locked ledger write.

    Payments without a gateway reference get a MANUAL refund record. A full
    refund cancels a pending or confirmed reservation. One audit row is
    written in the same transaction.
    """
    gateway_refund = None
    if payment.stripe_payment_id:
        gateway = gateway or get_gateway()
        gateway_refund = gateway.create_refund(
            payment_intent_id=payment.stripe_payment_id,
            amount=amount,
            metadata={
                "payment_id": str(payment.pk),
                "processed_by": str(actor_id),
                "reason": reason.strip()[:500],
            },
            idempotency_key=f"refund-{payment.pk}-{payment.refunds.count()}-{amount}",
        )

    with transaction.atomic():
        payment = Payment.objects.select_for_update(of=("self",)).select_related("reservation").get(pk=payment.pk)
        old_values = payment_snapshot(payment)

        total = refunded_total(payment) + amount
        if total > payment.amount:
            logger.error(
                "Refund of %s on payment %s exceeds the original amount after a concurrent refund (gateway refund %s)",
                amount,
                payment.pk,
                gateway_refund.id if gateway_refund else None,
            )
            raise ConflictError("A concurrent refund already covers this amount.", code="exceeds_remaining")

        refund = PaymentRefund.objects.create(
            payment=payment,
            amount=amount,
            reason=reason.strip(),
            stripe_refund_id=gateway_refund.id if gateway_refund else "",
            status=PaymentRefund.PROCESSED if gateway_refund else PaymentRefund.MANUAL,
            processed_by_id=actor_id,
        )

        fully_refunded = total == payment.amount
        payment.transition_to(Payment.REFUNDED if fully_refunded else Payment.PARTIALLY_REFUNDED)
        payment.save(update_fields=["status", "updated_at"])

        reservation = payment.reservation
        if fully_refunded and reservation is not None and reservation.status in CANCELLABLE_RESERVATION_STATUSES:
            reservation.transition_to(Reservation.CANCELLED)
            reservation.save(update_fields=["status", "updated_at"])

        record_payment_action(
            actor_id=actor_id,
            payment=payment,
            action=PaymentAuditLog.ACTION_REFUND,
            old_values=old_values,
            notes=reason.strip(),
            refund_id=refund.pk,
            refund_amount=str(amount),
            refunded_total=str(total),
            refund_method="gateway" if gateway_refund else "manual",
        )

    logger.info("Refunded %s %s on payment %s (total %s)", amount, payment.currency, payment.pk, total)
    return RefundOutcome(payment=payment, refund=refund, refunded_total=total)


def correct_payment_status(
    requester: Requester,
    payment_id: int,
    status: str,
    notes: str,
    verification_method: str = "",
) -> Payment:
    """Mark a FAILED payment as COMPLETED after out-of-band verification."""
    ensure_unrestricted(requester, "Only super admins can update payment status.")
    if (status or "").upper() != Payment.COMPLETED:
        raise ValidationError("Payments can only be corrected to COMPLETED.", code="invalid_status")
    if not (notes or "").strip():
        raise ValidationError("Notes are required for a status update.", code="notes_required")

    with transaction.atomic():
        payment = Payment.objects.select_for_update(of=("self",)).select_related("reservation").filter(pk=payment_id).first()
        if payment is None:
            raise NotFoundError.for_entity("Payment")
        if payment.status != Payment.FAILED:
            raise ConflictError(
                f"Only FAILED payments can be corrected; this payment is {payment.status}.",
                code="invalid_transition",
            )
        old_values = payment_snapshot(payment)

        payment.transition_to(Payment.COMPLETED)
        corrections = list((payment.metadata or {}).get("status_corrections", []))
        corrections.append(
            {
                "from": old_values["status"],
                "to": payment.status,
                "operator_id": requester.user_id,
                "notes": notes.strip(),
                "verification_method": verification_method or "manual",
                "corrected_at": timezone.now().isoformat(),
            }
        )
        payment.metadata = {**(payment.metadata or {}), "status_corrections": corrections}
        payment.save(update_fields=["status", "transaction_date", "metadata", "updated_at"])

        reservation = payment.reservation
        if reservation is not None and reservation.status == Reservation.PENDING:
            reservation.transition_to(Reservation.CONFIRMED)
            reservation.save(update_fields=["status", "updated_at"])

        record_payment_action(
            actor_id=requester.user_id,
            payment=payment,
            action=PaymentAuditLog.ACTION_STATUS_UPDATE,
            old_values=old_values,
            notes=notes.strip(),
            verification_method=verification_method or "manual",
        )

    logger.info("Payment %s corrected from FAILED to COMPLETED by user %s", payment.pk, requester.user_id)
    return payment


def verify_payment(requester: Requester, payment_id: int, notes: str = "") -> Payment:
    """Record that an operator reviewed a payment by hand; the status is left alone."""
    ensure_unrestricted(requester, "Only super admins can verify payments.")
    notes = (notes or "").strip() or "Manual verification completed"

    with transaction.atomic():
        payment = Payment.objects.select_for_update(of=("self",)).select_related("reservation").filter(pk=payment_id).first()
        if payment is None:
            raise NotFoundError.for_entity("Payment")
        old_values = payment_snapshot(payment)

        verification = {
            "method": "admin_review",
            "notes": notes,
            "verified_at": timezone.now().isoformat(),
            "verified_by": requester.user_id,
        }
        payment.metadata = {**(payment.metadata or {}), "manual_verification": verification}
        payment.save(update_fields=["metadata", "updated_at"])

        record_payment_action(
            actor_id=requester.user_id,
            payment=payment,
            action=PaymentAuditLog.ACTION_MANUAL_VERIFICATION,
            old_values=old_values,
            notes=notes,
            verified=True,
        )

    logger.info("Payment %s manually verified by user %s", payment.pk, requester.user_id)
    return payment
