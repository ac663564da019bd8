"""Apply Stripe webhook events to the payment ledger."""

from __future__ import annotations

import logging

from django.db import transaction

from bookings.models import Reservation
from payments.models import Payment, Receipt

logger = logging.getLogger(__name__)

INTENT_EVENTS = {
    "payment_intent.succeeded": (Payment.COMPLETED, Reservation.CONFIRMED),
    "payment_intent.payment_failed": (Payment.FAILED, None),
    "payment_intent.canceled": (Payment.FAILED, Reservation.CANCELLED),
}
INVOICE_EVENTS = {
    "invoice.paid": Receipt.PAID,
    "invoice.voided": Receipt.VOID,
    "invoice.marked_uncollectible": Receipt.UNCOLLECTIBLE,
}


def _apply_intent_event(event_type: str, intent_id: str) -> bool:
    payment_status, reservation_status = INTENT_EVENTS[event_type]
    with transaction.atomic():
        payment = (
            Payment.objects.select_for_update()
            .select_related("reservation")
            .filter(stripe_payment_id=intent_id)
            .first()
        )
        if payment is None:
            logger.info("No payment recorded for intent %s (%s)", intent_id, event_type)
            return False
        if payment.status != Payment.PENDING:
            logger.info(
                "Ignoring %s for payment %s already in status %s",
                event_type,
                payment.pk,
                payment.status,
            )
            return False

        payment.transition_to(payment_status)
        payment.save(update_fields=["status", "transaction_date", "updated_at"])

        reservation = payment.reservation
        if reservation is not None and reservation_status:
            if reservation.can_transition_to(reservation_status):
                reservation.transition_to(reservation_status)
                reservation.save(update_fields=["status", "updated_at"])
            else:
                logger.warning(
                    "Reservation %s cannot move from %s to %s on %s",
                    reservation.confirmation_id,
                    reservation.status,
                    reservation_status,
                    event_type,
                )
    logger.info("Payment %s moved to %s by %s", payment.pk, payment.status, event_type)
    return True


def _apply_invoice_event(event_type: str, invoice_id: str) -> bool:
    status = INVOICE_EVENTS[event_type]
    updated = (
        Receipt.objects.filter(stripe_invoice_id=invoice_id, status=Receipt.PENDING)
        .update(status=status)
    )
    if not updated:
        logger.info("No pending receipt for invoice %s (%s)", invoice_id, event_type)
    return bool(updated)


def handle_stripe_event(event) -> bool:
    """Returns True when the event changed ledger state."""
    event_type = event["type"]
    data_object = event["data"]["object"]
    object_id = data_object.get("id")
    if not object_id:
        logger.warning("Stripe event %s without object id", event_type)
        return False

    if event_type in INTENT_EVENTS:
        return _apply_intent_event(event_type, object_id)
    if event_type in INVOICE_EVENTS:
        return _apply_invoice_event(event_type, object_id)

    logger.debug("Unhandled Stripe event %s", event_type)
    return False
