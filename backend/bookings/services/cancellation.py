"""
Reservation cancellation with a notice-based refund policy.

More than 48 hours before check-in the whole reservation total is refunded,
between 24 and 48 hours half of it, and nothing inside 24 hours. Refunds go
through the same gateway and ledger path as operator refunds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional

from django.db import transaction
from django.utils import timezone

from bookings.models import Reservation
from bookings.services.notifications import RESERVATION_CANCELLED, BookingEvent
from core.exceptions import ConflictError, NotFoundError
from payments.commission import quantize_money
from payments.models import PaymentRefund
from payments.scoping import Requester, reservation_scope_filter
from payments.services.refunds import REFUNDABLE_STATUSES, issue_refund, refunded_total

logger = logging.getLogger(__name__)

FULL_REFUND_NOTICE = timedelta(hours=48)
HALF_REFUND_NOTICE = timedelta(hours=24)
DEFAULT_CANCEL_REASON = "Cancellation requested by the customer"


@dataclass
class CancellationResult:
    reservation: Reservation
    refund_amount: Decimal
    refund: Optional[PaymentRefund] = None
    events: List[BookingEvent] = field(default_factory=list)


def check_in_moment(reservation: Reservation) -> datetime:
    return timezone.make_aware(datetime.combine(reservation.check_in_date, time.min))


def refund_share(check_in: datetime, now: datetime) -> Decimal:
    """Fraction of the reservation total returned when cancelling at ``now``."""
    notice = check_in - now
    if notice > FULL_REFUND_NOTICE:
        return Decimal("1")
    if notice > HALF_REFUND_NOTICE:
        return Decimal("0.5")
    return Decimal("0")


def cancel_reservation(
    requester: Requester,
    reservation_id: int,
    reason: str = "",
    *,
    gateway=None,
    now: Optional[datetime] = None,
) -> CancellationResult:
    reservation = (
        Reservation.objects.select_related("user", "venue", "service")
        .filter(reservation_scope_filter(requester), pk=reservation_id)
        .first()
    )
    if reservation is None:
        raise NotFoundError.for_entity("Reservation")
    if reservation.status == Reservation.CANCELLED:
        raise ConflictError("This reservation is already cancelled.", code="already_cancelled")
    if reservation.status == Reservation.COMPLETED:
        raise ConflictError("Completed reservations cannot be cancelled.", code="reservation_completed")

    now = now or timezone.now()
    reason = (reason or "").strip() or DEFAULT_CANCEL_REASON
    share = refund_share(check_in_moment(reservation), now)
    payment = reservation.payments.filter(status__in=REFUNDABLE_STATUSES).order_by("created_at", "id").first()

    refund = None
    refund_amount = Decimal("0.00")
    if payment is not None and share > 0:
        remaining = payment.amount - refunded_total(payment)
        refund_amount = min(quantize_money(reservation.total_amount * share), remaining)
        if refund_amount > 0:
            outcome = issue_refund(
                actor_id=requester.user_id,
                payment=payment,
                amount=refund_amount,
                reason=reason,
                gateway=gateway,
            )
            refund = outcome.refund

    with transaction.atomic():
        reservation = Reservation.objects.select_for_update().get(pk=reservation.pk)
        if reservation.status != Reservation.CANCELLED:
            reservation.transition_to(Reservation.CANCELLED)
        reservation.cancel_reason = reason
        reservation.cancelled_at = now
        reservation.save(update_fields=["status", "cancel_reason", "cancelled_at", "updated_at"])

    logger.info(
        "Reservation %s cancelled by user %s with refund %s",
        reservation.confirmation_id,
        requester.user_id,
        refund_amount,
    )
    events = []
    if reservation.user.email:
        events.append(
            BookingEvent(name=RESERVATION_CANCELLED, reservation_id=reservation.pk, recipient=reservation.user.email)
        )
    return CancellationResult(reservation=reservation, refund_amount=refund_amount, refund=refund, events=events)
