"""
Booking orchestration: validate, charge, then record the reservation and its payment.

The gateway charge happens before any ledger write and no database lock is
held across it. If the charge fails nothing is written. If the charge
succeeds but the ledger write fails, the payment intent id is logged at error
level so it can be reconciled out of band.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional
from uuid import uuid4

from django.contrib.auth import get_user_model
from django.db import DatabaseError, IntegrityError, transaction

from bookings.models import Reservation
from bookings.services.notifications import (
    RESERVATION_CONFIRMED,
    RESERVATION_PENDING,
    VENUE_NEW_BOOKING,
    BookingEvent,
)
from core.exceptions import GatewayError, InternalError, NotFoundError, ValidationError
from payments.commission import quantize_money
from payments.customers import ensure_gateway_customer
from payments.gateway import GatewayPaymentIntent, decline_message, get_gateway
from payments.models import Payment
from venues.models import Service, Venue

logger = logging.getLogger(__name__)

User = get_user_model()


@dataclass
class BookingRequest:
    user_id: int
    venue_id: int
    service_id: int
    check_in_date: date
    check_out_date: date
    guests: int = 1
    payment_method_id: str = ""
    notes: str = ""
    idempotency_key: Optional[str] = None


@dataclass
class BookingResult:
    reservation: Reservation
    payment: Payment
    payment_intent: GatewayPaymentIntent
    events: List[BookingEvent] = field(default_factory=list)


def _load_catalog(request: BookingRequest):
    venue = Venue.objects.filter(pk=request.venue_id, is_active=True).first()
    if venue is None:
        raise NotFoundError.for_entity("Venue")

    service = Service.objects.filter(pk=request.service_id, venue=venue, is_active=True).first()
    if service is None:
        raise NotFoundError.for_entity("Service")

    user = User.objects.filter(pk=request.user_id, is_active=True).first()
    if user is None:
        raise NotFoundError.for_entity("User")

    return user, venue, service


def _validate(request: BookingRequest, service: Service) -> None:
    if not (request.payment_method_id or "").strip():
        raise ValidationError("A payment method is required.", code="payment_method_required")
    if request.check_in_date >= request.check_out_date:
        raise ValidationError("Check-out date must be after check-in date.", code="invalid_dates")
    if request.guests < 1:
        raise ValidationError("At least one guest is required.", code="invalid_guests")
    if service.capacity and request.guests > service.capacity:
        raise ValidationError(
            f"{service.name} accepts at most {service.capacity} guests.",
            code="capacity_exceeded",
        )


def _build_events(reservation: Reservation, user, venue: Venue) -> List[BookingEvent]:
    events = []
    if user.email:
        name = RESERVATION_CONFIRMED if reservation.status == Reservation.CONFIRMED else RESERVATION_PENDING
        events.append(BookingEvent(name=name, reservation_id=reservation.pk, recipient=user.email))
    venue_contact = venue.contact_email or venue.owner.email
    if venue_contact:
        events.append(BookingEvent(name=VENUE_NEW_BOOKING, reservation_id=reservation.pk, recipient=venue_contact))
    return events


def _recorded_payment(intent_id: str) -> Optional[Payment]:
    return Payment.objects.select_related("reservation").filter(stripe_payment_id=intent_id).first()


def _replayed(payment: Payment, intent: GatewayPaymentIntent) -> BookingResult:
    """A retried request: the gateway replayed the intent, so return what was recorded for it."""
    logger.info(
        "Payment intent %s already recorded as payment %s; returning reservation %s",
        intent.id,
        payment.pk,
        payment.reservation.confirmation_id,
    )
    return BookingResult(reservation=payment.reservation, payment=payment, payment_intent=intent)


def _ledger_write_failed(intent: GatewayPaymentIntent, user) -> InternalError:
    logger.error(
        "Ledger write failed after payment intent %s (status %s) for user %s; manual reconciliation required",
        intent.id,
        intent.status,
        user.pk,
        exc_info=True,
    )
    return InternalError(
        "Your payment was received but the reservation could not be saved. Our team has been notified.",
        code="ledger_write_failed",
    )


def create_booking(request: BookingRequest, *, gateway=None) -> BookingResult:
    """
    Turn a booking request into a reservation backed by a charged payment.

    The amount charged is always the service's catalog price. Returned events
    must be dispatched by the caller once this function has returned.
    """

    user, venue, service = _load_catalog(request)
    _validate(request, service)
    gateway = gateway or get_gateway()

    customer_id = ensure_gateway_customer(user, gateway)
    amount = quantize_money(service.price)
    currency = service.currency

    idempotency_key = f"booking-{user.pk}-{request.idempotency_key or uuid4().hex}"
    intent = gateway.create_payment_intent(
        amount=amount,
        currency=currency,
        customer_id=customer_id,
        payment_method_id=request.payment_method_id,
        description=f"Reservation at {venue.name}: {service.name}",
        metadata={
            "user_id": str(user.pk),
            "venue_id": str(venue.pk),
            "service_id": str(service.pk),
            "check_in_date": request.check_in_date.isoformat(),
            "check_out_date": request.check_out_date.isoformat(),
        },
        idempotency_key=idempotency_key,
    )
    if intent.failed:
        logger.info("Payment intent %s ended in status %s", intent.id, intent.status)
        raise GatewayError(decline_message("payment_failed"), code="payment_failed", declined=True)

    recorded = _recorded_payment(intent.id)
    if recorded is not None:
        return _replayed(recorded, intent)

    succeeded = intent.succeeded
    try:
        with transaction.atomic():
            reservation = Reservation.objects.create(
                user=user,
                venue=venue,
                service=service,
                status=Reservation.CONFIRMED if succeeded else Reservation.PENDING,
                check_in_date=request.check_in_date,
                check_out_date=request.check_out_date,
                guests=request.guests,
                total_amount=amount,
                notes=request.notes or "",
            )
            payment = Payment(
                reservation=reservation,
                user=user,
                kind=Payment.KIND_RESERVATION,
                amount=amount,
                currency=currency,
                payment_method="card",
                stripe_payment_id=intent.id,
                stripe_customer_id=customer_id,
                description=f"{service.name} at {venue.name} ({reservation.confirmation_id})",
            )
            if succeeded:
                payment.transition_to(Payment.COMPLETED)
            payment.save()
    except IntegrityError:
        # A concurrent retry with the same key recorded the intent first.
        recorded = _recorded_payment(intent.id)
        if recorded is None:
            raise _ledger_write_failed(intent, user)
        return _replayed(recorded, intent)
    except DatabaseError:
        raise _ledger_write_failed(intent, user)

    logger.info(
        "Reservation %s created with status %s (payment %s, intent %s)",
        reservation.confirmation_id,
        reservation.status,
        payment.pk,
        intent.id,
    )
    return BookingResult(
        reservation=reservation,
        payment=payment,
        payment_intent=intent,
        events=_build_events(reservation, user, venue),
    )
