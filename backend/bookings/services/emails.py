from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from django.conf import settings
from django.core.mail import send_mail

from bookings.models import Reservation


def _format_from_email(venue_name: str) -> str:
    default_from = settings.DEFAULT_FROM_EMAIL
    email_addr = default_from
    if '<' in default_from and default_from.endswith('>'):
        email_addr = default_from.split('<', 1)[1].rstrip('>')
    return f"{venue_name} via ReservApp <{email_addr}>"


def send_reservation_confirmation_email(*, reservation: Reservation, recipients: Iterable[str]):
    venue = reservation.venue
    confirmed = reservation.status == Reservation.CONFIRMED
    subject = (
        f"Reservation {reservation.confirmation_id} confirmed"
        if confirmed
        else f"Reservation {reservation.confirmation_id} received"
    )

    body_lines = [
        f"Hi {reservation.user.full_name or reservation.user.email},",
        "",
        f"Your reservation for {reservation.service.name} at {venue.name} is "
        + ("confirmed." if confirmed else "pending payment confirmation."),
        f"Dates: {reservation.check_in_date:%B %d, %Y} to {reservation.check_out_date:%B %d, %Y}.",
        f"Guests: {reservation.guests}",
        f"Total: ${reservation.total_amount} {reservation.service.currency}",
        "",
        f"Manage your reservation: {settings.FRONTEND_URL.rstrip('/')}/reservations/{reservation.pk}",
        "",
        "The ReservApp Team",
    ]
    send_mail(
        subject,
        "\n".join(body_lines),
        _format_from_email(venue.name),
        list(recipients),
        fail_silently=False,
    )


def send_venue_booking_notice_email(*, reservation: Reservation, recipients: Iterable[str]):
    subject = f"New reservation {reservation.confirmation_id} for {reservation.service.name}"
    body_lines = [
        f"{reservation.user.full_name or reservation.user.email} booked {reservation.service.name}.",
        f"Dates: {reservation.check_in_date:%B %d, %Y} to {reservation.check_out_date:%B %d, %Y}.",
        f"Guests: {reservation.guests}",
        f"Status: {reservation.get_status_display()}",
    ]
    if reservation.notes:
        body_lines += ["", f"Notes: {reservation.notes}"]
    send_mail(
        subject,
        "\n".join(body_lines),
        settings.DEFAULT_FROM_EMAIL,
        list(recipients),
        fail_silently=False,
    )


def send_reservation_cancellation_email(*, reservation: Reservation, recipients: Iterable[str]):
    refunded = sum(
        (refund.amount for payment in reservation.payments.all() for refund in payment.refunds.all()),
        Decimal("0.00"),
    )
    body_lines = [
        f"Hi {reservation.user.full_name or reservation.user.email},",
        "",
        f"Your reservation for {reservation.service.name} at {reservation.venue.name} has been cancelled.",
        f"Dates: {reservation.check_in_date:%B %d, %Y} to {reservation.check_out_date:%B %d, %Y}.",
    ]
    if refunded > 0:
        body_lines.append(f"Refund: ${refunded} {reservation.service.currency}")
    else:
        body_lines.append("No refund applies to this cancellation.")
    body_lines += ["", "The ReservApp Team"]
    send_mail(
        f"Reservation {reservation.confirmation_id} cancelled",
        "\n".join(body_lines),
        _format_from_email(reservation.venue.name),
        list(recipients),
        fail_silently=False,
    )
