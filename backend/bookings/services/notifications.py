"""Post-commit side effects of a booking, delivered best-effort."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from bookings.models import Reservation
from bookings.services.emails import (
    send_reservation_cancellation_email,
    send_reservation_confirmation_email,
    send_venue_booking_notice_email,
)

logger = logging.getLogger(__name__)

RESERVATION_CONFIRMED = "reservation_confirmed"
RESERVATION_PENDING = "reservation_pending"
VENUE_NEW_BOOKING = "venue_new_booking"
RESERVATION_CANCELLED = "reservation_cancelled"


@dataclass(frozen=True)
class BookingEvent:
    name: str
    reservation_id: int
    recipient: str


class EmailNotifier:
    def notify(self, event: BookingEvent) -> None:
        reservation = Reservation.objects.select_related("user", "venue", "service").get(pk=event.reservation_id)
        if event.name == VENUE_NEW_BOOKING:
            send_venue_booking_notice_email(reservation=reservation, recipients=[event.recipient])
        elif event.name == RESERVATION_CANCELLED:
            send_reservation_cancellation_email(reservation=reservation, recipients=[event.recipient])
        else:
            send_reservation_confirmation_email(reservation=reservation, recipients=[event.recipient])


def dispatch_events(events: Iterable[BookingEvent], notifier: Optional[EmailNotifier] = None) -> int:
    """
    Deliver booking events once the ledger transaction has committed.

    Delivery failures never affect the booking; they are logged and skipped.
    Returns the number of events delivered.
    """

    notifier = notifier or EmailNotifier()
    delivered = 0
    for event in events:
        try:
            notifier.notify(event)
        except Exception:
            logger.warning(
                "Failed to deliver %s notification for reservation %s",
                event.name,
                event.reservation_id,
                exc_info=True,
            )
            continue
        delivered += 1
    return delivered
