"""Requester identity and venue scoping shared by the admin payment workflows."""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional

from django.db.models import Q

from accounts.models import User
from core.exceptions import ForbiddenError
from venues.models import Venue


@dataclass(frozen=True)
class Requester:
    user_id: int
    role: str

    @classmethod
    def from_user(cls, user) -> "Requester":
        return cls(user_id=user.pk, role=user.effective_role)

    @property
    def is_unrestricted(self) -> bool:
        return self.role == User.SUPER_ADMIN



def owned_venue_ids(requester: Requester) -> Optional[FrozenSet[int]]:
    """Venue ids a restricted requester may see; ``None`` means unrestricted."""
    if requester.is_unrestricted:
        return None
    return frozenset(Venue.objects.filter(owner_id=requester.user_id).values_list("id", flat=True))


def payment_scope_filter(venue_ids: Optional[FrozenSet[int]]) -> Q:
    if venue_ids is None:
        return Q()
    return Q(reservation__venue_id__in=venue_ids)


def ensure_payment_in_scope(requester: Requester, payment) -> None:
    """Restricted requesters may only touch payments of reservations at their own venues."""
    if requester.is_unrestricted:
        return
    reservation = payment.reservation
    if reservation is None or reservation.venue.owner_id != requester.user_id:
        raise ForbiddenError("You do not have access to this payment.", code="payment_forbidden")


def ensure_unrestricted(requester: Requester, message: str = "Only super admins can perform this action.") -> None:
    if not requester.is_unrestricted:
        raise ForbiddenError(message, code="super_admin_required")


def reservation_scope_filter(requester: Requester) -> Q:
    """Reservations visible to a requester: all, own venues' plus own bookings, or own bookings."""
    if requester.is_unrestricted:
        return Q()
    if requester.role == User.ADMIN:
        return Q(venue__owner_id=requester.user_id) | Q(user_id=requester.user_id)
    return Q(user_id=requester.user_id)
