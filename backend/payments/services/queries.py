"""Role-scoped, gateway-enriched payment listing for the admin back office."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

from django.db.models import CharField, Q
from django.db.models.functions import Cast

from core.exceptions import ForbiddenError, GatewayError
from core.pagination import Page, PageRequest
from payments.commission import platform_commission_rate, split_commission
from payments.gateway import get_gateway
from payments.models import Payment
from payments.scoping import Requester, ensure_unrestricted, owned_venue_ids, payment_scope_filter
from venues.models import Venue

logger = logging.getLogger(__name__)

STATUS_ALL = "ALL"


@dataclass
class PaymentFilters:
    status: Optional[str] = None
    venue_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: str = ""


def _base_queryset():
    return Payment.objects.select_related(
        "user",
        "reservation__venue",
        "reservation__service",
    ).prefetch_related("receipts")


def _apply_filters(queryset, filters: PaymentFilters):
    if filters.status and filters.status != STATUS_ALL:
        queryset = queryset.filter(status=filters.status)
    if filters.venue_id:
        queryset = queryset.filter(reservation__venue_id=filters.venue_id)
    if filters.start_date:
        queryset = queryset.filter(created_at__date__gte=filters.start_date)
    if filters.end_date:
        queryset = queryset.filter(created_at__date__lte=filters.end_date)

    term = (filters.search or "").strip()
    if term:
        queryset = queryset.annotate(id_text=Cast("id", CharField())).filter(
            Q(user__email__icontains=term)
            | Q(user__first_name__icontains=term)
            | Q(user__last_name__icontains=term)
            | Q(id_text__icontains=term)
            | Q(stripe_payment_id__icontains=term)
        )
    return queryset


def _enrich(payments, gateway) -> None:
    rate = platform_commission_rate()
    customers: Dict[str, object] = {}
    for payment in payments:
        payment._commission = split_commission(payment.amount, rate)
        payment._gateway_payment = None
        payment._gateway_customer = None

        if payment.stripe_payment_id:
            try:
                payment._gateway_payment = gateway.retrieve_payment_intent(payment.stripe_payment_id)
            except GatewayError as exc:
                logger.warning("Could not load payment intent %s: %s", payment.stripe_payment_id, exc.code)

        customer_id = payment.stripe_customer_id
        if customer_id:
            if customer_id not in customers:
                try:
                    customers[customer_id] = gateway.retrieve_customer(customer_id)
                except GatewayError as exc:
                    logger.warning("Could not load gateway customer %s: %s", customer_id, exc.code)
                    customers[customer_id] = None
            payment._gateway_customer = customers[customer_id]


def list_payments(
    requester: Requester,
    page_request: PageRequest,
    filters: Optional[PaymentFilters] = None,
    *,
    gateway=None,
    enrich: bool = True,
) -> Page:
    filters = filters or PaymentFilters()

    venue_ids = owned_venue_ids(requester)
    if venue_ids is not None and not venue_ids:
        return Page(request=page_request, total=0, items=[])
    if venue_ids is not None and filters.venue_id and filters.venue_id not in venue_ids:
        raise ForbiddenError("You do not have access to this venue.", code="venue_forbidden")

    queryset = _apply_filters(_base_queryset().filter(payment_scope_filter(venue_ids)), filters)
    queryset = queryset.order_by("-created_at", "-id")

    total = queryset.count()
    items = list(queryset[page_request.offset : page_request.offset + page_request.limit])
    if enrich and items:
        _enrich(items, gateway or get_gateway())
    return Page(request=page_request, total=total, items=items)


def venue_filter_options(requester: Requester) -> List[Dict]:
    """Active venues offered as payment list filters, ordered by name."""
    ensure_unrestricted(requester)
    venues = Venue.objects.filter(is_active=True).select_related("owner").order_by("name", "id")
    return [
        {
            "id": venue.pk,
            "name": venue.name,
            "category": venue.category,
            "city": venue.city,
            "owner_name": venue.owner.full_name or venue.owner.email,
        }
        for venue in venues
    ]
