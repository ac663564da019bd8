from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from django.db.models import Count, DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce

from payments.commission import platform_commission_rate, quantize_money, split_commission
from payments.models import Payment
from payments.scoping import Requester, owned_venue_ids, payment_scope_filter

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


@dataclass
class PaymentStats:
    total_payments: int = 0
    pending_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    refunded_count: int = 0
    partially_refunded_count: int = 0
    total_amount: Decimal = ZERO
    pending_amount: Decimal = ZERO
    completed_amount: Decimal = ZERO
    failed_amount: Decimal = ZERO
    refunded_amount: Decimal = ZERO
    partially_refunded_amount: Decimal = ZERO
    total_revenue: Decimal = ZERO
    success_rate: Decimal = ZERO
    failure_rate: Decimal = ZERO
    refund_rate: Decimal = ZERO
    average_transaction: Decimal = ZERO
    total_platform_fees: Decimal = ZERO
    total_net_revenue: Decimal = ZERO
    platform_commission_rate: Decimal = ZERO
    monthly_growth: Decimal = ZERO

    def as_dict(self) -> dict:
        return {key: str(value) if isinstance(value, Decimal) else value for key, value in asdict(self).items()}


def _money_sum(condition: Optional[Q] = None):
    return Coalesce(
        Sum("amount", filter=condition),
        Value(ZERO),
        output_field=DecimalField(max_digits=14, decimal_places=2),
    )


def _percentage(part, whole) -> Decimal:
    if not whole:
        return ZERO
    return quantize_money(Decimal(part) * HUNDRED / Decimal(whole))


def _date_filter(start_date: Optional[date], end_date: Optional[date]) -> Q:
    condition = Q()
    if start_date:
        condition &= Q(created_at__date__gte=start_date)
    if end_date:
        condition &= Q(created_at__date__lte=end_date)
    return condition


def _completed_revenue(scope: Q, start_date: date, end_date: date) -> Decimal:
    return (
        Payment.objects.filter(scope, _date_filter(start_date, end_date), status=Payment.COMPLETED)
        .aggregate(total=_money_sum())["total"]
    )


def monthly_growth(scope: Q, start_date: date, end_date: date) -> Decimal:
    """Percent change of completed revenue against the equally long period just before it."""
    period = (end_date - start_date) + timedelta(days=1)
    previous_end = start_date - timedelta(days=1)
    previous_start = previous_end - period + timedelta(days=1)

    current = _completed_revenue(scope, start_date, end_date)
    previous = _completed_revenue(scope, previous_start, previous_end)
    if not previous:
        return ZERO
    return quantize_money((current - previous) * HUNDRED / previous)


def payment_stats(requester: Requester, start_date: Optional[date] = None, end_date: Optional[date] = None) -> PaymentStats:
    rate = platform_commission_rate()
    venue_ids = owned_venue_ids(requester)
    if venue_ids is not None and not venue_ids:
        return PaymentStats(platform_commission_rate=rate)

    scope = payment_scope_filter(venue_ids)
    totals = Payment.objects.filter(scope, _date_filter(start_date, end_date)).aggregate(
        total_payments=Count("id"),
        pending_count=Count("id", filter=Q(status=Payment.PENDING)),
        completed_count=Count("id", filter=Q(status=Payment.COMPLETED)),
        failed_count=Count("id", filter=Q(status=Payment.FAILED)),
        refunded_count=Count("id", filter=Q(status=Payment.REFUNDED)),
        partially_refunded_count=Count("id", filter=Q(status=Payment.PARTIALLY_REFUNDED)),
        total_amount=_money_sum(),
        pending_amount=_money_sum(Q(status=Payment.PENDING)),
        completed_amount=_money_sum(Q(status=Payment.COMPLETED)),
        failed_amount=_money_sum(Q(status=Payment.FAILED)),
        refunded_amount=_money_sum(Q(status=Payment.REFUNDED)),
        partially_refunded_amount=_money_sum(Q(status=Payment.PARTIALLY_REFUNDED)),
    )
    totals = {key: quantize_money(value) if isinstance(value, Decimal) else value for key, value in totals.items()}

    count = totals["total_payments"]
    revenue = totals["completed_amount"]
    commission = split_commission(revenue, rate)

    growth = ZERO
    if start_date and end_date:
        growth = monthly_growth(scope, start_date, end_date)

    return PaymentStats(
        **totals,
        total_revenue=revenue,
        success_rate=_percentage(totals["completed_count"], count),
        failure_rate=_percentage(totals["failed_count"], count),
        refund_rate=_percentage(totals["refunded_count"], count),
        average_transaction=quantize_money(revenue / totals["completed_count"]) if totals["completed_count"] else ZERO,
        total_platform_fees=commission.platform_fee,
        total_net_revenue=commission.net_amount,
        platform_commission_rate=rate,
        monthly_growth=growth,
    )
