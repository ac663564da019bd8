from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional, Union

from django.conf import settings

CENT = Decimal("0.01")

Number = Union[Decimal, int, str]


def quantize_money(value: Number) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_EVEN)


def platform_commission_rate() -> Decimal:
    return Decimal(str(settings.PLATFORM_COMMISSION_RATE))


def invoice_tax_rate() -> Decimal:
    return Decimal(str(settings.INVOICE_TAX_RATE))


@dataclass(frozen=True)
class CommissionSplit:
    gross: Decimal
    platform_fee: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class TaxSplit:
    gross: Decimal
    subtotal: Decimal
    tax: Decimal


def _gross(value: Number) -> Decimal:
    gross = Decimal(value)
    if gross < 0:
        raise ValueError("Amount cannot be negative.")
    return quantize_money(gross)


def split_commission(gross: Number, rate: Optional[Number] = None) -> CommissionSplit:
    """Split a gross amount into the platform fee and the venue's net share."""
    amount = _gross(gross)
    rate = platform_commission_rate() if rate is None else Decimal(str(rate))
    platform_fee = quantize_money(amount * rate)
    return CommissionSplit(gross=amount, platform_fee=platform_fee, net_amount=amount - platform_fee)


def split_tax(gross: Number, rate: Optional[Number] = None) -> TaxSplit:
    """
    Split a tax-inclusive amount into subtotal and tax.

    The tax is derived from the rounded subtotal so both parts always add up
    to the gross amount.
    """
    amount = _gross(gross)
    rate = invoice_tax_rate() if rate is None else Decimal(str(rate))
    subtotal = quantize_money(amount / (Decimal("1") + rate))
    return TaxSplit(gross=amount, subtotal=subtotal, tax=amount - subtotal)
