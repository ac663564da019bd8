"""
Payment processor adapter.

``StripeGateway`` talks to Stripe through the official SDK. ``StubGateway``
returns predictable identifiers so local development and tests can run the
booking, invoice and refund workflows without network access. Workflows get
one or the other from ``get_gateway()``.

Amounts cross this boundary as ``Decimal`` major units and are converted to
Stripe's integer minor units here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any, Dict, Optional
from uuid import uuid4

import stripe
from django.conf import settings

from core.exceptions import GatewayError

logger = logging.getLogger(__name__)

DECLINE_MESSAGES = {
    "card_declined": "Your card was declined.",
    "insufficient_funds": "Your card has insufficient funds.",
    "invalid_cvc": "Your card's security code is incorrect.",
    "expired_card": "Your card has expired.",
    "incorrect_number": "Your card number is incorrect.",
    "authentication_required": "This payment requires additional authentication.",
    "payment_failed": "The payment could not be completed. Please try another payment method.",
}
GENERIC_DECLINE_MESSAGE = "The payment could not be processed. Please try another payment method."

PENDING_INTENT_STATUSES = {"processing", "requires_action", "requires_capture", "requires_confirmation"}
FAILED_INTENT_STATUSES = {"requires_payment_method", "canceled"}


def decline_message(code: Optional[str]) -> str:
    return DECLINE_MESSAGES.get(code or "", GENERIC_DECLINE_MESSAGE)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


def from_minor_units(value: Optional[int]) -> Decimal:
    return (Decimal(value or 0) / 100).quantize(Decimal("0.01"))


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


@dataclass
class GatewayCustomer:
    id: str
    email: str = ""
    name: str = ""


@dataclass
class GatewayPaymentIntent:
    id: str
    status: str
    amount: Decimal
    currency: str
    customer_id: str = ""
    payment_method_types: list = field(default_factory=lambda: ["card"])
    created: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def pending(self) -> bool:
        return self.status in PENDING_INTENT_STATUSES

    @property
    def failed(self) -> bool:
        return self.status in FAILED_INTENT_STATUSES


@dataclass
class GatewayInvoice:
    id: str
    status: str
    number: str = ""
    hosted_invoice_url: str = ""
    invoice_pdf: str = ""
    amount_due: Decimal = Decimal("0.00")
    currency: str = ""
    due_date: Optional[datetime] = None


@dataclass
class GatewayRefund:
    id: str
    status: str
    amount: Decimal


def _customer_from_stripe(obj) -> GatewayCustomer:
    return GatewayCustomer(id=obj["id"], email=obj.get("email") or "", name=obj.get("name") or "")


def _intent_from_stripe(obj) -> GatewayPaymentIntent:
    return GatewayPaymentIntent(
        id=obj["id"],
        status=obj.get("status") or "",
        amount=from_minor_units(obj.get("amount")),
        currency=(obj.get("currency") or "").upper(),
        customer_id=obj.get("customer") or "",
        payment_method_types=list(obj.get("payment_method_types") or []),
        created=_timestamp(obj.get("created")),
    )


def _invoice_from_stripe(obj) -> GatewayInvoice:
    return GatewayInvoice(
        id=obj["id"],
        status=obj.get("status") or "",
        number=obj.get("number") or "",
        hosted_invoice_url=obj.get("hosted_invoice_url") or "",
        invoice_pdf=obj.get("invoice_pdf") or "",
        amount_due=from_minor_units(obj.get("amount_due")),
        currency=(obj.get("currency") or "").upper(),
        due_date=_timestamp(obj.get("due_date")),
    )


def _get_stripe_api_key() -> Optional[str]:
    key = getattr(settings, "STRIPE_SECRET_KEY", "")
    return key or None


def _should_use_stub() -> bool:
    if getattr(settings, "STRIPE_USE_STUB", False):
        return True
    return _get_stripe_api_key() is None


def configure_stripe():
    api_key = _get_stripe_api_key()
    if not api_key:
        raise RuntimeError("STRIPE_SECRET_KEY is not configured.")
    stripe.api_key = api_key


class StripeGateway:
    """Thin wrapper translating Stripe SDK objects and errors into gateway types."""

    def __init__(self):
        configure_stripe()

    def _call(self, operation: str, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except stripe.CardError as exc:
            code = exc.code or "card_declined"
            logger.info("Stripe declined %s: %s", operation, code)
            raise GatewayError(decline_message(code), code=code, declined=True)
        except stripe.APIConnectionError as exc:
            logger.error("Stripe unreachable during %s: %s", operation, exc)
            raise GatewayError(
                "The payment processor did not respond. The operation may or may not have completed.",
                code="gateway_unavailable",
                outcome_unknown=True,
            )
        except stripe.StripeError as exc:
            logger.exception("Stripe error during %s: %s", operation, exc)
            raise GatewayError(code=getattr(exc, "code", None) or "gateway_error")

    def create_customer(self, *, email: str, name: str, metadata: Dict[str, Any], idempotency_key: str) -> GatewayCustomer:
        customer = self._call(
            "customer creation",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return _customer_from_stripe(customer)

    def retrieve_customer(self, customer_id: str) -> GatewayCustomer:
        return _customer_from_stripe(self._call("customer lookup", stripe.Customer.retrieve, customer_id))

    def create_payment_intent(
        self,
        *,
        amount: Decimal,
        currency: str,
        customer_id: str,
        payment_method_id: str,
        description: str,
        metadata: Dict[str, Any],
        idempotency_key: str,
    ) -> GatewayPaymentIntent:
        intent = self._call(
            "payment intent creation",
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency.lower(),
            customer=customer_id,
            payment_method=payment_method_id,
            confirm=True,
            description=description,
            metadata=metadata,
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            idempotency_key=idempotency_key,
        )
        return _intent_from_stripe(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> GatewayPaymentIntent:
        return _intent_from_stripe(
            self._call("payment intent lookup", stripe.PaymentIntent.retrieve, payment_intent_id)
        )

    def create_invoice(
        self,
        *,
        customer_id: str,
        description: str,
        metadata: Dict[str, Any],
        idempotency_key: str,
        auto_advance: bool,
        due_date: Optional[datetime] = None,
        days_until_due: Optional[int] = None,
    ) -> GatewayInvoice:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "collection_method": "send_invoice",
            "description": description,
            "metadata": metadata,
            "auto_advance": auto_advance,
            "pending_invoice_items_behavior": "exclude",
        }
        if due_date is not None:
            params["due_date"] = int(due_date.timestamp())
        else:
            params["days_until_due"] = days_until_due
        invoice = self._call("invoice creation", stripe.Invoice.create, idempotency_key=idempotency_key, **params)
        return _invoice_from_stripe(invoice)

    def create_invoice_item(
        self,
        *,
        customer_id: str,
        invoice_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        idempotency_key: str,
    ) -> None:
        self._call(
            "invoice item creation",
            stripe.InvoiceItem.create,
            customer=customer_id,
            invoice=invoice_id,
            amount=to_minor_units(amount),
            currency=currency.lower(),
            description=description,
            idempotency_key=idempotency_key,
        )

    def finalize_invoice(self, invoice_id: str) -> GatewayInvoice:
        return _invoice_from_stripe(self._call("invoice finalization", stripe.Invoice.finalize_invoice, invoice_id))

    def send_invoice(self, invoice_id: str) -> GatewayInvoice:
        return _invoice_from_stripe(self._call("invoice delivery", stripe.Invoice.send_invoice, invoice_id))

    def retrieve_invoice(self, invoice_id: str) -> GatewayInvoice:
        return _invoice_from_stripe(self._call("invoice lookup", stripe.Invoice.retrieve, invoice_id))

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount: Decimal,
        metadata: Dict[str, Any],
        idempotency_key: str,
    ) -> GatewayRefund:
        refund = self._call(
            "refund",
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=to_minor_units(amount),
            reason="requested_by_customer",
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return GatewayRefund(id=refund["id"], status=refund.get("status") or "", amount=from_minor_units(refund.get("amount")))


# Stripe's documented test payment methods, mapped to the outcome they trigger.
STUB_DECLINES = {
    "pm_card_chargeDeclined": "card_declined",
    "pm_card_visa_chargeDeclined": "card_declined",
    "pm_card_chargeDeclinedInsufficientFunds": "insufficient_funds",
    "pm_card_visa_chargeDeclinedInsufficientFunds": "insufficient_funds",
    "pm_card_chargeDeclinedExpiredCard": "expired_card",
    "pm_card_visa_chargeDeclinedExpiredCard": "expired_card",
    "pm_card_chargeDeclinedIncorrectCvc": "invalid_cvc",
    "pm_card_visa_chargeDeclinedIncorrectCvc": "invalid_cvc",
}
STUB_PENDING = {"pm_card_authenticationRequired"}


class StubGateway:
    """
    In-memory stand-in for Stripe used when no secret key is configured.

    Objects created through the stub can be retrieved again for the lifetime of
    the instance; unknown identifiers resolve to a plausible object so list
    enrichment keeps working against seeded data.
    """

    def __init__(self):
        self.customers: Dict[str, GatewayCustomer] = {}
        self.payment_intents: Dict[str, GatewayPaymentIntent] = {}
        self.invoices: Dict[str, GatewayInvoice] = {}
        self.refunds: Dict[str, GatewayRefund] = {}
        self._idempotent: Dict[str, Any] = {}

    def _remember(self, idempotency_key: str, factory):
        if idempotency_key not in self._idempotent:
            self._idempotent[idempotency_key] = factory()
        return self._idempotent[idempotency_key]

    def create_customer(self, *, email, name, metadata, idempotency_key):
        def build():
            customer = GatewayCustomer(id=f"cus_test_{uuid4().hex[:14]}", email=email, name=name)
            self.customers[customer.id] = customer
            return customer

        return self._remember(idempotency_key, build)

    def retrieve_customer(self, customer_id):
        return self.customers.get(customer_id) or GatewayCustomer(id=customer_id)

    def create_payment_intent(self, *, amount, currency, customer_id, payment_method_id, description, metadata, idempotency_key):
        code = STUB_DECLINES.get(payment_method_id)
        if code:
            raise GatewayError(decline_message(code), code=code, declined=True)

        def build():
            intent = GatewayPaymentIntent(
                id=f"pi_test_{uuid4().hex}",
                status="requires_action" if payment_method_id in STUB_PENDING else "succeeded",
                amount=Decimal(amount),
                currency=currency.upper(),
                customer_id=customer_id,
                created=datetime.now(tz=timezone.utc),
            )
            self.payment_intents[intent.id] = intent
            return intent

        return self._remember(idempotency_key, build)

    def retrieve_payment_intent(self, payment_intent_id):
        intent = self.payment_intents.get(payment_intent_id)
        if intent is None:
            intent = GatewayPaymentIntent(id=payment_intent_id, status="succeeded", amount=Decimal("0.00"), currency="")
        return intent

    def create_invoice(self, *, customer_id, description, metadata, idempotency_key, auto_advance, due_date=None, days_until_due=None):
        def build():
            invoice_id = f"in_test_{uuid4().hex[:14]}"
            invoice = GatewayInvoice(
                id=invoice_id,
                status="draft",
                hosted_invoice_url=f"{settings.FRONTEND_URL.rstrip('/')}/invoices/preview?invoice={invoice_id}",
                due_date=due_date,
            )
            self.invoices[invoice.id] = invoice
            return invoice

        return self._remember(idempotency_key, build)

    def create_invoice_item(self, *, customer_id, invoice_id, amount, currency, description, idempotency_key):
        invoice = self.invoices[invoice_id]
        invoice.amount_due += Decimal(amount)
        invoice.currency = currency.upper()

    def finalize_invoice(self, invoice_id):
        invoice = self.invoices[invoice_id]
        invoice.status = "open"
        invoice.number = invoice.number or f"TEST-{invoice_id[-6:].upper()}"
        invoice.invoice_pdf = f"{invoice.hosted_invoice_url}&format=pdf"
        return invoice

    def send_invoice(self, invoice_id):
        return self.invoices[invoice_id]

    def retrieve_invoice(self, invoice_id):
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            invoice = GatewayInvoice(id=invoice_id, status="open")
        return invoice

    def create_refund(self, *, payment_intent_id, amount, metadata, idempotency_key):
        def build():
            refund = GatewayRefund(id=f"re_test_{uuid4().hex[:14]}", status="succeeded", amount=Decimal(amount))
            self.refunds[refund.id] = refund
            return refund

        return self._remember(idempotency_key, build)


_stub_gateway: Optional[StubGateway] = None


def get_gateway():
    """Return the configured gateway (a shared ``StubGateway`` in stub mode)."""
    global _stub_gateway

    if _should_use_stub():
        if _stub_gateway is None:
            _stub_gateway = StubGateway()
        return _stub_gateway
    return StripeGateway()
