from decimal import Decimal

import pytest
import stripe

from core.exceptions import GatewayError
from payments import gateway as gateway_module
from payments.gateway import StripeGateway, StubGateway, get_gateway, to_minor_units


@pytest.fixture
def live_settings(settings):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    return settings


def test_minor_units_round_half_even():
    assert to_minor_units(Decimal("500.00")) == 50000
    assert to_minor_units(Decimal("19.995")) == 2000
    assert to_minor_units(Decimal("0.005")) == 0


def test_get_gateway_uses_stub_without_key(settings, monkeypatch):
    settings.STRIPE_USE_STUB = False
    settings.STRIPE_SECRET_KEY = ""
    monkeypatch.setattr(gateway_module, "_stub_gateway", None)

    first = get_gateway()

    assert isinstance(first, StubGateway)
    assert get_gateway() is first


def test_get_gateway_uses_stripe_when_configured(live_settings):
    assert isinstance(get_gateway(), StripeGateway)
    assert stripe.api_key == "sk_test_123"


def test_stripe_payment_intent_is_created_and_confirmed(live_settings, monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {
            "id": "pi_123",
            "status": "succeeded",
            "amount": kwargs["amount"],
            "currency": kwargs["currency"],
            "customer": kwargs["customer"],
            "payment_method_types": ["card"],
            "created": 1700000000,
        }

    monkeypatch.setattr("payments.gateway.stripe.PaymentIntent.create", fake_create)

    intent = StripeGateway().create_payment_intent(
        amount=Decimal("500.00"),
        currency="MXN",
        customer_id="cus_1",
        payment_method_id="pm_card_visa",
        description="Reservation",
        metadata={"venue_id": "1"},
        idempotency_key="booking-1-abc",
    )

    assert captured["amount"] == 50000
    assert captured["currency"] == "mxn"
    assert captured["confirm"] is True
    assert captured["idempotency_key"] == "booking-1-abc"
    assert intent.succeeded
    assert intent.amount == Decimal("500.00")
    assert intent.currency == "MXN"


def test_stripe_card_error_maps_to_decline(live_settings, monkeypatch):
    def fake_create(**kwargs):
        raise stripe.CardError("Your card has insufficient funds.", "payment_method", "insufficient_funds")

    monkeypatch.setattr("payments.gateway.stripe.PaymentIntent.create", fake_create)

    with pytest.raises(GatewayError) as excinfo:
        StripeGateway().create_payment_intent(
            amount=Decimal("10"),
            currency="MXN",
            customer_id="cus_1",
            payment_method_id="pm_x",
            description="",
            metadata={},
            idempotency_key="k",
        )

    assert excinfo.value.declined is True
    assert excinfo.value.code == "insufficient_funds"
    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Your card has insufficient funds."


def test_stripe_connection_error_is_unknown_outcome(live_settings, monkeypatch):
    def fake_create(**kwargs):
        raise stripe.APIConnectionError("timed out")

    monkeypatch.setattr("payments.gateway.stripe.Refund.create", fake_create)

    with pytest.raises(GatewayError) as excinfo:
        StripeGateway().create_refund(payment_intent_id="pi_1", amount=Decimal("5"), metadata={}, idempotency_key="k")

    assert excinfo.value.outcome_unknown is True
    assert excinfo.value.status_code == 502


def test_stripe_invoice_uses_send_invoice_collection(live_settings, monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "in_1", "status": "draft", "amount_due": 0}

    monkeypatch.setattr("payments.gateway.stripe.Invoice.create", fake_create)

    invoice = StripeGateway().create_invoice(
        customer_id="cus_1",
        description="Invoice",
        metadata={},
        idempotency_key="invoice-1",
        auto_advance=False,
        days_until_due=30,
    )

    assert invoice.id == "in_1"
    assert captured["collection_method"] == "send_invoice"
    assert captured["pending_invoice_items_behavior"] == "exclude"
    assert captured["days_until_due"] == 30
    assert "due_date" not in captured


@pytest.mark.parametrize(
    "payment_method, code",
    [
        ("pm_card_chargeDeclined", "card_declined"),
        ("pm_card_chargeDeclinedInsufficientFunds", "insufficient_funds"),
        ("pm_card_chargeDeclinedExpiredCard", "expired_card"),
        ("pm_card_chargeDeclinedIncorrectCvc", "invalid_cvc"),
    ],
)
def test_stub_honours_test_decline_cards(payment_method, code):
    with pytest.raises(GatewayError) as excinfo:
        StubGateway().create_payment_intent(
            amount=Decimal("10"),
            currency="MXN",
            customer_id="cus_1",
            payment_method_id=payment_method,
            description="",
            metadata={},
            idempotency_key="k",
        )

    assert excinfo.value.code == code
    assert excinfo.value.declined


def test_stub_replays_idempotent_requests():
    stub = StubGateway()
    kwargs = dict(
        amount=Decimal("10"),
        currency="MXN",
        customer_id="cus_1",
        payment_method_id="pm_card_visa",
        description="",
        metadata={},
        idempotency_key="same-key",
    )

    assert stub.create_payment_intent(**kwargs).id == stub.create_payment_intent(**kwargs).id
