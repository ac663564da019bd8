import pytest
import stripe
from django.urls import reverse

from bookings.models import Reservation
from payments.models import Payment, Receipt
from payments.services.webhooks import handle_stripe_event


def _event(event_type, object_id):
    return {"type": event_type, "data": {"object": {"id": object_id}}}


@pytest.mark.django_db
def test_succeeded_intent_completes_pending_payment(service, make_payment):
    payment = make_payment(service, status=Payment.PENDING, stripe_payment_id="pi_wait")

    assert handle_stripe_event(_event("payment_intent.succeeded", "pi_wait")) is True

    payment.refresh_from_db()
    assert payment.status == Payment.COMPLETED
    assert payment.transaction_date is not None
    assert payment.reservation.status == Reservation.CONFIRMED


@pytest.mark.django_db
def test_canceled_intent_fails_payment_and_cancels_reservation(service, make_payment):
    payment = make_payment(service, status=Payment.PENDING, stripe_payment_id="pi_wait")

    handle_stripe_event(_event("payment_intent.canceled", "pi_wait"))

    payment.refresh_from_db()
    assert payment.status == Payment.FAILED
    assert payment.reservation.status == Reservation.CANCELLED


@pytest.mark.django_db
def test_events_for_settled_payments_are_ignored(service, make_payment):
    payment = make_payment(service, status=Payment.COMPLETED, stripe_payment_id="pi_done")

    assert handle_stripe_event(_event("payment_intent.payment_failed", "pi_done")) is False

    payment.refresh_from_db()
    assert payment.status == Payment.COMPLETED


@pytest.mark.django_db
def test_invoice_paid_updates_receipt(service, make_payment, customer):
    payment = make_payment(service)
    receipt = Receipt.objects.create(
        payment=payment,
        user=customer,
        amount=payment.amount,
        subtotal_amount=payment.amount,
        tax_amount=0,
        stripe_invoice_id="in_123",
    )

    assert handle_stripe_event(_event("invoice.paid", "in_123")) is True

    receipt.refresh_from_db()
    assert receipt.status == Receipt.PAID


def test_unknown_events_are_acknowledged():
    assert handle_stripe_event(_event("customer.created", "cus_1")) is False


@pytest.mark.django_db
def test_webhook_view_verifies_signature(settings, monkeypatch, api_client, service, make_payment):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    payment = make_payment(service, status=Payment.PENDING, stripe_payment_id="pi_wait")
    captured = {}

    def fake_construct_event(payload, sig_header, secret):
        captured.update(sig=sig_header, secret=secret)
        return _event("payment_intent.succeeded", "pi_wait")

    monkeypatch.setattr("payments.api.stripe.Webhook.construct_event", fake_construct_event)

    response = api_client.post(
        reverse("stripe-webhook"),
        data="{}",
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="t=1,v1=abc",
    )

    assert response.status_code == 200
    assert captured == {"sig": "t=1,v1=abc", "secret": "whsec_test"}
    payment.refresh_from_db()
    assert payment.status == Payment.COMPLETED


@pytest.mark.django_db
def test_webhook_rejects_bad_signature(settings, monkeypatch, api_client):
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"

    def fake_construct_event(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr("payments.api.stripe.Webhook.construct_event", fake_construct_event)

    response = api_client.post(reverse("stripe-webhook"), data="{}", content_type="application/json")

    assert response.status_code == 400


@pytest.mark.django_db
def test_webhook_requires_secret(settings, api_client):
    settings.STRIPE_WEBHOOK_SECRET = ""

    response = api_client.post(reverse("stripe-webhook"), data="{}", content_type="application/json")

    assert response.status_code == 500
