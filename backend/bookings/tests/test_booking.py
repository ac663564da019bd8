from datetime import date
from decimal import Decimal

import pytest
from django.core import mail
from django.db import IntegrityError

from bookings.models import Reservation
from bookings.services.booking import BookingRequest, create_booking
from bookings.services.notifications import RESERVATION_CONFIRMED, VENUE_NEW_BOOKING, dispatch_events
from core.exceptions import GatewayError, InternalError, NotFoundError, ValidationError
from payments.models import Payment


def _request(customer, service, **overrides):
    values = dict(
        user_id=customer.pk,
        venue_id=service.venue_id,
        service_id=service.pk,
        check_in_date=date(2030, 5, 1),
        check_out_date=date(2030, 5, 3),
        guests=2,
        payment_method_id="pm_card_visa",
    )
    values.update(overrides)
    return BookingRequest(**values)


@pytest.mark.django_db
def test_successful_charge_confirms_reservation(gateway, customer, service):
    result = create_booking(_request(customer, service))

    reservation = Reservation.objects.get()
    payment = Payment.objects.get()
    assert reservation.status == Reservation.CONFIRMED
    assert payment.status == Payment.COMPLETED
    assert payment.amount == Decimal("500.00")
    assert reservation.total_amount == payment.amount
    assert payment.reservation == reservation
    assert payment.transaction_date is not None
    assert payment.stripe_payment_id == result.payment_intent.id
    assert gateway.call_names() == ["create_customer", "create_payment_intent"]


@pytest.mark.django_db
def test_charge_amount_comes_from_service_price(gateway, customer, service):
    service.price = Decimal("1234.50")
    service.save()

    create_booking(_request(customer, service, guests=3))

    _, kwargs = gateway.calls[-1]
    assert kwargs["amount"] == Decimal("1234.50")
    assert Payment.objects.get().amount == Decimal("1234.50")


@pytest.mark.django_db
def test_gateway_customer_is_persisted_and_reused(gateway, customer, service):
    create_booking(_request(customer, service))
    customer.refresh_from_db()
    first_customer_id = customer.stripe_customer_id

    create_booking(_request(customer, service))

    assert first_customer_id.startswith("cus_test_")
    assert gateway.call_names().count("create_customer") == 1
    assert set(Payment.objects.values_list("stripe_customer_id", flat=True)) == {first_customer_id}


@pytest.mark.django_db
def test_declined_card_writes_nothing(gateway, customer, service):
    with pytest.raises(GatewayError) as excinfo:
        create_booking(_request(customer, service, payment_method_id="pm_card_chargeDeclined"))

    assert excinfo.value.code == "card_declined"
    assert excinfo.value.status_code == 400
    assert Reservation.objects.count() == 0
    assert Payment.objects.count() == 0


@pytest.mark.django_db
def test_unsuccessful_intent_status_is_treated_as_decline(gateway, customer, service):
    gateway.intent_status = "requires_payment_method"

    with pytest.raises(GatewayError) as excinfo:
        create_booking(_request(customer, service))

    assert excinfo.value.code == "payment_failed"
    assert Reservation.objects.count() == 0


@pytest.mark.django_db
def test_pending_intent_keeps_reservation_pending(gateway, customer, service):
    result = create_booking(_request(customer, service, payment_method_id="pm_card_authenticationRequired"))

    assert result.reservation.status == Reservation.PENDING
    assert result.payment.status == Payment.PENDING
    assert result.payment.transaction_date is None
    assert result.payment.stripe_payment_id == result.payment_intent.id


@pytest.mark.django_db
def test_gateway_timeout_never_confirms(gateway, customer, service):
    gateway.failures["create_payment_intent"] = GatewayError(code="gateway_unavailable", outcome_unknown=True)

    with pytest.raises(GatewayError) as excinfo:
        create_booking(_request(customer, service))

    assert excinfo.value.outcome_unknown
    assert not Reservation.objects.exists()
    assert not Payment.objects.exists()


@pytest.mark.django_db
def test_ledger_failure_after_charge_rolls_back_both_rows(gateway, customer, service, monkeypatch):
    def broken_save(self, *args, **kwargs):
        raise IntegrityError("disk full")

    monkeypatch.setattr(Payment, "save", broken_save)

    with pytest.raises(InternalError) as excinfo:
        create_booking(_request(customer, service))

    assert excinfo.value.code == "ledger_write_failed"
    assert "create_payment_intent" in gateway.call_names()
    assert Reservation.objects.count() == 0


@pytest.mark.django_db
def test_missing_catalog_entries_are_named(gateway, customer, service, other_service):
    with pytest.raises(NotFoundError) as excinfo:
        create_booking(_request(customer, service, venue_id=999))
    assert excinfo.value.code == "venue_not_found"

    with pytest.raises(NotFoundError) as excinfo:
        create_booking(_request(customer, service, service_id=other_service.pk))
    assert excinfo.value.code == "service_not_found"

    with pytest.raises(NotFoundError) as excinfo:
        create_booking(_request(customer, service, user_id=999))
    assert excinfo.value.code == "user_not_found"
    assert gateway.calls == []


@pytest.mark.django_db
@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"payment_method_id": ""}, "payment_method_required"),
        ({"check_out_date": date(2030, 5, 1)}, "invalid_dates"),
        ({"guests": 0}, "invalid_guests"),
        ({"guests": 4}, "capacity_exceeded"),
    ],
)
def test_invalid_requests_are_rejected_before_charging(gateway, customer, service, overrides, code):
    with pytest.raises(ValidationError) as excinfo:
        create_booking(_request(customer, service, **overrides))

    assert excinfo.value.code == code
    assert gateway.calls == []


@pytest.mark.django_db
def test_idempotency_key_is_forwarded_per_user(gateway, customer, service):
    create_booking(_request(customer, service, idempotency_key="client-key-1"))

    _, kwargs = gateway.calls[-1]
    assert kwargs["idempotency_key"] == f"booking-{customer.pk}-client-key-1"


@pytest.mark.django_db
def test_events_are_dispatched_best_effort(gateway, customer, service):
    result = create_booking(_request(customer, service))

    assert [event.name for event in result.events] == [RESERVATION_CONFIRMED, VENUE_NEW_BOOKING]
    assert dispatch_events(result.events) == 2
    assert len(mail.outbox) == 2
    assert result.reservation.confirmation_id in mail.outbox[0].subject
    assert mail.outbox[1].to == ["front@casaazul.test"]


@pytest.mark.django_db
def test_notifier_failures_do_not_escape(gateway, customer, service):
    result = create_booking(_request(customer, service))

    class BrokenNotifier:
        def notify(self, event):
            raise ConnectionError("smtp down")

    assert dispatch_events(result.events, notifier=BrokenNotifier()) == 0
    assert Reservation.objects.get().status == Reservation.CONFIRMED


@pytest.mark.django_db
def test_retried_booking_with_same_key_returns_the_original(gateway, customer, service):
    first = create_booking(_request(customer, service, idempotency_key="retry-1"))
    second = create_booking(_request(customer, service, idempotency_key="retry-1"))

    assert second.payment_intent.id == first.payment_intent.id
    assert second.reservation.pk == first.reservation.pk
    assert second.payment.pk == first.payment.pk
    assert second.events == []
    assert Reservation.objects.count() == 1
    assert Payment.objects.count() == 1


@pytest.mark.django_db
def test_different_keys_book_separately(gateway, customer, service):
    create_booking(_request(customer, service, idempotency_key="first"))
    create_booking(_request(customer, service, idempotency_key="second"))

    assert Payment.objects.count() == 2
