from datetime import timedelta
from decimal import Decimal

import pytest
from django.core import mail
from django.urls import reverse
from django.utils import timezone

from accounts.models import User
from bookings.models import Reservation
from bookings.services.cancellation import (
    DEFAULT_CANCEL_REASON,
    cancel_reservation,
    check_in_moment,
    refund_share,
)
from bookings.services.notifications import RESERVATION_CANCELLED, dispatch_events
from core.exceptions import ConflictError, NotFoundError
from payments.models import Payment, PaymentAuditLog, PaymentRefund
from payments.scoping import Requester
from payments.services.refunds import refund_payment


@pytest.fixture
def payment(service, make_payment):
    return make_payment(service, amount="1000.00")


@pytest.mark.parametrize(
    "hours_before, share",
    [
        (72, Decimal("1")),
        (48.5, Decimal("1")),
        (48, Decimal("0.5")),
        (30, Decimal("0.5")),
        (24, Decimal("0")),
        (3, Decimal("0")),
        (-5, Decimal("0")),
    ],
)
def test_refund_share_follows_notice(hours_before, share):
    check_in = timezone.now()

    assert refund_share(check_in, check_in - timedelta(hours=hours_before)) == share


@pytest.mark.django_db
def test_early_cancellation_refunds_everything(gateway, customer, payment):
    result = cancel_reservation(Requester.from_user(customer), payment.reservation_id, "Change of plans")

    assert result.refund_amount == Decimal("1000.00")
    assert result.refund.status == PaymentRefund.PROCESSED
    assert result.reservation.status == Reservation.CANCELLED
    assert result.reservation.cancel_reason == "Change of plans"
    assert result.reservation.cancelled_at is not None
    payment.refresh_from_db()
    assert payment.status == Payment.REFUNDED
    assert gateway.call_names() == ["create_refund"]
    assert PaymentAuditLog.objects.get().actor == customer


@pytest.mark.django_db
def test_cancellation_a_day_and_a_half_out_refunds_half(gateway, customer, payment):
    now = check_in_moment(payment.reservation) - timedelta(hours=36)

    result = cancel_reservation(Requester.from_user(customer), payment.reservation_id, now=now)

    assert result.refund_amount == Decimal("500.00")
    assert result.reservation.status == Reservation.CANCELLED
    assert result.reservation.cancel_reason == DEFAULT_CANCEL_REASON
    assert result.reservation.cancelled_at == now
    payment.refresh_from_db()
    assert payment.status == Payment.PARTIALLY_REFUNDED
    assert dict(gateway.calls)["create_refund"]["amount"] == Decimal("500.00")


@pytest.mark.django_db
def test_late_cancellation_refunds_nothing(gateway, customer, payment):
    now = check_in_moment(payment.reservation) - timedelta(hours=12)

    result = cancel_reservation(Requester.from_user(customer), payment.reservation_id, "Sick", now=now)

    assert result.refund_amount == Decimal("0.00")
    assert result.refund is None
    assert result.reservation.status == Reservation.CANCELLED
    assert gateway.calls == []
    payment.refresh_from_db()
    assert payment.status == Payment.COMPLETED


@pytest.mark.django_db
def test_cancelling_unpaid_reservation_skips_the_gateway(gateway, customer, service, make_payment):
    payment = make_payment(service, status=Payment.FAILED)

    result = cancel_reservation(Requester.from_user(customer), payment.reservation_id)

    assert result.refund is None
    assert result.reservation.status == Reservation.CANCELLED
    assert gateway.calls == []


@pytest.mark.django_db
def test_refund_is_capped_at_what_remains(gateway, customer, super_admin, payment):
    refund_payment(Requester.from_user(super_admin), payment.pk, "800", "Goodwill")

    result = cancel_reservation(Requester.from_user(customer), payment.reservation_id)

    assert result.refund_amount == Decimal("200.00")
    payment.refresh_from_db()
    assert payment.status == Payment.REFUNDED


@pytest.mark.django_db
def test_cancelled_and_completed_reservations_are_rejected(gateway, customer, payment):
    requester = Requester.from_user(customer)
    cancel_reservation(requester, payment.reservation_id)

    with pytest.raises(ConflictError) as excinfo:
        cancel_reservation(requester, payment.reservation_id)
    assert excinfo.value.code == "already_cancelled"

    reservation = payment.reservation
    Reservation.objects.filter(pk=reservation.pk).update(status=Reservation.COMPLETED)
    with pytest.raises(ConflictError) as excinfo:
        cancel_reservation(requester, reservation.pk)
    assert excinfo.value.code == "reservation_completed"


@pytest.mark.django_db
def test_customers_cannot_cancel_someone_elses_reservation(gateway, payment):
    stranger = User.objects.create_user(username="stranger@x.test", email="stranger@x.test")

    with pytest.raises(NotFoundError) as excinfo:
        cancel_reservation(Requester.from_user(stranger), payment.reservation_id)

    assert excinfo.value.code == "reservation_not_found"
    assert gateway.calls == []


@pytest.mark.django_db
def test_venue_admin_can_cancel_reservations_at_own_venue(gateway, venue_admin, other_admin, payment):
    with pytest.raises(NotFoundError):
        cancel_reservation(Requester.from_user(other_admin), payment.reservation_id)

    result = cancel_reservation(Requester.from_user(venue_admin), payment.reservation_id, "Venue closed")

    assert result.reservation.status == Reservation.CANCELLED


@pytest.mark.django_db
def test_cancellation_email_mentions_refund(gateway, customer, payment):
    result = cancel_reservation(Requester.from_user(customer), payment.reservation_id)

    assert [event.name for event in result.events] == [RESERVATION_CANCELLED]
    assert dispatch_events(result.events) == 1
    assert len(mail.outbox) == 1
    message = mail.outbox[0]
    assert message.subject == f"Reservation {result.reservation.confirmation_id} cancelled"
    assert message.to == [customer.email]
    assert "Refund: $1000.00 MXN" in message.body


@pytest.mark.django_db
def test_cancel_endpoint(gateway, client_for, customer, payment):
    response = client_for(customer).post(
        reverse("reservation-cancel", args=[payment.reservation_id]),
        {"reason": "Flight cancelled"},
        format="json",
    )

    assert response.status_code == 200
    body = response.json()
    assert body["reservation"]["status"] == "CANCELLED"
    assert body["reservation"]["cancel_reason"] == "Flight cancelled"
    assert body["refund_amount"] == "1000.00"
    assert body["refund"]["amount"] == "1000.00"
    assert len(mail.outbox) == 1


@pytest.mark.django_db
def test_cancel_endpoint_reports_conflicts(gateway, client_for, customer, payment):
    client = client_for(customer)
    url = reverse("reservation-cancel", args=[payment.reservation_id])
    client.post(url, {}, format="json")

    response = client.post(url, {}, format="json")

    assert response.status_code == 409
    assert response.json()["code"] == "already_cancelled"
