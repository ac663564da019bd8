import pytest
from django.urls import reverse

from accounts.models import User
from payments.models import Payment, PaymentAuditLog, Receipt


@pytest.mark.django_db
def test_customers_cannot_reach_admin_endpoints(client_for, customer):
    client = client_for(customer)

    assert client.get(reverse("admin-payments")).status_code == 403
    assert client.post(reverse("admin-payment-actions"), {}, format="json").status_code == 403


@pytest.mark.django_db
def test_list_returns_enriched_rows_and_pagination(gateway, client_for, venue_admin, service, make_payment):
    payment = make_payment(service, amount="1000.00")

    response = client_for(venue_admin).get(reverse("admin-payments"), {"status": "ALL", "limit": 5})

    assert response.status_code == 200
    body = response.json()
    row = body["data"][0]
    assert row["platform_fee"] == "50.00"
    assert row["net_amount"] == "950.00"
    assert row["reservation"]["venue"]["name"] == "Hotel Casa Azul"
    assert row["stripe_payment"]["id"] == payment.stripe_payment_id
    assert body["pagination"] == {"page": 1, "limit": 5, "total": 1, "total_pages": 1, "has_more": False}


@pytest.mark.django_db
def test_admin_without_venues_gets_empty_list(gateway, client_for):
    lonely = User.objects.create_user(username="lonely@x.test", email="lonely@x.test", role=User.ADMIN)

    body = client_for(lonely).get(reverse("admin-payments")).json()

    assert body["data"] == []
    assert body["pagination"]["total"] == 0


@pytest.mark.django_db
def test_foreign_venue_filter_is_forbidden(gateway, client_for, venue_admin, other_venue):
    response = client_for(venue_admin).get(reverse("admin-payments"), {"venue_id": other_venue.pk})

    assert response.status_code == 403
    assert response.json()["code"] == "venue_forbidden"


@pytest.mark.django_db
def test_get_stats_action(client_for, super_admin, service, make_payment):
    make_payment(service, amount="1000.00")

    response = client_for(super_admin).post(
        reverse("admin-payments"),
        {"action": "getStats", "filters": {"start_date": "2000-01-01", "end_date": "2100-01-01"}},
        format="json",
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_revenue"] == "1000.00"
    assert data["total_platform_fees"] == "50.00"
    assert data["monthly_growth"] == "0.00"


@pytest.mark.django_db
def test_unknown_post_action_is_rejected(client_for, super_admin):
    response = client_for(super_admin).post(reverse("admin-payments"), {"action": "purge"}, format="json")

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_action"


@pytest.mark.django_db
def test_invoice_create_then_duplicate(gateway, client_for, super_admin, service, make_payment):
    payment = make_payment(service, amount="1000.00")
    client = client_for(super_admin)
    url = reverse("admin-payment-invoice", args=[payment.pk])

    created = client.post(url, {}, format="json")
    duplicate = client.post(url, {}, format="json")

    assert created.status_code == 201
    receipt = created.json()["data"]["receipt"]
    assert receipt["tax_amount"] == "137.93"
    assert duplicate.status_code == 409
    assert duplicate.json()["existing"]["receipt_number"] == receipt["receipt_number"]
    assert Receipt.objects.count() == 1

    fetched = client.get(url)
    assert fetched.status_code == 200
    assert fetched.json()["data"]["stripe"]["status"] == "open"


@pytest.mark.django_db
def test_invoice_for_missing_payment(gateway, client_for, super_admin):
    response = client_for(super_admin).post(reverse("admin-payment-invoice", args=[999]), {}, format="json")

    assert response.status_code == 404
    assert response.json()["code"] == "payment_not_found"


@pytest.mark.django_db
def test_refund_action(gateway, client_for, super_admin, service, make_payment):
    payment = make_payment(service, amount="1000.00")

    response = client_for(super_admin).post(
        reverse("admin-payment-actions"),
        {"action": "refund", "payment_id": payment.pk, "amount": 250, "reason": "Late arrival"},
        format="json",
    )

    assert response.status_code == 200
    assert response.json()["data"]["payment"]["status"] == Payment.PARTIALLY_REFUNDED
    assert response.json()["data"]["refunded_total"] == "250.00"


@pytest.mark.django_db
def test_refund_validation_error_shape(gateway, client_for, super_admin, service, make_payment):
    payment = make_payment(service, amount="1000.00")

    response = client_for(super_admin).post(
        reverse("admin-payment-actions"),
        {"action": "refund", "payment_id": payment.pk, "amount": 5000, "reason": "Too much"},
        format="json",
    )

    assert response.status_code == 400
    assert response.json()["code"] == "exceeds_original"
    assert gateway.calls == []


@pytest.mark.django_db
def test_venue_admin_cannot_run_actions(gateway, client_for, venue_admin, service, make_payment):
    payment = make_payment(service)

    response = client_for(venue_admin).post(
        reverse("admin-payment-actions"),
        {"action": "refund", "payment_id": payment.pk, "amount": 10, "reason": "x"},
        format="json",
    )

    assert response.status_code == 403
    assert not PaymentAuditLog.objects.exists()


@pytest.mark.django_db
def test_update_status_action(client_for, super_admin, service, make_payment):
    payment = make_payment(service, status=Payment.FAILED)

    response = client_for(super_admin).post(
        reverse("admin-payment-actions"),
        {
            "action": "updateStatus",
            "payment_id": payment.pk,
            "status": "COMPLETED",
            "notes": "Verified with bank",
            "verification_method": "bank_statement",
        },
        format="json",
    )

    assert response.status_code == 200
    assert response.json()["data"]["payment"]["status"] == Payment.COMPLETED


@pytest.mark.django_db
def test_manual_verification_action(client_for, super_admin, service, make_payment):
    payment = make_payment(service, status=Payment.PENDING)

    response = client_for(super_admin).post(
        reverse("admin-payment-actions"),
        {"action": "manualVerification", "payment_id": payment.pk, "notes": "Deposit matched"},
        format="json",
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Payment verified."
    assert response.json()["data"]["payment"]["status"] == Payment.PENDING
    payment.refresh_from_db()
    assert payment.metadata["manual_verification"]["notes"] == "Deposit matched"
    assert PaymentAuditLog.objects.get().action == PaymentAuditLog.ACTION_MANUAL_VERIFICATION


@pytest.mark.django_db
def test_venue_filter_options_for_super_admin(client_for, super_admin, venue, other_venue):
    other_venue.is_active = False
    other_venue.save(update_fields=["is_active"])

    response = client_for(super_admin).get(reverse("admin-payment-venues"))

    assert response.status_code == 200
    assert response.json()["data"] == [
        {
            "id": venue.pk,
            "name": "Hotel Casa Azul",
            "category": "HOTEL",
            "city": "",
            "owner_name": "Olivia Ortega",
        }
    ]


@pytest.mark.django_db
def test_venue_filter_options_are_super_admin_only(client_for, venue_admin, venue):
    response = client_for(venue_admin).get(reverse("admin-payment-venues"))

    assert response.status_code == 403
