import itertools
from decimal import Decimal
from datetime import date, timedelta

import pytest
from rest_framework.test import APIClient

from accounts.models import User
from bookings.models import Reservation
from payments.gateway import StubGateway
from payments.models import Payment
from venues.models import Service, Venue

SEEDED = object()

GATEWAY_METHODS = [
    "create_customer",
    "retrieve_customer",
    "create_payment_intent",
    "retrieve_payment_intent",
    "create_invoice",
    "create_invoice_item",
    "finalize_invoice",
    "send_invoice",
    "retrieve_invoice",
    "create_refund",
]

GATEWAY_IMPORTERS = [
    "bookings.services.booking.get_gateway",
    "payments.services.queries.get_gateway",
    "payments.services.invoices.get_gateway",
    "payments.services.refunds.get_gateway",
]


def _recorded(name):
    def method(self, *args, **kwargs):
        self.calls.append((name, kwargs))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure
        result = getattr(StubGateway, name)(self, *args, **kwargs)
        if name == "create_payment_intent" and self.intent_status:
            result.status = self.intent_status
        return result

    return method


class RecordingGateway(StubGateway):
    """Stub gateway that records every call and can be told to fail."""

    def __init__(self):
        super().__init__()
        self.calls = []
        self.failures = {}
        self.intent_status = None

    def call_names(self):
        return [name for name, _ in self.calls]


for _name in GATEWAY_METHODS:
    setattr(RecordingGateway, _name, _recorded(_name))


@pytest.fixture
def gateway(monkeypatch):
    fake = RecordingGateway()
    for path in GATEWAY_IMPORTERS:
        monkeypatch.setattr(path, lambda: fake)
    return fake


def _user(email, role=User.USER, **extra):
    return User.objects.create_user(
        username=email,
        email=email,
        password="examplepass",
        role=role,
        **extra,
    )


@pytest.fixture
def customer(db):
    return _user("greta@example.com", first_name="Greta", last_name="Garcia")


@pytest.fixture
def venue_admin(db):
    return _user("owner@casaazul.test", role=User.ADMIN, first_name="Olivia", last_name="Ortega")


@pytest.fixture
def other_admin(db):
    return _user("owner@spaluna.test", role=User.ADMIN, first_name="Mateo", last_name="Luna")


@pytest.fixture
def super_admin(db):
    return _user("root@reservapp.test", role=User.SUPER_ADMIN, first_name="Sofia", last_name="Root")


@pytest.fixture
def venue(venue_admin):
    return Venue.objects.create(
        owner=venue_admin,
        name="Hotel Casa Azul",
        slug="casa-azul",
        category=Venue.HOTEL,
        contact_email="front@casaazul.test",
    )


@pytest.fixture
def other_venue(other_admin):
    return Venue.objects.create(owner=other_admin, name="Spa Luna", slug="spa-luna", category=Venue.SPA)


@pytest.fixture
def service(venue):
    return Service.objects.create(venue=venue, name="Junior Suite", price=Decimal("500.00"), capacity=3)


@pytest.fixture
def other_service(other_venue):
    return Service.objects.create(venue=other_venue, name="Massage", price=Decimal("800.00"))


@pytest.fixture
def make_payment(customer):
    """Create a reservation-backed payment directly in the ledger."""
    sequence = itertools.count(1)

    def factory(
        service,
        *,
        user=None,
        status=Payment.COMPLETED,
        amount=None,
        stripe_payment_id=SEEDED,
        check_in_date=None,
        **extra,
    ):
        user = user or customer
        amount = Decimal(amount) if amount is not None else service.price
        if stripe_payment_id is SEEDED:
            stripe_payment_id = f"pi_seeded_{next(sequence)}"
        check_in_date = check_in_date or date.today() + timedelta(days=7)
        reservation = Reservation.objects.create(
            user=user,
            venue=service.venue,
            service=service,
            status=Reservation.CONFIRMED if status == Payment.COMPLETED else Reservation.PENDING,
            check_in_date=check_in_date,
            check_out_date=check_in_date + timedelta(days=1),
            guests=1,
            total_amount=amount,
        )
        return Payment.objects.create(
            reservation=reservation,
            user=user,
            amount=amount,
            currency=service.currency,
            status=status,
            stripe_payment_id=stripe_payment_id,
            stripe_customer_id=user.stripe_customer_id,
            **extra,
        )

    return factory


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for(api_client):
    def factory(user):
        api_client.force_authenticate(user)
        return api_client

    return factory
