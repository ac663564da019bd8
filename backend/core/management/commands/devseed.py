from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from accounts.models import User
from bookings.models import Reservation
from bookings.services.booking import BookingRequest, create_booking
from payments.gateway import StubGateway, get_gateway
from venues.models import Service, Venue


SEED_PASSWORD = "ReservApp123!"
SUPERUSER_EMAIL = "admin@reservapp.test"
SUPERUSER_PASSWORD = "AdminReservApp123!"


class Command(BaseCommand):
    help = "Populate the local development database with sample venues, services and bookings."

    def handle(self, *args, **options):
        if not settings.DEBUG:
            raise CommandError("Refusing to seed data while DEBUG is False.")

        with transaction.atomic():
            self.stdout.write(self.style.MIGRATE_HEADING("Ensuring admin superuser"))
            self._ensure_superuser()

            self.stdout.write(self.style.MIGRATE_HEADING("Creating users"))
            owner = self._ensure_user(
                email="owner@casaazul.test",
                first_name="Olivia",
                last_name="Ortega",
                role=User.ADMIN,
            )
            other_owner = self._ensure_user(
                email="owner@spaluna.test",
                first_name="Mateo",
                last_name="Luna",
                role=User.ADMIN,
            )
            customer = self._ensure_user(
                email="guest@example.test",
                first_name="Greta",
                last_name="Garcia",
                role=User.USER,
            )

            self.stdout.write(self.style.MIGRATE_HEADING("Creating venues & services"))
            hotel = self._ensure_venue(
                owner=owner,
                slug="casa-azul",
                name="Hotel Casa Azul",
                category=Venue.HOTEL,
                city="Oaxaca",
            )
            spa = self._ensure_venue(
                owner=other_owner,
                slug="spa-luna",
                name="Spa Luna",
                category=Venue.SPA,
                city="Tulum",
            )
            suite = self._ensure_service(hotel, "Junior Suite", Decimal("1850.00"), capacity=3)
            self._ensure_service(hotel, "Double Room", Decimal("1200.00"), capacity=2)
            massage = self._ensure_service(spa, "Deep Tissue Massage", Decimal("500.00"), capacity=1, duration_minutes=60)

        if not isinstance(get_gateway(), StubGateway):
            self.stdout.write(self.style.WARNING("Stripe is live; skipping sample bookings."))
            return

        self.stdout.write(self.style.MIGRATE_HEADING("Creating sample bookings"))
        if Reservation.objects.filter(user=customer).exists():
            self.stdout.write(self.style.NOTICE("Sample bookings already present."))
            return

        today = timezone.localdate()
        for service, days_ahead, nights, method in [
            (suite, 14, 2, "pm_card_visa"),
            (massage, 3, 1, "pm_card_visa"),
            (suite, 30, 3, "pm_card_authenticationRequired"),
        ]:
            result = create_booking(
                BookingRequest(
                    user_id=customer.pk,
                    venue_id=service.venue_id,
                    service_id=service.pk,
                    check_in_date=today + timedelta(days=days_ahead),
                    check_out_date=today + timedelta(days=days_ahead + nights),
                    guests=1,
                    payment_method_id=method,
                    idempotency_key=f"devseed-{service.pk}-{days_ahead}",
                )
            )
            self.stdout.write(
                self.style.NOTICE(
                    f"{result.reservation.confirmation_id}: {service.name} ({result.reservation.status})"
                )
            )

        self.stdout.write(self.style.SUCCESS("Development data ready."))

    def _ensure_superuser(self) -> User:
        user, created = User.objects.get_or_create(
            email=SUPERUSER_EMAIL,
            defaults={
                "username": SUPERUSER_EMAIL,
                "first_name": "Admin",
                "last_name": "User",
                "display_name": "Admin User",
                "role": User.SUPER_ADMIN,
                "is_staff": True,
                "is_superuser": True,
            },
        )
        if created:
            user.set_password(SUPERUSER_PASSWORD)
            user.save()
            self.stdout.write(self.style.NOTICE(f"Created superuser {SUPERUSER_EMAIL}"))
        return user

    def _ensure_user(self, email: str, first_name: str, last_name: str, role: str) -> User:
        user, created = User.objects.get_or_create(
            email=email,
            defaults={
                "username": email,
                "first_name": first_name,
                "last_name": last_name,
                "display_name": f"{first_name} {last_name}",
                "role": role,
            },
        )
        if created:
            user.set_password(SEED_PASSWORD)
            user.save()
        elif user.role != role:
            user.role = role
            user.save(update_fields=["role"])
        return user

    def _ensure_venue(self, *, owner: User, slug: str, name: str, category: str, city: str) -> Venue:
        venue, _ = Venue.objects.update_or_create(
            slug=slug,
            defaults={
                "owner": owner,
                "name": name,
                "category": category,
                "city": city,
                "contact_email": owner.email,
                "is_active": True,
            },
        )
        return venue

    def _ensure_service(self, venue: Venue, name: str, price: Decimal, **extra) -> Service:
        service, _ = Service.objects.update_or_create(
            venue=venue,
            name=name,
            defaults={"price": price, "currency": settings.DEFAULT_CURRENCY, "is_active": True, **extra},
        )
        return service
