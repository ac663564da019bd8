from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    ROLES = [
        (USER, "User"),
        (ADMIN, "Venue Admin"),
        (SUPER_ADMIN, "Super Admin"),
    ]

    display_name = models.CharField(max_length=120, blank=True)
    role = models.CharField(max_length=20, choices=ROLES, default=USER)
    phone = models.CharField(max_length=30, blank=True)
    stripe_customer_id = models.CharField(max_length=255, blank=True, default="")

    @property
    def full_name(self) -> str:
        if self.display_name:
            return self.display_name
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def effective_role(self) -> str:
        if self.is_superuser:
            return self.SUPER_ADMIN
        return self.role

