from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace profile: one account may rent, list, or administer."""

    class Role(models.TextChoices):
        RENTER = "renter", "Renter"
        OWNER = "owner", "Owner"
        ADMIN = "admin", "Admin"

    role = models.CharField(max_length=16, choices=Role.choices, default=Role.RENTER)
    phone = models.CharField(
        max_length=32,
        blank=True,
        default="",
        help_text="Optional E.164 formatted phone number.",
    )
    city = models.CharField(max_length=120, blank=True, default="")
    state = models.CharField(max_length=64, blank=True, default="")
    postal_code = models.CharField(max_length=32, blank=True, default="")
    bio = models.TextField(blank=True, default="")
    avatar_url = models.URLField(max_length=1024, blank=True, default="")

    stripe_customer_id = models.CharField(
        max_length=120,
        blank=True,
        default="",
        help_text="Stripe Customer ID for renter payments.",
    )
    stripe_account_id = models.CharField(
        max_length=120,
        blank=True,
        default="",
        help_text="Stripe Connect account that receives owner payouts.",
    )
    stripe_onboarding_complete = models.BooleanField(default=False)
    charges_enabled = models.BooleanField(default=False)
    payouts_enabled = models.BooleanField(default=False)

    identity_verified = models.BooleanField(default=False)
    identity_verified_at = models.DateTimeField(null=True, blank=True)

    rating = models.FloatField(null=True, blank=True)
    total_reviews = models.PositiveIntegerField(default=0)

    @property
    def is_admin(self) -> bool:
        return self.role == self.Role.ADMIN or self.is_superuser

    @property
    def can_receive_payouts(self) -> bool:
        """True once the owner has a Connect account that finished onboarding."""
        return bool(self.stripe_account_id) and self.stripe_onboarding_complete

    def display_name(self) -> str:
        full_name = (self.get_full_name() or "").strip()
        return full_name or self.username
