"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from bookings.models import Booking
from listings.models import Listing
from listings.services import compute_booking_totals

User = get_user_model()


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


def _create_user(username: str, **extra) -> User:
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="testpass",
        **extra,
    )


@pytest.fixture
def owner_user():
    return _create_user(
        "owner",
        role=User.Role.OWNER,
        first_name="Olive",
        last_name="Owner",
        stripe_account_id="acct_test_owner",
        stripe_onboarding_complete=True,
        charges_enabled=True,
        payouts_enabled=True,
    )


@pytest.fixture
def renter_user():
    return _create_user(
        "renter",
        first_name="Rory",
        last_name="Renter",
        identity_verified=True,
        identity_verified_at=timezone.now(),
        stripe_customer_id="cus_test_renter",
    )


@pytest.fixture
def unverified_renter_user():
    return _create_user("unverified-renter")


@pytest.fixture
def other_user():
    return _create_user("other", identity_verified=True)


@pytest.fixture
def admin_user():
    return _create_user("admin", role=User.Role.ADMIN)


@pytest.fixture
def listing(owner_user):
    return Listing.objects.create(
        owner=owner_user,
        title="Pro Camera Kit",
        description="Mirrorless camera with two lenses.",
        category=Listing.Category.CAMERAS,
        city="Sydney",
        price_per_day=Decimal("30.00"),
        deposit=Decimal("0.00"),
    )


@pytest.fixture
def booking_factory(listing, renter_user) -> Callable[..., Booking]:
    """Create priced bookings; dates default to a two-day rental starting tomorrow."""

    def _make(**overrides) -> Booking:
        today = timezone.localdate()
        target_listing = overrides.pop("listing", listing)
        start = overrides.pop("start_date", today + timedelta(days=1))
        end = overrides.pop("end_date", start + timedelta(days=1))
        totals = compute_booking_totals(listing=target_listing, start_date=start, end_date=end)
        data = {
            "listing": target_listing,
            "renter": renter_user,
            "owner": target_listing.owner,
            "start_date": start,
            "end_date": end,
            "status": Booking.Status.PENDING,
            "payment_state": Booking.PaymentState.AUTHORIZED,
            "stripe_payment_intent_id": "pi_test_123",
            **totals,
        }
        data.update(overrides)
        return Booking.objects.create(**data)

    return _make


@pytest.fixture
def photo_urls():
    return [f"https://cdn.example.com/photos/{idx}.jpg" for idx in range(3)]


@pytest.fixture
def fake_intent():
    return SimpleNamespace(id="pi_test_123", client_secret="pi_test_123_secret_abc", status="requires_capture")
