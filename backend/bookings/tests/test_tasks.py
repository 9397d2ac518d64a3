from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest
import stripe
from django.utils import timezone

from bookings.models import Booking
from bookings.tasks import expire_pending_bookings
from notifications.models import AppNotification
from payments.stripe_api import StripeTransientError

pytestmark = pytest.mark.django_db


@pytest.fixture
def cancellable_intent(monkeypatch):
    cancelled = []
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "retrieve",
        lambda intent_id, *a, **kw: SimpleNamespace(id=intent_id, status="requires_capture"),
    )
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "cancel",
        lambda intent_id, *a, **kw: cancelled.append((intent_id, kw.get("cancellation_reason"))),
    )
    return cancelled


def _age(booking, hours):
    Booking.objects.filter(pk=booking.pk).update(
        created_at=timezone.now() - timedelta(hours=hours)
    )


def test_stale_pending_bookings_expire(
    booking_factory, cancellable_intent, owner_user, renter_user, django_capture_on_commit_callbacks
):
    stale = booking_factory()
    fresh = booking_factory(start_date=timezone.localdate() + timedelta(days=10))
    _age(stale, 49)
    _age(fresh, 2)

    with django_capture_on_commit_callbacks(execute=True):
        assert expire_pending_bookings.delay().get() == 1

    stale.refresh_from_db()
    fresh.refresh_from_db()
    assert stale.status == Booking.Status.CANCELLED
    assert stale.cancelled_by == "system"
    assert stale.payment_state == Booking.PaymentState.VOIDED
    assert fresh.status == Booking.Status.PENDING
    assert cancellable_intent == [("pi_test_123", "abandoned")]
    notified = set(
        AppNotification.objects.filter(type="booking_expired").values_list("user_id", flat=True)
    )
    assert notified == {owner_user.id, renter_user.id}


def test_confirmed_bookings_never_expire(booking_factory, cancellable_intent):
    booking = booking_factory(status=Booking.Status.CONFIRMED)
    _age(booking, 100)

    assert expire_pending_bookings() == 0
    booking.refresh_from_db()
    assert booking.status == Booking.Status.CONFIRMED


def test_stripe_outage_leaves_booking_for_next_run(booking_factory, monkeypatch):
    def _down(*args, **kwargs):
        raise StripeTransientError("Stripe is temporarily unavailable")

    monkeypatch.setattr("bookings.services.void_authorized_payment", _down)
    booking = booking_factory()
    _age(booking, 72)

    assert expire_pending_bookings() == 0
    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING
