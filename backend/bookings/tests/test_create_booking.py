"""Booking creation: pricing, identity gate, owner payout gate and payment authorization."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.core import mail
from django.utils import timezone
from rest_framework.test import APIClient

from bookings import services
from bookings.models import Booking
from chat.models import Message
from notifications.models import AppNotification
from payments.models import Payment
from payments.stripe_api import OWNER_SETUP_INCOMPLETE, StripePaymentError
from points.models import PointsTransaction
from points.services import add_points, points_balance

pytestmark = pytest.mark.django_db


def auth(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


def payload(listing, *, start_offset=1, days=2, **extra):
    start = timezone.localdate() + timedelta(days=start_offset)
    end = start + timedelta(days=days - 1)
    return {
        "listing_id": listing.id,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "delivery_method": "pickup",
        **extra,
    }


@pytest.fixture
def stripe_ok(monkeypatch, fake_intent):
    calls = {}

    def _customer(user, **kwargs):
        return "cus_test_renter"

    def _authorize(booking, *, customer_id=None):
        calls["amount"] = booking.charge_amount
        calls["customer_id"] = customer_id
        booking.stripe_payment_intent_id = fake_intent.id
        booking.save(update_fields=["stripe_payment_intent_id", "updated_at"])
        return fake_intent

    monkeypatch.setattr(services, "ensure_stripe_customer", _customer)
    monkeypatch.setattr(services, "authorize_payment", _authorize)
    return calls


def test_create_booking_prices_with_service_fee(renter_user, listing, stripe_ok):
    resp = auth(renter_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 201, resp.data
    body = resp.data["booking"]
    assert body["total_days"] == 2
    assert Decimal(body["subtotal"]) == Decimal("60.00")
    assert Decimal(body["service_fee"]) == Decimal("9.00")
    assert Decimal(body["total_amount"]) == Decimal("69.00")
    assert Decimal(body["commission"]) == Decimal("12.00")
    assert Decimal(body["owner_payout"]) == Decimal("48.00")
    assert body["status"] == Booking.Status.PENDING
    assert body["payment_state"] == Booking.PaymentState.REQUIRES_PAYMENT
    assert resp.data["client_secret"] == "pi_test_123_secret_abc"
    assert stripe_ok["amount"] == Decimal("69.00")
    assert stripe_ok["customer_id"] == "cus_test_renter"


def test_create_booking_charges_deposit_on_top(renter_user, listing, stripe_ok):
    listing.deposit = Decimal("100.00")
    listing.save()

    resp = auth(renter_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 201, resp.data
    assert Decimal(resp.data["booking"]["total_amount"]) == Decimal("69.00")
    assert Decimal(resp.data["booking"]["deposit_amount"]) == Decimal("100.00")
    assert stripe_ok["amount"] == Decimal("169.00")


def test_weekly_rate_applies_from_seven_days(renter_user, listing, stripe_ok):
    listing.price_per_week = Decimal("140.00")
    listing.save()

    resp = auth(renter_user).post("/api/bookings/", payload(listing, days=7), format="json")

    assert resp.status_code == 201, resp.data
    assert Decimal(resp.data["booking"]["subtotal"]) == Decimal("140.00")
    assert Decimal(resp.data["booking"]["price_per_day"]) == Decimal("20.00")


def test_create_booking_records_payment_and_notifies_owner(
    renter_user,
    owner_user,
    listing,
    stripe_ok,
    django_capture_on_commit_callbacks,
):
    with django_capture_on_commit_callbacks(execute=True):
        resp = auth(renter_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 201, resp.data
    booking = Booking.objects.get(pk=resp.data["booking"]["id"])
    payment = Payment.objects.get(booking=booking)
    assert payment.stripe_payment_intent_id == "pi_test_123"
    assert payment.total_amount == Decimal("69.00")
    assert payment.status == Payment.Status.PENDING

    notification = AppNotification.objects.get(user=owner_user, type="booking_request")
    assert notification.booking_id == booking.id
    assert [m.to for m in mail.outbox] == [[owner_user.email]]
    assert "Pro Camera Kit" in mail.outbox[0].body
    assert Message.objects.filter(
        conversation__booking=booking,
        system_kind=Message.SYSTEM_REQUEST_SENT,
    ).exists()


def test_missing_required_field_returns_400(renter_user, listing, stripe_ok):
    data = payload(listing)
    data.pop("delivery_method")

    resp = auth(renter_user).post("/api/bookings/", data, format="json")

    assert resp.status_code == 400
    assert "delivery_method" in resp.data


def test_unknown_listing_returns_404(renter_user, listing, stripe_ok):
    data = payload(listing)
    data["listing_id"] = listing.id + 999

    resp = auth(renter_user).post("/api/bookings/", data, format="json")

    assert resp.status_code == 404


def test_unverified_renter_is_rejected(unverified_renter_user, listing, stripe_ok):
    resp = auth(unverified_renter_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 403
    assert resp.data["code"] == "IDENTITY_VERIFICATION_REQUIRED"
    assert not Booking.objects.exists()


def test_owner_cannot_book_own_listing(owner_user, listing, stripe_ok):
    owner_user.identity_verified = True
    owner_user.save(update_fields=["identity_verified"])

    resp = auth(owner_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 400
    assert "listing_id" in resp.data


def test_end_before_start_returns_400(renter_user, listing, stripe_ok):
    start = timezone.localdate() + timedelta(days=5)
    data = payload(listing)
    data["start_date"] = start.isoformat()
    data["end_date"] = (start - timedelta(days=1)).isoformat()

    resp = auth(renter_user).post("/api/bookings/", data, format="json")

    assert resp.status_code == 400
    assert "end_date" in resp.data


def test_owner_without_payout_setup_blocks_booking(renter_user, owner_user, listing, stripe_ok):
    owner_user.stripe_onboarding_complete = False
    owner_user.save(update_fields=["stripe_onboarding_complete"])

    resp = auth(renter_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 400
    assert resp.data["detail"] == [OWNER_SETUP_INCOMPLETE]
    assert not Booking.objects.exists()


def test_unavailable_listing_returns_400(renter_user, listing, stripe_ok):
    listing.is_available = False
    listing.save()

    resp = auth(renter_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 400


def test_payment_failure_deletes_booking(renter_user, listing, monkeypatch):
    def _declined(booking, *, customer_id=None):
        raise StripePaymentError("Your card was declined.")

    monkeypatch.setattr(services, "ensure_stripe_customer", lambda user, **kw: "cus_x")
    monkeypatch.setattr(services, "authorize_payment", _declined)

    resp = auth(renter_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 500
    assert resp.data == {"detail": "Failed to process payment"}
    assert not Booking.objects.exists()
    assert not Payment.objects.exists()


def test_confirmed_booking_blocks_overlapping_request(
    renter_user, listing, booking_factory, stripe_ok
):
    start = timezone.localdate() + timedelta(days=1)
    booking_factory(start_date=start, end_date=start + timedelta(days=1), status="confirmed")

    resp = auth(renter_user).post("/api/bookings/", payload(listing), format="json")

    assert resp.status_code == 400
    assert "non_field_errors" in resp.data


def test_list_only_returns_participant_bookings(renter_user, other_user, booking_factory):
    booking_factory()

    assert len(auth(renter_user).get("/api/bookings/").data) == 1
    assert auth(other_user).get("/api/bookings/").data == []


def test_delivery_and_insurance_are_added_to_the_charge(renter_user, listing, stripe_ok):
    data = payload(
        listing,
        delivery_method="delivery",
        delivery_address="12 George St, Sydney",
        include_insurance=True,
    )

    resp = auth(renter_user).post("/api/bookings/", data, format="json")

    assert resp.status_code == 201, resp.data
    body = resp.data["booking"]
    assert Decimal(body["total_amount"]) == Decimal("69.00")
    assert Decimal(body["delivery_fee"]) == Decimal("20.00")
    assert Decimal(body["insurance_fee"]) == Decimal("14.00")
    assert Decimal(body["rental_charge"]) == Decimal("103.00")
    assert Decimal(body["owner_payout"]) == Decimal("48.00")
    assert stripe_ok["amount"] == Decimal("103.00")
    payment = Payment.objects.get(booking_id=body["id"])
    assert payment.delivery_fee == Decimal("20.00")
    assert payment.insurance_fee == Decimal("14.00")


def test_redeemed_points_lower_the_charge(renter_user, listing, stripe_ok):
    add_points(renter_user, 100, PointsTransaction.Type.FIRST_RENTAL)

    resp = auth(renter_user).post(
        "/api/bookings/", payload(listing, points_to_redeem=100), format="json"
    )

    assert resp.status_code == 201, resp.data
    body = resp.data["booking"]
    assert body["points_redeemed"] == 100
    assert Decimal(body["points_credit"]) == Decimal("10.00")
    assert Decimal(body["total_amount"]) == Decimal("69.00")
    assert Decimal(body["charge_amount"]) == Decimal("59.00")
    assert stripe_ok["amount"] == Decimal("59.00")
    assert points_balance(renter_user) == 0
    spend = PointsTransaction.objects.get(type=PointsTransaction.Type.REDEMPTION)
    assert spend.booking_id == body["id"]
    assert spend.amount == -100
    assert Payment.objects.get(booking_id=body["id"]).points_credit == Decimal("10.00")


def test_redeeming_more_points_than_held_returns_400(renter_user, listing, stripe_ok):
    add_points(renter_user, 50, PointsTransaction.Type.FIRST_RENTAL)

    resp = auth(renter_user).post(
        "/api/bookings/", payload(listing, points_to_redeem=100), format="json"
    )

    assert resp.status_code == 400
    assert "points_to_redeem" in resp.data
    assert not Booking.objects.exists()
    assert "amount" not in stripe_ok
    assert points_balance(renter_user) == 50


def test_points_credit_cannot_cover_the_whole_rental(renter_user, listing, stripe_ok):
    add_points(renter_user, 1000, PointsTransaction.Type.ADJUSTMENT)

    resp = auth(renter_user).post(
        "/api/bookings/", payload(listing, points_to_redeem=1000), format="json"
    )

    assert resp.status_code == 400
    assert "points_to_redeem" in resp.data
    assert points_balance(renter_user) == 1000
