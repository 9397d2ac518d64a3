import json

import pytest
import stripe
from rest_framework.test import APIClient

from bookings.models import Booking
from identity.models import IdentityVerification
from notifications.models import AppNotification
from payments import stripe_api

pytestmark = pytest.mark.django_db

WEBHOOK_URL = "/api/payments/stripe/webhook/"


@pytest.fixture
def send_event(monkeypatch):
    """Post an event to the webhook with signature verification stubbed out."""

    def _send(event_type, data_object):
        event = {"type": event_type, "data": {"object": data_object}}
        monkeypatch.setattr(
            stripe_api.stripe.Webhook,
            "construct_event",
            lambda payload, sig_header, secret: event,
        )
        return APIClient().post(
            WEBHOOK_URL,
            data=json.dumps(event),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=test",
        )

    return _send


def test_bad_signature_is_rejected(monkeypatch):
    def fail(payload, sig_header, secret):
        raise stripe.error.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr(stripe_api.stripe.Webhook, "construct_event", fail)

    resp = APIClient().post(WEBHOOK_URL, data="{}", content_type="application/json")

    assert resp.status_code == 400


def test_capturable_event_marks_booking_authorized(send_event, booking_factory):
    booking = booking_factory(payment_state=Booking.PaymentState.REQUIRES_PAYMENT)

    resp = send_event(
        "payment_intent.amount_capturable_updated",
        {"id": "pi_test_123", "metadata": {"booking_id": str(booking.id)}},
    )

    assert resp.status_code == 200
    booking.refresh_from_db()
    assert booking.payment_state == Booking.PaymentState.AUTHORIZED


def test_intent_is_matched_by_id_without_metadata(send_event, booking_factory):
    booking = booking_factory()

    send_event("payment_intent.succeeded", {"id": "pi_test_123"})

    booking.refresh_from_db()
    assert booking.payment_state == Booking.PaymentState.CAPTURED


def test_cancelled_intent_closes_pending_booking(
    send_event, booking_factory, renter_user, django_capture_on_commit_callbacks
):
    booking = booking_factory()

    with django_capture_on_commit_callbacks(execute=True):
        send_event("payment_intent.canceled", {"id": "pi_test_123"})

    booking.refresh_from_db()
    assert booking.payment_state == Booking.PaymentState.VOIDED
    assert booking.status == Booking.Status.CANCELLED
    assert booking.cancelled_by == "system"
    assert AppNotification.objects.filter(user=renter_user, type="booking_cancelled").exists()


def test_payment_failure_notifies_renter(
    send_event, booking_factory, renter_user, django_capture_on_commit_callbacks
):
    booking = booking_factory(payment_state=Booking.PaymentState.REQUIRES_PAYMENT)

    with django_capture_on_commit_callbacks(execute=True):
        send_event(
            "payment_intent.payment_failed",
            {"id": "pi_test_123", "last_payment_error": {"code": "card_declined"}},
        )

    booking.refresh_from_db()
    assert booking.status == Booking.Status.PENDING
    assert AppNotification.objects.filter(user=renter_user, type="payment_failed").exists()


def test_unknown_intent_is_acknowledged(send_event):
    resp = send_event("payment_intent.succeeded", {"id": "pi_unknown"})

    assert resp.status_code == 200


def test_account_updated_syncs_owner_flags(send_event, owner_user):
    send_event(
        "account.updated",
        {
            "id": "acct_test_owner",
            "charges_enabled": True,
            "payouts_enabled": False,
            "details_submitted": True,
        },
    )

    owner_user.refresh_from_db()
    assert owner_user.payouts_enabled is False
    assert owner_user.stripe_onboarding_complete is False
    assert owner_user.can_receive_payouts is False


def test_identity_verified_event_marks_user(send_event, unverified_renter_user):
    send_event(
        "identity.verification_session.verified",
        {"id": "vs_123", "metadata": {"user_id": str(unverified_renter_user.id)}},
    )

    unverified_renter_user.refresh_from_db()
    assert unverified_renter_user.identity_verified is True
    assert IdentityVerification.objects.get(session_id="vs_123").is_verified
