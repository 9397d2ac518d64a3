import pytest
import responses
from django.core import mail
from django.db import transaction

from notifications import onesignal
from notifications.models import AppNotification, NotificationLog, NotificationPreference, PushDevice
from notifications.outbox import notify
from notifications.tasks import broadcast_push, deliver_notification

pytestmark = pytest.mark.django_db

ONESIGNAL_URL = "https://onesignal.test/notifications"


@pytest.fixture
def onesignal_settings(settings):
    settings.ONESIGNAL_APP_ID = "app-123"
    settings.ONESIGNAL_REST_API_KEY = "key-abc"
    settings.ONESIGNAL_API_URL = "https://onesignal.test"
    return settings


def _payload(user, **overrides):
    payload = {
        "user_id": user.id,
        "type": "booking_approved",
        "category": "bookings",
        "title": "Booking approved",
        "message": "Your booking was approved.",
        "booking_id": None,
        "data": {},
        "email_template": "booking_approved",
        "email_context": {},
        "push": True,
        "action_url": "/bookings/1",
    }
    payload.update(overrides)
    return payload


def test_notify_waits_for_commit(renter_user, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        notify(renter_user, "booking_approved", "Booking approved", "Approved.")

    assert len(callbacks) == 1
    assert not AppNotification.objects.exists()


def test_notify_in_rolled_back_block_sends_nothing(renter_user, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        try:
            with transaction.atomic():
                notify(renter_user, "booking_approved", "Booking approved", "Approved.")
                raise RuntimeError("boom")
        except RuntimeError:
            pass

    assert callbacks == []
    assert not AppNotification.objects.exists()


def test_notify_derives_category_and_booking_link(booking_factory, renter_user):
    booking = booking_factory()

    payload = notify(renter_user, "payout_released", "Paid", "Paid.", booking=booking)

    assert payload["category"] == "payments"
    assert payload["action_url"] == f"/bookings/{booking.id}"
    assert payload["data"] == {"booking_id": booking.id}


def test_deliver_stores_row_and_emails(booking_factory, renter_user):
    booking = booking_factory()

    results = deliver_notification(_payload(renter_user, booking_id=booking.id))

    assert results == {"in_app": True, "push": False, "email": True}
    notification = AppNotification.objects.get(user=renter_user)
    assert notification.booking_id == booking.id
    assert len(mail.outbox) == 1
    assert mail.outbox[0].subject == "Booking approved"
    assert f"Booking: #{booking.id}" in mail.outbox[0].body
    assert NotificationLog.objects.filter(
        channel="push", status=NotificationLog.Status.SKIPPED
    ).exists()
    assert NotificationLog.objects.filter(channel="email", status=NotificationLog.Status.SENT).exists()


def test_email_preference_off_skips_email(renter_user):
    NotificationPreference.objects.create(user=renter_user, email_bookings=False)

    results = deliver_notification(_payload(renter_user))

    assert results["in_app"] is True
    assert results["email"] is False
    assert mail.outbox == []


def test_missing_email_is_logged_as_failure(renter_user):
    renter_user.email = ""
    renter_user.save(update_fields=["email"])

    results = deliver_notification(_payload(renter_user))

    assert results["email"] is False
    assert NotificationLog.objects.get(channel="email").status == NotificationLog.Status.FAILED


def test_deleted_user_is_ignored():
    assert deliver_notification({"user_id": 999999, "type": "booking_approved"}) == {}


@responses.activate
def test_push_targets_registered_devices(renter_user, onesignal_settings):
    PushDevice.objects.create(user=renter_user, player_id="player-1")
    responses.add(responses.POST, ONESIGNAL_URL, json={"id": "notif-1"}, status=200)

    results = deliver_notification(_payload(renter_user, email_template=None))

    assert results["push"] is True
    body = responses.calls[0].request.body
    assert b"player-1" in body
    assert responses.calls[0].request.headers["Authorization"] == "Key key-abc"


@responses.activate
def test_push_failure_does_not_block_other_channels(renter_user, onesignal_settings):
    responses.add(responses.POST, ONESIGNAL_URL, json={"errors": ["invalid"]}, status=400)

    results = deliver_notification(_payload(renter_user))

    assert results == {"in_app": True, "push": False, "email": True}
    log = NotificationLog.objects.get(channel="push")
    assert log.status == NotificationLog.Status.FAILED
    assert "400" in log.error


@responses.activate
def test_push_falls_back_to_external_id(renter_user, onesignal_settings):
    responses.add(responses.POST, ONESIGNAL_URL, json={"id": "notif-2"}, status=200)

    onesignal.send_to_user(renter_user, title="Hi", message="Hello")

    assert f'"external_id": ["{renter_user.id}"]'.encode() in responses.calls[0].request.body


@responses.activate
def test_broadcast_uses_tag_filters(onesignal_settings):
    responses.add(responses.POST, ONESIGNAL_URL, json={"id": "notif-3"}, status=200)

    assert broadcast_push({"city": "Sydney"}, "Weekend deals", "Cameras are 10% off") is True
    assert b'"key": "city"' in responses.calls[0].request.body


def test_send_push_requires_configuration():
    with pytest.raises(onesignal.OneSignalError):
        onesignal.send_push(title="x", message="y", external_ids=["1"])


@responses.activate
def test_non_json_push_response_is_a_push_failure(renter_user, onesignal_settings):
    responses.add(
        responses.POST, ONESIGNAL_URL, body="<html>gateway</html>", status=200,
        content_type="text/html",
    )

    with pytest.raises(onesignal.OneSignalError):
        onesignal.send_to_user(renter_user, title="Hi", message="Hello")

    results = deliver_notification(_payload(renter_user))

    assert results == {"in_app": True, "push": False, "email": True}
    assert len(mail.outbox) == 1
    log = NotificationLog.objects.get(channel="push")
    assert log.status == NotificationLog.Status.FAILED
    assert "non-JSON" in log.error
