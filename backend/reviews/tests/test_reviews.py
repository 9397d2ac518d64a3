from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from bookings.models import Booking
from notifications.models import AppNotification
from reviews.models import Review
from reviews.tasks import send_review_reminders

pytestmark = pytest.mark.django_db

REVIEWS_URL = "/api/reviews/"


def auth(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def completed(booking_factory):
    today = timezone.localdate()
    return booking_factory(
        status=Booking.Status.COMPLETED,
        payment_state=Booking.PaymentState.CAPTURED,
        start_date=today - timedelta(days=4),
        end_date=today - timedelta(days=3),
        completed_at=timezone.now(),
    )


def _review(client, booking, rating=5, comment="Great camera"):
    return client.post(
        REVIEWS_URL,
        {"booking_id": booking.id, "rating": rating, "comment": comment},
        format="json",
    )


def _age(review, **delta):
    Review.objects.filter(pk=review["id"]).update(created_at=timezone.now() - timedelta(**delta))


def test_renter_reviews_owner_and_stats_update(
    renter_user, owner_user, completed, django_capture_on_commit_callbacks
):
    with django_capture_on_commit_callbacks(execute=True):
        resp = _review(auth(renter_user), completed, rating=4)

    assert resp.status_code == 201, resp.data
    assert resp.data["review_type"] == Review.Type.RENTER_TO_OWNER
    assert resp.data["reviewee"] == owner_user.id
    owner_user.refresh_from_db()
    assert owner_user.rating == 4.0
    assert owner_user.total_reviews == 1
    assert AppNotification.objects.filter(user=owner_user, type="review_received").exists()


def test_owner_reviews_renter(owner_user, renter_user, completed):
    resp = _review(auth(owner_user), completed, rating=5)

    assert resp.status_code == 201
    assert resp.data["review_type"] == Review.Type.OWNER_TO_RENTER
    assert resp.data["reviewee"] == renter_user.id


def test_duplicate_review_conflicts(renter_user, completed):
    client = auth(renter_user)
    assert _review(client, completed).status_code == 201

    resp = _review(client, completed)

    assert resp.status_code == 409
    assert Review.objects.count() == 1


def test_review_requires_completed_booking(renter_user, booking_factory):
    booking = booking_factory(status=Booking.Status.CONFIRMED)

    assert _review(auth(renter_user), booking).status_code == 400


def test_stranger_cannot_review(other_user, completed):
    assert _review(auth(other_user), completed).status_code == 403


def test_rating_out_of_range(renter_user, completed):
    resp = _review(auth(renter_user), completed, rating=6)

    assert resp.status_code == 400
    assert "rating" in resp.data


def test_author_can_edit_within_window(renter_user, owner_user, completed):
    client = auth(renter_user)
    review = _review(client, completed, rating=2).data

    resp = client.patch(f"{REVIEWS_URL}{review['id']}/", {"rating": 5}, format="json")

    assert resp.status_code == 200, resp.data
    assert resp.data["rating"] == 5
    assert resp.data["is_edited"] is True
    owner_user.refresh_from_db()
    assert owner_user.rating == 5.0


def test_edit_window_closes_after_a_day(renter_user, completed):
    client = auth(renter_user)
    review = _review(client, completed).data
    _age(review, hours=25)

    resp = client.patch(f"{REVIEWS_URL}{review['id']}/", {"comment": "Changed"}, format="json")

    assert resp.status_code == 400
    assert resp.data["detail"] == "Reviews can only be edited within 24 hours of creation"


def test_only_author_can_edit(owner_user, renter_user, completed):
    review = _review(auth(renter_user), completed).data

    resp = auth(owner_user).patch(f"{REVIEWS_URL}{review['id']}/", {"rating": 1}, format="json")

    assert resp.status_code == 403


def test_delete_within_an_hour(renter_user, owner_user, completed):
    client = auth(renter_user)
    review = _review(client, completed).data

    resp = client.delete(f"{REVIEWS_URL}{review['id']}/")

    assert resp.status_code == 204
    owner_user.refresh_from_db()
    assert owner_user.total_reviews == 0
    assert owner_user.rating is None


def test_delete_window_closes_after_an_hour(renter_user, completed):
    client = auth(renter_user)
    review = _review(client, completed).data
    _age(review, minutes=61)

    resp = client.delete(f"{REVIEWS_URL}{review['id']}/")

    assert resp.status_code == 400
    assert resp.data["detail"] == "Reviews can only be deleted within 1 hour of creation"


def test_reviewee_responds_once(renter_user, owner_user, completed):
    review = _review(auth(renter_user), completed).data
    client = auth(owner_user)
    url = f"{REVIEWS_URL}{review['id']}/response/"

    resp = client.post(url, {"response": "Thanks for looking after it!"}, format="json")
    assert resp.status_code == 200, resp.data
    assert resp.data["response"] == "Thanks for looking after it!"
    assert resp.data["response_at"] is not None

    assert client.post(url, {"response": "Again"}, format="json").status_code == 409


def test_reviewer_cannot_respond_to_own_review(renter_user, completed):
    client = auth(renter_user)
    review = _review(client, completed).data

    resp = client.post(f"{REVIEWS_URL}{review['id']}/response/", {"response": "Hi"}, format="json")

    assert resp.status_code == 403


def test_public_received_and_given_lists(renter_user, owner_user, completed):
    _review(auth(renter_user), completed)
    _review(auth(owner_user), completed, rating=3)
    anonymous = APIClient()

    received = anonymous.get(f"/api/users/{owner_user.id}/reviews/received/")
    given = anonymous.get(f"/api/users/{owner_user.id}/reviews/given/")

    assert received.status_code == 200
    assert [row["reviewer"] for row in received.data] == [renter_user.id]
    assert [row["reviewee"] for row in given.data] == [renter_user.id]


def test_list_filters_by_type(renter_user, owner_user, completed):
    _review(auth(renter_user), completed)
    _review(auth(owner_user), completed)

    resp = auth(renter_user).get(REVIEWS_URL, {"type": Review.Type.OWNER_TO_RENTER})

    assert resp.status_code == 200
    assert [row["review_type"] for row in resp.data] == [Review.Type.OWNER_TO_RENTER]


def test_reminders_skip_users_who_already_reviewed(
    renter_user, owner_user, booking_factory, django_capture_on_commit_callbacks
):
    today = timezone.localdate()
    booking = booking_factory(
        status=Booking.Status.COMPLETED,
        start_date=today - timedelta(days=6),
        end_date=today - timedelta(days=5),
        completed_at=timezone.now() - timedelta(days=2, hours=3),
    )
    Review.objects.create(
        booking=booking,
        reviewer=owner_user,
        reviewee=renter_user,
        review_type=Review.Type.OWNER_TO_RENTER,
        rating=5,
    )
    booking_factory(
        status=Booking.Status.COMPLETED,
        start_date=today - timedelta(days=20),
        end_date=today - timedelta(days=19),
        completed_at=timezone.now() - timedelta(days=10),
    )

    with django_capture_on_commit_callbacks(execute=True):
        assert send_review_reminders() == 1

    reminders = AppNotification.objects.filter(type="review_reminder")
    assert list(reminders.values_list("user_id", flat=True)) == [renter_user.id]
