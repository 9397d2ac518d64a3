"""Celery tasks for reviews."""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from bookings.models import Booking
from notifications.outbox import notify

from .models import Review

logger = logging.getLogger(__name__)


@shared_task(name="reviews.send_review_reminders")
def send_review_reminders() -> int:
    """
    Nudge participants who have not reviewed a booking completed
    REVIEW_REMINDER_DELAY_DAYS ago. Runs daily, so each booking is seen once.
    """
    window_end = timezone.now() - timedelta(days=settings.REVIEW_REMINDER_DELAY_DAYS)
    window_start = window_end - timedelta(days=1)
    bookings = Booking.objects.filter(
        status=Booking.Status.COMPLETED,
        completed_at__gt=window_start,
        completed_at__lte=window_end,
    ).select_related("listing")

    sent = 0
    for booking in bookings:
        reviewed = set(
            Review.objects.filter(booking=booking).values_list("reviewer_id", flat=True)
        )
        for user_id in (booking.renter_id, booking.owner_id):
            if user_id in reviewed:
                continue
            notify(
                user_id,
                "review_reminder",
                "How did your rental go?",
                f"Leave a review for {booking.listing.title}.",
                booking=booking,
                email_template="review_reminder",
            )
            sent += 1
    logger.info("reviews: queued %s review reminders", sent)
    return sent
