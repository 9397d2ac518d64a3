"""Celery tasks for bookings."""

from __future__ import annotations

import logging

from celery import shared_task

from . import services

logger = logging.getLogger(__name__)


@shared_task(name="bookings.expire_pending_bookings")
def expire_pending_bookings() -> int:
    """
    Cancel pending requests older than BOOKING_PENDING_EXPIRY_HOURS.

    Their card holds are voided and both parties are notified. Returns the
    number of bookings expired.
    """
    return services.expire_pending_bookings()
