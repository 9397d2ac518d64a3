"""Best-effort notification outbox.

Callers record a notification intent inside their own transaction; delivery
(in-app row, push, email) is queued to Celery only after that transaction
commits, so a rolled-back state change never notifies anyone and a failed
channel never undoes the state change.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from django.db import transaction

from . import tasks as notification_tasks
from .models import Category

logger = logging.getLogger(__name__)

TYPE_CATEGORIES = {
    "booking_request": Category.BOOKINGS,
    "booking_approved": Category.BOOKINGS,
    "booking_rejected": Category.BOOKINGS,
    "booking_cancelled": Category.BOOKINGS,
    "booking_expired": Category.BOOKINGS,
    "pickup_confirmed": Category.BOOKINGS,
    "rental_started": Category.BOOKINGS,
    "return_confirmed": Category.BOOKINGS,
    "booking_completed": Category.BOOKINGS,
    "damage_reported": Category.BOOKINGS,
    "issue_reported": Category.BOOKINGS,
    "payment_failed": Category.PAYMENTS,
    "payout_released": Category.PAYMENTS,
    "deposit_refunded": Category.PAYMENTS,
    "deposit_resolved": Category.PAYMENTS,
    "points_awarded": Category.PAYMENTS,
    "review_received": Category.REVIEWS,
    "review_response": Category.REVIEWS,
    "review_reminder": Category.REMINDERS,
    "new_message": Category.MESSAGES,
}


def _user_id(user_or_id) -> Optional[int]:
    return getattr(user_or_id, "pk", user_or_id)


def _enqueue(payload: dict[str, Any]) -> None:
    try:
        notification_tasks.deliver_notification.delay(payload)
    except Exception:
        logger.info(
            "notifications: could not queue deliver_notification",
            extra={"type": payload.get("type"), "user_id": payload.get("user_id")},
            exc_info=True,
        )


def notify(
    user,
    type_: str,
    title: str,
    message: str,
    *,
    booking=None,
    category: Optional[str] = None,
    data: Optional[dict[str, Any]] = None,
    email_template: Optional[str] = None,
    email_context: Optional[dict[str, Any]] = None,
    push: bool = True,
    action_url: str = "",
) -> dict[str, Any]:
    """Queue a notification for user after the current transaction commits."""
    booking_id = getattr(booking, "pk", booking)
    payload: dict[str, Any] = {
        "user_id": _user_id(user),
        "type": type_,
        "category": str(category or TYPE_CATEGORIES.get(type_, Category.SYSTEM)),
        "title": title,
        "message": message,
        "booking_id": booking_id,
        "data": {**(data or {}), **({"booking_id": booking_id} if booking_id else {})},
        "email_template": email_template,
        "email_context": email_context or {},
        "push": push,
        "action_url": action_url or (f"/bookings/{booking_id}" if booking_id else ""),
    }
    transaction.on_commit(lambda: _enqueue(payload))
    return payload
