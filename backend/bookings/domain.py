"""Domain helpers for booking validation and state transitions."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, Literal, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from listings.models import Listing

from .models import Booking

logger = logging.getLogger(__name__)

Party = Literal["renter", "owner"]

S = Booking.Status

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.IN_PROGRESS, S.CANCELLED, S.DISPUTED}),
    S.IN_PROGRESS: frozenset({S.RETURN_PENDING, S.COMPLETED, S.DISPUTED}),
    S.RETURN_PENDING: frozenset({S.COMPLETED, S.DISPUTED}),
    S.DISPUTED: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})

# Statuses that hold the listing's dates. Pending requests may overlap until one is approved.
DATE_BLOCKING_STATUSES = (
    S.CONFIRMED,
    S.IN_PROGRESS,
    S.RETURN_PENDING,
    S.DISPUTED,
)

# Rental is under way; legacy clients call these "active" / "picked_up".
IN_RENTAL_STATUSES = (S.IN_PROGRESS, S.RETURN_PENDING)
STATUS_ALIASES = {"active": S.IN_PROGRESS, "picked_up": S.IN_PROGRESS}


def normalize_status(value: str) -> str:
    return STATUS_ALIASES.get(value, value)


def can_transition(current: str, new_status: str) -> bool:
    return normalize_status(new_status) in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(booking: Booking, new_status: str) -> list[str]:
    """
    Move booking to new_status in memory and return the fields to save.

    Raises ValidationError when the move is not in ALLOWED_TRANSITIONS.
    """
    target = normalize_status(new_status)
    if not can_transition(booking.status, target):
        raise ValidationError(
            {"status": [f"Cannot move booking from {booking.status} to {target}."]}
        )
    logger.info("bookings: booking %s %s -> %s", booking.pk, booking.status, target)
    booking.status = target
    update_fields = ["status", "updated_at"]
    if target == S.COMPLETED and booking.completed_at is None:
        booking.completed_at = timezone.now()
        update_fields.append("completed_at")
    elif target == S.CANCELLED and booking.cancelled_at is None:
        booking.cancelled_at = timezone.now()
        update_fields.append("cancelled_at")
    return update_fields


def party_for(booking: Booking, user) -> Optional[Party]:
    user_id = getattr(user, "id", None)
    if user_id is None:
        return None
    if user_id == booking.renter_id:
        return "renter"
    if user_id == booking.owner_id:
        return "owner"
    return None


def other_party_id(booking: Booking, party: Party) -> int:
    return booking.owner_id if party == "renter" else booking.renter_id


def validate_booking_dates(
    start_date: date | None,
    end_date: date | None,
    *,
    today: date | None = None,
) -> None:
    """Validate that the provided dates exist and form an inclusive range starting today or later."""
    if not start_date or not end_date:
        raise ValidationError({"non_field_errors": ["Start and end dates are required."]})
    if end_date < start_date:
        raise ValidationError({"end_date": ["End date cannot be before start date."]})
    today = today or timezone.localdate()
    if start_date < today:
        raise ValidationError({"start_date": ["Start date cannot be in the past."]})


def ensure_no_conflict(
    listing: Listing,
    start_date: date,
    end_date: date,
    *,
    exclude_booking_id: Optional[int] = None,
) -> None:
    """Ensure no date-blocking booking overlaps the inclusive [start_date, end_date] range."""
    qs = Booking.objects.filter(listing=listing, status__in=DATE_BLOCKING_STATUSES)
    if exclude_booking_id is not None:
        qs = qs.exclude(pk=exclude_booking_id)
    conflicts = qs.filter(start_date__lte=end_date, end_date__gte=start_date)
    if conflicts.exists():
        raise ValidationError(
            {"non_field_errors": ["Requested dates are not available for this listing."]}
        )


def assert_can_approve(booking: Booking) -> None:
    if booking.status != S.PENDING:
        raise ValidationError({"status": ["Only pending bookings can be approved."]})
    if not booking.stripe_payment_intent_id or booking.payment_state not in (
        Booking.PaymentState.REQUIRES_PAYMENT,
        Booking.PaymentState.AUTHORIZED,
    ):
        raise ValidationError(
            {"payment_state": ["The renter's payment has not been authorized yet."]}
        )


def assert_can_reject(booking: Booking) -> None:
    if booking.status != S.PENDING:
        raise ValidationError({"status": ["Only pending bookings can be rejected."]})


def assert_can_cancel(booking: Booking) -> None:
    if booking.status != S.PENDING:
        raise ValidationError({"status": ["Only pending bookings can be cancelled."]})


def validate_photo_urls(
    images: Iterable[str] | None,
    *,
    field: str = "images",
    minimum: int | None = None,
) -> list[str]:
    """Return cleaned photo URLs, enforcing the configured min/max count."""
    if minimum is None:
        minimum = settings.BOOKING_MIN_PICKUP_PHOTOS
    maximum = settings.BOOKING_MAX_PICKUP_PHOTOS
    if images is None or isinstance(images, (str, bytes)):
        raise ValidationError({field: ["Provide a list of photo URLs."]})
    cleaned = [str(item).strip() for item in images if str(item or "").strip()]
    if len(cleaned) < minimum:
        raise ValidationError({field: [f"At least {minimum} photos are required."]})
    if len(cleaned) > maximum:
        raise ValidationError({field: [f"No more than {maximum} photos are allowed."]})
    return cleaned


def assert_can_verify_pickup(booking: Booking, party: Party, *, today: date | None = None) -> None:
    if booking.status != S.CONFIRMED:
        raise ValidationError(
            {"status": ["Pickup can only be verified for confirmed bookings."]}
        )
    today = today or timezone.localdate()
    if today < booking.start_date or today > booking.end_date:
        raise ValidationError(
            {"non_field_errors": ["Pickup can only be verified during the rental period."]}
        )
    already = (
        booking.pickup_confirmed_by_renter if party == "renter" else booking.pickup_confirmed_by_owner
    )
    if already:
        raise ValidationError({"non_field_errors": ["You have already confirmed pickup."]})


def record_pickup_confirmation(
    booking: Booking,
    party: Party,
    images: list[str],
    *,
    notes: str = "",
    now: datetime | None = None,
) -> tuple[list[str], bool]:
    """
    Store one party's pickup confirmation.

    Returns the fields to save and whether both parties have now confirmed,
    in which case the booking has moved to in_progress.
    """
    now = now or timezone.now()
    if party == "renter":
        booking.pickup_confirmed_by_renter = True
        booking.pickup_renter_images = images
        booking.pickup_renter_confirmed_at = now
        update_fields = [
            "pickup_confirmed_by_renter",
            "pickup_renter_images",
            "pickup_renter_confirmed_at",
        ]
    else:
        booking.pickup_confirmed_by_owner = True
        booking.pickup_owner_images = images
        booking.pickup_owner_confirmed_at = now
        update_fields = [
            "pickup_confirmed_by_owner",
            "pickup_owner_images",
            "pickup_owner_confirmed_at",
        ]
    if notes:
        booking.pickup_notes = notes
        update_fields.append("pickup_notes")

    both = booking.pickup_confirmed_by_renter and booking.pickup_confirmed_by_owner
    if both:
        update_fields.extend(transition(booking, S.IN_PROGRESS))
        booking.pickup_confirmed_at = now
        update_fields.append("pickup_confirmed_at")
    elif "updated_at" not in update_fields:
        update_fields.append("updated_at")
    return list(dict.fromkeys(update_fields)), both


def assert_can_verify_return(booking: Booking, party: Party) -> None:
    if booking.status not in IN_RENTAL_STATUSES:
        raise ValidationError(
            {"status": ["Return can only be verified for rentals in progress."]}
        )
    already = (
        booking.return_confirmed_by_renter if party == "renter" else booking.return_confirmed_by_owner
    )
    if already:
        raise ValidationError({"non_field_errors": ["You have already confirmed the return."]})


def record_return_confirmation(
    booking: Booking,
    party: Party,
    images: list[str],
    *,
    damage_report: str = "",
    user=None,
    now: datetime | None = None,
) -> tuple[list[str], bool]:
    """
    Store one party's return confirmation.

    The first confirmation moves the booking to return_pending; the second
    completes it. Returns the fields to save and whether both parties confirmed.
    """
    now = now or timezone.now()
    if party == "renter":
        booking.return_confirmed_by_renter = True
        booking.return_renter_images = images
        booking.return_renter_confirmed_at = now
        update_fields = [
            "return_confirmed_by_renter",
            "return_renter_images",
            "return_renter_confirmed_at",
        ]
    else:
        booking.return_confirmed_by_owner = True
        booking.return_owner_images = images
        booking.return_owner_confirmed_at = now
        update_fields = [
            "return_confirmed_by_owner",
            "return_owner_images",
            "return_owner_confirmed_at",
        ]
    if damage_report:
        booking.damage_report = damage_report
        booking.deposit_status = Booking.DepositStatus.HELD
        update_fields.extend(["damage_report", "deposit_status"])

    both = booking.return_confirmed_by_renter and booking.return_confirmed_by_owner
    if both:
        update_fields.extend(transition(booking, S.COMPLETED))
        booking.return_confirmed_at = now
        booking.return_confirmed_by = user
        update_fields.extend(["return_confirmed_at", "return_confirmed_by"])
    elif booking.status == S.IN_PROGRESS:
        update_fields.extend(transition(booking, S.RETURN_PENDING))
    else:
        update_fields.append("updated_at")
    return list(dict.fromkeys(update_fields)), both


def assert_can_confirm_return(booking: Booking, *, today: date | None = None) -> None:
    if booking.status not in IN_RENTAL_STATUSES:
        raise ValidationError(
            {"status": ["Return can only be confirmed for rentals in progress."]}
        )
    today = today or timezone.localdate()
    if booking.start_date >= today:
        raise ValidationError(
            {"non_field_errors": ["Return can only be confirmed after the pickup date."]}
        )


def assert_can_complete(booking: Booking) -> None:
    if booking.status not in IN_RENTAL_STATUSES:
        raise ValidationError(
            {"status": ["Only bookings in progress or awaiting return can be completed."]}
        )


def assert_can_report_issue(booking: Booking) -> None:
    if booking.status in (S.PENDING, S.CANCELLED):
        raise ValidationError(
            {"status": ["Issues can only be reported once a booking is confirmed."]}
        )


def assert_can_resolve_deposit(booking: Booking) -> None:
    if booking.status != S.COMPLETED:
        raise ValidationError({"status": ["Deposits are settled once the rental is completed."]})
    if booking.deposit_amount <= 0:
        raise ValidationError({"deposit": ["This booking has no deposit."]})
    if booking.deposit_status not in (
        Booking.DepositStatus.NONE,
        Booking.DepositStatus.HELD,
    ):
        raise ValidationError({"deposit": [f"The deposit was already {booking.deposit_status}."]})


def is_first_completed_rental(booking: Booking) -> bool:
    """True when booking is the renter's only completed booking."""
    return not (
        Booking.objects.filter(renter_id=booking.renter_id, status=S.COMPLETED)
        .exclude(pk=booking.pk)
        .exists()
    )
