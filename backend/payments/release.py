"""Admin release of owner payouts for completed bookings."""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any, Iterable

from django.conf import settings
from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from bookings.models import Booking
from listings.services import commission_split
from notifications.outbox import notify

from .ledger import format_money, record_payout
from .stripe_api import (
    StripeConfigurationError,
    StripeInsufficientBalanceError,
    StripePaymentError,
    StripeTransientError,
    _destination_charges_enabled,
    capture_authorized_payment,
    create_owner_transfer,
    destination_charge_transfer_id,
)

logger = logging.getLogger(__name__)

ALREADY_RELEASED = "Already released"
RELEASED = "Released"


class ReleaseError(Exception):
    """A booking could not be released; the message is safe to show an admin."""


def completed_bookings_queryset() -> QuerySet:
    return (
        Booking.objects.filter(status=Booking.Status.COMPLETED)
        .select_related("listing", "owner", "renter")
        .order_by("-completed_at", "-id")
    )


def eligible_bookings_queryset() -> QuerySet:
    """Completed, unreleased bookings whose owner confirmed receipt and can be paid."""
    return (
        completed_bookings_queryset()
        .filter(
            admin_released_at__isnull=True,
            owner_receipt_confirmed_at__isnull=False,
        )
        .exclude(owner__stripe_account_id="")
    )


def serialize_release_row(booking: Booking) -> dict[str, Any]:
    split = commission_split(booking.subtotal)
    return {
        "booking_id": booking.id,
        "listing_id": booking.listing_id,
        "listing_title": booking.listing.title,
        "owner_id": booking.owner_id,
        "owner_name": booking.owner.display_name(),
        "owner_stripe_account_id": booking.owner.stripe_account_id or None,
        "renter_id": booking.renter_id,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "subtotal": format_money(booking.subtotal),
        "total_amount": format_money(booking.total_amount),
        "commission": format_money(split["commission"]),
        "owner_payout": format_money(split["owner_payout"]),
        "payment_state": booking.payment_state,
        "completed_at": booking.completed_at.isoformat() if booking.completed_at else None,
        "owner_receipt_confirmed_at": (
            booking.owner_receipt_confirmed_at.isoformat()
            if booking.owner_receipt_confirmed_at
            else None
        ),
        "admin_released_at": (
            booking.admin_released_at.isoformat() if booking.admin_released_at else None
        ),
        "stripe_transfer_id": booking.stripe_transfer_id or None,
    }


def release_overview() -> dict[str, Any]:
    completed = [serialize_release_row(b) for b in completed_bookings_queryset()]
    eligible = [serialize_release_row(b) for b in eligible_bookings_queryset()]
    pending_payout = sum((Decimal(row["owner_payout"]) for row in eligible), Decimal("0"))
    pending_commission = sum((Decimal(row["commission"]) for row in eligible), Decimal("0"))
    return {
        "bookings": completed,
        "eligible_bookings": eligible,
        "summary": {
            "completed_count": len(completed),
            "eligible_count": len(eligible),
            "released_count": sum(1 for row in completed if row["admin_released_at"]),
            "pending_owner_payout": format_money(pending_payout),
            "pending_commission": format_money(pending_commission),
        },
    }


def _transfer_for(booking: Booking) -> tuple[str, bool]:
    """Return (transfer_id, simulated) for the owner's payout."""
    if _destination_charges_enabled():
        return destination_charge_transfer_id(booking), False
    try:
        return create_owner_transfer(booking), False
    except StripeInsufficientBalanceError:
        if not settings.STRIPE_SIMULATE_INSUFFICIENT_BALANCE_TRANSFERS:
            raise
        transfer_id = f"sim_tr_{booking.id}_{int(time.time())}"
        logger.warning(
            "payments: simulating transfer %s for booking %s (insufficient test balance)",
            transfer_id,
            booking.id,
        )
        return transfer_id, True


def release_booking(booking_id: int) -> dict[str, Any]:
    """
    Pay the owner of one completed booking.

    Runs under a row lock; a booking that already carries a release stamp or
    transfer id is reported as already released and no transfer is attempted.
    """
    with transaction.atomic():
        booking = (
            Booking.objects.select_for_update()
            .select_related("listing", "owner", "renter")
            .filter(pk=booking_id)
            .first()
        )
        if booking is None:
            raise ReleaseError("Booking not found.")
        if booking.is_released:
            return {
                "booking_id": booking.id,
                "status": ALREADY_RELEASED,
                "transfer_id": booking.stripe_transfer_id or None,
            }
        if booking.status != Booking.Status.COMPLETED:
            raise ReleaseError("Booking is not completed.")
        if booking.owner_receipt_confirmed_at is None:
            raise ReleaseError("Owner has not confirmed receipt of the item.")
        if not booking.owner.stripe_account_id:
            raise ReleaseError("Owner has no Stripe Connect account.")

        try:
            if booking.payment_state == Booking.PaymentState.AUTHORIZED:
                capture_authorized_payment(booking)
            elif booking.payment_state != Booking.PaymentState.CAPTURED:
                raise ReleaseError(
                    f"Payment is {booking.payment_state}; only captured payments can be released."
                )
            transfer_id, simulated = _transfer_for(booking)
        except StripeInsufficientBalanceError as exc:
            raise ReleaseError("Insufficient platform balance for this transfer.") from exc
        except (StripeConfigurationError, StripePaymentError, StripeTransientError) as exc:
            raise ReleaseError(str(exc) or "Stripe transfer failed.") from exc

        now = timezone.now()
        booking.admin_released_at = now
        booking.stripe_transfer_id = transfer_id
        booking.transfer_simulated = simulated
        booking.payment_state = Booking.PaymentState.RELEASED
        booking.save(
            update_fields=[
                "admin_released_at",
                "stripe_transfer_id",
                "transfer_simulated",
                "payment_state",
                "updated_at",
            ]
        )
        record_payout(booking, transfer_id=transfer_id, when=now)
        notify(
            booking.owner_id,
            "payout_released",
            "Payout released",
            f"Your payout of ${format_money(booking.owner_payout)} for "
            f"{booking.listing.title} is on its way.",
            booking=booking,
            email_template="payout_released",
        )

    logger.info(
        "payments: released booking %s to %s via %s",
        booking.id,
        booking.owner.stripe_account_id,
        transfer_id,
    )
    return {
        "booking_id": booking.id,
        "status": RELEASED,
        "transfer_id": transfer_id,
        "simulated": simulated,
        "owner_payout": format_money(booking.owner_payout),
    }


def release_bookings(booking_ids: Iterable[int]) -> dict[str, Any]:
    """Release each booking independently; one failure never blocks the others."""
    results: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []
    for booking_id in booking_ids:
        try:
            results.append(release_booking(booking_id))
        except ReleaseError as exc:
            logger.warning("payments: release of booking %s failed: %s", booking_id, exc)
            errors.append({"booking_id": booking_id, "error": str(exc)})

    released = [row for row in results if row["status"] == RELEASED]
    total = sum((Decimal(row["owner_payout"]) for row in released), Decimal("0"))
    return {
        "success": not errors,
        "results": results,
        "errors": errors,
        "summary": {
            "requested": len(results) + len(errors),
            "released": len(released),
            "already_released": len(results) - len(released),
            "failed": len(errors),
            "total_released": format_money(total),
        },
    }
