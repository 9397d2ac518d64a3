"""Booking workflows: creation, owner decisions, handover and completion."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from chat.models import Message as ChatMessage
from chat.models import create_system_message
from listings.models import Listing
from listings.services import compute_booking_totals
from notifications.outbox import notify
from payments.ledger import record_booking_payment
from payments.stripe_api import (
    OWNER_SETUP_INCOMPLETE,
    StripeConfigurationError,
    StripePaymentError,
    StripeTransientError,
    authorize_payment,
    capture_authorized_payment,
    ensure_stripe_customer,
    refund_deposit,
    transfer_retained_deposit,
    void_authorized_payment,
)
from points.services import (
    award_first_rental_points,
    points_balance,
    points_to_credit,
    redeem_points,
    return_redeemed_points,
)

from .domain import (
    Party,
    assert_can_approve,
    assert_can_cancel,
    assert_can_complete,
    assert_can_confirm_return,
    assert_can_report_issue,
    assert_can_resolve_deposit,
    assert_can_reject,
    assert_can_verify_pickup,
    assert_can_verify_return,
    ensure_no_conflict,
    is_first_completed_rental,
    other_party_id,
    record_pickup_confirmation,
    record_return_confirmation,
    transition,
    validate_booking_dates,
    validate_photo_urls,
)
from .models import Booking, IssueReport

logger = logging.getLogger(__name__)

STRIPE_ERRORS = (StripeConfigurationError, StripePaymentError, StripeTransientError)
PAYMENT_FAILED_MESSAGE = "Failed to process payment"


class BookingPaymentError(Exception):
    """The renter's card could not be authorized; the booking was discarded."""


def _post_system_message(booking: Booking, kind: str, text: str, *, close_chat: bool = False):
    try:
        with transaction.atomic():
            create_system_message(booking, kind, text, close_chat=close_chat)
    except Exception:
        logger.exception(
            "bookings: could not post system message",
            extra={"booking_id": booking.id, "kind": kind},
        )


def _lock(booking_id: int) -> Booking:
    return (
        Booking.objects.select_for_update()
        .select_related("listing", "owner", "renter")
        .get(pk=booking_id)
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def _points_credit(renter, totals: dict[str, Any], points_to_redeem: int) -> Decimal:
    if not points_to_redeem:
        return Decimal("0.00")
    if points_balance(renter) < points_to_redeem:
        raise ValidationError({"points_to_redeem": ["Insufficient points balance."]})
    credit = points_to_credit(points_to_redeem)
    rental_charge = totals["total_amount"] + totals["delivery_fee"] + totals["insurance_fee"]
    if credit >= rental_charge:
        raise ValidationError(
            {"points_to_redeem": ["Points credit must be less than the rental charge."]}
        )
    return credit


def _discard_unpaid_booking(booking: Booking) -> None:
    try:
        void_authorized_payment(booking, reason="abandoned")
    except STRIPE_ERRORS:
        logger.exception(
            "bookings: could not void intent for discarded booking %s", booking.id
        )
    booking.delete()


def create_booking(
    *,
    renter,
    listing: Listing,
    start_date: date,
    end_date: date,
    delivery_method: str,
    delivery_address: str = "",
    renter_message: str = "",
    include_insurance: bool = False,
    points_to_redeem: int = 0,
) -> tuple[Booking, Any]:
    """
    Price and create a pending booking, then hold the renter's card for it.

    Points the renter redeems become a dollar credit against the rental charge
    and are spent in the same transaction that records the payment.

    Returns the booking and its PaymentIntent. Validation problems raise
    ValidationError; a failed authorization deletes the booking and raises
    BookingPaymentError.
    """
    if listing.owner_id == renter.id:
        raise ValidationError({"listing_id": ["You cannot book your own listing."]})
    if not (listing.is_active and listing.is_available):
        raise ValidationError({"listing_id": ["This listing is not available for booking."]})
    validate_booking_dates(start_date, end_date)
    if (
        delivery_method == Booking.DeliveryMethod.DELIVERY
        and not (delivery_address or "").strip()
    ):
        raise ValidationError({"delivery_address": ["A delivery address is required."]})
    if not listing.owner.can_receive_payouts:
        raise ValidationError({"detail": [OWNER_SETUP_INCOMPLETE]})
    ensure_no_conflict(listing, start_date, end_date)

    totals = compute_booking_totals(
        listing=listing,
        start_date=start_date,
        end_date=end_date,
        delivery_method=delivery_method,
        include_insurance=include_insurance,
    )
    points_credit = _points_credit(renter, totals, points_to_redeem)
    booking = Booking.objects.create(
        listing=listing,
        renter=renter,
        owner=listing.owner,
        start_date=start_date,
        end_date=end_date,
        currency=settings.BOOKING_CURRENCY,
        delivery_method=delivery_method,
        delivery_address=delivery_address or "",
        renter_message=renter_message or "",
        points_redeemed=points_to_redeem,
        points_credit=points_credit,
        **totals,
    )

    try:
        customer_id = ensure_stripe_customer(renter)
        intent = authorize_payment(booking, customer_id=customer_id)
    except STRIPE_ERRORS as exc:
        logger.exception(
            "bookings: payment authorization failed, discarding booking %s",
            booking.id,
            extra={"listing_id": listing.id, "renter_id": renter.id},
        )
        booking.delete()
        raise BookingPaymentError(PAYMENT_FAILED_MESSAGE) from exc

    try:
        with transaction.atomic():
            if points_to_redeem:
                redeem_points(renter, points_to_redeem, booking=booking)
            record_booking_payment(booking, payment_intent_id=intent.id)
    except ValueError as exc:
        _discard_unpaid_booking(booking)
        raise ValidationError({"points_to_redeem": [str(exc)]}) from exc

    _post_system_message(booking, ChatMessage.SYSTEM_REQUEST_SENT, "Booking request sent")
    notify(
        booking.owner_id,
        "booking_request",
        "New booking request",
        f"{renter.display_name()} wants to rent {listing.title} "
        f"from {start_date:%b %d} to {end_date:%b %d}.",
        booking=booking,
        email_template="booking_request",
    )
    return booking, intent


# ---------------------------------------------------------------------------
# Owner decisions and cancellation
# ---------------------------------------------------------------------------


def approve_booking(booking: Booking) -> Booking:
    """Capture the held payment and confirm the booking. Stripe errors propagate."""
    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_approve(booking)
        ensure_no_conflict(
            booking.listing,
            booking.start_date,
            booking.end_date,
            exclude_booking_id=booking.id,
        )
        capture_authorized_payment(booking)
        booking.save(update_fields=transition(booking, Booking.Status.CONFIRMED))

    _post_system_message(booking, ChatMessage.SYSTEM_REQUEST_APPROVED, "Booking request approved")
    notify(
        booking.renter_id,
        "booking_approved",
        "Booking approved",
        f"Your booking for {booking.listing.title} was approved.",
        booking=booking,
        email_template="booking_approved",
    )
    return booking


def _cancel_pending(booking: Booking, *, by: str, reason: str, void_reason: str) -> Booking:
    void_authorized_payment(booking, reason=void_reason)
    update_fields = transition(booking, Booking.Status.CANCELLED)
    booking.cancelled_by = by
    booking.cancellation_reason = reason
    booking.save(update_fields=update_fields + ["cancelled_by", "cancellation_reason"])
    return_redeemed_points(booking)
    return booking


def reject_booking(booking: Booking, *, reason: str = "") -> Booking:
    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_reject(booking)
        _cancel_pending(
            booking,
            by="owner",
            reason=reason or "Declined by owner",
            void_reason="requested_by_customer",
        )

    _post_system_message(
        booking,
        ChatMessage.SYSTEM_REQUEST_REJECTED,
        "Booking request declined",
        close_chat=True,
    )
    notify(
        booking.renter_id,
        "booking_rejected",
        "Booking declined",
        f"Your booking request for {booking.listing.title} was declined.",
        booking=booking,
        email_template="booking_rejected",
    )
    return booking


def cancel_booking(booking: Booking, party: Party, *, reason: str = "") -> Booking:
    """Cancel a pending booking on behalf of either party and release the card hold."""
    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_cancel(booking)
        _cancel_pending(
            booking,
            by=party,
            reason=reason or f"Cancelled by {party}",
            void_reason="requested_by_customer",
        )

    _post_system_message(
        booking,
        ChatMessage.SYSTEM_BOOKING_CANCELLED,
        f"Booking cancelled by {party}",
        close_chat=True,
    )
    for user_id in (booking.renter_id, booking.owner_id):
        notify(
            user_id,
            "booking_cancelled",
            "Booking cancelled",
            f"The booking for {booking.listing.title} was cancelled by the {party}.",
            booking=booking,
            email_template="booking_cancelled",
        )
    return booking


def cancel_for_voided_payment(booking: Booking) -> Booking:
    """Cancel a pending booking whose PaymentIntent was cancelled at Stripe."""
    if booking.status != Booking.Status.PENDING:
        return booking
    update_fields = transition(booking, Booking.Status.CANCELLED)
    booking.cancelled_by = "system"
    booking.cancellation_reason = "Payment authorization was cancelled."
    booking.save(update_fields=update_fields + ["cancelled_by", "cancellation_reason"])
    return_redeemed_points(booking)
    notify(
        booking.renter_id,
        "booking_cancelled",
        "Booking cancelled",
        f"The payment hold for {booking.listing.title} was cancelled, so the request was closed.",
        booking=booking,
        email_template="booking_cancelled",
    )
    return booking


def expire_pending_bookings(*, now=None) -> int:
    """Cancel and void pending requests the owner never answered; returns how many expired."""
    now = now or timezone.now()
    cutoff = now - timedelta(hours=settings.BOOKING_PENDING_EXPIRY_HOURS)
    stale_ids = list(
        Booking.objects.filter(status=Booking.Status.PENDING, created_at__lt=cutoff).values_list(
            "id", flat=True
        )
    )
    expired = 0
    for booking_id in stale_ids:
        try:
            with transaction.atomic():
                booking = _lock(booking_id)
                if booking.status != Booking.Status.PENDING:
                    continue
                _cancel_pending(
                    booking,
                    by="system",
                    reason="Booking request expired",
                    void_reason="abandoned",
                )
        except STRIPE_ERRORS:
            logger.warning(
                "bookings: could not void expired booking %s, will retry",
                booking_id,
                exc_info=True,
            )
            continue
        expired += 1
        for user_id in (booking.renter_id, booking.owner_id):
            notify(
                user_id,
                "booking_expired",
                "Booking request expired",
                f"The booking request for {booking.listing.title} expired.",
                booking=booking,
                email_template="booking_expired",
            )
    if expired:
        logger.info("bookings: expired %s pending bookings", expired)
    return expired


# ---------------------------------------------------------------------------
# Pickup and return
# ---------------------------------------------------------------------------


def verify_pickup(
    booking: Booking,
    party: Party,
    images: Optional[list[str]],
    *,
    notes: str = "",
) -> tuple[Booking, bool]:
    """
    Record one party's pickup photos; the second confirmation starts the rental.

    Returns the booking and whether both parties have now confirmed.
    """
    cleaned = validate_photo_urls(images)
    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_verify_pickup(booking, party)
        update_fields, both = record_pickup_confirmation(
            booking, party, cleaned, notes=(notes or "").strip()
        )
        booking.save(update_fields=update_fields)

    if both:
        _post_system_message(booking, ChatMessage.SYSTEM_RENTAL_STARTED, "Rental started")
        for user_id in (booking.renter_id, booking.owner_id):
            notify(
                user_id,
                "rental_started",
                "Rental started",
                f"Pickup of {booking.listing.title} is confirmed. The rental is now in progress.",
                booking=booking,
                email_template="rental_started",
            )
    else:
        _post_system_message(
            booking, ChatMessage.SYSTEM_PICKUP_CONFIRMED, f"Pickup confirmed by {party}"
        )
        notify(
            other_party_id(booking, party),
            "pickup_confirmed",
            f"Pickup confirmed by the {party}",
            f"The {party} confirmed pickup of {booking.listing.title}. "
            "Add your photos to start the rental.",
            booking=booking,
        )
    return booking, both


def _settle_deposit(booking: Booking) -> None:
    """Refund the deposit of a completed rental unless damage is holding it."""
    if booking.deposit_amount <= 0 or booking.deposit_status != Booking.DepositStatus.NONE:
        return
    try:
        refund_deposit(booking)
    except STRIPE_ERRORS:
        logger.exception(
            "bookings: deposit refund failed",
            extra={"booking_id": booking.id},
        )
        return
    notify(
        booking.renter_id,
        "deposit_refunded",
        "Deposit refunded",
        f"Your ${booking.deposit_amount} deposit for {booking.listing.title} is on its way back.",
        booking=booking,
    )


def verify_return(
    booking: Booking,
    party: Party,
    user,
    images: Optional[list[str]],
    *,
    damage_report: str = "",
) -> tuple[Booking, bool]:
    """
    Record one party's return photos and optional owner damage report.

    The second confirmation completes the booking; without a damage report the
    deposit is refunded.
    """
    cleaned = validate_photo_urls(images)
    damage_report = (damage_report or "").strip()
    if damage_report and party != "owner":
        raise ValidationError({"damage_report": ["Only the owner can report damage."]})

    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_verify_return(booking, party)
        now = timezone.now()
        update_fields, both = record_return_confirmation(
            booking, party, cleaned, damage_report=damage_report, user=user, now=now
        )
        if party == "owner" and booking.owner_receipt_confirmed_at is None:
            booking.owner_receipt_confirmed_at = now
            update_fields.append("owner_receipt_confirmed_at")
        booking.save(update_fields=update_fields)
        if damage_report:
            IssueReport.objects.create(
                booking=booking,
                reporter=user,
                reporter_role=party,
                issue_type=IssueReport.IssueType.DAMAGE,
                title=f"Damage reported for booking #{booking.id}",
                description=damage_report,
                images=cleaned,
            )

    if damage_report:
        notify(
            booking.renter_id,
            "damage_reported",
            "Damage reported",
            f"The owner reported damage to {booking.listing.title}. "
            "Your deposit is held while it is reviewed.",
            booking=booking,
        )

    if not both:
        _post_system_message(
            booking, ChatMessage.SYSTEM_RETURN_CONFIRMED, f"Return confirmed by {party}"
        )
        notify(
            other_party_id(booking, party),
            "return_confirmed",
            f"Return confirmed by the {party}",
            f"The {party} confirmed the return of {booking.listing.title}. "
            "Add your photos to finish the rental.",
            booking=booking,
        )
        return booking, both

    _settle_deposit(booking)
    for user_id in (booking.renter_id, booking.owner_id):
        notify(
            user_id,
            "return_confirmed",
            "Return confirmed",
            f"The return of {booking.listing.title} is confirmed and the rental is complete.",
            booking=booking,
            email_template="return_confirmed",
        )
    _after_completion(booking, notify_parties=False)
    return booking, both


def confirm_return(booking: Booking, party: Party, user) -> tuple[Booking, int]:
    """Single-party return confirmation that completes the rental."""
    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_confirm_return(booking)
        now = timezone.now()
        update_fields = transition(booking, Booking.Status.COMPLETED)
        flag = f"return_confirmed_by_{party}"
        setattr(booking, flag, True)
        booking.return_confirmed_at = now
        booking.return_confirmed_by = user
        update_fields += [flag, "return_confirmed_at", "return_confirmed_by"]
        if party == "owner" and booking.owner_receipt_confirmed_at is None:
            booking.owner_receipt_confirmed_at = now
            update_fields.append("owner_receipt_confirmed_at")
        booking.save(update_fields=update_fields)

    _settle_deposit(booking)
    points = _after_completion(booking)
    return booking, points


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


def _award_points(booking: Booking) -> int:
    try:
        if is_first_completed_rental(booking):
            return award_first_rental_points(booking)
    except Exception:
        logger.exception(
            "bookings: failed to award first rental points",
            extra={"booking_id": booking.id, "renter_id": booking.renter_id},
        )
    return 0


def _after_completion(booking: Booking, *, notify_parties: bool = True) -> int:
    points = _award_points(booking)
    _post_system_message(
        booking,
        ChatMessage.SYSTEM_BOOKING_COMPLETED,
        "Booking completed",
        close_chat=True,
    )
    if notify_parties:
        notify(
            booking.renter_id,
            "booking_completed",
            "Rental completed",
            f"Your rental of {booking.listing.title} is complete.",
            booking=booking,
            email_template="booking_completed",
            email_context={"points_awarded": points},
        )
        notify(
            booking.owner_id,
            "booking_completed",
            "Rental completed",
            f"The rental of {booking.listing.title} is complete. Your payout will be released soon.",
            booking=booking,
        )
    if points:
        notify(
            booking.renter_id,
            "points_awarded",
            "You earned points",
            f"You earned {points} points for your first rental.",
            booking=booking,
            data={"points": points},
        )
    return points


def complete_booking(booking: Booking, *, auto_release: bool = False) -> dict[str, Any]:
    """
    Owner marks the item received back; the booking is completed.

    Points and the optional automatic payout release are best-effort: their
    failures are logged and reported but never undo the completion.
    """
    # Local import: payments.release imports this app's models.
    from payments.release import ReleaseError, release_booking

    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_complete(booking)
        update_fields = transition(booking, Booking.Status.COMPLETED)
        if booking.owner_receipt_confirmed_at is None:
            booking.owner_receipt_confirmed_at = timezone.now()
            update_fields.append("owner_receipt_confirmed_at")
        booking.save(update_fields=update_fields)

    _settle_deposit(booking)
    points = _after_completion(booking)
    release = None
    if auto_release:
        try:
            release = release_booking(booking.id)
        except ReleaseError as exc:
            logger.warning(
                "bookings: automatic release failed for booking %s: %s", booking.id, exc
            )
            release = {"booking_id": booking.id, "error": str(exc)}
        booking.refresh_from_db()
    return {"booking": booking, "points_awarded": points, "release": release}


# ---------------------------------------------------------------------------
# Issues and deposits
# ---------------------------------------------------------------------------


def report_issue(
    booking: Booking,
    party: Party,
    user,
    *,
    issue_type: str,
    title: str,
    description: str,
    images: Optional[list[str]] = None,
) -> IssueReport:
    """
    File an issue against a booking for admin review.

    Owner damage reports hold the deposit until an admin settles it.
    """
    cleaned = validate_photo_urls(images or [], minimum=0)
    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_report_issue(booking)
        report = IssueReport.objects.create(
            booking=booking,
            reporter=user,
            reporter_role=party,
            issue_type=issue_type,
            title=title.strip(),
            description=description.strip(),
            images=cleaned,
        )
        if (
            party == "owner"
            and issue_type == IssueReport.IssueType.DAMAGE
            and booking.deposit_amount > 0
            and booking.deposit_status == Booking.DepositStatus.NONE
        ):
            booking.deposit_status = Booking.DepositStatus.HELD
            booking.save(update_fields=["deposit_status", "updated_at"])

    logger.info(
        "bookings: %s reported %s issue on booking %s", party, issue_type, booking.id
    )
    notify(
        other_party_id(booking, party),
        "issue_reported",
        "Issue reported",
        f"The {party} reported an issue with {booking.listing.title}: {report.title}",
        booking=booking,
    )
    return report


DEPOSIT_REFUND = "refund"
DEPOSIT_RETAIN = "retain"


def resolve_deposit(booking: Booking, decision: str, *, note: str = "") -> Booking:
    """
    Admin decision on a completed booking's deposit: refund it to the renter or
    pay it to the owner. Open issue reports on the booking are closed. Stripe
    errors propagate and leave the deposit unsettled.
    """
    if decision not in (DEPOSIT_REFUND, DEPOSIT_RETAIN):
        raise ValidationError({"decision": ["Choose refund or retain."]})
    with transaction.atomic():
        booking = _lock(booking.pk)
        assert_can_resolve_deposit(booking)
        if decision == DEPOSIT_REFUND:
            refund_deposit(booking)
        else:
            transfer_retained_deposit(booking)
            booking.deposit_status = Booking.DepositStatus.RETAINED
            booking.save(update_fields=["deposit_status", "updated_at"])
        booking.issue_reports.filter(status=IssueReport.Status.OPEN).update(
            status=IssueReport.Status.RESOLVED
        )

    logger.info("bookings: deposit for booking %s %s", booking.id, booking.deposit_status)
    if decision == DEPOSIT_REFUND:
        message = f"Your deposit for {booking.listing.title} has been refunded."
    else:
        message = f"Your deposit for {booking.listing.title} was kept for the reported issue."
    if note:
        message = f"{message} {note.strip()}"
    notify(booking.renter_id, "deposit_resolved", "Deposit update", message, booking=booking)
    notify(
        booking.owner_id,
        "deposit_resolved",
        "Deposit update",
        f"The deposit for {booking.listing.title} was {booking.deposit_status}.",
        booking=booking,
    )
    return booking
