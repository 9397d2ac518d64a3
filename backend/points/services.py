from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import F

from .models import PointsTransaction, UserPoints

logger = logging.getLogger(__name__)


def points_to_credit(points: int) -> Decimal:
    """Dollar credit a points balance is worth (POINTS_PER_DOLLAR_CREDIT points per $1)."""
    rate = settings.POINTS_PER_DOLLAR_CREDIT
    if points <= 0 or rate <= 0:
        return Decimal("0.00")
    return (Decimal(points) / Decimal(rate)).quantize(Decimal("0.01"), rounding=ROUND_DOWN)


def points_balance(user) -> int:
    return (
        UserPoints.objects.filter(user=user).values_list("balance", flat=True).first() or 0
    )


def add_points(user, amount: int, type_: str, *, description: str = "", booking=None) -> UserPoints:
    """Append a ledger entry and move the user's balance by amount."""
    earns = amount > 0 and type_ != PointsTransaction.Type.REFUND
    with transaction.atomic():
        points, _ = UserPoints.objects.select_for_update().get_or_create(user=user)
        PointsTransaction.objects.create(
            user=user,
            type=type_,
            amount=amount,
            description=description,
            booking=booking,
        )
        UserPoints.objects.filter(pk=points.pk).update(
            balance=F("balance") + amount,
            lifetime_earned=F("lifetime_earned") + (amount if earns else 0),
        )
        points.refresh_from_db()
    logger.info("points: %s %+d for user %s", type_, amount, user.pk)
    return points


def award_first_rental_points(booking) -> int:
    """
    Credit the renter once for their first completed rental.

    Returns the points awarded (0 when the renter already received the bonus).
    """
    amount = settings.FIRST_RENTAL_POINTS
    if amount <= 0:
        return 0
    renter = booking.renter
    if PointsTransaction.objects.filter(
        user=renter, type=PointsTransaction.Type.FIRST_RENTAL
    ).exists():
        return 0
    add_points(
        renter,
        amount,
        PointsTransaction.Type.FIRST_RENTAL,
        description=f"First rental bonus for booking #{booking.pk}",
        booking=booking,
    )
    return amount


def redeem_points(user, amount: int, *, booking=None) -> UserPoints:
    """Spend ``amount`` points; raises ValueError when the balance cannot cover it."""
    if amount <= 0:
        raise ValueError("Redemption amount must be positive.")
    with transaction.atomic():
        points = UserPoints.objects.select_for_update().filter(user=user).first()
        if points is None or points.balance < amount:
            raise ValueError("Insufficient points balance.")
        description = f"Redeemed for ${points_to_credit(amount)} credit"
        if booking is not None:
            description += f" on booking #{booking.pk}"
        return add_points(
            user,
            -amount,
            PointsTransaction.Type.REDEMPTION,
            description=description,
            booking=booking,
        )


def return_redeemed_points(booking) -> int:
    """Give back the points spent on a booking that never went ahead; returns points restored."""
    if not booking.points_redeemed:
        return 0
    if PointsTransaction.objects.filter(
        booking=booking, type=PointsTransaction.Type.REFUND
    ).exists():
        return 0
    add_points(
        booking.renter,
        booking.points_redeemed,
        PointsTransaction.Type.REFUND,
        description=f"Points returned for cancelled booking #{booking.pk}",
        booking=booking,
    )
    return booking.points_redeemed
