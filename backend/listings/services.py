from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

from .models import Listing

WEEKLY_RATE_MIN_DAYS = 7
MONTHLY_RATE_MIN_DAYS = 30
DELIVERY = "delivery"


def q2(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def rental_days(start_date: date, end_date: date) -> int:
    """Number of rental days; both the start and end dates count."""
    return (end_date - start_date).days + 1


def rental_subtotal(listing: Listing, days: int) -> Decimal:
    """
    Price ``days`` of rental using the listing's tiered rates.

    From 30 days with a monthly price, whole 30-day months are charged at
    ``price_per_month``; from 7 days with a weekly price, whole weeks at
    ``price_per_week``. Leftover days always use ``price_per_day``.
    """
    if days >= MONTHLY_RATE_MIN_DAYS and listing.price_per_month:
        months, rest = divmod(days, MONTHLY_RATE_MIN_DAYS)
        return months * listing.price_per_month + rest * listing.price_per_day
    if days >= WEEKLY_RATE_MIN_DAYS and listing.price_per_week:
        weeks, rest = divmod(days, WEEKLY_RATE_MIN_DAYS)
        return weeks * listing.price_per_week + rest * listing.price_per_day
    return days * listing.price_per_day


def compute_booking_totals(
    *,
    listing: Listing,
    start_date: date,
    end_date: date,
    delivery_method: str | None = None,
    include_insurance: bool = False,
) -> dict[str, Decimal | int]:
    """
    Compute pricing totals for a booking:
    - Subtotal: tiered rental price (see rental_subtotal)
    - Service fee: settings.BOOKING_SERVICE_FEE_RATE * subtotal (paid by renter)
    - Commission: settings.PLATFORM_COMMISSION_RATE * subtotal (kept from owner)
    - Total amount: subtotal + service fee
    - Owner payout: subtotal - commission

    Delivery and insurance fees and the deposit are reported separately and are
    charged on top of ``total_amount``.
    """
    if end_date < start_date:
        raise ValueError("end_date must not be before start_date")

    days = rental_days(start_date, end_date)
    subtotal = q2(Decimal(rental_subtotal(listing, days)))
    service_fee = q2(subtotal * settings.BOOKING_SERVICE_FEE_RATE)
    commission = q2(subtotal * settings.PLATFORM_COMMISSION_RATE)
    deposit = q2(listing.deposit or Decimal("0.00"))
    delivery_fee = (
        q2(settings.BOOKING_DELIVERY_FEE) if delivery_method == DELIVERY else Decimal("0.00")
    )
    insurance_fee = (
        q2(settings.BOOKING_INSURANCE_FEE_PER_DAY * days) if include_insurance else Decimal("0.00")
    )

    return {
        "total_days": days,
        "price_per_day": q2(subtotal / days),
        "subtotal": subtotal,
        "service_fee": service_fee,
        "total_amount": q2(subtotal + service_fee),
        "commission": commission,
        "owner_payout": q2(subtotal - commission),
        "deposit_amount": deposit,
        "delivery_fee": delivery_fee,
        "insurance_fee": insurance_fee,
    }


def commission_split(subtotal: Decimal) -> dict[str, Decimal]:
    """Recompute the commission/payout split for an already-priced booking."""
    commission = q2(subtotal * settings.PLATFORM_COMMISSION_RATE)
    return {"commission": commission, "owner_payout": q2(subtotal - commission)}
