"""Tests for the compute_booking_totals helper."""

from datetime import date
from decimal import Decimal

import pytest
from django.test import override_settings

from listings.models import Listing
from listings.services import compute_booking_totals, rental_days, rental_subtotal


def make_listing(**fields) -> Listing:
    data = {"owner_id": 1, "price_per_day": Decimal("30.00"), "deposit": Decimal("0.00")}
    data.update(fields)
    return Listing(**data)


def test_two_day_rental_default_rates():
    totals = compute_booking_totals(
        listing=make_listing(),
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 2),
    )

    assert totals["total_days"] == 2
    assert totals["subtotal"] == Decimal("60.00")
    assert totals["service_fee"] == Decimal("9.00")
    assert totals["total_amount"] == Decimal("69.00")
    assert totals["commission"] == Decimal("12.00")
    assert totals["owner_payout"] == Decimal("48.00")
    assert totals["deposit_amount"] == Decimal("0.00")


def test_same_day_rental_counts_one_day():
    assert rental_days(date(2025, 3, 1), date(2025, 3, 1)) == 1


def test_deposit_is_reported_but_not_charged_in_total():
    totals = compute_booking_totals(
        listing=make_listing(deposit=Decimal("100.00")),
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 2),
    )

    assert totals["deposit_amount"] == Decimal("100.00")
    assert totals["total_amount"] == Decimal("69.00")


def test_weekly_rate_applies_from_seven_days():
    listing = make_listing(price_per_week=Decimal("140.00"))

    assert rental_subtotal(listing, 6) == Decimal("180.00")
    totals = compute_booking_totals(
        listing=listing,
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 7),
    )

    assert totals["price_per_day"] == Decimal("20.00")
    assert totals["subtotal"] == Decimal("140.00")


def test_weekly_rate_covers_whole_weeks_and_daily_rate_the_rest():
    listing = make_listing(price_per_day=Decimal("20.00"), price_per_week=Decimal("100.00"))

    totals = compute_booking_totals(
        listing=listing,
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 10),
    )

    assert totals["total_days"] == 10
    assert totals["subtotal"] == Decimal("160.00")
    assert totals["price_per_day"] == Decimal("16.00")
    assert rental_subtotal(listing, 7) == Decimal("100.00")
    assert rental_subtotal(listing, 14) == Decimal("200.00")


def test_monthly_rate_beats_weekly_rate():
    listing = make_listing(price_per_week=Decimal("140.00"), price_per_month=Decimal("300.00"))

    assert rental_subtotal(listing, 30) == Decimal("300.00")
    totals = compute_booking_totals(
        listing=listing,
        start_date=date(2025, 3, 1),
        end_date=date(2025, 4, 4),
    )

    assert totals["total_days"] == 35
    assert totals["subtotal"] == Decimal("450.00")
    assert totals["price_per_day"] == Decimal("12.86")


def test_delivery_and_insurance_fees_are_reported_outside_total():
    totals = compute_booking_totals(
        listing=make_listing(),
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 3),
        delivery_method="delivery",
        include_insurance=True,
    )

    assert totals["delivery_fee"] == Decimal("20.00")
    assert totals["insurance_fee"] == Decimal("21.00")
    assert totals["total_amount"] == Decimal("103.50")
    assert totals["owner_payout"] == Decimal("72.00")


def test_pickup_without_insurance_has_no_extras():
    totals = compute_booking_totals(
        listing=make_listing(),
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 3),
        delivery_method="pickup",
    )

    assert totals["delivery_fee"] == Decimal("0.00")
    assert totals["insurance_fee"] == Decimal("0.00")


@override_settings(BOOKING_SERVICE_FEE_RATE=Decimal("0.10"), PLATFORM_COMMISSION_RATE=Decimal("0.05"))
def test_rates_follow_settings():
    totals = compute_booking_totals(
        listing=make_listing(price_per_day=Decimal("33.33")),
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 1),
    )

    assert totals["service_fee"] == Decimal("3.33")
    assert totals["commission"] == Decimal("1.67")
    assert totals["owner_payout"] == Decimal("31.66")


def test_end_before_start_is_rejected():
    with pytest.raises(ValueError):
        compute_booking_totals(
            listing=make_listing(),
            start_date=date(2025, 3, 2),
            end_date=date(2025, 3, 1),
        )
