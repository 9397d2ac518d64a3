from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.http import JsonResponse


def _rate_to_bps(rate: Decimal) -> int:
    """Convert a decimal rate (e.g. 0.15) to basis points."""
    return int((rate * Decimal("10000")).to_integral_value(rounding=ROUND_HALF_UP))


def pricing_summary(_request):
    """Public endpoint that surfaces the platform's current fee configuration."""
    service_fee_bps = max(_rate_to_bps(settings.BOOKING_SERVICE_FEE_RATE), 0)
    commission_bps = max(_rate_to_bps(settings.PLATFORM_COMMISSION_RATE), 0)

    def as_percent(bps: int) -> float:
        return round(bps / 100, 2)

    return JsonResponse(
        {
            "currency": settings.BOOKING_CURRENCY.upper(),
            "service_fee_bps": service_fee_bps,
            "service_fee_rate": as_percent(service_fee_bps),
            "commission_bps": commission_bps,
            "commission_rate": as_percent(commission_bps),
            "first_rental_points": settings.FIRST_RENTAL_POINTS,
            "points_per_dollar_credit": settings.POINTS_PER_DOLLAR_CREDIT,
        }
    )
