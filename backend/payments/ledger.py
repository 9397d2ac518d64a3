from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.utils import timezone

from .models import Payment

TWO_PLACES = Decimal("0.01")

# Booking.payment_state -> Payment.status
PAYMENT_STATE_TO_STATUS = {
    "requires_payment": Payment.Status.PENDING,
    "authorized": Payment.Status.AUTHORIZED,
    "captured": Payment.Status.CAPTURED,
    "voided": Payment.Status.VOIDED,
    "released": Payment.Status.RELEASED,
}


def record_booking_payment(booking, *, payment_intent_id: str) -> Payment:
    """
    Create or refresh the Payment row for a booking's charge.

    This is a thin mirror of the booking's pricing; Stripe remains the source of truth.
    """
    payment, _ = Payment.objects.update_or_create(
        booking=booking,
        defaults={
            "subtotal": booking.subtotal,
            "service_fee": booking.service_fee,
            "commission": booking.commission,
            "owner_payout": booking.owner_payout,
            "deposit_amount": booking.deposit_amount,
            "delivery_fee": booking.delivery_fee,
            "insurance_fee": booking.insurance_fee,
            "points_credit": booking.points_credit,
            "total_amount": booking.total_amount,
            "currency": booking.currency,
            "stripe_payment_intent_id": payment_intent_id,
            "status": PAYMENT_STATE_TO_STATUS.get(booking.payment_state, Payment.Status.PENDING),
        },
    )
    return payment


def sync_payment_status(booking, *, status: Optional[str] = None) -> int:
    """Mirror the booking's payment state onto its Payment row; returns rows updated."""
    new_status = status or PAYMENT_STATE_TO_STATUS.get(booking.payment_state)
    if not new_status:
        return 0
    return Payment.objects.filter(booking=booking).update(
        status=new_status,
        updated_at=timezone.now(),
    )


def record_deposit_refund(booking, *, refund_id: str) -> int:
    return Payment.objects.filter(booking=booking).update(
        deposit_refund_id=refund_id,
        updated_at=timezone.now(),
    )


def record_payout(booking, *, transfer_id: str, when: Optional[datetime] = None) -> int:
    """Stamp the owner payout on the booking's Payment row."""
    return Payment.objects.filter(booking=booking).update(
        payout_id=transfer_id,
        payout_date=when or timezone.now(),
        status=Payment.Status.RELEASED,
        updated_at=timezone.now(),
    )


def format_money(value: Decimal) -> str:
    return f"{Decimal(value).quantize(TWO_PLACES)}"
