"""Stripe payment helpers for booking transactions."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from bookings.models import Booking
from identity.models import apply_verification_session_event
from notifications.outbox import notify
from payments.ledger import record_deposit_refund, sync_payment_status

logger = logging.getLogger(__name__)
IDEMPOTENCY_VERSION = "v1"
AUTOMATIC_PAYMENT_METHODS_CONFIG = {"enabled": True, "allow_redirects": "never"}
CANCELLABLE_INTENT_STATUSES = {
    "requires_payment_method",
    "requires_capture",
    "requires_confirmation",
    "requires_action",
    "processing",
}
VOID_REASONS = {"duplicate", "fraudulent", "requested_by_customer", "abandoned"}
OWNER_SETUP_INCOMPLETE = "Owner payment setup incomplete. Please contact the owner."
User = get_user_model()


class StripeConfigurationError(Exception):
    """Stripe is not configured correctly in the environment."""


class StripeTransientError(Exception):
    """Temporary Stripe/API issue that should be retried."""


class StripePaymentError(Exception):
    """Permanent payment failure for a booking charge."""


class StripeInsufficientBalanceError(StripePaymentError):
    """Raised when the platform balance cannot cover an owner transfer."""


def _get_stripe_api_key() -> str:
    """Return the configured Stripe API key or raise if missing."""
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise StripeConfigurationError("Stripe secret key not configured.")
    return api_key


def _to_cents(amount: Decimal) -> int:
    """Convert Decimal dollars to integer cents, rounding to the nearest cent."""
    cents = (Decimal(amount) * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def _handle_stripe_error(exc: stripe.error.StripeError) -> None:
    """Map Stripe SDK errors onto internal exception types."""
    if isinstance(exc, stripe.error.CardError):
        message = exc.user_message or "Your card was declined."
        raise StripePaymentError(message) from exc
    if isinstance(
        exc,
        (
            stripe.error.RateLimitError,
            stripe.error.APIConnectionError,
            stripe.error.APIError,
        ),
    ):
        raise StripeTransientError("Temporary Stripe error, please retry.") from exc
    if isinstance(exc, (stripe.error.AuthenticationError, stripe.error.PermissionError)):
        raise StripeConfigurationError("Stripe credentials are invalid or unauthorized.") from exc
    if isinstance(exc, stripe.error.InvalidRequestError):
        raise StripePaymentError(exc.user_message or "Invalid payment request.") from exc
    raise StripePaymentError(exc.user_message or "Stripe payment failure.") from exc


def _object_value(data: Any, field: str, default: Any = None) -> Any:
    """Safely fetch a field from a Stripe object or dict payload."""
    if data is None:
        return default
    if isinstance(data, dict):
        return data.get(field, default)
    return getattr(data, field, default)


def _destination_charges_enabled() -> bool:
    return bool(getattr(settings, "STRIPE_BOOKINGS_DESTINATION_CHARGES", False))


def _sanitize_business_url(raw_url: str) -> str:
    """Ensure business profile URL is acceptable to Stripe; fall back to a safe default."""
    cleaned = (raw_url or "").strip()
    if not cleaned:
        return "https://example.com"
    if not cleaned.startswith(("http://", "https://")):
        cleaned = f"https://{cleaned}"
    return cleaned


def _get_frontend_origin() -> str:
    return (getattr(settings, "FRONTEND_ORIGIN", "") or "http://localhost:3000").rstrip("/")


def _set_payment_state(booking: Booking, payment_state: str) -> None:
    booking.payment_state = payment_state
    booking.save(update_fields=["payment_state", "updated_at"])
    sync_payment_status(booking)


# ---------------------------------------------------------------------------
# Customers and Connect accounts
# ---------------------------------------------------------------------------


def ensure_stripe_customer(user: User, *, customer_id: str | None = None) -> str:
    """
    Return an existing Stripe Customer ID for the user, creating one if necessary.
    """
    stripe.api_key = _get_stripe_api_key()
    stored_id = (getattr(user, "stripe_customer_id", "") or "").strip()
    candidate_id = (customer_id or stored_id or "").strip()

    if candidate_id:
        try:
            stripe.Customer.retrieve(candidate_id)
        except stripe.error.InvalidRequestError:
            logger.info("Stripe customer %s missing; recreating.", candidate_id)
            candidate_id = ""
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

    if not candidate_id:
        try:
            customer = stripe.Customer.create(
                email=user.email or None,
                name=(user.get_full_name() or user.username or f"user-{user.id}"),
                metadata={"user_id": str(user.id)},
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)
        candidate_id = customer.id

    if candidate_id and candidate_id != stored_id:
        user.stripe_customer_id = candidate_id
        user.save(update_fields=["stripe_customer_id"])

    return candidate_id


def sync_connect_flags(user: User, account_data: Any) -> list[str]:
    """Copy Connect capability flags from a Stripe account payload onto the user."""
    charges_enabled = bool(_object_value(account_data, "charges_enabled", False))
    payouts_enabled = bool(_object_value(account_data, "payouts_enabled", False))
    details_submitted = bool(_object_value(account_data, "details_submitted", False))
    onboarding_complete = details_submitted and charges_enabled and payouts_enabled

    updated_fields: list[str] = []
    for field, value in (
        ("charges_enabled", charges_enabled),
        ("payouts_enabled", payouts_enabled),
        ("stripe_onboarding_complete", onboarding_complete),
    ):
        if getattr(user, field) != value:
            setattr(user, field, value)
            updated_fields.append(field)
    account_id = _object_value(account_data, "id", "") or ""
    if account_id and user.stripe_account_id != account_id:
        user.stripe_account_id = account_id
        updated_fields.append("stripe_account_id")
    if updated_fields:
        user.save(update_fields=updated_fields)
        logger.info(
            "payments: synced connect account for user %s",
            user.id,
            extra={"fields": updated_fields},
        )
    return updated_fields


def ensure_connect_account(user: User) -> Any:
    """Ensure the owner has a Stripe Connect Express account and sync its flags locally."""
    stripe.api_key = _get_stripe_api_key()

    account_data: Any | None = None
    existing_account_id = (user.stripe_account_id or "").strip()
    if existing_account_id:
        try:
            account_data = stripe.Account.retrieve(existing_account_id)
        except stripe.error.InvalidRequestError as exc:
            if getattr(exc, "code", "") == "resource_missing":
                logger.info(
                    "Stripe Connect account %s missing for user %s; recreating.",
                    existing_account_id,
                    user.id,
                )
            else:
                _handle_stripe_error(exc)
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

    if account_data is None:
        business_url = getattr(settings, "CONNECT_BUSINESS_URL", "") or _get_frontend_origin()
        account_params: dict[str, Any] = {
            "type": "express",
            "country": getattr(settings, "CONNECT_COUNTRY", "AU") or "AU",
            "capabilities": {
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            "business_type": "individual",
            "business_profile": {
                "name": user.display_name(),
                "product_description": "Peer-to-peer item rentals",
                "url": _sanitize_business_url(business_url),
                "mcc": getattr(settings, "CONNECT_BUSINESS_MCC", "") or "7399",
            },
            "metadata": {"user_id": str(user.id)},
        }
        if user.email:
            account_params["email"] = user.email
        try:
            account_data = stripe.Account.create(**account_params)
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)

    sync_connect_flags(user, account_data)
    return account_data


def create_connect_onboarding_link(user: User) -> str:
    """Create a Stripe Connect onboarding link for the owner."""
    account_data = ensure_connect_account(user)
    stripe.api_key = _get_stripe_api_key()

    base_origin = _get_frontend_origin()
    try:
        link = stripe.AccountLink.create(
            account=_object_value(account_data, "id", "") or user.stripe_account_id,
            type="account_onboarding",
            refresh_url=f"{base_origin}/dashboard/payments?onboarding=refresh",
            return_url=f"{base_origin}/dashboard/payments?onboarding=return",
            collect="eventually_due",
        )
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)

    link_url = _object_value(link, "url")
    if not link_url:
        raise StripeConfigurationError("Stripe did not return an onboarding link.")
    return link_url


def refresh_connect_status(user: User) -> dict[str, Any]:
    """Re-read the owner's Connect account from Stripe and return the synced flags."""
    if user.stripe_account_id:
        stripe.api_key = _get_stripe_api_key()
        try:
            account_data = stripe.Account.retrieve(user.stripe_account_id)
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)
        sync_connect_flags(user, account_data)
    return {
        "stripe_account_id": user.stripe_account_id,
        "onboarding_complete": user.stripe_onboarding_complete,
        "charges_enabled": user.charges_enabled,
        "payouts_enabled": user.payouts_enabled,
    }


def _handle_connect_account_updated_event(account_payload: Any) -> None:
    """Sync the owner's profile flags from Stripe account.updated data."""
    stripe_account_id = _object_value(account_payload, "id", "")
    if not stripe_account_id:
        return
    user = User.objects.filter(stripe_account_id=stripe_account_id).first()
    if user is None:
        metadata = _object_value(account_payload, "metadata", {}) or {}
        user_id = metadata.get("user_id") if hasattr(metadata, "get") else None
        if not user_id:
            return
        try:
            user = User.objects.get(pk=int(user_id))
        except (User.DoesNotExist, ValueError, TypeError):
            return
    sync_connect_flags(user, account_payload)


# ---------------------------------------------------------------------------
# Authorize / capture / void
# ---------------------------------------------------------------------------


def authorize_payment(booking: Booking, *, customer_id: str | None = None) -> Any:
    """
    Create the manual-capture PaymentIntent covering rental total plus deposit.

    Funds are only held; capture happens on owner approval. In destination-charge
    mode the platform fee and owner destination ride on the intent itself.
    """
    owner = booking.owner
    if not owner.can_receive_payouts:
        raise StripePaymentError(OWNER_SETUP_INCOMPLETE)

    charge_amount = booking.charge_amount
    if charge_amount <= Decimal("0"):
        raise StripePaymentError("Booking total must be greater than zero.")
    amount_cents = _to_cents(charge_amount)

    stripe.api_key = _get_stripe_api_key()
    env_label = getattr(settings, "STRIPE_ENV", "dev") or "dev"
    intent_params: dict[str, Any] = {
        "amount": amount_cents,
        "currency": booking.currency,
        "capture_method": "manual",
        "automatic_payment_methods": {**AUTOMATIC_PAYMENT_METHODS_CONFIG},
        "customer": customer_id or None,
        "description": f"Booking #{booking.id}: {booking.listing.title}",
        "metadata": {
            "kind": "booking_charge",
            "booking_id": str(booking.id),
            "listing_id": str(booking.listing_id),
            "renter_id": str(booking.renter_id),
            "owner_id": str(booking.owner_id),
            "env": env_label,
        },
        "transfer_group": f"booking:{booking.id}",
        "idempotency_key": f"booking:{booking.id}:{IDEMPOTENCY_VERSION}:authorize:{amount_cents}",
    }
    if _destination_charges_enabled():
        platform_share = booking.rental_charge - booking.owner_payout
        intent_params["application_fee_amount"] = _to_cents(max(platform_share, Decimal("0")))
        intent_params["transfer_data"] = {"destination": owner.stripe_account_id}
        intent_params["on_behalf_of"] = owner.stripe_account_id

    try:
        intent = stripe.PaymentIntent.create(**intent_params)
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)

    booking.stripe_payment_intent_id = intent.id
    booking.save(update_fields=["stripe_payment_intent_id", "updated_at"])
    logger.info(
        "payments: authorized intent %s for booking %s (%s cents)",
        intent.id,
        booking.id,
        amount_cents,
    )
    return intent


def _retrieve_booking_intent(booking: Booking) -> Any:
    intent_id = (booking.stripe_payment_intent_id or "").strip()
    if not intent_id:
        raise StripePaymentError("This booking has no payment to process.")
    stripe.api_key = _get_stripe_api_key()
    try:
        return stripe.PaymentIntent.retrieve(intent_id)
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)


def capture_authorized_payment(booking: Booking) -> str:
    """
    Capture the held PaymentIntent for a booking.

    Refuses unless the owner can receive payouts; only captures an intent in
    requires_capture. Returns the resulting payment_state.
    """
    if not booking.owner.can_receive_payouts:
        raise StripePaymentError(OWNER_SETUP_INCOMPLETE)
    if booking.payment_state in {
        Booking.PaymentState.CAPTURED,
        Booking.PaymentState.RELEASED,
    }:
        return booking.payment_state

    intent = _retrieve_booking_intent(booking)
    intent_status = _object_value(intent, "status", "")
    if intent_status == "requires_capture":
        try:
            stripe.PaymentIntent.capture(
                intent.id,
                idempotency_key=f"booking:{booking.id}:{IDEMPOTENCY_VERSION}:capture",
            )
        except stripe.error.StripeError as exc:
            _handle_stripe_error(exc)
    elif intent_status != "succeeded":
        raise StripePaymentError(
            f"Payment cannot be captured while it is {intent_status or 'unknown'}."
        )

    _set_payment_state(booking, Booking.PaymentState.CAPTURED)
    logger.info("payments: captured intent %s for booking %s", intent.id, booking.id)
    return booking.payment_state


def void_authorized_payment(booking: Booking, *, reason: str = "requested_by_customer") -> str:
    """Cancel an uncaptured PaymentIntent and mark the booking's payment voided."""
    if booking.payment_state == Booking.PaymentState.VOIDED:
        return booking.payment_state
    if booking.payment_state in {
        Booking.PaymentState.CAPTURED,
        Booking.PaymentState.RELEASED,
    }:
        raise StripePaymentError("Captured payments cannot be voided.")

    if booking.stripe_payment_intent_id:
        cancellation_reason = reason if reason in VOID_REASONS else "requested_by_customer"
        intent = _retrieve_booking_intent(booking)
        intent_status = _object_value(intent, "status", "")
        if intent_status in CANCELLABLE_INTENT_STATUSES:
            try:
                stripe.PaymentIntent.cancel(intent.id, cancellation_reason=cancellation_reason)
            except stripe.error.StripeError as exc:
                _handle_stripe_error(exc)
        elif intent_status == "succeeded":
            raise StripePaymentError("Captured payments cannot be voided.")

    _set_payment_state(booking, Booking.PaymentState.VOIDED)
    logger.info("payments: voided payment for booking %s", booking.id)
    return booking.payment_state


def refund_deposit(booking: Booking) -> str | None:
    """Refund the deposit portion of a captured charge; returns the Refund id."""
    if booking.deposit_amount <= Decimal("0"):
        return None
    if booking.payment_state not in {
        Booking.PaymentState.CAPTURED,
        Booking.PaymentState.RELEASED,
    }:
        raise StripePaymentError("The deposit can only be refunded after payment is captured.")

    stripe.api_key = _get_stripe_api_key()
    refund_params: dict[str, Any] = {
        "payment_intent": booking.stripe_payment_intent_id,
        "amount": _to_cents(booking.deposit_amount),
        "metadata": {"kind": "deposit_refund", "booking_id": str(booking.id)},
        "idempotency_key": f"booking:{booking.id}:{IDEMPOTENCY_VERSION}:deposit_refund",
    }
    if _destination_charges_enabled():
        refund_params["reverse_transfer"] = True
    try:
        refund = stripe.Refund.create(**refund_params)
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)

    booking.deposit_status = Booking.DepositStatus.REFUNDED
    booking.save(update_fields=["deposit_status", "updated_at"])
    record_deposit_refund(booking, refund_id=refund.id)
    logger.info("payments: refunded deposit for booking %s (%s)", booking.id, refund.id)
    return refund.id


# ---------------------------------------------------------------------------
# Owner payouts
# ---------------------------------------------------------------------------


def create_owner_transfer(booking: Booking) -> str:
    """
    Transfer the owner's payout for a booking to their Connect account.

    The idempotency key is fixed per booking so a retried release cannot pay twice.
    """
    owner = booking.owner
    if not owner.stripe_account_id:
        raise StripePaymentError(OWNER_SETUP_INCOMPLETE)
    if booking.owner_payout <= Decimal("0"):
        raise StripePaymentError("Owner payout must be greater than zero.")

    stripe.api_key = _get_stripe_api_key()
    try:
        transfer = stripe.Transfer.create(
            amount=_to_cents(booking.owner_payout),
            currency=booking.currency,
            destination=owner.stripe_account_id,
            description=f"Owner payout for booking #{booking.id}",
            metadata={
                "kind": "owner_payout",
                "booking_id": str(booking.id),
                "listing_id": str(booking.listing_id),
                "payment_intent_id": booking.stripe_payment_intent_id,
                "commission": str(booking.commission),
            },
            transfer_group=f"booking:{booking.id}",
            idempotency_key=f"booking:{booking.id}:owner_release",
        )
    except stripe.error.InvalidRequestError as exc:
        if getattr(exc, "code", "") == "balance_insufficient":
            raise StripeInsufficientBalanceError(
                "Platform balance is insufficient for this transfer."
            ) from exc
        _handle_stripe_error(exc)
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)
    return transfer.id


def transfer_retained_deposit(booking: Booking) -> str:
    """
    Pay a retained deposit to the owner; returns the Transfer id.

    Destination charges already settled the deposit on the owner's account, so
    nothing moves and an empty id is returned.
    """
    if booking.deposit_amount <= Decimal("0"):
        return ""
    if _destination_charges_enabled():
        return ""
    owner = booking.owner
    if not owner.stripe_account_id:
        raise StripePaymentError(OWNER_SETUP_INCOMPLETE)

    stripe.api_key = _get_stripe_api_key()
    try:
        transfer = stripe.Transfer.create(
            amount=_to_cents(booking.deposit_amount),
            currency=booking.currency,
            destination=owner.stripe_account_id,
            description=f"Retained deposit for booking #{booking.id}",
            metadata={"kind": "deposit_retained", "booking_id": str(booking.id)},
            transfer_group=f"booking:{booking.id}",
            idempotency_key=f"booking:{booking.id}:deposit_retain",
        )
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)
    logger.info(
        "payments: transferred retained deposit for booking %s (%s)", booking.id, transfer.id
    )
    return transfer.id


def destination_charge_transfer_id(booking: Booking) -> str:
    """Return the transfer Stripe created for a destination charge."""
    stripe.api_key = _get_stripe_api_key()
    try:
        intent = stripe.PaymentIntent.retrieve(
            booking.stripe_payment_intent_id,
            expand=["latest_charge"],
        )
    except stripe.error.StripeError as exc:
        _handle_stripe_error(exc)
    charge = _object_value(intent, "latest_charge")
    transfer_id = _object_value(charge, "transfer", "") if not isinstance(charge, str) else ""
    if not transfer_id:
        raise StripePaymentError("The destination charge has no transfer yet.")
    return transfer_id


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


def _booking_for_intent(data_object: dict) -> Booking | None:
    metadata = data_object.get("metadata") or {}
    booking_id = metadata.get("booking_id")
    qs = Booking.objects.select_related("renter", "owner", "listing")
    if booking_id:
        try:
            return qs.get(pk=int(booking_id))
        except (Booking.DoesNotExist, ValueError, TypeError):
            pass
    intent_id = data_object.get("id")
    if intent_id:
        return qs.filter(stripe_payment_intent_id=intent_id).first()
    return None


def _apply_intent_event(event_type: str, data_object: dict) -> None:
    booking = _booking_for_intent(data_object)
    if booking is None:
        logger.info("stripe_webhook: no booking for %s", data_object.get("id"))
        return

    PS = Booking.PaymentState
    if event_type == "payment_intent.amount_capturable_updated":
        if booking.payment_state == PS.REQUIRES_PAYMENT:
            _set_payment_state(booking, PS.AUTHORIZED)
    elif event_type == "payment_intent.succeeded":
        if booking.payment_state in {PS.REQUIRES_PAYMENT, PS.AUTHORIZED}:
            _set_payment_state(booking, PS.CAPTURED)
    elif event_type == "payment_intent.canceled":
        if booking.payment_state in {PS.REQUIRES_PAYMENT, PS.AUTHORIZED}:
            _set_payment_state(booking, PS.VOIDED)
        if booking.status == Booking.Status.PENDING:
            # Local import: bookings.services imports this module.
            from bookings.services import cancel_for_voided_payment

            cancel_for_voided_payment(booking)
    elif event_type == "payment_intent.payment_failed":
        error = data_object.get("last_payment_error") or {}
        logger.warning(
            "stripe_webhook: payment failed for booking %s",
            booking.id,
            extra={"code": error.get("code"), "intent_id": data_object.get("id")},
        )
        notify(
            booking.renter_id,
            "payment_failed",
            "Payment failed",
            f"Your payment for {booking.listing.title} could not be processed. "
            "Please update your payment method.",
            booking=booking,
            email_template="payment_failed",
        )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def stripe_webhook(request):
    """Handle Stripe webhook callbacks for bookings, Connect accounts and Identity."""
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    endpoint_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=endpoint_secret,
        )
    except ValueError:
        return Response(status=status.HTTP_400_BAD_REQUEST)
    except stripe.error.SignatureVerificationError:
        return Response(status=status.HTTP_400_BAD_REQUEST)

    event_type = event.get("type") or ""
    data_object = event.get("data", {}).get("object", {}) or {}
    logger.info("stripe_webhook: received %s", event_type)

    if event_type == "account.updated":
        _handle_connect_account_updated_event(data_object)
    elif event_type.startswith("identity.verification_session."):
        apply_verification_session_event(event_type, data_object)
    elif event_type.startswith("payment_intent."):
        with transaction.atomic():
            _apply_intent_event(event_type, data_object)

    return Response(status=status.HTTP_200_OK)
