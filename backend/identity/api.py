"""REST API endpoints for starting and checking Stripe Identity verification."""

from __future__ import annotations

import logging
from typing import Any

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from identity.models import IdentityVerification, is_user_identity_verified
from payments.stripe_api import StripeConfigurationError, _get_stripe_api_key

logger = logging.getLogger(__name__)


def _session_value(session: Any, field: str, default: Any = None) -> Any:
    if isinstance(session, dict):
        return session.get(field, default)
    return getattr(session, field, default)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def create_verification_session(request):
    """Start a Stripe Identity document check for the current user."""
    if is_user_identity_verified(request.user):
        return Response({"already_verified": True, "status": "verified"})

    try:
        stripe.api_key = _get_stripe_api_key()
    except StripeConfigurationError:
        return Response(
            {"detail": "Identity verification is temporarily unavailable."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    session_payload: dict[str, Any] = {
        "type": "document",
        "metadata": {"user_id": str(request.user.id)},
        "options": {
            "document": {
                "allowed_types": ["driving_license", "passport", "id_card"],
                "require_live_capture": True,
                "require_matching_selfie": True,
            }
        },
    }
    if origin:
        session_payload["return_url"] = f"{origin}/dashboard/verification?complete=1"

    try:
        session = stripe.identity.VerificationSession.create(**session_payload)
    except stripe.error.StripeError:
        logger.exception("identity: session creation failed for user %s", request.user.id)
        return Response(
            {"detail": "Unable to start identity verification right now."},
            status=status.HTTP_502_BAD_GATEWAY,
        )

    session_id = _session_value(session, "id")
    if not session_id:
        logger.error("identity: Stripe session missing id")
        return Response(
            {"detail": "Unable to start identity verification right now."},
            status=status.HTTP_502_BAD_GATEWAY,
        )

    IdentityVerification.objects.update_or_create(
        session_id=session_id,
        defaults={
            "user": request.user,
            "status": IdentityVerification.Status.PENDING,
            "verified_at": None,
            "last_error_code": "",
            "last_error_reason": "",
        },
    )
    return Response(
        {
            "session_id": session_id,
            "client_secret": _session_value(session, "client_secret"),
            "url": _session_value(session, "url"),
            "status": _session_value(session, "status"),
            "already_verified": False,
        },
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def verification_status(request):
    """Return the current user's verification flag and latest session."""
    latest = IdentityVerification.objects.filter(user=request.user).first()
    latest_payload: dict[str, Any] | None = None
    if latest:
        latest_payload = {
            "status": latest.status,
            "session_id": latest.session_id,
            "last_error_reason": latest.last_error_reason,
            "verified_at": latest.verified_at.isoformat() if latest.verified_at else None,
        }

    return Response(
        {
            "verified": is_user_identity_verified(request.user),
            "verified_at": (
                request.user.identity_verified_at.isoformat()
                if request.user.identity_verified_at
                else None
            ),
            "latest": latest_payload,
        }
    )
