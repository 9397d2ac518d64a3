"""Payment endpoints: admin payout releases and owner Connect onboarding."""

from __future__ import annotations

import logging

from rest_framework import serializers, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.policy import RELEASE_PAYMENTS, VIEW_ALL_PAYMENTS, HasCapability

from .release import ReleaseError, release_booking, release_bookings, release_overview
from .stripe_api import (
    StripeConfigurationError,
    StripePaymentError,
    StripeTransientError,
    create_connect_onboarding_link,
    refresh_connect_status,
)

logger = logging.getLogger(__name__)
ONBOARDING_ERROR_MESSAGE = "Stripe onboarding is temporarily unavailable. Please try again later."


class ReleaseRequestSerializer(serializers.Serializer):
    booking_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False,
    )
    action = serializers.ChoiceField(choices=["release"], default="release")


class PaymentReleaseView(APIView):
    """List releasable bookings (GET) and release owner payouts in bulk (POST)."""

    def get_permissions(self):
        if self.request.method == "GET":
            return [HasCapability.with_capabilities([VIEW_ALL_PAYMENTS])()]
        return [HasCapability.with_capabilities([RELEASE_PAYMENTS])()]

    def get(self, request):
        return Response(release_overview())

    def post(self, request):
        serializer = ReleaseRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        booking_ids = list(dict.fromkeys(serializer.validated_data["booking_ids"]))
        logger.info(
            "payments: admin %s releasing bookings %s",
            request.user.id,
            booking_ids,
        )
        payload = release_bookings(booking_ids)
        code = status.HTTP_207_MULTI_STATUS if payload["errors"] else status.HTTP_200_OK
        return Response(payload, status=code)


class SinglePaymentReleaseView(APIView):
    permission_classes = [HasCapability.with_capabilities([RELEASE_PAYMENTS])]

    def post(self, request, booking_id: int):
        try:
            result = release_booking(booking_id)
        except ReleaseError as exc:
            return Response(
                {"booking_id": booking_id, "error": str(exc)},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return Response(result, status=status.HTTP_200_OK)


def _connect_error_response(exc: Exception) -> Response:
    if isinstance(exc, StripeConfigurationError):
        logger.exception("payments: Stripe Connect is misconfigured")
    else:
        logger.warning("payments: Stripe Connect call failed: %s", exc)
    return Response(
        {"detail": ONBOARDING_ERROR_MESSAGE},
        status=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def connect_account(request):
    """Ensure the caller has a Connect Express account and return an onboarding link."""
    try:
        url = create_connect_onboarding_link(request.user)
    except (StripeConfigurationError, StripeTransientError) as exc:
        return _connect_error_response(exc)
    except StripePaymentError as exc:
        return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
    return Response(
        {
            "onboarding_url": url,
            "stripe_account_id": request.user.stripe_account_id,
        },
        status=status.HTTP_200_OK,
    )


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def connect_status(request):
    try:
        payload = refresh_connect_status(request.user)
    except (StripeConfigurationError, StripeTransientError) as exc:
        return _connect_error_response(exc)
    except StripePaymentError as exc:
        return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
    return Response(payload, status=status.HTTP_200_OK)
