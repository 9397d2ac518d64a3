"""API viewsets and permissions for bookings."""

from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from core.policy import MANAGE_BOOKINGS, HasCapability
from identity.models import is_user_identity_verified
from listings.models import Listing
from payments.stripe_api import (
    StripeConfigurationError,
    StripePaymentError,
    StripeTransientError,
)

from . import services
from .domain import normalize_status, party_for
from .models import Booking
from .serializers import (
    BookingCreateSerializer,
    BookingSerializer,
    CancellationSerializer,
    CompleteBookingSerializer,
    DepositResolutionSerializer,
    IssueReportCreateSerializer,
    IssueReportSerializer,
    PhotoVerificationSerializer,
)

logger = logging.getLogger(__name__)

IDENTITY_REQUIRED_CODE = "IDENTITY_VERIFICATION_REQUIRED"


def _payment_error_response(exc: Exception) -> Response:
    if isinstance(exc, StripeTransientError):
        return Response(
            {"detail": "Temporary payment issue, please retry."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if isinstance(exc, StripeConfigurationError):
        logger.exception("bookings: Stripe is misconfigured")
        return Response(
            {"detail": "Payments are temporarily unavailable."},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    message = str(exc) or "Payment could not be completed."
    return Response({"detail": message}, status=status.HTTP_400_BAD_REQUEST)


class IsBookingParticipant(permissions.BasePermission):
    """Allow access only to users tied to the booking."""

    def has_permission(self, request, view) -> bool:
        return True

    def has_object_permission(self, request, view, obj: Booking) -> bool:
        user_id = getattr(request.user, "id", None)
        return user_id in (obj.owner_id, obj.renter_id)


class BookingViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Booking requests and their lifecycle transitions."""

    serializer_class = BookingSerializer
    permission_classes = (permissions.IsAuthenticated, IsBookingParticipant)

    def get_queryset(self):
        """Restrict bookings to the authenticated participant."""
        user = self.request.user
        qs = Booking.objects.select_related("listing", "owner", "renter").filter(
            Q(owner=user) | Q(renter=user)
        )
        role = self.request.query_params.get("role")
        if role == "renter":
            qs = qs.filter(renter=user)
        elif role == "owner":
            qs = qs.filter(owner=user)
        status_param = self.request.query_params.get("status")
        if status_param:
            qs = qs.filter(status=normalize_status(status_param))
        return qs.order_by("-created_at")

    def get_object(self):
        obj = get_object_or_404(
            Booking.objects.select_related("listing", "owner", "renter"),
            pk=self.kwargs["pk"],
        )
        self.check_object_permissions(self.request, obj)
        return obj

    def _owner_only(self, booking: Booking, verb: str) -> Response | None:
        if booking.owner_id != self.request.user.id:
            return Response(
                {"detail": f"Only the listing owner can {verb} this booking."},
                status=status.HTTP_403_FORBIDDEN,
            )
        return None

    def create(self, request, *args, **kwargs):
        """Create a booking request and authorize the renter's card."""
        serializer = BookingCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        listing = get_object_or_404(
            Listing.objects.select_related("owner"),
            pk=data["listing_id"],
        )
        if listing.owner_id != request.user.id and not is_user_identity_verified(request.user):
            return Response(
                {
                    "detail": "Verify your identity before booking.",
                    "code": IDENTITY_REQUIRED_CODE,
                },
                status=status.HTTP_403_FORBIDDEN,
            )

        try:
            booking, intent = services.create_booking(
                renter=request.user,
                listing=listing,
                start_date=data["start_date"],
                end_date=data["end_date"],
                delivery_method=data["delivery_method"],
                delivery_address=data.get("delivery_address", ""),
                renter_message=data.get("renter_message", ""),
                include_insurance=data["include_insurance"],
                points_to_redeem=data["points_to_redeem"],
            )
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        except services.BookingPaymentError as exc:
            return Response(
                {"detail": str(exc)},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(
            {
                "booking": BookingSerializer(booking).data,
                "client_secret": getattr(intent, "client_secret", None),
                "payment_intent_id": intent.id,
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, *args, **kwargs):
        """Approve a pending request (owner-only); captures the held payment."""
        booking: Booking = self.get_object()
        denied = self._owner_only(booking, "approve")
        if denied:
            return denied
        try:
            booking = services.approve_booking(booking)
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        except (StripeConfigurationError, StripePaymentError, StripeTransientError) as exc:
            return _payment_error_response(exc)
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, *args, **kwargs):
        """Decline a pending request (owner-only); voids the held payment."""
        booking: Booking = self.get_object()
        denied = self._owner_only(booking, "reject")
        if denied:
            return denied
        serializer = CancellationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            booking = services.reject_booking(booking, reason=serializer.validated_data["reason"])
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        except (StripeConfigurationError, StripePaymentError, StripeTransientError) as exc:
            return _payment_error_response(exc)
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, *args, **kwargs):
        """Cancel a pending request (owner or renter)."""
        booking: Booking = self.get_object()
        serializer = CancellationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            booking = services.cancel_booking(
                booking,
                party_for(booking, request.user),
                reason=serializer.validated_data["reason"],
            )
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        except (StripeConfigurationError, StripePaymentError, StripeTransientError) as exc:
            return _payment_error_response(exc)
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=["post"], url_path="verify-pickup")
    def verify_pickup(self, request, *args, **kwargs):
        """Record the caller's pickup photos; both confirmations start the rental."""
        booking: Booking = self.get_object()
        serializer = PhotoVerificationSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        try:
            booking, both = services.verify_pickup(
                booking,
                party_for(booking, request.user),
                serializer.validated_data["images"],
                notes=serializer.validated_data["notes"],
            )
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            {"booking": self.get_serializer(booking).data, "rental_started": both},
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"], url_path="verify-return")
    def verify_return(self, request, *args, **kwargs):
        """Record the caller's return photos; both confirmations complete the rental."""
        booking: Booking = self.get_object()
        serializer = PhotoVerificationSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        try:
            booking, both = services.verify_return(
                booking,
                party_for(booking, request.user),
                request.user,
                serializer.validated_data["images"],
                damage_report=serializer.validated_data["damage_report"],
            )
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            {"booking": self.get_serializer(booking).data, "completed": both},
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"], url_path="confirm-return")
    def confirm_return(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        try:
            booking, points = services.confirm_return(
                booking, party_for(booking, request.user), request.user
            )
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            {"booking": self.get_serializer(booking).data, "points_awarded": points},
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["post"], url_path="complete")
    def complete(self, request, *args, **kwargs):
        """Mark a rental as completed (owner-only), optionally releasing the payout."""
        booking: Booking = self.get_object()
        denied = self._owner_only(booking, "complete")
        if denied:
            return denied
        serializer = CompleteBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = services.complete_booking(
                booking, auto_release=serializer.validated_data["autoRelease"]
            )
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            {
                "booking": self.get_serializer(result["booking"]).data,
                "points_awarded": result["points_awarded"],
                "release": result["release"],
            },
            status=status.HTTP_200_OK,
        )

    @action(detail=True, methods=["get"], url_path="issues")
    def issues(self, request, *args, **kwargs):
        booking: Booking = self.get_object()
        return Response(IssueReportSerializer(booking.issue_reports.all(), many=True).data)

    @action(detail=True, methods=["post"], url_path="report-issue")
    def report_issue(self, request, *args, **kwargs):
        """File an issue (damage, missing item, ...) for admin review."""
        booking: Booking = self.get_object()
        serializer = IssueReportCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data
        try:
            report = services.report_issue(
                booking,
                party_for(booking, request.user),
                request.user,
                issue_type=data["issue_type"],
                title=data["title"],
                description=data["description"],
                images=data["images"],
            )
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        return Response(IssueReportSerializer(report).data, status=status.HTTP_201_CREATED)


class DepositResolutionView(APIView):
    """Admin settlement of a completed booking's deposit."""

    permission_classes = [HasCapability.with_capabilities([MANAGE_BOOKINGS])]

    def post(self, request, booking_id: int):
        booking = get_object_or_404(Booking.objects.select_related("listing"), pk=booking_id)
        serializer = DepositResolutionSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        logger.info(
            "bookings: admin %s resolving deposit for booking %s",
            request.user.id,
            booking_id,
        )
        try:
            booking = services.resolve_deposit(
                booking,
                serializer.validated_data["decision"],
                note=serializer.validated_data["note"],
            )
        except ValidationError as exc:
            return Response(exc.message_dict, status=status.HTTP_400_BAD_REQUEST)
        except (StripeConfigurationError, StripePaymentError, StripeTransientError) as exc:
            return _payment_error_response(exc)
        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)
