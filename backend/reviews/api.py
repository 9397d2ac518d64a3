from __future__ import annotations

import logging
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import generics, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from bookings.models import Booking
from notifications.outbox import notify

from .models import Review, update_user_review_stats
from .serializers import (
    ReviewCreateSerializer,
    ReviewResponseSerializer,
    ReviewSerializer,
    ReviewUpdateSerializer,
)

logger = logging.getLogger(__name__)


def _hours_label(hours: int) -> str:
    return f"{hours} hour" if hours == 1 else f"{hours} hours"


def _window_open(review: Review, hours: int) -> bool:
    return timezone.now() - review.created_at <= timedelta(hours=hours)


class ReviewViewSet(viewsets.ModelViewSet):
    """Two-sided reviews left after a completed booking."""

    serializer_class = ReviewSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ["get", "post", "put", "patch", "delete", "head", "options"]

    def get_queryset(self):
        qs = Review.objects.select_related("reviewer", "reviewee", "booking__listing")

        booking_param = self.request.query_params.get("booking")
        if booking_param:
            try:
                qs = qs.filter(booking_id=int(booking_param))
            except (TypeError, ValueError):
                return Review.objects.none()

        user_param = self.request.query_params.get("user")
        if user_param:
            try:
                qs = qs.filter(reviewee_id=int(user_param))
            except (TypeError, ValueError):
                return Review.objects.none()

        type_param = self.request.query_params.get("type")
        if type_param in Review.Type.values:
            qs = qs.filter(review_type=type_param)

        return qs

    def create(self, request, *args, **kwargs):
        serializer = ReviewCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        booking = get_object_or_404(
            Booking.objects.select_related("owner", "renter", "listing"),
            pk=data["booking_id"],
        )
        user = request.user
        if user.id == booking.renter_id:
            reviewee, review_type = booking.owner, Review.Type.RENTER_TO_OWNER
        elif user.id == booking.owner_id:
            reviewee, review_type = booking.renter, Review.Type.OWNER_TO_RENTER
        else:
            return Response(
                {"detail": "You can only review your own bookings."},
                status=status.HTTP_403_FORBIDDEN,
            )
        if booking.status != Booking.Status.COMPLETED:
            return Response(
                {"detail": "Reviews are only allowed after the booking is completed."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        if Review.objects.filter(booking=booking, reviewer=user).exists():
            return Response(
                {"detail": "You have already reviewed this booking."},
                status=status.HTTP_409_CONFLICT,
            )

        try:
            with transaction.atomic():
                review = Review.objects.create(
                    booking=booking,
                    reviewer=user,
                    reviewee=reviewee,
                    review_type=review_type,
                    rating=data["rating"],
                    comment=data["comment"],
                )
        except IntegrityError:
            return Response(
                {"detail": "You have already reviewed this booking."},
                status=status.HTTP_409_CONFLICT,
            )
        update_user_review_stats(reviewee)
        notify(
            reviewee.id,
            "review_received",
            "You received a new review",
            f"{user.display_name()} left you a {review.rating}-star review "
            f"for {booking.listing.title}.",
            booking=booking,
            email_template="review_received",
            action_url=f"/reviews/{review.id}",
        )
        return Response(ReviewSerializer(review).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        review: Review = self.get_object()
        if review.reviewer_id != request.user.id:
            return Response(
                {"detail": "Only the author can edit this review."},
                status=status.HTTP_403_FORBIDDEN,
            )
        hours = settings.REVIEW_EDIT_WINDOW_HOURS
        if not _window_open(review, hours):
            return Response(
                {
                    "detail": "Reviews can only be edited within "
                    f"{_hours_label(hours)} of creation"
                },
                status=status.HTTP_400_BAD_REQUEST,
            )
        serializer = ReviewUpdateSerializer(review, data=request.data, partial=partial)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        serializer.save(is_edited=True, edited_at=timezone.now())
        update_user_review_stats(review.reviewee)
        return Response(ReviewSerializer(review).data)

    def destroy(self, request, *args, **kwargs):
        review: Review = self.get_object()
        if review.reviewer_id != request.user.id:
            return Response(
                {"detail": "Only the author can delete this review."},
                status=status.HTTP_403_FORBIDDEN,
            )
        hours = settings.REVIEW_DELETE_WINDOW_HOURS
        if not _window_open(review, hours):
            return Response(
                {
                    "detail": "Reviews can only be deleted within "
                    f"{_hours_label(hours)} of creation"
                },
                status=status.HTTP_400_BAD_REQUEST,
            )
        reviewee = review.reviewee
        review.delete()
        update_user_review_stats(reviewee)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="response")
    def respond(self, request, *args, **kwargs):
        """Let the reviewee publish a single public response."""
        review: Review = self.get_object()
        if review.reviewee_id != request.user.id:
            return Response(
                {"detail": "Only the reviewed user can respond to this review."},
                status=status.HTTP_403_FORBIDDEN,
            )
        if review.response:
            return Response(
                {"detail": "This review already has a response."},
                status=status.HTTP_409_CONFLICT,
            )
        serializer = ReviewResponseSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        review.response = serializer.validated_data["response"]
        review.response_at = timezone.now()
        review.save(update_fields=["response", "response_at", "updated_at"])
        notify(
            review.reviewer_id,
            "review_response",
            "Your review got a response",
            f"{request.user.display_name()} responded to your review.",
            booking=review.booking_id,
            action_url=f"/reviews/{review.id}",
        )
        return Response(ReviewSerializer(review).data)


class _UserReviewsView(generics.ListAPIView):
    serializer_class = ReviewSerializer
    permission_classes = [permissions.AllowAny]
    user_field = ""

    def get_queryset(self):
        return (
            Review.objects.select_related("reviewer", "reviewee", "booking__listing")
            .filter(**{self.user_field: self.kwargs["pk"]})
            .order_by("-created_at")
        )


class UserReviewsReceivedView(_UserReviewsView):
    """Reviews written about the given user."""

    user_field = "reviewee_id"


class UserReviewsGivenView(_UserReviewsView):
    """Reviews written by the given user."""

    user_field = "reviewer_id"
