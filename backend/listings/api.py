import logging

from django.db.models import Q
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from bookings.domain import DATE_BLOCKING_STATUSES
from bookings.models import Booking

from .filters import ListingFilter
from .models import Listing
from .serializers import BookingQuoteSerializer, ListingSerializer
from .services import compute_booking_totals

logger = logging.getLogger(__name__)

PUBLIC_ACTIONS = {"list", "retrieve", "availability", "quote"}


class ListingPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100


class IsOwnerOrReadOnly(permissions.BasePermission):
    def has_object_permission(self, request, view, obj):
        if request.method in permissions.SAFE_METHODS:
            return True
        return getattr(obj, "owner_id", None) == getattr(request.user, "id", None)


class ListingViewSet(viewsets.ModelViewSet):
    serializer_class = ListingSerializer
    pagination_class = ListingPagination
    permission_classes = [permissions.IsAuthenticatedOrReadOnly, IsOwnerOrReadOnly]
    filterset_class = ListingFilter
    search_fields = ["title", "description", "city"]
    ordering_fields = ["price_per_day", "created_at"]

    def get_permissions(self):
        if getattr(self, "action", None) in PUBLIC_ACTIONS:
            return [permissions.AllowAny()]
        return [permission() for permission in self.permission_classes]

    def get_queryset(self):
        qs = Listing.objects.select_related("owner")
        user = self.request.user
        if getattr(self, "action", None) == "list":
            visible = Q(is_active=True)
            if user.is_authenticated:
                visible |= Q(owner=user)
            qs = qs.filter(visible)
        return qs

    def destroy(self, request, *args, **kwargs):
        instance = self.get_object()
        if instance.bookings.filter(status__in=DATE_BLOCKING_STATUSES).exists():
            return Response(
                {"detail": "Listings with upcoming or active bookings cannot be removed."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        instance.is_active = False
        instance.is_available = False
        instance.save(update_fields=["is_active", "is_available", "updated_at"])
        logger.info("listings: deactivated listing %s", instance.id)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get"], url_path="availability")
    def availability(self, request, *args, **kwargs):
        """Return booked [start, end] ranges (inclusive) for a listing."""
        listing = self.get_object()
        ranges = (
            Booking.objects.filter(listing=listing, status__in=DATE_BLOCKING_STATUSES)
            .order_by("start_date", "end_date")
            .values("start_date", "end_date")
        )
        payload = [
            {
                "start_date": item["start_date"].isoformat(),
                "end_date": item["end_date"].isoformat(),
            }
            for item in ranges
        ]
        return Response(payload, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"], url_path="quote")
    def quote(self, request, *args, **kwargs):
        """Preview the price breakdown for a date range without booking."""
        listing = self.get_object()
        serializer = BookingQuoteSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        totals = compute_booking_totals(
            listing=listing,
            start_date=serializer.validated_data["start_date"],
            end_date=serializer.validated_data["end_date"],
            delivery_method=serializer.validated_data["delivery_method"],
            include_insurance=serializer.validated_data["include_insurance"],
        )
        payload = {
            key: (str(value) if not isinstance(value, int) else value)
            for key, value in totals.items()
        }
        return Response(payload, status=status.HTTP_200_OK)
