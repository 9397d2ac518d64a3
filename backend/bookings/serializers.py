"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from rest_framework import serializers

from .models import Booking, IssueReport


class BookingSerializer(serializers.ModelSerializer):
    """Read representation of a booking for either participant."""

    listing_title = serializers.ReadOnlyField(source="listing.title")
    renter_name = serializers.SerializerMethodField()
    owner_name = serializers.SerializerMethodField()
    rental_charge = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)
    charge_amount = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)
    is_released = serializers.BooleanField(read_only=True)

    class Meta:
        model = Booking
        fields = [
            "id",
            "listing",
            "listing_title",
            "renter",
            "renter_name",
            "owner",
            "owner_name",
            "start_date",
            "end_date",
            "total_days",
            "price_per_day",
            "subtotal",
            "service_fee",
            "total_amount",
            "commission",
            "owner_payout",
            "deposit_amount",
            "delivery_fee",
            "insurance_fee",
            "points_redeemed",
            "points_credit",
            "rental_charge",
            "charge_amount",
            "currency",
            "delivery_method",
            "delivery_address",
            "renter_message",
            "status",
            "payment_state",
            "deposit_status",
            "pickup_confirmed_by_renter",
            "pickup_confirmed_by_owner",
            "pickup_renter_images",
            "pickup_owner_images",
            "pickup_notes",
            "pickup_confirmed_at",
            "return_confirmed_by_renter",
            "return_confirmed_by_owner",
            "return_renter_images",
            "return_owner_images",
            "damage_report",
            "return_confirmed_at",
            "owner_receipt_confirmed_at",
            "completed_at",
            "admin_released_at",
            "is_released",
            "cancelled_at",
            "cancelled_by",
            "cancellation_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_renter_name(self, obj: Booking) -> str:
        return obj.renter.display_name()

    def get_owner_name(self, obj: Booking) -> str:
        return obj.owner.display_name()


class BookingCreateSerializer(serializers.Serializer):
    listing_id = serializers.IntegerField(min_value=1)
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    delivery_method = serializers.ChoiceField(choices=Booking.DeliveryMethod.choices)
    delivery_address = serializers.CharField(required=False, allow_blank=True, default="")
    renter_message = serializers.CharField(
        required=False, allow_blank=True, default="", max_length=2000
    )
    include_insurance = serializers.BooleanField(required=False, default=False)
    points_to_redeem = serializers.IntegerField(required=False, default=0, min_value=0)


class PhotoVerificationSerializer(serializers.Serializer):
    """Photo URLs for pickup/return verification; count limits are enforced by the domain."""

    images = serializers.ListField(child=serializers.CharField(max_length=1000), allow_empty=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)
    damage_report = serializers.CharField(
        required=False, allow_blank=True, default="", max_length=4000
    )


class CancellationSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=1000)


class CompleteBookingSerializer(serializers.Serializer):
    autoRelease = serializers.BooleanField(required=False, default=False)


class IssueReportCreateSerializer(serializers.Serializer):
    issue_type = serializers.ChoiceField(choices=IssueReport.IssueType.choices)
    title = serializers.CharField(max_length=200)
    description = serializers.CharField(max_length=4000)
    images = serializers.ListField(
        child=serializers.CharField(max_length=1000), required=False, default=list
    )


class DepositResolutionSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=["refund", "retain"])
    note = serializers.CharField(required=False, allow_blank=True, default="", max_length=1000)


class IssueReportSerializer(serializers.ModelSerializer):
    class Meta:
        model = IssueReport
        fields = [
            "id",
            "booking",
            "reporter",
            "reporter_role",
            "issue_type",
            "title",
            "description",
            "images",
            "status",
            "created_at",
        ]
        read_only_fields = fields
