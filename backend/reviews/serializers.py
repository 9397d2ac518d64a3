from __future__ import annotations

from rest_framework import serializers

from .models import Review


class ReviewSerializer(serializers.ModelSerializer):
    reviewer_name = serializers.SerializerMethodField()
    reviewee_name = serializers.SerializerMethodField()
    listing_title = serializers.ReadOnlyField(source="booking.listing.title")

    class Meta:
        model = Review
        fields = (
            "id",
            "booking",
            "listing_title",
            "reviewer",
            "reviewer_name",
            "reviewee",
            "reviewee_name",
            "review_type",
            "rating",
            "comment",
            "response",
            "response_at",
            "is_edited",
            "edited_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def get_reviewer_name(self, obj: Review) -> str:
        return obj.reviewer.display_name()

    def get_reviewee_name(self, obj: Review) -> str:
        return obj.reviewee.display_name()


class ReviewCreateSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField(min_value=1)
    rating = serializers.IntegerField(min_value=1, max_value=5)
    comment = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)


class ReviewUpdateSerializer(serializers.ModelSerializer):
    rating = serializers.IntegerField(min_value=1, max_value=5, required=False)

    class Meta:
        model = Review
        fields = ("rating", "comment")


class ReviewResponseSerializer(serializers.Serializer):
    response = serializers.CharField(max_length=2000)

    def validate_response(self, value: str) -> str:
        if not value.strip():
            raise serializers.ValidationError("Response cannot be empty.")
        return value.strip()
