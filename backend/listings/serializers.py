from rest_framework import serializers

from .models import Listing


class ListingSerializer(serializers.ModelSerializer):
    """Serializer for Listing that enforces pricing rules and ownership."""

    owner = serializers.PrimaryKeyRelatedField(read_only=True)
    owner_username = serializers.ReadOnlyField(source="owner.username")
    owner_rating = serializers.ReadOnlyField(source="owner.rating")

    class Meta:
        model = Listing
        fields = [
            "id",
            "slug",
            "owner",
            "owner_username",
            "owner_rating",
            "title",
            "description",
            "category",
            "city",
            "state",
            "price_per_day",
            "price_per_week",
            "price_per_month",
            "deposit",
            "delivery_available",
            "pickup_available",
            "is_available",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["owner", "slug", "created_at", "updated_at"]

    def create(self, validated_data):
        request = self.context.get("request")
        validated_data["owner"] = request.user
        return super().create(validated_data)

    def update(self, instance, validated_data):
        validated_data.pop("owner", None)
        return super().update(instance, validated_data)

    def validate_title(self, value):
        if not value or len(value.strip()) < 3:
            raise serializers.ValidationError("Title must be at least 3 characters.")
        return value.strip()

    def validate_price_per_day(self, value):
        if value is None or value <= 0:
            raise serializers.ValidationError("Price per day must be greater than 0.")
        return value

    def validate_deposit(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("Deposit cannot be negative.")
        return value


class BookingQuoteSerializer(serializers.Serializer):
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    delivery_method = serializers.ChoiceField(
        choices=["pickup", "delivery"], required=False, default="pickup"
    )
    include_insurance = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if attrs["end_date"] < attrs["start_date"]:
            raise serializers.ValidationError({"end_date": ["End date cannot be before start date."]})
        return attrs
