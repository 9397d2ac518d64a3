from rest_framework import serializers

from .models import AppNotification, NotificationPreference, PushDevice


class AppNotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = AppNotification
        fields = (
            "id",
            "type",
            "category",
            "title",
            "message",
            "booking",
            "data",
            "action_url",
            "is_read",
            "read_at",
            "created_at",
        )
        read_only_fields = fields


class NotificationPreferenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationPreference
        fields = (
            "email_bookings",
            "email_messages",
            "email_marketing",
            "push_notifications",
            "push_bookings",
            "push_messages",
            "push_reminders",
            "updated_at",
        )
        read_only_fields = ("updated_at",)


class MarkViewedSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.IntegerField(), required=False)
    all = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if not attrs.get("all") and not attrs.get("ids"):
            raise serializers.ValidationError({"non_field_errors": ["Provide ids or all=true."]})
        return attrs


class PushDeviceSerializer(serializers.ModelSerializer):
    class Meta:
        model = PushDevice
        fields = ("player_id", "platform", "is_active", "created_at")
        read_only_fields = ("is_active", "created_at")
        extra_kwargs = {"player_id": {"validators": []}}


class BroadcastSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=200)
    message = serializers.CharField()
    tags = serializers.DictField(child=serializers.CharField(), allow_empty=False)
