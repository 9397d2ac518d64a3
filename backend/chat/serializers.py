"""Serializers for chat conversations."""

from __future__ import annotations

from rest_framework import serializers

from chat.models import Conversation, Message, get_unread_message_count
from listings.models import Listing


class MessageSerializer(serializers.ModelSerializer):
    """Render chat messages with sender metadata."""

    sender_is_me = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = [
            "id",
            "sender",
            "sender_is_me",
            "is_read",
            "message_type",
            "system_kind",
            "text",
            "created_at",
        ]
        read_only_fields = fields

    def get_sender_is_me(self, obj: Message) -> bool:
        request = self.context.get("request")
        user = getattr(request, "user", None)
        return bool(user and obj.sender_id == user.id)


class ConversationSerializer(serializers.ModelSerializer):
    """Summarize a conversation for list views."""

    listing_title = serializers.ReadOnlyField(source="listing.title")
    other_party = serializers.SerializerMethodField()
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = [
            "id",
            "listing",
            "listing_title",
            "booking",
            "owner",
            "renter",
            "other_party",
            "is_active",
            "last_message",
            "unread_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def _user(self):
        request = self.context.get("request")
        return getattr(request, "user", None)

    def get_other_party(self, obj: Conversation) -> dict:
        user = self._user()
        other = obj.owner if user and obj.renter_id == user.id else obj.renter
        return {
            "id": other.id,
            "name": other.display_name(),
            "avatar_url": other.avatar_url,
            "identity_verified": other.identity_verified,
        }

    def get_last_message(self, obj: Conversation):
        msg = obj.messages.order_by("-created_at", "-id").first()
        if not msg:
            return None
        return MessageSerializer(msg, context=self.context).data

    def get_unread_count(self, obj: Conversation) -> int:
        return get_unread_message_count(obj, self._user())


class StartConversationSerializer(serializers.Serializer):
    listing_id = serializers.PrimaryKeyRelatedField(
        queryset=Listing.objects.filter(is_active=True),
        source="listing",
    )
    message = serializers.CharField(max_length=4000, required=False, allow_blank=True)


class SendMessageSerializer(serializers.Serializer):
    text = serializers.CharField(max_length=4000, trim_whitespace=True)
