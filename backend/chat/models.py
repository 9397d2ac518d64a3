"""Chat conversation models and helper utilities."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Tuple

from django.conf import settings
from django.db import models
from django.utils import timezone

from notifications.outbox import notify

if TYPE_CHECKING:  # pragma: no cover
    from bookings.models import Booking
    from users.models import User

logger = logging.getLogger(__name__)


class Conversation(models.Model):
    """Thread between a renter and a listing's owner, optionally tied to a booking."""

    listing = models.ForeignKey(
        "listings.Listing",
        on_delete=models.CASCADE,
        related_name="conversations",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="owner_conversations",
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="renter_conversations",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="conversations",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-updated_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["listing", "renter", "owner"],
                name="chat_unique_conversation_per_party",
            )
        ]

    def __str__(self) -> str:
        return f"Conversation(listing={self.listing_id}, renter={self.renter_id})"

    def other_party_id(self, user_id: int) -> int:
        return self.renter_id if user_id == self.owner_id else self.owner_id


class Message(models.Model):
    """Individual chat message, either user-generated or system-generated."""

    MESSAGE_TYPE_USER = "user"
    MESSAGE_TYPE_SYSTEM = "system"
    MESSAGE_TYPE_CHOICES = [
        (MESSAGE_TYPE_USER, "User"),
        (MESSAGE_TYPE_SYSTEM, "System"),
    ]

    SYSTEM_REQUEST_SENT = "REQUEST_SENT"
    SYSTEM_REQUEST_APPROVED = "REQUEST_APPROVED"
    SYSTEM_REQUEST_REJECTED = "REQUEST_REJECTED"
    SYSTEM_PICKUP_CONFIRMED = "PICKUP_CONFIRMED"
    SYSTEM_RENTAL_STARTED = "RENTAL_STARTED"
    SYSTEM_RETURN_CONFIRMED = "RETURN_CONFIRMED"
    SYSTEM_BOOKING_CANCELLED = "BOOKING_CANCELLED"
    SYSTEM_BOOKING_COMPLETED = "BOOKING_COMPLETED"

    SYSTEM_KIND_CHOICES = [
        (SYSTEM_REQUEST_SENT, "Request sent"),
        (SYSTEM_REQUEST_APPROVED, "Request approved"),
        (SYSTEM_REQUEST_REJECTED, "Request rejected"),
        (SYSTEM_PICKUP_CONFIRMED, "Pickup confirmed"),
        (SYSTEM_RENTAL_STARTED, "Rental started"),
        (SYSTEM_RETURN_CONFIRMED, "Return confirmed"),
        (SYSTEM_BOOKING_CANCELLED, "Booking cancelled"),
        (SYSTEM_BOOKING_COMPLETED, "Booking completed"),
    ]

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="chat_messages",
    )
    message_type = models.CharField(
        max_length=10,
        choices=MESSAGE_TYPE_CHOICES,
        default=MESSAGE_TYPE_USER,
    )
    system_kind = models.CharField(
        max_length=32,
        choices=SYSTEM_KIND_CHOICES,
        null=True,
        blank=True,
    )
    text = models.TextField(blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self) -> str:
        return f"Message(conv={self.conversation_id}, type={self.message_type})"


def get_or_create_conversation(*, listing, renter, booking=None) -> Conversation:
    """Return the renter's thread with the listing owner, attaching booking when given."""
    conv, created = Conversation.objects.get_or_create(
        listing=listing,
        renter=renter,
        owner_id=listing.owner_id,
        defaults={"booking": booking},
    )
    if not created and booking is not None and conv.booking_id != booking.pk:
        conv.booking = booking
        conv.is_active = True
        conv.save(update_fields=["booking", "is_active", "updated_at"])
    return conv


def get_or_create_booking_conversation(booking: "Booking") -> Conversation:
    return get_or_create_conversation(
        listing=booking.listing,
        renter=booking.renter,
        booking=booking,
    )


def create_system_message(
    booking: "Booking",
    system_kind: str,
    text: str,
    *,
    close_chat: bool = False,
) -> Tuple[Conversation, Message]:
    """Create a system-generated chat entry for the booking."""
    conv = get_or_create_booking_conversation(booking)
    if close_chat and conv.is_active:
        conv.is_active = False
        conv.save(update_fields=["is_active", "updated_at"])
    msg = Message.objects.create(
        conversation=conv,
        sender=None,
        message_type=Message.MESSAGE_TYPE_SYSTEM,
        system_kind=system_kind,
        text=text,
    )
    return conv, msg


def create_user_message(
    conversation: Conversation,
    sender: "User",
    text: str,
) -> Message:
    """Create a user-authored chat message and notify the other participant."""
    msg = Message.objects.create(
        conversation=conversation,
        sender=sender,
        message_type=Message.MESSAGE_TYPE_USER,
        text=text,
    )
    Conversation.objects.filter(pk=conversation.pk).update(updated_at=timezone.now())
    preview = text if len(text) <= 120 else f"{text[:117]}..."
    notify(
        conversation.other_party_id(sender.id),
        "new_message",
        f"New message from {sender.display_name()}",
        preview,
        data={"conversation_id": conversation.id},
        action_url=f"/messages/{conversation.id}",
    )
    return msg


def mark_conversation_read(conversation: Conversation, user: "User") -> int:
    """Mark the other party's messages as read; returns how many changed."""
    if not user or user.id not in {conversation.owner_id, conversation.renter_id}:
        return 0
    return (
        conversation.messages.filter(is_read=False)
        .exclude(sender_id=user.id)
        .update(is_read=True)
    )


def get_unread_message_count(conversation: Conversation, user: "User") -> int:
    if not user or user.id not in {conversation.owner_id, conversation.renter_id}:
        return 0
    return conversation.messages.filter(is_read=False).exclude(sender_id=user.id).count()
