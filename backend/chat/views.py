"""Chat API views."""

from __future__ import annotations

import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from chat.models import (
    Conversation,
    create_user_message,
    get_or_create_conversation,
    mark_conversation_read,
)
from chat.serializers import (
    ConversationSerializer,
    MessageSerializer,
    SendMessageSerializer,
    StartConversationSerializer,
)

logger = logging.getLogger(__name__)


def _get_user_conversation_or_404(user, pk: int) -> Conversation:
    """Restrict conversation access to owner/renter."""
    return get_object_or_404(
        Conversation.objects.select_related("listing", "owner", "renter"),
        Q(owner=user) | Q(renter=user),
        pk=pk,
    )


@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def conversations(request):
    """List the caller's conversations, or open one with a listing's owner."""
    user = request.user
    if request.method == "GET":
        qs = Conversation.objects.filter(Q(owner=user) | Q(renter=user)).select_related(
            "listing", "owner", "renter"
        )
        serializer = ConversationSerializer(qs, many=True, context={"request": request})
        return Response(serializer.data)

    serializer = StartConversationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    listing = serializer.validated_data["listing"]
    if listing.owner_id == user.id:
        return Response(
            {"detail": "You cannot start a conversation about your own listing."},
            status=status.HTTP_400_BAD_REQUEST,
        )
    conv = get_or_create_conversation(listing=listing, renter=user)
    text = (serializer.validated_data.get("message") or "").strip()
    if text:
        create_user_message(conv, sender=user, text=text)
    return Response(
        ConversationSerializer(conv, context={"request": request}).data,
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def conversation_messages(request, pk: int):
    """Return the thread (marking it read), or post a new message."""
    conv = _get_user_conversation_or_404(request.user, pk)
    if request.method == "GET":
        mark_conversation_read(conv, request.user)
        serializer = MessageSerializer(
            conv.messages.select_related("sender"),
            many=True,
            context={"request": request},
        )
        return Response(serializer.data)

    if not conv.is_active:
        return Response(
            {"detail": "This conversation is closed."},
            status=status.HTTP_400_BAD_REQUEST,
        )
    serializer = SendMessageSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    msg = create_user_message(conv, sender=request.user, text=serializer.validated_data["text"])
    logger.info("chat: user %s posted in conversation %s", request.user.id, conv.id)
    return Response(
        MessageSerializer(msg, context={"request": request}).data,
        status=status.HTTP_201_CREATED,
    )
