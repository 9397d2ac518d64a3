"""Notification centre, preferences and push device registration."""

from __future__ import annotations

import logging

from django.utils import timezone
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from core.policy import BROADCAST_NOTIFICATIONS, HasCapability

from . import tasks as notification_tasks
from .models import AppNotification, NotificationPreference, PushDevice
from .serializers import (
    AppNotificationSerializer,
    BroadcastSerializer,
    MarkViewedSerializer,
    NotificationPreferenceSerializer,
    PushDeviceSerializer,
)

logger = logging.getLogger(__name__)


class NotificationViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    serializer_class = AppNotificationSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        qs = AppNotification.objects.filter(user=self.request.user)
        unread = self.request.query_params.get("unread")
        if unread in {"1", "true", "True"}:
            qs = qs.filter(is_read=False)
        category = self.request.query_params.get("category")
        if category:
            qs = qs.filter(category=category)
        return qs

    @action(detail=False, methods=["get"], url_path="unread-count")
    def unread_count(self, request, *args, **kwargs):
        count = AppNotification.objects.filter(user=request.user, is_read=False).count()
        return Response({"count": count})

    @action(detail=False, methods=["post"], url_path="mark-viewed")
    def mark_viewed(self, request, *args, **kwargs):
        serializer = MarkViewedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        qs = AppNotification.objects.filter(user=request.user, is_read=False)
        if not serializer.validated_data.get("all"):
            qs = qs.filter(pk__in=serializer.validated_data["ids"])
        updated = qs.update(is_read=True, read_at=timezone.now())
        return Response({"updated": updated})


class NotificationPreferenceView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        preference = NotificationPreference.for_user(request.user)
        return Response(NotificationPreferenceSerializer(preference).data)

    def put(self, request):
        preference = NotificationPreference.for_user(request.user)
        serializer = NotificationPreferenceSerializer(preference, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)

    patch = put


class PushDeviceView(APIView):
    """Register or forget the caller's OneSignal subscription id."""

    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = PushDeviceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        device, created = PushDevice.objects.update_or_create(
            player_id=serializer.validated_data["player_id"],
            defaults={
                "user": request.user,
                "platform": serializer.validated_data.get("platform") or "web",
                "is_active": True,
            },
        )
        logger.info("notifications: registered push device for user %s", request.user.id)
        return Response(
            PushDeviceSerializer(device).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def delete(self, request):
        player_id = request.data.get("player_id") or request.query_params.get("player_id")
        if not player_id:
            return Response(
                {"player_id": ["This field is required."]},
                status=status.HTTP_400_BAD_REQUEST,
            )
        PushDevice.objects.filter(user=request.user, player_id=player_id).update(is_active=False)
        return Response(status=status.HTTP_204_NO_CONTENT)


class BroadcastView(APIView):
    permission_classes = [
        permissions.IsAuthenticated,
        HasCapability.with_capabilities([BROADCAST_NOTIFICATIONS]),
    ]

    def post(self, request):
        serializer = BroadcastSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            notification_tasks.broadcast_push.delay(data["tags"], data["title"], data["message"])
        except Exception:
            logger.info("notifications: could not queue broadcast_push", exc_info=True)
            return Response(
                {"detail": "Broadcast could not be queued."},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return Response({"queued": True}, status=status.HTTP_202_ACCEPTED)
