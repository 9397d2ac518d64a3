"""Public contact form endpoint."""

from __future__ import annotations

import logging
import re

from rest_framework import generics, permissions, serializers, status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle

from notifications import tasks as notification_tasks

from .models import ContactSubmission

logger = logging.getLogger(__name__)

SUSPICIOUS_PATTERNS = (
    (re.compile(r"viagra|cialis|levitra", re.IGNORECASE), "Pharmaceutical spam"),
    (re.compile(r"casino|poker|betting", re.IGNORECASE), "Gambling content"),
    (re.compile(r"http://\S+", re.IGNORECASE), "URLs in message"),
    (re.compile(r"[A-Z]{10,}"), "Excessive caps"),
    (re.compile(r"!{3,}"), "Excessive exclamation marks"),
    (re.compile(r"[0-9]{10,}"), "Excessive numbers"),
    (re.compile(r"[^\w\s]{20,}"), "Excessive special characters"),
)
_UNSAFE_MARKUP_RE = re.compile(r"[<>]|javascript:|vbscript:|data:|file:|on\w+\s*=", re.IGNORECASE)


def sanitize_text(value: str) -> str:
    return _UNSAFE_MARKUP_RE.sub("", (value or "").strip())


def suspicious_reasons(text: str) -> list[str]:
    return [reason for pattern, reason in SUSPICIOUS_PATTERNS if pattern.search(text)]


class ContactSubmissionSerializer(serializers.ModelSerializer):
    website = serializers.CharField(required=False, allow_blank=True, write_only=True)

    class Meta:
        model = ContactSubmission
        fields = ("id", "first_name", "last_name", "email", "subject", "message", "website")
        read_only_fields = ("id",)

    def validate(self, attrs):
        if attrs.pop("website", ""):
            raise serializers.ValidationError({"non_field_errors": ["Invalid submission."]})
        for field in ("first_name", "last_name", "subject", "message"):
            attrs[field] = sanitize_text(attrs.get(field, ""))
            if not attrs[field]:
                raise serializers.ValidationError({field: ["This field may not be blank."]})
        attrs["email"] = attrs["email"].strip().lower()

        reasons = suspicious_reasons(f"{attrs['message']} {attrs['subject']}")
        if reasons:
            logger.info("contact: rejected suspicious submission", extra={"reasons": reasons})
            raise serializers.ValidationError(
                {"non_field_errors": ["Message contains suspicious content."]}
            )
        return attrs


class ContactSubmissionView(generics.CreateAPIView):
    serializer_class = ContactSubmissionSerializer
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "contact"

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        submission = serializer.save(ip_address=request.META.get("REMOTE_ADDR") or None)
        try:
            notification_tasks.send_contact_submission_email.delay(submission.id)
        except Exception:
            logger.info(
                "notifications: could not queue send_contact_submission_email",
                exc_info=True,
            )
        return Response(
            {"success": True, "id": submission.id},
            status=status.HTTP_201_CREATED,
        )
