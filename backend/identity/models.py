"""Database models for Stripe Identity verification tracking."""

from __future__ import annotations

import logging
from typing import Any

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import models
from django.utils import timezone

logger = logging.getLogger(__name__)


class IdentityVerification(models.Model):
    """A Stripe Identity verification session started by a user."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        REQUIRES_INPUT = "requires_input", "Requires input"
        VERIFIED = "verified", "Verified"
        CANCELED = "canceled", "Canceled"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="identity_verifications",
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    session_id = models.CharField(max_length=255, unique=True)
    last_error_code = models.CharField(max_length=64, blank=True, default="")
    last_error_reason = models.CharField(max_length=255, blank=True, default="")
    verified_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "status"], name="identity_user_status_idx"),
        ]

    @property
    def is_verified(self) -> bool:
        return self.status == self.Status.VERIFIED


SESSION_EVENT_STATUS = {
    "identity.verification_session.verified": IdentityVerification.Status.VERIFIED,
    "identity.verification_session.requires_input": IdentityVerification.Status.REQUIRES_INPUT,
    "identity.verification_session.canceled": IdentityVerification.Status.CANCELED,
    "identity.verification_session.processing": IdentityVerification.Status.PENDING,
}


def is_user_identity_verified(user) -> bool:
    """Return True if the user's profile carries a completed identity check."""
    if user is None or not getattr(user, "pk", None):
        return False
    return bool(getattr(user, "identity_verified", False))


def apply_verification_session_event(event_type: str, session: dict[str, Any]) -> IdentityVerification | None:
    """
    Record a verification session webhook and mirror the outcome onto the user.

    Unknown sessions are matched through metadata.user_id. Returns None when
    the event cannot be tied to a user.
    """
    new_status = SESSION_EVENT_STATUS.get(event_type)
    session_id = session.get("id")
    if new_status is None or not session_id:
        return None

    verification = (
        IdentityVerification.objects.select_related("user").filter(session_id=session_id).first()
    )
    if verification is None:
        user_id = (session.get("metadata") or {}).get("user_id")
        User = get_user_model()
        try:
            user = User.objects.get(pk=int(user_id))
        except (User.DoesNotExist, ValueError, TypeError):
            logger.info("identity: no user for verification session %s", session_id)
            return None
        verification = IdentityVerification(user=user, session_id=session_id)

    last_error = session.get("last_error") or {}
    verification.status = new_status
    verification.last_error_code = (last_error.get("code") or "")[:64]
    verification.last_error_reason = (last_error.get("reason") or "")[:255]
    if new_status == IdentityVerification.Status.VERIFIED:
        verification.verified_at = timezone.now()
    verification.save()

    user = verification.user
    if new_status == IdentityVerification.Status.VERIFIED and not user.identity_verified:
        user.identity_verified = True
        user.identity_verified_at = verification.verified_at
        user.save(update_fields=["identity_verified", "identity_verified_at"])
    logger.info(
        "identity: session %s is %s",
        session_id,
        new_status,
        extra={"user_id": user.id},
    )
    return verification
