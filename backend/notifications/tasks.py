from __future__ import annotations

import logging
from typing import Any, Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string
from django.utils import timezone

from notifications import onesignal
from notifications.models import AppNotification, NotificationLog, NotificationPreference

logger = logging.getLogger(__name__)
User = get_user_model()


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _render(template: str, context: dict) -> str:
    return render_to_string(template, context).strip()


def _build_email_context(extra: Optional[dict]) -> dict:
    frontend_origin = (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")
    context = {
        "site_name": getattr(settings, "SITE_NAME", "Rent It Forward"),
        "site_url": frontend_origin,
        "support_email": getattr(settings, "SUPPORT_EMAIL", ""),
    }
    if extra:
        context.update(extra)
    return context


def _log_notification(
    channel: str,
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    booking_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=channel,
            type=type_,
            status=status,
            user_id=user_id,
            booking_id=booking_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"channel": channel, "type": type_, "status": status},
        )


def _prepare_email_bodies(
    subject: str,
    template: str | None,
    context: dict | None,
) -> tuple[str, str | None]:
    """Render the text template and, when one exists, its .html sibling."""
    full_context = _build_email_context(context or {})
    full_context["subject"] = subject
    if not template:
        return "", None
    text_template_path = template if template.startswith("email/") else f"email/{template}"
    body = _render(text_template_path, full_context)

    html_template_path = f"{text_template_path.rsplit('.', 1)[0]}.html"
    try:
        html_body = _render(html_template_path, full_context)
    except TemplateDoesNotExist:
        html_body = None
    return body, html_body


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    body: str | None = None,
    template: str | None = None,
    context: dict | None = None,
    user_id: int | None = None,
    booking_id: int | None = None,
) -> bool:
    if not to_email:
        _log_notification(
            "email",
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error="missing recipient email",
        )
        logger.warning("notifications: cannot send email without recipient")
        return False

    try:
        text_body, html_body = _prepare_email_bodies(subject, template, context)
        message = EmailMultiAlternatives(
            subject=subject,
            body=body if body is not None else text_body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[to_email],
        )
        if html_body:
            message.attach_alternative(html_body, "text/html")
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "notifications: email send failed",
            extra={"type": type_, "booking_id": booking_id, "user_id": user_id},
        )
        _log_notification(
            "email",
            type_,
            NotificationLog.Status.FAILED,
            user_id=user_id,
            booking_id=booking_id,
            error=str(exc) or exc.__class__.__name__,
        )
        return False

    _log_notification(
        "email",
        type_,
        NotificationLog.Status.SENT,
        user_id=user_id,
        booking_id=booking_id,
    )
    return True


def _send_push_logged(
    type_: str,
    *,
    user: User,
    title: str,
    message: str,
    data: dict | None = None,
    booking_id: int | None = None,
) -> bool:
    if not onesignal.is_configured():
        logger.info("notifications: skipping push, OneSignal not configured")
        _log_notification(
            "push",
            type_,
            NotificationLog.Status.SKIPPED,
            user_id=user.id,
            booking_id=booking_id,
            error="onesignal not configured",
        )
        return False
    try:
        onesignal.send_to_user(user, title=title, message=message, data=data)
    except onesignal.OneSignalError as exc:
        logger.warning(
            "notifications: push send failed",
            extra={"type": type_, "user_id": user.id, "error": str(exc)},
        )
        _log_notification(
            "push",
            type_,
            NotificationLog.Status.FAILED,
            user_id=user.id,
            booking_id=booking_id,
            error=str(exc),
        )
        return False
    _log_notification(
        "push",
        type_,
        NotificationLog.Status.SENT,
        user_id=user.id,
        booking_id=booking_id,
    )
    return True


def _display_name(user: Optional[User]) -> str:
    if not user:
        return "Unknown"
    full_name = (user.get_full_name() or "").strip()
    return full_name or user.username or str(user)


def _booking_context(booking_id: int | None) -> dict[str, Any]:
    if not booking_id:
        return {}
    from bookings.models import Booking

    booking = (
        Booking.objects.select_related("listing", "owner", "renter").filter(pk=booking_id).first()
    )
    if booking is None:
        return {}
    return {
        "booking": booking,
        "listing_title": booking.listing.title,
        "start_date": booking.start_date,
        "end_date": booking.end_date,
        "renter_name": _display_name(booking.renter),
        "owner_name": _display_name(booking.owner),
    }


@shared_task(name="notifications.deliver", queue="notifications")
def deliver_notification(payload: dict[str, Any]) -> dict[str, bool]:
    """
    Fan one notification intent out to the in-app, push and email channels.

    Each channel is attempted independently; a failure is logged and never
    prevents the others.
    """
    user = _get_user(payload.get("user_id"))
    if user is None:
        return {}

    type_ = payload.get("type", "generic")
    category = payload.get("category", "system")
    title = payload.get("title", "")
    message = payload.get("message", "")
    booking_id = payload.get("booking_id")
    data = payload.get("data") or {}
    results = {"in_app": False, "push": False, "email": False}

    try:
        AppNotification.objects.create(
            user=user,
            type=type_,
            category=category,
            title=title,
            message=message,
            booking_id=booking_id,
            data=data,
            action_url=payload.get("action_url", ""),
        )
        results["in_app"] = True
    except Exception:
        logger.exception(
            "notifications: failed to store in-app notification",
            extra={"type": type_, "user_id": user.id},
        )

    preferences = NotificationPreference.for_user(user)

    if payload.get("push", True) and preferences.allows("push", category):
        results["push"] = _send_push_logged(
            type_,
            user=user,
            title=title,
            message=message,
            data=data,
            booking_id=booking_id,
        )

    email_template = payload.get("email_template")
    if email_template and preferences.allows("email", category):
        context = {
            "recipient": user,
            "recipient_name": _display_name(user),
            "title": title,
            "message": message,
            "action_url": f"{_build_email_context(None)['site_url']}{payload.get('action_url', '')}",
            **_booking_context(booking_id),
            **(payload.get("email_context") or {}),
        }
        results["email"] = _send_email_logged(
            type_,
            to_email=user.email,
            subject=title,
            template=f"{email_template}.txt",
            context=context,
            user_id=user.id,
            booking_id=booking_id,
        )

    logger.info(
        "notifications: delivered %s to user %s",
        type_,
        user.id,
        extra={"results": results},
    )
    return results


@shared_task(queue="emails")
def send_contact_submission_email(submission_id: int) -> bool:
    """Forward a contact-form submission to the support inbox."""
    from core.models import ContactSubmission

    submission = ContactSubmission.objects.filter(pk=submission_id).first()
    if submission is None:
        logger.warning("notifications: contact submission %s no longer exists", submission_id)
        return False
    return _send_email_logged(
        "contact_submission",
        to_email=getattr(settings, "SUPPORT_EMAIL", ""),
        subject=f"Contact form: {submission.subject}",
        template="contact_submission.txt",
        context={"submission": submission, "received_at": timezone.localtime(submission.created_at)},
    )


@shared_task(name="notifications.broadcast", queue="notifications")
def broadcast_push(tags: dict[str, str], title: str, message: str) -> bool:
    """Send a tag-targeted push to every matching OneSignal subscription."""
    try:
        onesignal.send_push(title=title, message=message, filters=onesignal.tag_filters(tags))
    except onesignal.OneSignalError as exc:
        logger.warning("notifications: broadcast failed", extra={"error": str(exc)})
        _log_notification("push", "broadcast", NotificationLog.Status.FAILED, error=str(exc))
        return False
    _log_notification("push", "broadcast", NotificationLog.Status.SENT)
    return True
