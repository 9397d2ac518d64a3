"""Thin OneSignal REST client used for push delivery."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class OneSignalError(Exception):
    """OneSignal rejected a request or could not be reached."""


def is_configured() -> bool:
    return bool(
        getattr(settings, "ONESIGNAL_APP_ID", "") and getattr(settings, "ONESIGNAL_REST_API_KEY", "")
    )


def tag_filters(tags: Mapping[str, Any]) -> list[dict[str, str]]:
    """Build OneSignal filters matching every tag (filters are ANDed by default)."""
    return [
        {"field": "tag", "key": key, "relation": "=", "value": str(value)}
        for key, value in tags.items()
    ]


def send_push(
    *,
    title: str,
    message: str,
    subscription_ids: Optional[Iterable[str]] = None,
    external_ids: Optional[Iterable[str]] = None,
    filters: Optional[list[dict[str, str]]] = None,
    data: Optional[dict[str, Any]] = None,
    url: str = "",
) -> dict[str, Any]:
    """
    Create a OneSignal push notification and return the API response body.

    Exactly one targeting mode is used, in order of preference: subscription
    ids, external ids, tag filters.
    """
    if not is_configured():
        raise OneSignalError("OneSignal is not configured.")

    body: dict[str, Any] = {
        "app_id": settings.ONESIGNAL_APP_ID,
        "target_channel": "push",
        "headings": {"en": title},
        "contents": {"en": message},
    }
    subscription_ids = [value for value in (subscription_ids or []) if value]
    external_ids = [str(value) for value in (external_ids or []) if value]
    if subscription_ids:
        body["include_subscription_ids"] = subscription_ids
    elif external_ids:
        body["include_aliases"] = {"external_id": external_ids}
    elif filters:
        body["filters"] = filters
    else:
        raise OneSignalError("No push recipients given.")
    if data:
        body["data"] = data
    if url:
        body["url"] = url

    api_url = settings.ONESIGNAL_API_URL.rstrip("/")
    try:
        response = requests.post(
            f"{api_url}/notifications",
            json=body,
            headers={
                "Authorization": f"Key {settings.ONESIGNAL_REST_API_KEY}",
                "Content-Type": "application/json",
            },
            timeout=settings.ONESIGNAL_REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise OneSignalError(f"OneSignal request failed: {exc}") from exc

    if response.status_code >= 400:
        raise OneSignalError(f"OneSignal returned {response.status_code}: {response.text[:200]}")
    try:
        payload = response.json()
    except ValueError as exc:
        raise OneSignalError(
            f"OneSignal returned a non-JSON body: {response.text[:200]}"
        ) from exc
    if payload.get("errors") and not payload.get("id"):
        raise OneSignalError(f"OneSignal rejected notification: {payload['errors']}")
    logger.info("onesignal: created notification %s", payload.get("id"))
    return payload


def send_to_user(user, *, title: str, message: str, data: Optional[dict[str, Any]] = None) -> dict:
    """Push to the user's registered devices, falling back to their external id alias."""
    player_ids = list(
        user.push_devices.filter(is_active=True).values_list("player_id", flat=True)
    )
    return send_push(
        title=title,
        message=message,
        subscription_ids=player_ids,
        external_ids=[str(user.id)],
        data=data,
    )
