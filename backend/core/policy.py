"""Central authorization policy: roles map to capabilities, views ask for capabilities."""

from __future__ import annotations

from typing import Iterable, Sequence

from rest_framework.permissions import BasePermission

RELEASE_PAYMENTS = "payments.release"
VIEW_ALL_PAYMENTS = "payments.view_all"
MANAGE_BOOKINGS = "bookings.manage"
MODERATE_REVIEWS = "reviews.moderate"
BROADCAST_NOTIFICATIONS = "notifications.broadcast"
VIEW_CONTACT_SUBMISSIONS = "core.view_contact_submissions"

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    "renter": frozenset(),
    "owner": frozenset(),
    "admin": frozenset(
        {
            RELEASE_PAYMENTS,
            VIEW_ALL_PAYMENTS,
            MANAGE_BOOKINGS,
            MODERATE_REVIEWS,
            BROADCAST_NOTIFICATIONS,
            VIEW_CONTACT_SUBMISSIONS,
        }
    ),
}


def capabilities_for(user) -> frozenset[str]:
    if not (user and getattr(user, "is_authenticated", False) and user.is_active):
        return frozenset()
    if user.is_superuser:
        return ROLE_CAPABILITIES["admin"]
    return ROLE_CAPABILITIES.get(getattr(user, "role", ""), frozenset())


def has_capability(user, capability: str) -> bool:
    return capability in capabilities_for(user)


class HasCapability(BasePermission):
    """
    Allows access to authenticated users holding every required capability.
    """

    required_capabilities: Sequence[str] = ()

    def __init__(self, capabilities: Iterable[str] | None = None):
        if capabilities is not None:
            self.required_capabilities = tuple(capabilities)

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not self.required_capabilities:
            return False
        granted = capabilities_for(user)
        return all(capability in granted for capability in self.required_capabilities)

    @classmethod
    def with_capabilities(cls, capabilities: Iterable[str]):
        """
        Helper to build a permission class with baked-in required capabilities.
        """

        capability_tuple = tuple(capabilities)

        class _HasCapability(cls):
            required_capabilities = capability_tuple

        _HasCapability.__name__ = f"{cls.__name__}With{len(capability_tuple)}"
        return _HasCapability
