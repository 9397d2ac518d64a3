from django.conf import settings
from django.db import models


class Category(models.TextChoices):
    BOOKINGS = "bookings", "Bookings"
    PAYMENTS = "payments", "Payments"
    MESSAGES = "messages", "Messages"
    REVIEWS = "reviews", "Reviews"
    REMINDERS = "reminders", "Reminders"
    MARKETING = "marketing", "Marketing"
    SYSTEM = "system", "System"


class AppNotification(models.Model):
    """In-app notification row shown in the user's notification centre."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="app_notifications",
    )
    type = models.CharField(max_length=64)
    category = models.CharField(max_length=16, choices=Category.choices, default=Category.SYSTEM)
    title = models.CharField(max_length=200)
    message = models.TextField()
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notifications",
    )
    data = models.JSONField(default=dict, blank=True)
    action_url = models.CharField(max_length=500, blank=True, default="")
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read"], name="notif_user_unread_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.type} -> {self.user_id}"


class NotificationPreference(models.Model):
    """Per-user channel switches; missing rows mean defaults."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notification_preferences",
    )
    email_bookings = models.BooleanField(default=True)
    email_messages = models.BooleanField(default=True)
    email_marketing = models.BooleanField(default=False)
    push_notifications = models.BooleanField(default=True)
    push_bookings = models.BooleanField(default=True)
    push_messages = models.BooleanField(default=True)
    push_reminders = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    EMAIL_FIELDS = {
        Category.BOOKINGS: "email_bookings",
        Category.PAYMENTS: "email_bookings",
        Category.REVIEWS: "email_bookings",
        Category.REMINDERS: "email_bookings",
        Category.MESSAGES: "email_messages",
        Category.MARKETING: "email_marketing",
    }
    PUSH_FIELDS = {
        Category.BOOKINGS: "push_bookings",
        Category.PAYMENTS: "push_bookings",
        Category.REVIEWS: "push_bookings",
        Category.MESSAGES: "push_messages",
        Category.REMINDERS: "push_reminders",
    }

    def __str__(self) -> str:
        return f"NotificationPreference({self.user_id})"

    @classmethod
    def for_user(cls, user) -> "NotificationPreference":
        preference, _ = cls.objects.get_or_create(user=user)
        return preference

    def allows(self, channel: str, category: str) -> bool:
        """Return whether channel ("email" or "push") may carry a notification of category."""
        if channel == "push":
            if not self.push_notifications:
                return False
            field = self.PUSH_FIELDS.get(category)
        else:
            field = self.EMAIL_FIELDS.get(category)
        return True if field is None else bool(getattr(self, field))


class PushDevice(models.Model):
    """OneSignal subscription (player) id registered by a signed-in client."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="push_devices",
    )
    player_id = models.CharField(max_length=128, unique=True)
    platform = models.CharField(max_length=32, blank=True, default="web")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    last_seen_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-last_seen_at"]

    def __str__(self) -> str:
        return f"{self.platform}:{self.player_id}"


class NotificationLog(models.Model):
    class Channel(models.TextChoices):
        EMAIL = "email", "Email"
        PUSH = "push", "Push"

    class Status(models.TextChoices):
        SENT = "sent", "Sent"
        FAILED = "failed", "Failed"
        SKIPPED = "skipped", "Skipped"

    channel = models.CharField(max_length=8, choices=Channel.choices)
    type = models.CharField(max_length=128)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notification_logs",
    )
    booking_id = models.IntegerField(null=True, blank=True)
    status = models.CharField(max_length=8, choices=Status.choices)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["created_at"], name="notiflog_created_idx"),
            models.Index(fields=["booking_id", "created_at"], name="notiflog_booking_idx"),
            models.Index(fields=["type", "created_at"], name="notiflog_type_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.channel}:{self.type} ({self.status})"
