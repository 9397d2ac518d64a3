from django.conf import settings
from django.db import models


class UserPoints(models.Model):
    """Running points balance for a user."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="points",
    )
    balance = models.IntegerField(default=0)
    lifetime_earned = models.IntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.user_id}: {self.balance} pts"


class PointsTransaction(models.Model):
    """Append-only ledger entry; positive amounts earn, negative amounts spend."""

    class Type(models.TextChoices):
        FIRST_RENTAL = "first_rental", "First rental"
        REFERRAL = "referral", "Referral"
        REDEMPTION = "redemption", "Redemption"
        REFUND = "refund", "Refund"
        ADJUSTMENT = "adjustment", "Adjustment"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="points_transactions",
    )
    type = models.CharField(max_length=32, choices=Type.choices)
    amount = models.IntegerField()
    description = models.CharField(max_length=255, blank=True, default="")
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="points_transactions",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "type"],
                condition=models.Q(type="first_rental"),
                name="points_single_first_rental_award",
            )
        ]

    def __str__(self) -> str:
        return f"{self.type} {self.amount:+d} -> {self.user_id}"
