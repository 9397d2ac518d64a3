from __future__ import annotations

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class Review(models.Model):
    class Type(models.TextChoices):
        RENTER_TO_OWNER = "renter_to_owner", "Renter to owner"
        OWNER_TO_RENTER = "owner_to_renter", "Owner to renter"

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="reviews",
    )
    reviewer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="reviews_given",
    )
    reviewee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="reviews_received",
    )
    review_type = models.CharField(max_length=32, choices=Type.choices)
    rating = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    comment = models.TextField(blank=True)
    response = models.TextField(blank=True, default="")
    response_at = models.DateTimeField(null=True, blank=True)
    is_edited = models.BooleanField(default=False)
    edited_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "reviewer"],
                name="unique_review_per_booking_per_reviewer",
            )
        ]

    def __str__(self) -> str:
        return f"Review {self.review_type} by {self.reviewer_id} for booking {self.booking_id}"


def update_user_review_stats(user) -> None:
    """Recalculate rating and total_reviews aggregates for the given user."""
    from django.db.models import Avg, Count

    agg = Review.objects.filter(reviewee=user).aggregate(avg=Avg("rating"), count=Count("id"))
    avg = agg.get("avg")
    user.rating = round(avg, 2) if avg is not None else None
    user.total_reviews = agg.get("count") or 0
    user.save(update_fields=["rating", "total_reviews"])
