from __future__ import annotations

from django.conf import settings
from django.db import models


class Booking(models.Model):
    """A renter's reservation of a listing, with its priced totals and escrow state."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CONFIRMED = "confirmed", "Confirmed"
        IN_PROGRESS = "in_progress", "In progress"
        RETURN_PENDING = "return_pending", "Return pending"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"
        DISPUTED = "disputed", "Disputed"

    class PaymentState(models.TextChoices):
        REQUIRES_PAYMENT = "requires_payment", "Requires payment"
        AUTHORIZED = "authorized", "Authorized"
        CAPTURED = "captured", "Captured"
        VOIDED = "voided", "Voided"
        RELEASED = "released", "Released"

    class DeliveryMethod(models.TextChoices):
        PICKUP = "pickup", "Pickup"
        DELIVERY = "delivery", "Delivery"

    class DepositStatus(models.TextChoices):
        NONE = "none", "None"
        HELD = "held", "Held"
        REFUNDED = "refunded", "Refunded"
        RETAINED = "retained", "Retained"

    listing = models.ForeignKey(
        "listings.Listing",
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings_as_renter",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings_as_owner",
    )
    start_date = models.DateField()
    end_date = models.DateField()
    total_days = models.PositiveIntegerField(default=1)

    price_per_day = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    service_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    commission = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    owner_payout = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    delivery_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    insurance_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    points_redeemed = models.PositiveIntegerField(default=0)
    points_credit = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    currency = models.CharField(max_length=3, default="aud")

    delivery_method = models.CharField(
        max_length=16,
        choices=DeliveryMethod.choices,
        default=DeliveryMethod.PICKUP,
    )
    delivery_address = models.TextField(blank=True, default="")
    renter_message = models.TextField(blank=True, default="")

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    payment_state = models.CharField(
        max_length=20,
        choices=PaymentState.choices,
        default=PaymentState.REQUIRES_PAYMENT,
    )
    stripe_payment_intent_id = models.CharField(max_length=120, blank=True, default="")
    stripe_transfer_id = models.CharField(max_length=120, blank=True, default="")
    transfer_simulated = models.BooleanField(default=False)

    pickup_confirmed_by_renter = models.BooleanField(default=False)
    pickup_confirmed_by_owner = models.BooleanField(default=False)
    pickup_renter_images = models.JSONField(default=list, blank=True)
    pickup_owner_images = models.JSONField(default=list, blank=True)
    pickup_renter_confirmed_at = models.DateTimeField(null=True, blank=True)
    pickup_owner_confirmed_at = models.DateTimeField(null=True, blank=True)
    pickup_notes = models.TextField(blank=True, default="")
    pickup_confirmed_at = models.DateTimeField(null=True, blank=True)

    return_confirmed_by_renter = models.BooleanField(default=False)
    return_confirmed_by_owner = models.BooleanField(default=False)
    return_renter_images = models.JSONField(default=list, blank=True)
    return_owner_images = models.JSONField(default=list, blank=True)
    return_renter_confirmed_at = models.DateTimeField(null=True, blank=True)
    return_owner_confirmed_at = models.DateTimeField(null=True, blank=True)
    damage_report = models.TextField(blank=True, default="")
    deposit_status = models.CharField(
        max_length=16,
        choices=DepositStatus.choices,
        default=DepositStatus.NONE,
    )
    return_confirmed_at = models.DateTimeField(null=True, blank=True)
    return_confirmed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    owner_receipt_confirmed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    admin_released_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=16, blank=True, default="")
    cancellation_reason = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["listing", "status"], name="booking_listing_status_idx"),
            models.Index(fields=["status", "admin_released_at"], name="booking_release_idx"),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} ({self.status})"

    @property
    def is_released(self) -> bool:
        return self.admin_released_at is not None or bool(self.stripe_transfer_id)

    @property
    def charge_amount(self):
        """Amount authorized on the renter's card: rental charge plus refundable deposit."""
        return self.rental_charge + self.deposit_amount

    @property
    def rental_charge(self):
        """Non-refundable part of the charge after any points credit."""
        return self.total_amount + self.delivery_fee + self.insurance_fee - self.points_credit


class IssueReport(models.Model):
    """Damage or other issue raised against a booking."""

    class IssueType(models.TextChoices):
        DAMAGE = "damage", "Damage"
        MISSING_PARTS = "missing_parts", "Missing parts"
        LATE_RETURN = "late_return", "Late return"
        OTHER = "other", "Other"

    class Status(models.TextChoices):
        OPEN = "open", "Open"
        RESOLVED = "resolved", "Resolved"

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="issue_reports")
    reporter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="issue_reports",
    )
    reporter_role = models.CharField(max_length=16)
    issue_type = models.CharField(
        max_length=32,
        choices=IssueType.choices,
        default=IssueType.DAMAGE,
    )
    title = models.CharField(max_length=200)
    description = models.TextField()
    images = models.JSONField(default=list, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"IssueReport #{self.pk} for booking {self.booking_id}"
