import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def _money():
    return models.DecimalField(decimal_places=2, default=0, max_digits=10)


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("listings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                ("total_days", models.PositiveIntegerField(default=1)),
                ("price_per_day", _money()),
                ("subtotal", _money()),
                ("service_fee", _money()),
                ("total_amount", _money()),
                ("commission", _money()),
                ("owner_payout", _money()),
                ("deposit_amount", _money()),
                ("currency", models.CharField(default="aud", max_length=3)),
                (
                    "delivery_method",
                    models.CharField(
                        choices=[("pickup", "Pickup"), ("delivery", "Delivery")],
                        default="pickup",
                        max_length=16,
                    ),
                ),
                ("delivery_address", models.TextField(blank=True, default="")),
                ("renter_message", models.TextField(blank=True, default="")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("confirmed", "Confirmed"),
                            ("in_progress", "In progress"),
                            ("return_pending", "Return pending"),
                            ("completed", "Completed"),
                            ("cancelled", "Cancelled"),
                            ("disputed", "Disputed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "payment_state",
                    models.CharField(
                        choices=[
                            ("requires_payment", "Requires payment"),
                            ("authorized", "Authorized"),
                            ("captured", "Captured"),
                            ("voided", "Voided"),
                            ("released", "Released"),
                        ],
                        default="requires_payment",
                        max_length=20,
                    ),
                ),
                (
                    "stripe_payment_intent_id",
                    models.CharField(blank=True, default="", max_length=120),
                ),
                ("stripe_transfer_id", models.CharField(blank=True, default="", max_length=120)),
                ("transfer_simulated", models.BooleanField(default=False)),
                ("pickup_confirmed_by_renter", models.BooleanField(default=False)),
                ("pickup_confirmed_by_owner", models.BooleanField(default=False)),
                ("pickup_renter_images", models.JSONField(blank=True, default=list)),
                ("pickup_owner_images", models.JSONField(blank=True, default=list)),
                ("pickup_renter_confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("pickup_owner_confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("pickup_notes", models.TextField(blank=True, default="")),
                ("pickup_confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("return_confirmed_by_renter", models.BooleanField(default=False)),
                ("return_confirmed_by_owner", models.BooleanField(default=False)),
                ("return_renter_images", models.JSONField(blank=True, default=list)),
                ("return_owner_images", models.JSONField(blank=True, default=list)),
                ("return_renter_confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("return_owner_confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("damage_report", models.TextField(blank=True, default="")),
                (
                    "deposit_status",
                    models.CharField(
                        choices=[("none", "None"), ("held", "Held"), ("refunded", "Refunded")],
                        default="none",
                        max_length=16,
                    ),
                ),
                ("return_confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("owner_receipt_confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("admin_released_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_by", models.CharField(blank=True, default="", max_length=16)),
                ("cancellation_reason", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "listing",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="listings.listing",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings_as_owner",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "renter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings_as_renter",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "return_confirmed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["listing", "status"], name="booking_listing_status_idx"),
                    models.Index(
                        fields=["status", "admin_released_at"], name="booking_release_idx"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="IssueReport",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("reporter_role", models.CharField(max_length=16)),
                (
                    "issue_type",
                    models.CharField(
                        choices=[
                            ("damage", "Damage"),
                            ("missing_parts", "Missing parts"),
                            ("late_return", "Late return"),
                            ("other", "Other"),
                        ],
                        default="damage",
                        max_length=32,
                    ),
                ),
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField()),
                ("images", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[("open", "Open"), ("resolved", "Resolved")],
                        default="open",
                        max_length=16,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="issue_reports",
                        to="bookings.booking",
                    ),
                ),
                (
                    "reporter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="issue_reports",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
