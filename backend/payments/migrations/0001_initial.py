import django.db.models.deletion
from django.db import migrations, models


def _money(**kwargs):
    return models.DecimalField(decimal_places=2, max_digits=10, **kwargs)


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("subtotal", _money()),
                ("service_fee", _money()),
                ("commission", _money()),
                ("owner_payout", _money()),
                ("deposit_amount", _money(default=0)),
                ("total_amount", _money()),
                ("currency", models.CharField(default="aud", max_length=8)),
                (
                    "stripe_payment_intent_id",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("authorized", "Authorized"),
                            ("captured", "Captured"),
                            ("voided", "Voided"),
                            ("failed", "Failed"),
                            ("released", "Released"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("deposit_refund_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "payout_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Stripe Transfer id (or simulated id) for the owner's payout.",
                        max_length=255,
                    ),
                ),
                ("payout_date", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "booking",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment",
                        to="bookings.booking",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
