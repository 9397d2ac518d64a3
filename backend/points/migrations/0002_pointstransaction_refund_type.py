from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("points", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="pointstransaction",
            name="type",
            field=models.CharField(
                choices=[
                    ("first_rental", "First rental"),
                    ("referral", "Referral"),
                    ("redemption", "Redemption"),
                    ("refund", "Refund"),
                    ("adjustment", "Adjustment"),
                ],
                max_length=32,
            ),
        ),
    ]
