from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Settlement",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("nonce", models.CharField(max_length=66, unique=True)),
                ("network", models.CharField(max_length=32)),
                ("payer", models.CharField(max_length=42)),
                ("value", models.CharField(max_length=78)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("submitted", "Submitted"),
                            ("confirmed", "Confirmed"),
                            ("reverted", "Reverted"),
                            ("expired", "Expired"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("transaction_ref", models.CharField(blank=True, db_index=True, max_length=66, null=True)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.CharField(blank=True, max_length=64, null=True)),
                ("deadline", models.DateTimeField()),
                ("payment_requirements", models.JSONField(default=dict)),
                ("signature", models.CharField(blank=True, default="", max_length=256)),
                ("payment_payload", models.JSONField(default=dict)),
                ("claimed_by", models.CharField(blank=True, max_length=64, null=True)),
                ("finalized_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
