import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="DeliverySlot",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("date", models.DateField(db_index=True)),
                ("max_capacity", models.PositiveIntegerField()),
                ("reserved", models.PositiveIntegerField(default=0)),
                ("is_available", models.BooleanField(default=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="delivery_slots",
                        to="catalog.product",
                    ),
                ),
            ],
            options={
                "ordering": ["date", "created_at"],
                "indexes": [models.Index(fields=["product", "date"], name="slot_product_date_idx")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("reserved__gte", 0)), name="slot_reserved_non_negative"),
                    models.CheckConstraint(
                        condition=models.Q(("reserved__lte", models.F("max_capacity"))),
                        name="slot_reserved_within_capacity",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price_snapshot", models.BigIntegerField(help_text="Unit price in minor units")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("TEMPORARY", "Temporary hold"),
                            ("PENDING", "Pending"),
                            ("CONFIRMED", "Confirmed"),
                            ("CANCELLED", "Cancelled"),
                        ],
                        db_index=True,
                        default="TEMPORARY",
                        max_length=20,
                    ),
                ),
                ("expires_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings",
                        to="orders.order",
                    ),
                ),
                (
                    "slot",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="delivery.deliveryslot",
                    ),
                ),
            ],
            options={
                "abstract": False,
            },
        ),
    ]
