# apps/catalog/models.py
from django.conf import settings
from django.db import models

from apps.utils.models import TimestampedModel


class Product(TimestampedModel):
    """
    A producer's sellable item.

    NOTE:
    - price is in minor units; orders snapshot it at add-time and never re-read it.
    - requires_delivery_slot products are only sold through slot bookings.
    - tracks_stock products reserve Stock rows; the rest are made to order.
    """
    producer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='products',
    )
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    unit = models.CharField(
        max_length=20,
        default='kg',
        help_text="Unit like kg, g, box, tray",
    )
    price = models.BigIntegerField(help_text="Unit price in minor units")

    is_available = models.BooleanField(default=True)
    requires_delivery_slot = models.BooleanField(default=False)
    tracks_stock = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["producer", "is_available"], name="product_producer_avail_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gte=0),
                name='product_price_non_negative'
            ),
        ]

    def __str__(self):
        return self.name
