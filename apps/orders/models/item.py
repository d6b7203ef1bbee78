from django.db import models
from apps.catalog.models import Product
from apps.utils.models import TimestampedModel
from .order import Order

__all__ = ["OrderItem"]


class OrderItem(TimestampedModel):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='order_items')

    # Snapshot fields (Critical for audit)
    product_name_snapshot = models.CharField(max_length=255)
    unit_price_snapshot = models.BigIntegerField(help_text="Unit price in minor units")

    quantity = models.PositiveIntegerField()

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['order', 'product'], name='uniq_order_item_per_product'),
        ]

    @property
    def line_total(self):
        return self.unit_price_snapshot * self.quantity

    def __str__(self):
        return f"{self.quantity}x {self.product_name_snapshot}"
