from django.db import models
from django.conf import settings
from apps.utils.models import TimestampedModel

__all__ = ["Order"]


class Order(TimestampedModel):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        PENDING = "PENDING", "Pending Payment"
        CONFIRMED = "CONFIRMED", "Confirmed (Paid)"
        SHIPPED = "SHIPPED", "Shipped"
        DELIVERED = "DELIVERED", "Delivered"
        CANCELLED = "CANCELLED", "Cancelled"

    OPEN_STATUSES = (Status.DRAFT, Status.PENDING)

    buyer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT, db_index=True)

    # Minor units. total == sum of item and booking lines, always.
    total = models.BigIntegerField(default=0)
    delivery_fee = models.BigIntegerField(default=0)
    platform_fee = models.BigIntegerField(default=0)

    # Tagged variants, see apps.orders.metadata
    delivery_details = models.JSONField(default=dict, blank=True)
    payment_link = models.JSONField(default=dict, blank=True)

    confirmed_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['buyer', 'status'], name='order_buyer_status_idx'),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(total__gte=0), name='order_total_non_negative'),
            models.CheckConstraint(condition=models.Q(delivery_fee__gte=0), name='order_delivery_fee_non_negative'),
        ]

    def __str__(self):
        return f"{self.id} [{self.status}]"

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES

    @property
    def amount_due(self):
        """What the buyer pays: lines plus delivery. The platform fee is withheld, never added."""
        return self.total + self.delivery_fee

    @property
    def delivery(self):
        from apps.orders.metadata import delivery_from_dict
        return delivery_from_dict(self.delivery_details)

    @property
    def payment(self):
        from apps.orders.metadata import payment_from_dict
        return payment_from_dict(self.payment_link)

    def producer_ids(self):
        """Producers represented among the order's items and bookings."""
        item_producers = self.items.values_list('product__producer_id', flat=True)
        booking_producers = self.bookings.values_list('slot__product__producer_id', flat=True)
        return set(item_producers) | set(booking_producers)
