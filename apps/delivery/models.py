from django.db import models
from apps.utils.models import TimestampedModel


class DeliverySlot(TimestampedModel):
    """
    A dated capacity window for delivering one product.
    `reserved` is the running sum of booked quantity; the DB refuses
    any write that would push it past max_capacity.
    """
    product = models.ForeignKey(
        'catalog.Product',
        on_delete=models.CASCADE,
        related_name='delivery_slots'
    )
    date = models.DateField(db_index=True)
    max_capacity = models.PositiveIntegerField()
    reserved = models.PositiveIntegerField(default=0)
    is_available = models.BooleanField(default=True)

    class Meta:
        ordering = ['date', 'created_at']
        indexes = [
            models.Index(fields=['product', 'date'], name='slot_product_date_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(reserved__gte=0),
                name='slot_reserved_non_negative'
            ),
            models.CheckConstraint(
                condition=models.Q(reserved__lte=models.F('max_capacity')),
                name='slot_reserved_within_capacity'
            ),
        ]

    @property
    def available_capacity(self):
        return max(0, self.max_capacity - self.reserved)

    def __str__(self):
        return f"{self.product_id} @ {self.date} ({self.reserved}/{self.max_capacity})"


class Booking(TimestampedModel):
    """
    Quantity of a slot held for an order, with the unit price frozen at booking time.
    """
    class Status(models.TextChoices):
        TEMPORARY = "TEMPORARY", "Temporary hold"
        PENDING = "PENDING", "Pending"
        CONFIRMED = "CONFIRMED", "Confirmed"
        CANCELLED = "CANCELLED", "Cancelled"

    slot = models.ForeignKey(DeliverySlot, on_delete=models.PROTECT, related_name='bookings')
    order = models.ForeignKey('orders.Order', on_delete=models.CASCADE, related_name='bookings')

    quantity = models.PositiveIntegerField()
    unit_price_snapshot = models.BigIntegerField(help_text="Unit price in minor units")

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.TEMPORARY, db_index=True)
    expires_at = models.DateTimeField(null=True, blank=True, db_index=True)

    @property
    def line_total(self):
        return self.unit_price_snapshot * self.quantity

    def __str__(self):
        return f"Booking {self.id} | {self.quantity} on {self.slot_id} [{self.status}]"
