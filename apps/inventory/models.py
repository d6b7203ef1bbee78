from django.db import models
from django.conf import settings
from apps.catalog.models import Product
from apps.utils.models import TimestampedModel


class Stock(TimestampedModel):
    """
    Sellable quantity of a product. Source of truth for availability.
    Mutated only through InventoryService.
    """
    product = models.OneToOneField(
        Product,
        on_delete=models.PROTECT,
        related_name='stock'
    )
    quantity = models.IntegerField(default=0)
    low_stock_threshold = models.IntegerField(default=10)

    class Meta:
        verbose_name = "Stock"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0),
                name='stock_quantity_non_negative'
            ),
        ]

    @property
    def is_low(self):
        return self.quantity <= self.low_stock_threshold

    def __str__(self):
        return f"{self.product.name} | Qty: {self.quantity}"


class StockMovementLog(TimestampedModel):
    """
    Immutable Ledger of all stock changes.
    """
    class MovementType(models.TextChoices):
        RESERVATION = "RESERVE", "Reservation (Order)"
        RELEASE = "RELEASE", "Release (Cancellation)"
        ADJUSTMENT = "ADJUST", "Manual Adjustment"

    stock = models.ForeignKey(
        Stock,
        on_delete=models.CASCADE,
        related_name='logs'
    )

    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)

    # Traceability
    reference = models.CharField(max_length=100, db_index=True, help_text="Order ID, booking ID, etc.")
    balance_after = models.IntegerField(help_text="Snapshot of quantity after the change")

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL
    )

    class Meta:
        ordering = ['-created_at']
