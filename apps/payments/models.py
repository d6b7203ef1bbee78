from django.db import models
from django.conf import settings
from apps.orders.models import Order
from apps.utils.models import TimestampedModel


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SUCCEEDED = "SUCCEEDED", "Succeeded"
    FAILED = "FAILED", "Failed"


class PaymentIntent(TimestampedModel):
    """
    Tracks a payment request opened with the gateway for one order.
    """
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="payment_intents")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT)

    # Minor units, equal to order.amount_due when the intent was opened
    amount = models.BigIntegerField()
    currency = models.CharField(max_length=3, default="CHF")

    # Gateway specific ID (e.g. Razorpay 'order_N7sl2...')
    gateway_intent_id = models.CharField(max_length=100, unique=True, db_index=True)
    client_secret = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Intent {self.gateway_intent_id} - {self.status}"
