from django.db import models
from django.conf import settings
from apps.utils.models import TimestampedModel


class Wallet(TimestampedModel):
    """
    One per producer, created on the first sale.
    pending_balance holds shares of orders not yet delivered;
    only balance can be withdrawn.
    """
    producer = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='wallet')

    balance = models.BigIntegerField(default=0)
    pending_balance = models.BigIntegerField(default=0)
    total_earned = models.BigIntegerField(default=0)
    total_withdrawn = models.BigIntegerField(default=0)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=models.Q(balance__gte=0), name='wallet_balance_non_negative'),
            models.CheckConstraint(condition=models.Q(pending_balance__gte=0), name='wallet_pending_non_negative'),
            models.CheckConstraint(condition=models.Q(total_earned__gte=0), name='wallet_earned_non_negative'),
            models.CheckConstraint(condition=models.Q(total_withdrawn__gte=0), name='wallet_withdrawn_non_negative'),
        ]

    def __str__(self):
        return f"Wallet of {self.producer_id}"


class Withdrawal(TimestampedModel):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        APPROVED = "APPROVED", "Approved"
        COMPLETED = "COMPLETED", "Completed"
        REJECTED = "REJECTED", "Rejected"

    OPEN_STATUSES = (Status.PENDING, Status.APPROVED)

    wallet = models.ForeignKey(Wallet, on_delete=models.PROTECT, related_name='withdrawals')
    amount = models.BigIntegerField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)

    # Copied from the producer profile at request time
    bank_details = models.JSONField(default=dict)

    reference = models.CharField(max_length=100, blank=True)
    note = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    processed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name='withdrawal_amount_positive'),
            models.UniqueConstraint(
                fields=['wallet'],
                condition=models.Q(status__in=['PENDING', 'APPROVED']),
                name='uniq_open_withdrawal_per_wallet',
            ),
        ]

    def __str__(self):
        return f"Withdrawal {self.id} [{self.status}]"

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES


class WalletTransaction(TimestampedModel):
    class Type(models.TextChoices):
        SALE = "SALE", "Sale"
        REVERSAL = "REVERSAL", "Sale Reversal"
        WITHDRAWAL = "WITHDRAWAL", "Withdrawal"

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        COMPLETED = "COMPLETED", "Completed"
        CANCELLED = "CANCELLED", "Cancelled"

    wallet = models.ForeignKey(Wallet, on_delete=models.PROTECT, related_name='transactions')
    order = models.ForeignKey(
        'orders.Order', null=True, blank=True, on_delete=models.PROTECT, related_name='wallet_transactions'
    )
    withdrawal = models.ForeignKey(
        Withdrawal, null=True, blank=True, on_delete=models.PROTECT, related_name='transactions'
    )

    type = models.CharField(max_length=20, choices=Type.choices)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    # Signed: credits positive, withdrawals and reversals negative
    amount = models.BigIntegerField()
    gross_amount = models.BigIntegerField(default=0)
    fee = models.BigIntegerField(default=0)
    fee_percent = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    description = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['order', 'type', 'status'], name='wallet_txn_order_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['wallet', 'order', 'type'],
                condition=models.Q(order__isnull=False),
                name='uniq_wallet_order_txn_type',
            ),
        ]

    def __str__(self):
        return f"{self.type} {self.amount} [{self.status}]"
