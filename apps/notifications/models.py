# apps/notifications/models.py
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from apps.utils.models import TimestampedModel


class NotificationChannel(models.TextChoices):
    EMAIL = "email", "Email"
    IN_APP = "in_app", "In App"


class NotificationStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"


class NotificationTemplate(TimestampedModel):
    """
    Wording for one notification type, with ${var} placeholders
    filled from the payload.

    Example keys:
    - ORDER_CONFIRMED
    - PRODUCER_ORDER_CANCELLED
    - WITHDRAWAL_COMPLETED
    """
    key = models.CharField(max_length=100, unique=True, db_index=True)
    channel = models.CharField(
        max_length=20,
        choices=NotificationChannel.choices,
        default=NotificationChannel.EMAIL,
    )
    title_template = models.CharField(max_length=255, blank=True)
    body_template = models.TextField()
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["key"]

    def __str__(self):
        return f"[{self.channel}] {self.key}"


class Notification(TimestampedModel):
    """
    Inbox row. Created after the triggering transaction commits,
    then delivered by a Celery task.
    """
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    type = models.CharField(max_length=100, db_index=True)
    channel = models.CharField(
        max_length=20,
        choices=NotificationChannel.choices,
        default=NotificationChannel.EMAIL,
    )

    title = models.CharField(max_length=255, blank=True)
    body = models.TextField()
    data = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    status = models.CharField(
        max_length=20,
        choices=NotificationStatus.choices,
        default=NotificationStatus.PENDING,
        db_index=True,
    )
    error_message = models.TextField(blank=True)

    is_read = models.BooleanField(default=False)
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read", "created_at"], name="notif_user_read_idx"),
        ]

    def __str__(self):
        return f"{self.user_id} [{self.type}] {self.status}"
