# apps/notifications/services.py
import logging
from string import Template

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from apps.utils.exceptions import NotFoundError
from .models import Notification, NotificationStatus, NotificationTemplate

logger = logging.getLogger(__name__)

DEFAULT_MESSAGES = {
    "ORDER_PENDING": ("Order received", "Your order ${order_id} is awaiting payment."),
    "ORDER_CONFIRMED": ("Order confirmed", "Payment received, order ${order_id} is confirmed."),
    "ORDER_SHIPPED": ("Order shipped", "Order ${order_id} is on its way."),
    "ORDER_DELIVERED": ("Order delivered", "Order ${order_id} has been delivered."),
    "ORDER_CANCELLED": ("Order cancelled", "Order ${order_id} has been cancelled."),
    "PRODUCER_ORDER_CONFIRMED": ("New order", "Order ${order_id} contains your products and is paid."),
    "PRODUCER_ORDER_CANCELLED": ("Order cancelled", "Order ${order_id} was cancelled, stock has been restored."),
    "WITHDRAWAL_APPROVED": ("Withdrawal approved", "Your withdrawal ${withdrawal_id} was approved."),
    "WITHDRAWAL_COMPLETED": ("Withdrawal paid", "Your withdrawal ${withdrawal_id} has been paid out."),
    "WITHDRAWAL_REJECTED": ("Withdrawal rejected", "Your withdrawal ${withdrawal_id} was rejected."),
}


def _render(notification_type: str, payload: dict) -> tuple[str, str]:
    template = NotificationTemplate.objects.filter(key=notification_type, is_active=True).first()
    if template:
        title, body = template.title_template, template.body_template
    else:
        title, body = DEFAULT_MESSAGES.get(notification_type, (notification_type, notification_type))

    context = {k: str(v) for k, v in payload.items()}
    return Template(title).safe_substitute(context), Template(body).safe_substitute(context)


def create_notification(user_id, notification_type: str, payload: dict | None = None) -> Notification | None:
    """
    Stores the inbox row and queues delivery.
    Never raises: a failed notification must not affect the caller.
    """
    from .tasks import send_notification_task

    payload = payload or {}
    try:
        user = get_user_model().objects.filter(id=user_id).first()
        if user is None:
            logger.warning(f"Notification {notification_type} skipped: user {user_id} not found")
            return None

        title, body = _render(notification_type, payload)
        notification = Notification.objects.create(
            user=user,
            type=notification_type,
            title=title,
            body=body,
            data=payload,
            status=NotificationStatus.PENDING,
        )
        send_notification_task.delay(str(notification.id))
        return notification
    except Exception:
        logger.exception(f"Failed to create notification {notification_type} for user {user_id}")
        return None


def notify(user_id, notification_type: str, payload: dict | None = None):
    """
    Main entry point for other apps. Fire-and-forget: runs once the
    surrounding transaction commits, and not at all if it rolls back.
    """
    if not user_id:
        return
    transaction.on_commit(lambda: create_notification(user_id, notification_type, payload))


def mark_read(user_id, notification_id) -> Notification:
    notification = Notification.objects.filter(id=notification_id, user_id=user_id).first()
    if notification is None:
        raise NotFoundError("Notification not found.")
    if not notification.is_read:
        notification.is_read = True
        notification.save(update_fields=["is_read", "updated_at"])
    return notification


def mark_all_read(user_id) -> int:
    return Notification.objects.filter(user_id=user_id, is_read=False).update(
        is_read=True, updated_at=timezone.now()
    )
