import logging
from celery import shared_task

from .services import OrderService

logger = logging.getLogger(__name__)


@shared_task
def release_expired_booking_holds():
    """
    Runs every 5 minutes.
    Frees slot capacity and stock held by TEMPORARY bookings that
    were never checked out.
    """
    count = OrderService.release_expired_holds()
    return f"Released {count} expired holds"
