import logging
from django.conf import settings
from django.db import transaction

from apps.accounts.actors import Actor
from apps.orders.metadata import Captured, PendingIntent, to_dict
from apps.orders.models import Order
from apps.orders.services import OrderService  # Explicit Cross-App Import
from apps.utils.exceptions import (
    BusinessLogicException,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from apps.utils.resilience import ServiceUnavailable
from . import gateway as gateways
from .models import PaymentIntent, PaymentStatus

logger = logging.getLogger(__name__)


class PaymentGatewayError(BusinessLogicException):
    status_code = 502
    default_code = "payment_gateway_error"


class PaymentService:
    """
    Glue between the gateway and the order lifecycle.
    Gateway calls happen outside any transaction so a slow provider
    never holds row locks.
    """

    @staticmethod
    def _call_gateway(func, *args):
        try:
            return func(*args)
        except ServiceUnavailable:
            raise
        except Exception as e:
            logger.error(f"Payment gateway call failed: {e}")
            raise PaymentGatewayError("Payment Gateway Error")

    @staticmethod
    def create_intent(order_id, actor, gateway=None) -> PaymentIntent:
        """
        Opens (or reuses) a gateway intent for the order's amount due.
        """
        try:
            order = Order.objects.get(id=order_id)
        except Order.DoesNotExist:
            raise NotFoundError("Order not found.")

        if not actor.is_admin and order.buyer_id != actor.user_id:
            raise ForbiddenError("Not your order.")
        if order.status != Order.Status.PENDING:
            raise ConflictError(f"Order is not in a payable state: {order.status}")

        amount = order.amount_due
        if amount <= 0:
            raise ValidationError("Nothing to pay on this order.")

        existing = PaymentIntent.objects.filter(
            order=order, status=PaymentStatus.PENDING, amount=amount
        ).first()
        if existing:
            return existing

        gateway = gateway or gateways.get_payment_gateway()
        remote = PaymentService._call_gateway(
            gateway.create_intent,
            amount,
            settings.CURRENCY,
            {"order_id": str(order.id), "buyer_id": str(order.buyer_id)},
        )

        with transaction.atomic():
            order = Order.objects.select_for_update().get(id=order.id)
            if order.status != Order.Status.PENDING or order.amount_due != amount:
                # Order moved while we were talking to the gateway
                raise ConflictError("Order changed during payment setup, please retry.")

            intent = PaymentIntent.objects.create(
                order=order,
                user_id=order.buyer_id,
                amount=amount,
                currency=settings.CURRENCY,
                gateway_intent_id=remote.id,
                client_secret=remote.client_secret,
                status=PaymentStatus.PENDING,
            )
            order.payment_link = to_dict(PendingIntent(intent_id=remote.id))
            order.save(update_fields=["payment_link", "updated_at"])

        logger.info(f"Payment Intent Created: {intent.id} for Order: {order.id}", extra={"order_id": order.id})
        return intent

    @staticmethod
    def confirm_payment(gateway_intent_id, gateway=None) -> Order:
        """
        Confirms the order once the gateway reports the intent succeeded
        for exactly the amount we asked for. Idempotent.
        """
        try:
            intent = PaymentIntent.objects.select_related("order").get(gateway_intent_id=gateway_intent_id)
        except PaymentIntent.DoesNotExist:
            raise NotFoundError("Payment intent not found.")

        if intent.status == PaymentStatus.SUCCEEDED:
            logger.info(f"Intent {gateway_intent_id} already confirmed. Skipping.")
            return intent.order

        gateway = gateway or gateways.get_payment_gateway()
        remote = PaymentService._call_gateway(gateway.retrieve_intent, gateway_intent_id)

        if remote.status == gateways.FAILED:
            PaymentIntent.objects.filter(id=intent.id, status=PaymentStatus.PENDING).update(
                status=PaymentStatus.FAILED
            )
            raise ConflictError("Payment failed.", code="payment_failed")
        if remote.status != gateways.SUCCEEDED:
            raise ConflictError("Payment not completed yet.", code="payment_not_completed")

        with transaction.atomic():
            # Order row first: amount_due must not move between the check and the confirm
            order = Order.objects.select_for_update().get(id=intent.order_id)
            intent = PaymentIntent.objects.select_for_update().get(id=intent.id)
            if intent.status == PaymentStatus.SUCCEEDED:
                return order

            if remote.amount != intent.amount or intent.amount != order.amount_due:
                logger.error(
                    f"Amount mismatch on intent {gateway_intent_id}: "
                    f"paid {remote.amount}, intent {intent.amount}, due {order.amount_due}",
                    extra={"order_id": order.id},
                )
                raise ValidationError("Payment amount does not match the order.", code="amount_mismatch")

            intent.status = PaymentStatus.SUCCEEDED
            intent.save(update_fields=["status", "updated_at"])

            # EXPLICIT Service Call to Orders (No Signals for Logic)
            order = OrderService.change_status(
                order.id,
                Order.Status.CONFIRMED,
                Actor.system(),
                note=f"Payment {gateway_intent_id} captured.",
                payment_link=Captured(intent_id=gateway_intent_id),
                expected_amount=intent.amount,
            )

        logger.info(f"Order {order.id} confirmed via payment {gateway_intent_id}", extra={"order_id": order.id})
        return order
