import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import BigIntegerField, ExpressionWrapper, F, Sum
from django.utils import timezone

from apps.audit.services import append as audit
from apps.catalog.models import Product
from apps.delivery.models import Booking, DeliverySlot
from apps.delivery.services import DeliverySlotService
from apps.inventory.services import InventoryService
from apps.notifications.services import notify
from apps.utils.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from apps.utils.money import to_minor
from apps.utils.validators import validate_quantity
from apps.wallets.services import WalletLedgerService
from .metadata import HomeDelivery, Pickup, to_dict
from .models import Order, OrderItem, OrderTimeline
from .transitions import can_transition

logger = logging.getLogger(__name__)

LINE_TOTAL = ExpressionWrapper(F("unit_price_snapshot") * F("quantity"), output_field=BigIntegerField())

STATUS_TIMESTAMPS = {
    Order.Status.CONFIRMED: "confirmed_at",
    Order.Status.SHIPPED: "shipped_at",
    Order.Status.DELIVERED: "delivered_at",
    Order.Status.CANCELLED: "cancelled_at",
}


class OrderService:
    """
    Order Lifecycle Manager.
    Every method that touches stock, slots or the ledger opens one atomic
    block and locks the order row first, so lock order is always
    order -> slot -> stock -> wallet.
    """

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _lock(order_id) -> Order:
        try:
            return Order.objects.select_for_update().get(id=order_id)
        except Order.DoesNotExist:
            raise NotFoundError("Order not found.")

    @staticmethod
    def _ensure_editable(order: Order, actor):
        if not actor.is_admin and order.buyer_id != actor.user_id:
            raise ForbiddenError("Not your order.")
        if not order.is_open:
            raise ConflictError(f"Order can no longer be modified (status {order.status}).")

    @staticmethod
    def recompute_total(order: Order) -> int:
        items_total = order.items.aggregate(total=Sum(LINE_TOTAL))["total"] or 0
        bookings_total = order.bookings.aggregate(total=Sum(LINE_TOTAL))["total"] or 0
        order.total = items_total + bookings_total
        order.save(update_fields=["total", "updated_at"])
        return order.total

    @staticmethod
    def _hold_expiry():
        return timezone.now() + timedelta(minutes=settings.BOOKING_HOLD_MINUTES)

    # ------------------------------------------------------------------
    # creation & lines
    # ------------------------------------------------------------------

    @staticmethod
    def create_order(buyer) -> Order:
        order = Order.objects.create(buyer=buyer, status=Order.Status.DRAFT)
        OrderTimeline.objects.create(order=order, status=order.status, note="Order created.", created_by=buyer)
        return order

    @staticmethod
    @transaction.atomic
    def add_item(order_id, product_id, qty: int, actor) -> OrderItem:
        validate_quantity(qty)
        order = OrderService._lock(order_id)
        OrderService._ensure_editable(order, actor)

        try:
            product = Product.objects.get(id=product_id)
        except Product.DoesNotExist:
            raise NotFoundError("Product not found.")

        if not product.is_available:
            raise ConflictError(f"{product.name} is currently unavailable.")
        if product.requires_delivery_slot:
            raise ValidationError(f"{product.name} must be booked on a delivery slot.")

        if product.tracks_stock:
            InventoryService.reserve(product.id, qty, reference=f"ORDER-{order.id}")

        item = OrderItem.objects.filter(order=order, product=product).first()
        if item:
            # Keeps the original price snapshot
            item.quantity = F("quantity") + qty
            item.save(update_fields=["quantity", "updated_at"])
            item.refresh_from_db()
        else:
            item = OrderItem.objects.create(
                order=order,
                product=product,
                product_name_snapshot=product.name,
                unit_price_snapshot=product.price,
                quantity=qty,
            )

        OrderService.recompute_total(order)
        logger.info(f"Order {order.id}: +{qty} x {product.id}, total {order.total}")
        return item

    @staticmethod
    @transaction.atomic
    def remove_item(order_id, item_id, actor, qty: int = None) -> Order:
        """
        Removes `qty` units of a line (the whole line when qty is None)
        and gives the stock back.
        """
        order = OrderService._lock(order_id)
        OrderService._ensure_editable(order, actor)

        try:
            item = OrderItem.objects.select_related("product").get(id=item_id, order=order)
        except OrderItem.DoesNotExist:
            raise NotFoundError("Order item not found.")

        qty = item.quantity if qty is None else validate_quantity(qty)
        if qty > item.quantity:
            raise ValidationError(f"Cannot remove {qty}, line only has {item.quantity}.")

        if item.product.tracks_stock:
            InventoryService.release(item.product_id, qty, reference=f"REMOVE-{order.id}")

        if qty == item.quantity:
            item.delete()
        else:
            item.quantity = item.quantity - qty
            item.save(update_fields=["quantity", "updated_at"])

        OrderService.recompute_total(order)
        return order

    @staticmethod
    @transaction.atomic
    def add_booking(order_id, slot_id, qty: int, actor) -> Booking:
        validate_quantity(qty)
        order = OrderService._lock(order_id)
        OrderService._ensure_editable(order, actor)

        try:
            slot = DeliverySlot.objects.select_related("product").get(id=slot_id)
        except DeliverySlot.DoesNotExist:
            raise NotFoundError("Delivery slot not found.")

        product = slot.product
        if not product.requires_delivery_slot:
            raise ValidationError(f"{product.name} does not use delivery slots.")
        if not product.is_available:
            raise ConflictError(f"{product.name} is currently unavailable.")

        DeliverySlotService.book_slot(slot.id, qty)
        if product.tracks_stock:
            InventoryService.reserve(product.id, qty, reference=f"ORDER-{order.id}")

        if order.status == Order.Status.DRAFT:
            status, expires_at = Booking.Status.TEMPORARY, OrderService._hold_expiry()
        else:
            status, expires_at = Booking.Status.PENDING, None

        booking = Booking.objects.create(
            slot=slot,
            order=order,
            quantity=qty,
            unit_price_snapshot=product.price,
            status=status,
            expires_at=expires_at,
        )

        OrderService.recompute_total(order)
        logger.info(f"Order {order.id}: booked {qty} on slot {slot.id}, total {order.total}")
        return booking

    @staticmethod
    def _release_booking(booking: Booking, qty: int, reference: str):
        DeliverySlotService.release_slot(booking.slot_id, qty)
        if booking.slot.product.tracks_stock:
            InventoryService.release(booking.slot.product_id, qty, reference=reference)

    @staticmethod
    def _drop_hold(booking: Booking):
        OrderService._release_booking(booking, booking.quantity, reference=f"EXPIRED-{booking.id}")
        booking.delete()

    @staticmethod
    @transaction.atomic
    def remove_booking(order_id, booking_id, actor, qty: int = None) -> Order:
        order = OrderService._lock(order_id)
        OrderService._ensure_editable(order, actor)

        try:
            booking = Booking.objects.select_related("slot__product").get(id=booking_id, order=order)
        except Booking.DoesNotExist:
            raise NotFoundError("Booking not found.")

        qty = booking.quantity if qty is None else validate_quantity(qty)
        if qty > booking.quantity:
            raise ValidationError(f"Cannot remove {qty}, booking only has {booking.quantity}.")

        OrderService._release_booking(booking, qty, reference=f"REMOVE-{order.id}")

        if qty == booking.quantity:
            booking.delete()
        else:
            booking.quantity = booking.quantity - qty
            booking.save(update_fields=["quantity", "updated_at"])

        OrderService.recompute_total(order)
        return order

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    @transaction.atomic
    def checkout(order_id, actor, delivery=None) -> Order:
        """
        DRAFT -> PENDING. Stores the delivery choice and fee;
        temporary slot holds become regular pending bookings.
        """
        delivery = delivery or Pickup()
        order = OrderService._lock(order_id)

        expired = list(
            order.bookings.select_related("slot__product")
            .filter(status=Booking.Status.TEMPORARY, expires_at__lt=timezone.now())
            .order_by("slot_id")
        )
        if expired:
            for booking in expired:
                OrderService._drop_hold(booking)
            OrderService.recompute_total(order)
            logger.warning(f"Order {order.id}: dropped {len(expired)} expired slot holds at checkout")

        if not order.items.exists() and not order.bookings.exists():
            raise ValidationError("Order is empty.")

        order.delivery_details = to_dict(delivery)
        order.delivery_fee = to_minor(settings.HOME_DELIVERY_FEE) if isinstance(delivery, HomeDelivery) else 0
        order.save(update_fields=["delivery_details", "delivery_fee", "updated_at"])

        return OrderService._transition(order, Order.Status.PENDING, actor, note="Checked out.")

    @staticmethod
    @transaction.atomic
    def change_status(
        order_id, new_status, actor, note: str = "", payment_link=None, expected_amount: int = None
    ) -> Order:
        """
        Moves a submitted order along its lifecycle. `expected_amount` is
        compared to the locked order's amount due before anything changes.
        """
        if new_status not in Order.Status.values:
            raise ValidationError(f"Unknown status {new_status!r}.")
        if new_status == Order.Status.PENDING:
            raise ValidationError("Orders are submitted through checkout.", code="checkout_required")

        order = OrderService._lock(order_id)
        if expected_amount is not None and order.amount_due != expected_amount:
            logger.error(
                f"Order {order.id}: amount due {order.amount_due} differs from expected {expected_amount}",
                extra={"order_id": order.id},
            )
            raise ValidationError("Payment amount does not match the order.", code="amount_mismatch")

        if payment_link is not None:
            order.payment_link = to_dict(payment_link)
            order.save(update_fields=["payment_link", "updated_at"])

        return OrderService._transition(order, new_status, actor, note=note)

    @staticmethod
    @transaction.atomic
    def cancel(order_id, actor, reason: str = "") -> Order:
        """
        Idempotent: cancelling a cancelled order returns it untouched.
        """
        order = OrderService._lock(order_id)
        if order.status == Order.Status.CANCELLED:
            logger.info(f"Order {order.id} already cancelled. Ignoring.")
            return order

        return OrderService._transition(order, Order.Status.CANCELLED, actor, note=reason or "Cancelled.")

    @staticmethod
    def _transition(order: Order, new_status, actor, note: str = "") -> Order:
        """
        Must run inside the caller's atomic block with `order` locked.
        Status write and side effects commit or roll back together.
        """
        old_status = order.status
        decision = can_transition(actor, order, old_status, new_status)
        if not decision.allowed:
            if decision.forbidden:
                raise ForbiddenError(decision.reason)
            raise InvalidTransition(decision.reason)

        if new_status == Order.Status.PENDING:
            order.bookings.filter(status=Booking.Status.TEMPORARY).update(
                status=Booking.Status.PENDING, expires_at=None
            )
        elif new_status == Order.Status.CONFIRMED:
            order.bookings.exclude(status=Booking.Status.CANCELLED).update(
                status=Booking.Status.CONFIRMED, expires_at=None
            )
            WalletLedgerService.post_sale(order)
        elif new_status == Order.Status.DELIVERED:
            WalletLedgerService.release_on_delivery(order)
        elif new_status == Order.Status.CANCELLED:
            OrderService._restore_reservations(order)
            WalletLedgerService.reverse_sale(order)

        order.status = new_status
        update_fields = ["status", "updated_at"]
        stamp = STATUS_TIMESTAMPS.get(new_status)
        if stamp:
            setattr(order, stamp, timezone.now())
            update_fields.append(stamp)
        order.save(update_fields=update_fields)

        OrderTimeline.objects.create(
            order=order,
            status=new_status,
            note=note,
            created_by_id=actor.user_id,
        )

        logger.info(
            f"Order {order.id}: {old_status} -> {new_status} by {actor.role}",
            extra={"order_id": order.id},
        )
        OrderService._after_transition(order, old_status, new_status, actor)
        return order

    @staticmethod
    def _restore_reservations(order: Order):
        """
        Gives back every unit the order holds. Stock is released in product
        id order so concurrent cancellations lock rows in the same sequence.
        """
        reference = f"CANCEL-{order.id}"

        stock_returns = {}
        for item in order.items.select_related("product"):
            if item.product.tracks_stock:
                stock_returns[item.product_id] = stock_returns.get(item.product_id, 0) + item.quantity

        bookings = list(
            order.bookings.select_related("slot__product")
            .exclude(status=Booking.Status.CANCELLED)
            .order_by("slot_id")
        )
        for booking in bookings:
            DeliverySlotService.release_slot(booking.slot_id, booking.quantity)
            product = booking.slot.product
            if product.tracks_stock:
                stock_returns[product.id] = stock_returns.get(product.id, 0) + booking.quantity

        for product_id in sorted(stock_returns, key=str):
            InventoryService.release(product_id, stock_returns[product_id], reference=reference)

        order.bookings.filter(id__in=[b.id for b in bookings]).update(status=Booking.Status.CANCELLED)

    @staticmethod
    def _after_transition(order: Order, old_status, new_status, actor):
        """
        Fire-and-forget collaborators. Both defer to on_commit and swallow
        their own failures, so nothing here can undo the transition.
        """
        payload = {"order_id": str(order.id), "from": old_status, "to": new_status}
        notify(order.buyer_id, f"ORDER_{new_status}", payload)

        if new_status in (Order.Status.CONFIRMED, Order.Status.CANCELLED):
            for producer_id in order.producer_ids():
                notify(producer_id, f"PRODUCER_ORDER_{new_status}", payload)

        audit("order.status_changed", "Order", order.id, actor.user_id, payload)

    # ------------------------------------------------------------------
    # reaper entry point
    # ------------------------------------------------------------------

    @staticmethod
    def release_expired_holds(now=None) -> int:
        """
        Drops TEMPORARY bookings past their expiry, returning slot capacity
        and stock. Safe to call repeatedly; each booking is handled in its
        own transaction so one bad row does not block the rest.
        """
        now = now or timezone.now()
        expired = list(
            Booking.objects.filter(status=Booking.Status.TEMPORARY, expires_at__lt=now)
            .values_list("id", "order_id")
        )

        released = 0
        for booking_id, order_id in expired:
            with transaction.atomic():
                order = Order.objects.select_for_update().filter(id=order_id).first()
                if order is None:
                    continue
                booking = (
                    Booking.objects.select_for_update()
                    .select_related("slot__product")
                    .filter(id=booking_id, status=Booking.Status.TEMPORARY, expires_at__lt=now)
                    .first()
                )
                if booking is None:
                    continue

                OrderService._drop_hold(booking)
                OrderService.recompute_total(order)
                released += 1

        if released:
            logger.info(f"Released {released} expired booking holds")
        return released
