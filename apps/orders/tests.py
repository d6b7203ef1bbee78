# apps/orders/tests.py
from datetime import timedelta
from unittest import mock

from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.accounts.actors import Actor
from apps.audit.models import AuditLog
from apps.delivery.models import Booking, DeliverySlot
from apps.inventory.models import StockMovementLog
from apps.notifications.models import Notification
from apps.orders.metadata import (
    Captured,
    HomeDelivery,
    NoPayment,
    Pickup,
    delivery_from_dict,
    payment_from_dict,
    to_dict,
)
from apps.orders.models import Order, OrderItem
from apps.orders.services import OrderService
from apps.orders.tasks import release_expired_booking_holds
from apps.orders.transitions import can_transition, is_valid_transition
from apps.utils.exceptions import (
    BookingCapacityExceeded,
    ConflictError,
    ForbiddenError,
    InsufficientStock,
    InvalidTransition,
    ValidationError,
)
from apps.utils.testing import MarketplaceFixtures
from apps.wallets.models import Wallet, WalletTransaction

S = Order.Status


class TransitionTableTests(SimpleTestCase):

    def test_valid_edges(self):
        self.assertTrue(is_valid_transition(S.DRAFT, S.PENDING))
        self.assertTrue(is_valid_transition(S.SHIPPED, S.CANCELLED))
        self.assertFalse(is_valid_transition(S.DRAFT, S.CONFIRMED))
        self.assertFalse(is_valid_transition(S.PENDING, S.SHIPPED))

    def test_terminal_states_are_final(self):
        for terminal in (S.DELIVERED, S.CANCELLED):
            for target in S.values:
                self.assertFalse(is_valid_transition(terminal, target))


class OrderMetadataTests(SimpleTestCase):

    def test_delivery_variants(self):
        home = HomeDelivery(address="Bahnhofstrasse 1", city="Zurich", postal_code="8001")
        self.assertEqual(delivery_from_dict(to_dict(home)), home)
        self.assertEqual(delivery_from_dict({}), Pickup())

    def test_home_delivery_needs_address(self):
        with self.assertRaises(ValidationError):
            HomeDelivery(address="Bahnhofstrasse 1", city="", postal_code="8001")

    def test_payment_variants(self):
        self.assertEqual(payment_from_dict({}), NoPayment())
        self.assertEqual(payment_from_dict({"kind": "captured", "intent_id": "order_1"}), Captured("order_1"))


@override_settings(PLATFORM_FEE_PERCENT="5", HOME_DELIVERY_FEE="15.00", BOOKING_HOLD_MINUTES=120)
class OrderServiceTestBase(MarketplaceFixtures, TestCase):

    def setUp(self):
        self.buyer = self.make_buyer()
        self.producer = self.make_producer()
        self.grower = self.make_producer()
        self.admin = self.make_admin()

        self.shiitake = self.make_product(self.producer, price=1000, stock=20)
        self.oyster = self.make_product(self.grower, name="Oyster", price=3500, stock=100, requires_slot=True)
        self.slot = self.make_slot(self.oyster, max_capacity=50)

        self.order = OrderService.create_order(self.buyer)
        self.as_buyer = self.actor(self.buyer)

    def fill_order(self):
        OrderService.add_item(self.order.id, self.shiitake.id, 3, self.as_buyer)
        OrderService.add_booking(self.order.id, self.slot.id, 10, self.as_buyer)

    def confirmed_order(self):
        self.fill_order()
        OrderService.checkout(self.order.id, self.as_buyer)
        return OrderService.change_status(self.order.id, S.CONFIRMED, Actor.system())

    def reload(self):
        return Order.objects.get(id=self.order.id)


class OrderLineTests(OrderServiceTestBase):

    def test_add_item_reserves_stock_and_updates_total(self):
        item = OrderService.add_item(self.order.id, self.shiitake.id, 3, self.as_buyer)
        self.assertEqual(item.line_total, 3000)
        self.assertEqual(self.stock_of(self.shiitake), 17)
        self.assertEqual(self.reload().total, 3000)

    def test_repeat_add_merges_and_keeps_price_snapshot(self):
        OrderService.add_item(self.order.id, self.shiitake.id, 2, self.as_buyer)
        self.shiitake.price = 2000
        self.shiitake.save()
        item = OrderService.add_item(self.order.id, self.shiitake.id, 1, self.as_buyer)

        self.assertEqual(OrderItem.objects.filter(order=self.order).count(), 1)
        self.assertEqual(item.quantity, 3)
        self.assertEqual(item.unit_price_snapshot, 1000)
        self.assertEqual(self.reload().total, 3000)

    def test_insufficient_stock_leaves_order_untouched(self):
        with self.assertRaises(InsufficientStock):
            OrderService.add_item(self.order.id, self.shiitake.id, 21, self.as_buyer)
        self.assertFalse(self.order.items.exists())
        self.assertEqual(self.reload().total, 0)

    def test_made_to_order_product_skips_stock(self):
        fresh = self.make_product(self.producer, name="Lion's Mane", price=800, tracks_stock=False)
        OrderService.add_item(self.order.id, fresh.id, 4, self.as_buyer)
        self.assertEqual(self.reload().total, 3200)

    def test_unavailable_product_rejected(self):
        self.shiitake.is_available = False
        self.shiitake.save()
        with self.assertRaises(ConflictError):
            OrderService.add_item(self.order.id, self.shiitake.id, 1, self.as_buyer)

    def test_slot_product_must_be_booked(self):
        with self.assertRaises(ValidationError):
            OrderService.add_item(self.order.id, self.oyster.id, 1, self.as_buyer)

    def test_only_owner_edits(self):
        with self.assertRaises(ForbiddenError):
            OrderService.add_item(self.order.id, self.shiitake.id, 1, self.actor(self.make_buyer()))

    def test_remove_part_of_a_line(self):
        item = OrderService.add_item(self.order.id, self.shiitake.id, 5, self.as_buyer)
        OrderService.remove_item(self.order.id, item.id, self.as_buyer, qty=2)

        item.refresh_from_db()
        self.assertEqual(item.quantity, 3)
        self.assertEqual(self.stock_of(self.shiitake), 17)
        self.assertEqual(self.reload().total, 3000)

    def test_remove_whole_line(self):
        item = OrderService.add_item(self.order.id, self.shiitake.id, 5, self.as_buyer)
        OrderService.remove_item(self.order.id, item.id, self.as_buyer)
        self.assertFalse(OrderItem.objects.filter(id=item.id).exists())
        self.assertEqual(self.stock_of(self.shiitake), 20)
        self.assertEqual(self.reload().total, 0)

    def test_remove_more_than_line_holds(self):
        item = OrderService.add_item(self.order.id, self.shiitake.id, 2, self.as_buyer)
        with self.assertRaises(ValidationError):
            OrderService.remove_item(self.order.id, item.id, self.as_buyer, qty=3)


class StockScenarioTests(OrderServiceTestBase):

    def test_failed_order_leaves_stock_alone(self):
        self.shiitake.stock.quantity = 100
        self.shiitake.stock.save()

        OrderService.add_item(self.order.id, self.shiitake.id, 5, self.as_buyer)
        self.assertEqual(self.stock_of(self.shiitake), 95)

        other = OrderService.create_order(self.buyer)
        with self.assertRaises(ConflictError):
            OrderService.add_item(other.id, self.shiitake.id, 1000, self.as_buyer)
        self.assertEqual(self.stock_of(self.shiitake), 95)


class OrderBookingTests(OrderServiceTestBase):

    def test_draft_booking_is_a_temporary_hold(self):
        booking = OrderService.add_booking(self.order.id, self.slot.id, 10, self.as_buyer)

        self.assertEqual(booking.status, Booking.Status.TEMPORARY)
        self.assertIsNotNone(booking.expires_at)
        self.assertEqual(DeliverySlot.objects.get(id=self.slot.id).reserved, 10)
        self.assertEqual(self.stock_of(self.oyster), 90)
        self.assertEqual(self.reload().total, 35000)

    def test_overbooking_fails_without_side_effects(self):
        with self.assertRaises(BookingCapacityExceeded):
            OrderService.add_booking(self.order.id, self.slot.id, 60, self.as_buyer)
        self.assertEqual(DeliverySlot.objects.get(id=self.slot.id).reserved, 0)
        self.assertEqual(self.stock_of(self.oyster), 100)
        self.assertFalse(self.order.bookings.exists())

    def test_remove_booking_returns_capacity(self):
        booking = OrderService.add_booking(self.order.id, self.slot.id, 10, self.as_buyer)
        OrderService.remove_booking(self.order.id, booking.id, self.as_buyer, qty=4)

        booking.refresh_from_db()
        self.assertEqual(booking.quantity, 6)
        self.assertEqual(DeliverySlot.objects.get(id=self.slot.id).reserved, 6)
        self.assertEqual(self.reload().total, 21000)


class CheckoutTests(OrderServiceTestBase):

    def test_empty_order_cannot_check_out(self):
        with self.assertRaises(ValidationError):
            OrderService.checkout(self.order.id, self.as_buyer)

    def test_pickup_checkout_confirms_holds(self):
        self.fill_order()
        order = OrderService.checkout(self.order.id, self.as_buyer)

        self.assertEqual(order.status, S.PENDING)
        self.assertEqual(order.delivery_fee, 0)
        self.assertEqual(order.delivery, Pickup())
        booking = order.bookings.get()
        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertIsNone(booking.expires_at)

    def test_home_delivery_adds_fee_to_amount_due(self):
        self.fill_order()
        delivery = HomeDelivery(address="Bahnhofstrasse 1", city="Zurich", postal_code="8001")
        order = OrderService.checkout(self.order.id, self.as_buyer, delivery)

        self.assertEqual(order.total, 38000)
        self.assertEqual(order.delivery_fee, 1500)
        self.assertEqual(order.amount_due, 39500)
        self.assertEqual(order.delivery, delivery)

    def test_stranger_cannot_check_out(self):
        self.fill_order()
        with self.assertRaises(ForbiddenError):
            OrderService.checkout(self.order.id, self.actor(self.make_buyer()))
        self.assertEqual(self.reload().status, S.DRAFT)

    def test_checkout_twice_is_invalid(self):
        self.fill_order()
        OrderService.checkout(self.order.id, self.as_buyer)
        with self.assertRaises(InvalidTransition):
            OrderService.checkout(self.order.id, self.as_buyer)

    def test_expired_hold_is_dropped_at_checkout(self):
        self.fill_order()
        Booking.objects.filter(order=self.order).update(expires_at=timezone.now() - timedelta(hours=1))

        with self.assertLogs("apps.orders.services", level="WARNING"):
            order = OrderService.checkout(self.order.id, self.as_buyer)

        self.assertEqual(order.status, S.PENDING)
        self.assertFalse(order.bookings.exists())
        self.assertEqual(order.total, 3000)
        self.assertEqual(DeliverySlot.objects.get(id=self.slot.id).reserved, 0)
        self.assertEqual(self.stock_of(self.oyster), 100)

    def test_order_of_only_expired_holds_is_empty(self):
        OrderService.add_booking(self.order.id, self.slot.id, 10, self.as_buyer)
        Booking.objects.filter(order=self.order).update(expires_at=timezone.now() - timedelta(hours=1))

        with self.assertRaises(ValidationError):
            OrderService.checkout(self.order.id, self.as_buyer)
        self.assertEqual(self.reload().status, S.DRAFT)

    def test_booking_after_checkout_is_pending(self):
        OrderService.add_item(self.order.id, self.shiitake.id, 1, self.as_buyer)
        OrderService.checkout(self.order.id, self.as_buyer)
        booking = OrderService.add_booking(self.order.id, self.slot.id, 2, self.as_buyer)
        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertIsNone(booking.expires_at)


class LifecycleTests(OrderServiceTestBase):

    def test_confirm_posts_sales_per_producer(self):
        order = self.confirmed_order()

        self.assertEqual(order.status, S.CONFIRMED)
        self.assertIsNotNone(order.confirmed_at)
        self.assertEqual(order.platform_fee, 150 + 1750)
        self.assertEqual(order.bookings.get().status, Booking.Status.CONFIRMED)
        self.assertEqual(Wallet.objects.get(producer=self.producer).pending_balance, 2850)
        self.assertEqual(Wallet.objects.get(producer=self.grower).pending_balance, 33250)

    def test_full_lifecycle_releases_funds(self):
        self.confirmed_order()
        as_producer = self.actor(self.producer)
        OrderService.change_status(self.order.id, S.SHIPPED, as_producer)
        order = OrderService.change_status(self.order.id, S.DELIVERED, as_producer, note="Signed by buyer")

        self.assertIsNotNone(order.shipped_at)
        self.assertIsNotNone(order.delivered_at)
        wallet = Wallet.objects.get(producer=self.grower)
        self.assertEqual((wallet.pending_balance, wallet.balance, wallet.total_earned), (0, 33250, 33250))
        self.assertCountEqual(
            order.timeline.values_list("status", flat=True),
            ["DRAFT", "PENDING", "CONFIRMED", "SHIPPED", "DELIVERED"],
        )

    def test_buyer_cannot_ship(self):
        self.confirmed_order()
        with self.assertRaises(InvalidTransition):
            OrderService.change_status(self.order.id, S.SHIPPED, self.as_buyer)

    def test_unrelated_producer_is_forbidden(self):
        self.confirmed_order()
        with self.assertRaises(ForbiddenError):
            OrderService.change_status(self.order.id, S.SHIPPED, self.actor(self.make_producer()))

    def test_skipping_states_is_invalid_even_for_admin(self):
        self.fill_order()
        with self.assertRaises(InvalidTransition):
            OrderService.change_status(self.order.id, S.CONFIRMED, self.actor(self.admin))

    def test_pending_is_reached_only_through_checkout(self):
        self.fill_order()
        with self.assertRaises(ValidationError) as ctx:
            OrderService.change_status(self.order.id, S.PENDING, self.as_buyer)

        self.assertEqual(ctx.exception.code, "checkout_required")
        order = self.reload()
        self.assertEqual(order.status, S.DRAFT)
        self.assertEqual(order.delivery_fee, 0)

    def test_confirm_refuses_a_changed_amount(self):
        self.fill_order()
        OrderService.checkout(self.order.id, self.as_buyer)

        with self.assertLogs("apps.orders.services", level="ERROR"):
            with self.assertRaises(ValidationError) as ctx:
                OrderService.change_status(self.order.id, S.CONFIRMED, Actor.system(), expected_amount=1000)

        self.assertEqual(ctx.exception.code, "amount_mismatch")
        self.assertEqual(self.reload().status, S.PENDING)
        self.assertFalse(WalletTransaction.objects.exists())

    def test_failed_ledger_posting_rolls_back_confirmation(self):
        self.fill_order()
        OrderService.checkout(self.order.id, self.as_buyer)

        with mock.patch(
            "apps.orders.services.WalletLedgerService.post_sale", side_effect=RuntimeError("ledger down")
        ):
            with self.assertRaises(RuntimeError):
                OrderService.change_status(self.order.id, S.CONFIRMED, Actor.system())

        order = self.reload()
        self.assertEqual(order.status, S.PENDING)
        self.assertIsNone(order.confirmed_at)
        self.assertEqual(order.bookings.get().status, Booking.Status.PENDING)
        self.assertFalse(WalletTransaction.objects.filter(type=WalletTransaction.Type.SALE).exists())
        self.assertEqual(self.stock_of(self.shiitake), 17)
        self.assertEqual(self.stock_of(self.oyster), 90)
        self.assertEqual(order.timeline.filter(status=S.CONFIRMED).count(), 0)

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            OrderService.change_status(self.order.id, "LOST", self.actor(self.admin))

    def test_can_transition_reports_reason(self):
        decision = can_transition(self.as_buyer, self.order, S.DRAFT, S.DELIVERED)
        self.assertFalse(decision.allowed)
        self.assertFalse(decision.forbidden)
        self.assertIn("DRAFT -> DELIVERED", decision.reason)


class CancellationTests(OrderServiceTestBase):

    def test_cancel_restores_stock_slots_and_ledger(self):
        self.confirmed_order()
        order = OrderService.cancel(self.order.id, self.actor(self.producer), reason="Harvest failed")

        self.assertEqual(order.status, S.CANCELLED)
        self.assertIsNotNone(order.cancelled_at)
        self.assertEqual(order.platform_fee, 0)
        self.assertEqual(self.stock_of(self.shiitake), 20)
        self.assertEqual(self.stock_of(self.oyster), 100)
        self.assertEqual(DeliverySlot.objects.get(id=self.slot.id).reserved, 0)
        self.assertEqual(order.bookings.get().status, Booking.Status.CANCELLED)

        for producer in (self.producer, self.grower):
            wallet = Wallet.objects.get(producer=producer)
            self.assertEqual(wallet.pending_balance, 0)
            self.assertTrue(
                WalletTransaction.objects.filter(
                    wallet=wallet, order=order, type=WalletTransaction.Type.REVERSAL
                ).exists()
            )

    def test_cancel_is_idempotent(self):
        self.fill_order()
        OrderService.checkout(self.order.id, self.as_buyer)
        OrderService.cancel(self.order.id, self.as_buyer)
        movements = StockMovementLog.objects.count()

        order = OrderService.cancel(self.order.id, self.as_buyer)
        self.assertEqual(order.status, S.CANCELLED)
        self.assertEqual(StockMovementLog.objects.count(), movements)
        self.assertEqual(self.stock_of(self.shiitake), 20)

    def test_buyer_cannot_cancel_paid_order(self):
        self.confirmed_order()
        with self.assertRaises(InvalidTransition):
            OrderService.cancel(self.order.id, self.as_buyer)
        self.assertEqual(self.stock_of(self.shiitake), 17)

    def test_delivered_order_cannot_be_cancelled(self):
        self.confirmed_order()
        admin = self.actor(self.admin)
        OrderService.change_status(self.order.id, S.SHIPPED, admin)
        OrderService.change_status(self.order.id, S.DELIVERED, admin)
        with self.assertRaises(InvalidTransition):
            OrderService.cancel(self.order.id, admin)

    def test_cancelled_order_is_read_only(self):
        self.fill_order()
        OrderService.checkout(self.order.id, self.as_buyer)
        OrderService.cancel(self.order.id, self.as_buyer)
        with self.assertRaises(ConflictError):
            OrderService.add_item(self.order.id, self.shiitake.id, 1, self.as_buyer)


class ExpiredHoldTests(OrderServiceTestBase):

    def test_expired_holds_are_released(self):
        OrderService.add_item(self.order.id, self.shiitake.id, 1, self.as_buyer)
        OrderService.add_booking(self.order.id, self.slot.id, 10, self.as_buyer)

        later = timezone.now() + timedelta(minutes=121)
        self.assertEqual(OrderService.release_expired_holds(now=later), 1)

        self.assertFalse(self.order.bookings.exists())
        self.assertEqual(DeliverySlot.objects.get(id=self.slot.id).reserved, 0)
        self.assertEqual(self.stock_of(self.oyster), 100)
        self.assertEqual(self.reload().total, 1000)
        self.assertEqual(OrderService.release_expired_holds(now=later), 0)

    def test_fresh_and_checked_out_holds_survive(self):
        OrderService.add_booking(self.order.id, self.slot.id, 10, self.as_buyer)
        self.assertEqual(OrderService.release_expired_holds(), 0)

        OrderService.checkout(self.order.id, self.as_buyer)
        later = timezone.now() + timedelta(days=1)
        self.assertEqual(OrderService.release_expired_holds(now=later), 0)
        self.assertEqual(DeliverySlot.objects.get(id=self.slot.id).reserved, 10)

    def test_periodic_task(self):
        OrderService.add_booking(self.order.id, self.slot.id, 5, self.as_buyer)
        Booking.objects.filter(order=self.order).update(expires_at=timezone.now() - timedelta(minutes=1))

        self.assertEqual(release_expired_booking_holds(), "Released 1 expired holds")


class SideEffectTests(OrderServiceTestBase):

    def test_notifications_and_audit_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.confirmed_order()

        self.assertTrue(Notification.objects.filter(user=self.buyer, type="ORDER_CONFIRMED").exists())
        self.assertTrue(Notification.objects.filter(user=self.grower, type="PRODUCER_ORDER_CONFIRMED").exists())
        self.assertTrue(
            AuditLog.objects.filter(action="order.status_changed", entity_id=str(self.order.id)).exists()
        )

    def test_rolled_back_transition_sends_nothing(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(ValidationError):
                OrderService.checkout(self.order.id, self.as_buyer)
        self.assertEqual(len(callbacks), 0)
        self.assertFalse(Notification.objects.exists())


@override_settings(PLATFORM_FEE_PERCENT="5", HOME_DELIVERY_FEE="15.00")
class OrderApiTests(MarketplaceFixtures, APITestCase):

    def setUp(self):
        self.buyer = self.make_buyer()
        self.producer = self.make_producer()
        self.product = self.make_product(self.producer, price=1250, stock=10)

    def test_buyer_builds_and_checks_out(self):
        self.client.force_authenticate(self.buyer)
        response = self.client.post("/api/v1/orders/")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        order_id = response.data["id"]

        response = self.client.post(
            f"/api/v1/orders/{order_id}/items/", {"product_id": str(self.product.id), "quantity": 2}
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["line_total"], "25.00")

        response = self.client.post(
            f"/api/v1/orders/{order_id}/checkout/",
            {"delivery_type": "home_delivery", "address": "Seeweg 4", "city": "Bern", "postal_code": "3000"},
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "PENDING")
        self.assertEqual(response.data["amount_due"], "40.00")
        self.assertEqual(response.data["delivery_details"]["kind"], "home_delivery")

    def test_insufficient_stock_is_conflict(self):
        order = OrderService.create_order(self.buyer)
        self.client.force_authenticate(self.buyer)
        response = self.client.post(
            f"/api/v1/orders/{order.id}/items/", {"product_id": str(self.product.id), "quantity": 11}
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.assertEqual(response.data["error"], "Insufficient stock: available 10, requested 11.")

    def test_producer_cannot_create_orders(self):
        self.client.force_authenticate(self.producer)
        response = self.client.post("/api/v1/orders/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_orders_are_scoped_by_role(self):
        order = OrderService.create_order(self.buyer)
        OrderService.add_item(order.id, self.product.id, 1, Actor.from_user(self.buyer))
        OrderService.create_order(self.make_buyer())

        self.client.force_authenticate(self.producer)
        response = self.client.get("/api/v1/orders/")
        self.assertEqual([row["id"] for row in response.data], [str(order.id)])

        self.client.force_authenticate(self.make_buyer())
        response = self.client.get(f"/api/v1/orders/{order.id}/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_invalid_transition_is_conflict(self):
        order = OrderService.create_order(self.buyer)
        self.client.force_authenticate(self.buyer)
        response = self.client.post(f"/api/v1/orders/{order.id}/status/", {"status": "SHIPPED"})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "invalid_transition")

    def test_status_endpoint_does_not_submit_orders(self):
        order = OrderService.create_order(self.buyer)
        OrderService.add_item(order.id, self.product.id, 1, Actor.from_user(self.buyer))
        self.client.force_authenticate(self.buyer)

        response = self.client.post(f"/api/v1/orders/{order.id}/status/", {"status": "PENDING"})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "checkout_required")
        self.assertEqual(Order.objects.get(id=order.id).status, S.DRAFT)
