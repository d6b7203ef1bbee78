import hashlib
import hmac
import itertools
import json
from unittest import mock

from django.conf import settings
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from apps.orders.metadata import Captured, PendingIntent
from apps.orders.models import Order
from apps.orders.services import OrderService
from apps.utils.exceptions import ConflictError, ForbiddenError, ValidationError
from apps.utils.testing import MarketplaceFixtures
from apps.wallets.models import Wallet, WalletTransaction
from . import gateway as gateways
from .models import PaymentIntent, PaymentStatus
from .services import PaymentGatewayError, PaymentService


class FakeGateway(gateways.PaymentGateway):
    """
    In-memory gateway wired in through PAYMENT_GATEWAY_CLASS for tests.
    Intents start as processing; tests settle them with `settle()`.
    """
    intents = {}
    fail_calls = False
    _ids = itertools.count(1)

    @classmethod
    def reset(cls):
        cls.intents = {}
        cls.fail_calls = False

    @classmethod
    def settle(cls, intent_id, status=gateways.SUCCEEDED, amount=None):
        current = cls.intents[intent_id]
        cls.intents[intent_id] = gateways.GatewayStatus(
            status=status, amount=current.amount if amount is None else amount
        )

    def create_intent(self, amount, currency, metadata):
        if self.fail_calls:
            raise RuntimeError("gateway down")
        intent_id = f"order_fake{next(self._ids)}"
        self.intents[intent_id] = gateways.GatewayStatus(status=gateways.PROCESSING, amount=amount)
        return gateways.GatewayIntent(id=intent_id, client_secret=f"{intent_id}_secret")

    def retrieve_intent(self, intent_id):
        return self.intents[intent_id]

    def verify_webhook(self, body, signature):
        expected = hmac.new(
            settings.RAZORPAY_WEBHOOK_SECRET.encode(), body.encode(), hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


@override_settings(PLATFORM_FEE_PERCENT="5", HOME_DELIVERY_FEE="15.00")
class PaymentFlowTestBase(MarketplaceFixtures, TestCase):

    def setUp(self):
        FakeGateway.reset()
        self.buyer = self.make_buyer()
        self.producer = self.make_producer()
        self.product = self.make_product(self.producer, price=6500, stock=5)

        self.as_buyer = self.actor(self.buyer)
        order = OrderService.create_order(self.buyer)
        OrderService.add_item(order.id, self.product.id, 1, self.as_buyer)
        self.order = OrderService.checkout(order.id, self.as_buyer)


class PaymentServiceTests(PaymentFlowTestBase):

    def test_create_intent_for_amount_due(self):
        intent = PaymentService.create_intent(self.order.id, self.as_buyer)

        self.assertEqual(intent.amount, 6500)
        self.assertEqual(intent.status, PaymentStatus.PENDING)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment, PendingIntent(intent_id=intent.gateway_intent_id))

    def test_pending_intent_is_reused(self):
        first = PaymentService.create_intent(self.order.id, self.as_buyer)
        second = PaymentService.create_intent(self.order.id, self.as_buyer)
        self.assertEqual(first.id, second.id)
        self.assertEqual(len(FakeGateway.intents), 1)

    def test_only_buyer_pays(self):
        with self.assertRaises(ForbiddenError):
            PaymentService.create_intent(self.order.id, self.actor(self.make_buyer()))

    def test_draft_order_not_payable(self):
        draft = OrderService.create_order(self.buyer)
        with self.assertRaises(ConflictError):
            PaymentService.create_intent(draft.id, self.as_buyer)

    def test_gateway_failure_is_wrapped(self):
        FakeGateway.fail_calls = True
        with self.assertLogs("apps.payments.services", level="ERROR"):
            with self.assertRaises(PaymentGatewayError):
                PaymentService.create_intent(self.order.id, self.as_buyer)
        self.assertFalse(PaymentIntent.objects.exists())

    def test_confirm_moves_order_to_confirmed(self):
        intent = PaymentService.create_intent(self.order.id, self.as_buyer)
        FakeGateway.settle(intent.gateway_intent_id)

        order = PaymentService.confirm_payment(intent.gateway_intent_id)

        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertEqual(order.payment, Captured(intent_id=intent.gateway_intent_id))
        self.assertEqual(order.platform_fee, 325)
        self.assertEqual(Wallet.objects.get(producer=self.producer).pending_balance, 6175)
        intent.refresh_from_db()
        self.assertEqual(intent.status, PaymentStatus.SUCCEEDED)

    def test_confirm_is_idempotent(self):
        intent = PaymentService.create_intent(self.order.id, self.as_buyer)
        FakeGateway.settle(intent.gateway_intent_id)
        PaymentService.confirm_payment(intent.gateway_intent_id)

        order = PaymentService.confirm_payment(intent.gateway_intent_id)
        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertEqual(Wallet.objects.get(producer=self.producer).pending_balance, 6175)

    def test_amount_mismatch_rejected(self):
        intent = PaymentService.create_intent(self.order.id, self.as_buyer)
        FakeGateway.settle(intent.gateway_intent_id, amount=100)

        with self.assertLogs("apps.payments.services", level="ERROR"):
            with self.assertRaises(ValidationError) as ctx:
                PaymentService.confirm_payment(intent.gateway_intent_id)
        self.assertEqual(ctx.exception.code, "amount_mismatch")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_order_edited_during_confirmation_is_not_confirmed(self):
        intent = PaymentService.create_intent(self.order.id, self.as_buyer)
        FakeGateway.settle(intent.gateway_intent_id)
        change_status = OrderService.change_status

        def buyer_edits_first(order_id, *args, **kwargs):
            OrderService.add_item(order_id, self.product.id, 1, self.as_buyer)
            return change_status(order_id, *args, **kwargs)

        with mock.patch.object(OrderService, "change_status", side_effect=buyer_edits_first):
            with self.assertLogs("apps.orders.services", level="ERROR"):
                with self.assertRaises(ValidationError) as ctx:
                    PaymentService.confirm_payment(intent.gateway_intent_id)

        self.assertEqual(ctx.exception.code, "amount_mismatch")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)
        self.assertEqual(self.order.amount_due, 6500)
        self.assertFalse(WalletTransaction.objects.exists())
        intent.refresh_from_db()
        self.assertEqual(intent.status, PaymentStatus.PENDING)

    def test_unsettled_payment(self):
        intent = PaymentService.create_intent(self.order.id, self.as_buyer)
        with self.assertRaises(ConflictError) as ctx:
            PaymentService.confirm_payment(intent.gateway_intent_id)
        self.assertEqual(ctx.exception.code, "payment_not_completed")

    def test_failed_payment_marks_intent(self):
        intent = PaymentService.create_intent(self.order.id, self.as_buyer)
        FakeGateway.settle(intent.gateway_intent_id, status=gateways.FAILED)
        with self.assertRaises(ConflictError):
            PaymentService.confirm_payment(intent.gateway_intent_id)
        intent.refresh_from_db()
        self.assertEqual(intent.status, PaymentStatus.FAILED)


class RazorpayWebhookTests(PaymentFlowTestBase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.url = reverse('payment-webhook')
        self.intent = PaymentService.create_intent(self.order.id, self.as_buyer)

    def _post(self, payload, signature=None):
        body = json.dumps(payload)
        if signature is None:
            signature = hmac.new(
                settings.RAZORPAY_WEBHOOK_SECRET.encode(), body.encode(), hashlib.sha256
            ).hexdigest()
        return self.client.post(
            self.url, body, content_type="application/json", HTTP_X_RAZORPAY_SIGNATURE=signature
        )

    def _paid_event(self):
        return {
            "event": "order.paid",
            "payload": {"order": {"entity": {"id": self.intent.gateway_intent_id}}},
        }

    def test_valid_webhook_confirms_order(self):
        FakeGateway.settle(self.intent.gateway_intent_id)
        response = self._post(self._paid_event())

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "processed")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.CONFIRMED)

    def test_bad_signature_rejected(self):
        FakeGateway.settle(self.intent.gateway_intent_id)
        with self.assertLogs("apps.payments.views", level="CRITICAL"):
            response = self._post(self._paid_event(), signature="forged")

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_other_events_ignored(self):
        response = self._post({"event": "payment.failed", "payload": {}})
        self.assertEqual(response.data["status"], "ignored")

    def test_mismatched_amount_acknowledged_but_not_applied(self):
        FakeGateway.settle(self.intent.gateway_intent_id, amount=1)
        with self.assertLogs("apps.payments", level="ERROR"):
            response = self._post(self._paid_event())

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["code"], "amount_mismatch")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)


class PaymentApiTests(PaymentFlowTestBase):

    def test_buyer_opens_and_confirms(self):
        client = APIClient()
        client.force_authenticate(self.buyer)

        response = client.post("/api/v1/payments/intents/", {"order_id": str(self.order.id)})
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["amount"], "65.00")

        intent_id = response.data["gateway_intent_id"]
        FakeGateway.settle(intent_id)
        response = client.post("/api/v1/payments/confirm/", {"intent_id": intent_id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "CONFIRMED")
        self.assertEqual(response.data["platform_fee"], "3.25")
