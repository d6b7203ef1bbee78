"""
Payment gateway collaborator.

The engine only needs two calls: open an intent for an amount, and ask
what happened to it. Everything provider specific stays in this module.
"""
import logging
from typing import NamedTuple

import razorpay
from django.conf import settings
from django.utils.module_loading import import_string

from apps.utils.resilience import CircuitBreaker

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
PROCESSING = "processing"
FAILED = "failed"


class GatewayIntent(NamedTuple):
    id: str
    client_secret: str


class GatewayStatus(NamedTuple):
    status: str
    amount: int


class PaymentGateway:
    def create_intent(self, amount: int, currency: str, metadata: dict) -> GatewayIntent:
        raise NotImplementedError

    def retrieve_intent(self, intent_id: str) -> GatewayStatus:
        raise NotImplementedError

    def verify_webhook(self, body: str, signature: str) -> bool:
        return False


razorpay_breaker = CircuitBreaker("razorpay", failure_threshold=5, recovery_timeout=60)


class RazorpayGateway(PaymentGateway):
    """
    Intents are Razorpay orders; the checkout widget only needs the
    order id, so it doubles as the client secret.
    """
    STATUS_MAP = {
        "paid": SUCCEEDED,
        "attempted": PROCESSING,
        "created": PROCESSING,
    }

    def __init__(self, client=None):
        self.client = client or razorpay.Client(
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        )

    @razorpay_breaker
    def create_intent(self, amount, currency, metadata):
        provider_order = self.client.order.create({
            "amount": amount,
            "currency": currency,
            "receipt": str(metadata.get("order_id", "")),
            "notes": {k: str(v) for k, v in metadata.items()},
            "payment_capture": 1,
        })
        return GatewayIntent(id=provider_order["id"], client_secret=provider_order["id"])

    @razorpay_breaker
    def retrieve_intent(self, intent_id):
        provider_order = self.client.order.fetch(intent_id)
        status = self.STATUS_MAP.get(provider_order.get("status"), FAILED)
        amount = provider_order.get("amount_paid") if status == SUCCEEDED else provider_order.get("amount")
        return GatewayStatus(status=status, amount=int(amount or 0))

    def verify_webhook(self, body, signature):
        try:
            self.client.utility.verify_webhook_signature(body, signature, settings.RAZORPAY_WEBHOOK_SECRET)
            return True
        except razorpay.errors.SignatureVerificationError:
            return False


def get_payment_gateway() -> PaymentGateway:
    return import_string(settings.PAYMENT_GATEWAY_CLASS)()
