import json
import logging

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.accounts.actors import Actor
from apps.orders.serializers import OrderSerializer
from apps.utils.exceptions import BusinessLogicException
from .gateway import get_payment_gateway
from .serializers import ConfirmPaymentSerializer, CreatePaymentIntentSerializer, PaymentIntentSerializer
from .services import PaymentService

logger = logging.getLogger(__name__)


class PaymentIntentCreateView(APIView):
    """
    Initiate a payment for a checked-out (PENDING) order.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CreatePaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        intent = PaymentService.create_intent(
            serializer.validated_data['order_id'], Actor.from_user(request.user)
        )
        return Response(PaymentIntentSerializer(intent).data, status=status.HTTP_201_CREATED)


class PaymentConfirmView(APIView):
    """
    Called by the client after the checkout widget returns.
    The gateway is asked directly; the client's word is never trusted.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ConfirmPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = PaymentService.confirm_payment(serializer.validated_data['intent_id'])
        return Response(OrderSerializer(order).data)


class RazorpayWebhookView(APIView):
    """
    Handles Razorpay 'order.paid' webhooks with strict signature verification.
    """
    permission_classes = []  # Allow public access for webhook
    authentication_classes = []

    def post(self, request, *args, **kwargs):
        signature = request.headers.get('X-Razorpay-Signature')
        if not signature:
            logger.warning("Razorpay Webhook: Missing Signature")
            return Response(status=status.HTTP_403_FORBIDDEN)

        body = request.body.decode('utf-8')
        gateway = get_payment_gateway()
        if not gateway.verify_webhook(body, signature):
            logger.critical("Razorpay Webhook: Invalid Signature detected! Possible attack.")
            return Response(status=status.HTTP_403_FORBIDDEN)

        data = json.loads(body or "{}")
        if data.get('event') != 'order.paid':
            return Response({"status": "ignored"}, status=status.HTTP_200_OK)

        intent_id = data.get('payload', {}).get('order', {}).get('entity', {}).get('id')
        if not intent_id:
            return Response(status=status.HTTP_400_BAD_REQUEST)

        try:
            PaymentService.confirm_payment(intent_id, gateway=gateway)
        except BusinessLogicException as e:
            # Acknowledge anyway: the provider retrying will not change the outcome
            logger.error(f"Webhook for intent {intent_id} not applied: {e.message}")
            return Response({"status": "rejected", "code": e.code}, status=status.HTTP_200_OK)

        return Response({"status": "processed"}, status=status.HTTP_200_OK)
