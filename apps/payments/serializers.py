from django.conf import settings
from rest_framework import serializers

from apps.utils.serializers import MoneyField
from .models import PaymentIntent


class CreatePaymentIntentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()


class ConfirmPaymentSerializer(serializers.Serializer):
    intent_id = serializers.CharField(max_length=100)


class PaymentIntentSerializer(serializers.ModelSerializer):
    amount = MoneyField(read_only=True)
    key_id = serializers.SerializerMethodField()

    class Meta:
        model = PaymentIntent
        fields = ['id', 'order', 'gateway_intent_id', 'client_secret', 'amount', 'currency', 'status', 'key_id']

    def get_key_id(self, obj):
        # Return public key for frontend SDK
        return settings.RAZORPAY_KEY_ID
