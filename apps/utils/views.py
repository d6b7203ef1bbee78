# apps/utils/views.py
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny
from django.conf import settings

from apps.utils.money import to_decimal, to_minor
from apps.wallets.commission import get_fee_percent


class ServerInfoView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({
            "app_name": settings.PROJECT_NAME,
            "version": "1.0.0",
            "debug": settings.DEBUG,
        })


class GlobalConfigView(APIView):
    """
    Public business settings the checkout screens need.
    """
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({
            "currency": settings.CURRENCY,
            "platform_fee_percent": str(get_fee_percent()),
            "home_delivery_fee": str(to_decimal(to_minor(settings.HOME_DELIVERY_FEE))),
            "razorpay_key_id": getattr(settings, "RAZORPAY_KEY_ID", ""),
        })
