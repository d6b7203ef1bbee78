from django.urls import path
from .views import PaymentConfirmView, PaymentIntentCreateView, RazorpayWebhookView

urlpatterns = [
    path('intents/', PaymentIntentCreateView.as_view(), name='payment-intent-create'),
    path('confirm/', PaymentConfirmView.as_view(), name='payment-confirm'),
    path('webhook/', RazorpayWebhookView.as_view(), name='payment-webhook'),
]
