from django.urls import path
from .views import ProducerStockView, StockAdjustView

urlpatterns = [
    path('stock/', ProducerStockView.as_view(), name='producer-stock'),
    path('stock/adjust/', StockAdjustView.as_view(), name='stock-adjust'),
]
