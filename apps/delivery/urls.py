from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import DeliverySlotViewSet

router = DefaultRouter()
router.register(r'slots', DeliverySlotViewSet, basename='delivery-slots')

urlpatterns = [
    path('', include(router.urls)),
]
