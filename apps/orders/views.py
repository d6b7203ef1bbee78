from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.accounts.actors import Actor
from apps.accounts.models import Role
from apps.accounts.permissions import IsBuyer
from apps.delivery.serializers import BookingSerializer
from .models import Order
from .serializers import (
    AddBookingSerializer,
    AddItemSerializer,
    CancelSerializer,
    CheckoutSerializer,
    OrderItemSerializer,
    OrderSerializer,
    RemoveLineSerializer,
    StatusChangeSerializer,
)
from .services import OrderService


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Buyers build and check out their orders here; producers and admins
    drive the rest of the lifecycle through `status` and `cancel`.
    Services raise domain errors, the global handler turns them into responses.
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    lookup_value_regex = r"[0-9a-f-]{36}"

    def get_queryset(self):
        user = self.request.user
        queryset = Order.objects.prefetch_related('items', 'bookings__slot', 'timeline')
        if user.role == Role.ADMIN:
            return queryset
        if user.role == Role.PRODUCER:
            return queryset.filter(
                Q(items__product__producer=user) | Q(bookings__slot__product__producer=user)
            ).distinct()
        return queryset.filter(buyer=user)

    def _actor(self):
        return Actor.from_user(self.request.user)

    def _order_response(self, order_id, status_code=status.HTTP_200_OK):
        order = self.get_queryset().get(id=order_id)
        return Response(OrderSerializer(order).data, status=status_code)

    def create(self, request):
        if not IsBuyer().has_permission(request, self):
            self.permission_denied(request, message="Only buyers can create orders.")
        order = OrderService.create_order(request.user)
        return self._order_response(order.id, status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path='items')
    def add_item(self, request, pk=None):
        serializer = AddItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        item = OrderService.add_item(
            pk, serializer.validated_data['product_id'], serializer.validated_data['quantity'], self._actor()
        )
        return Response(OrderItemSerializer(item).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path=r'items/(?P<item_id>[0-9a-f-]{36})/remove')
    def remove_item(self, request, pk=None, item_id=None):
        serializer = RemoveLineSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        OrderService.remove_item(pk, item_id, self._actor(), qty=serializer.validated_data.get('quantity'))
        return self._order_response(pk)

    @action(detail=True, methods=['post'], url_path='bookings')
    def add_booking(self, request, pk=None):
        serializer = AddBookingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = OrderService.add_booking(
            pk, serializer.validated_data['slot_id'], serializer.validated_data['quantity'], self._actor()
        )
        return Response(BookingSerializer(booking).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path=r'bookings/(?P<booking_id>[0-9a-f-]{36})/remove')
    def remove_booking(self, request, pk=None, booking_id=None):
        serializer = RemoveLineSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        OrderService.remove_booking(pk, booking_id, self._actor(), qty=serializer.validated_data.get('quantity'))
        return self._order_response(pk)

    @action(detail=True, methods=['post'])
    def checkout(self, request, pk=None):
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        OrderService.checkout(pk, self._actor(), serializer.to_delivery())
        return self._order_response(pk)

    @action(detail=True, methods=['post'], url_path='status')
    def change_status(self, request, pk=None):
        serializer = StatusChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        OrderService.change_status(
            pk, serializer.validated_data['status'], self._actor(), note=serializer.validated_data['note']
        )
        return self._order_response(pk)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        OrderService.cancel(pk, self._actor(), reason=serializer.validated_data['reason'])
        return self._order_response(pk)
