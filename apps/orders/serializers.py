from rest_framework import serializers

from apps.delivery.serializers import BookingSerializer
from apps.utils.serializers import MoneyField
from .metadata import HomeDelivery, Pickup
from .models import Order, OrderItem, OrderTimeline


class OrderItemSerializer(serializers.ModelSerializer):
    unit_price = MoneyField(source='unit_price_snapshot', read_only=True)
    line_total = MoneyField(read_only=True)

    class Meta:
        model = OrderItem
        fields = ['id', 'product', 'product_name_snapshot', 'quantity', 'unit_price', 'line_total']


class OrderTimelineSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderTimeline
        fields = ['status', 'timestamp', 'note']


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    bookings = BookingSerializer(many=True, read_only=True)
    timeline = OrderTimelineSerializer(many=True, read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    total = MoneyField(read_only=True)
    delivery_fee = MoneyField(read_only=True)
    platform_fee = MoneyField(read_only=True)
    amount_due = MoneyField(read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'buyer', 'status', 'status_display',
            'total', 'delivery_fee', 'platform_fee', 'amount_due',
            'delivery_details', 'payment_link',
            'items', 'bookings', 'timeline',
            'created_at', 'confirmed_at', 'shipped_at', 'delivered_at', 'cancelled_at',
        ]


class AddItemSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class AddBookingSerializer(serializers.Serializer):
    slot_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class RemoveLineSerializer(serializers.Serializer):
    # Omitted means the whole line
    quantity = serializers.IntegerField(min_value=1, required=False)


class CheckoutSerializer(serializers.Serializer):
    delivery_type = serializers.ChoiceField(choices=[Pickup.kind, HomeDelivery.kind], default=Pickup.kind)
    address = serializers.CharField(required=False, allow_blank=True, default="")
    city = serializers.CharField(required=False, allow_blank=True, default="")
    postal_code = serializers.CharField(required=False, allow_blank=True, default="")
    phone = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def to_delivery(self):
        data = self.validated_data
        if data['delivery_type'] == Pickup.kind:
            return Pickup()
        return HomeDelivery(
            address=data['address'],
            city=data['city'],
            postal_code=data['postal_code'],
            phone=data['phone'],
            notes=data['notes'],
        )


class StatusChangeSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)
    note = serializers.CharField(required=False, allow_blank=True, default="")


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
