from rest_framework import serializers

from apps.utils.serializers import MoneyField
from .models import Booking, DeliverySlot


class DeliverySlotSerializer(serializers.ModelSerializer):
    available_capacity = serializers.IntegerField(read_only=True)

    class Meta:
        model = DeliverySlot
        fields = ['id', 'product', 'date', 'max_capacity', 'reserved', 'available_capacity', 'is_available']
        read_only_fields = ['reserved', 'is_available']


class BookingSerializer(serializers.ModelSerializer):
    slot_date = serializers.DateField(source='slot.date', read_only=True)
    unit_price = MoneyField(source='unit_price_snapshot', read_only=True)
    line_total = MoneyField(read_only=True)

    class Meta:
        model = Booking
        fields = ['id', 'slot', 'slot_date', 'quantity', 'unit_price', 'line_total', 'status', 'expires_at']


class CandidateSlotSerializer(serializers.Serializer):
    date = serializers.DateField()
    max_capacity = serializers.IntegerField(min_value=1)


class CreateSlotsSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    slots = CandidateSlotSerializer(many=True, allow_empty=False)


class SlotAvailabilitySerializer(serializers.Serializer):
    is_available = serializers.BooleanField()
