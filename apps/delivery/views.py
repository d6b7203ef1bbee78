# apps/delivery/views.py

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.accounts.actors import Actor
from apps.accounts.permissions import IsProducer
from .capacity import CandidateSlot
from .models import DeliverySlot
from .serializers import CreateSlotsSerializer, DeliverySlotSerializer, SlotAvailabilitySerializer
from .services import DeliverySlotService


class DeliverySlotViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Anyone signed in can browse open slots (?product=<id>&date=<day>);
    producers create slots and open/close them.
    """
    serializer_class = DeliverySlotSerializer
    permission_classes = [IsAuthenticated]
    filterset_fields = ['product', 'date']

    def get_queryset(self):
        queryset = DeliverySlot.objects.select_related('product')
        if not self.request.user.is_producer:
            queryset = queryset.filter(is_available=True)
        return queryset

    def create(self, request):
        if not IsProducer().has_permission(request, self):
            self.permission_denied(request, message="Only producers can create delivery slots.")

        serializer = CreateSlotsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        slots, warnings = DeliverySlotService.create_slots(
            Actor.from_user(request.user),
            data['product_id'],
            [CandidateSlot(date=s['date'], max_capacity=s['max_capacity']) for s in data['slots']],
        )
        return Response(
            {"slots": DeliverySlotSerializer(slots, many=True).data, "warnings": warnings},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated, IsProducer])
    def availability(self, request, pk=None):
        serializer = SlotAvailabilitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        slot = DeliverySlotService.set_availability(
            Actor.from_user(request.user), pk, serializer.validated_data['is_available']
        )
        return Response(DeliverySlotSerializer(slot).data)
