import logging
from django.db import transaction
from django.db.models import F

from apps.catalog.models import Product
from apps.utils.exceptions import (
    BookingCapacityExceeded,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from apps.utils.validators import validate_quantity
from .capacity import CandidateSlot, check_booking_capacity, validate_new_slots
from .models import DeliverySlot

logger = logging.getLogger(__name__)


class DeliverySlotService:
    """
    Owns every write to DeliverySlot rows.
    """

    @staticmethod
    @transaction.atomic
    def create_slots(actor, product_id, candidates):
        """
        Validates the new slots against the product's existing ones and creates them.
        The product row is locked so two producers' sessions cannot both pass
        the daily ceilings.
        Returns (slots, warnings).
        """
        try:
            product = Product.objects.select_for_update().get(id=product_id)
        except Product.DoesNotExist:
            raise NotFoundError("Product not found.")

        if not actor.is_admin and product.producer_id != actor.user_id:
            raise ForbiddenError("You can only manage slots of your own products.")

        if not product.requires_delivery_slot:
            raise ValidationError(f"{product.name} is not sold through delivery slots.")

        candidates = [
            c if isinstance(c, CandidateSlot) else CandidateSlot(date=c["date"], max_capacity=c["max_capacity"])
            for c in candidates
        ]
        if not candidates:
            raise ValidationError("At least one slot is required.")
        for candidate in candidates:
            if isinstance(candidate.max_capacity, bool) or not isinstance(candidate.max_capacity, int) \
                    or candidate.max_capacity <= 0:
                raise ValidationError("Slot capacity must be a positive integer.")

        existing = list(DeliverySlot.objects.filter(product=product))
        report = validate_new_slots(candidates, existing, unit=product.unit)
        if not report.is_valid:
            raise ConflictError(" ".join(report.errors), code="delivery_capacity_exceeded")

        for warning in report.warnings:
            logger.warning(f"Product {product.id}: {warning}")

        slots = DeliverySlot.objects.bulk_create([
            DeliverySlot(product=product, date=c.date, max_capacity=c.max_capacity)
            for c in candidates
        ])
        logger.info(f"Created {len(slots)} delivery slots for product {product.id}")
        return slots, report.warnings

    @staticmethod
    @transaction.atomic
    def book_slot(slot_id, qty: int) -> DeliverySlot:
        """
        Conditional increment of `reserved`: succeeds only while
        reserved + qty <= max_capacity, checked and written in one statement.
        """
        validate_quantity(qty)

        updated = DeliverySlot.objects.filter(
            id=slot_id,
            is_available=True,
            reserved__lte=F("max_capacity") - qty,
        ).update(reserved=F("reserved") + qty)

        slot = DeliverySlot.objects.filter(id=slot_id).first()
        if slot is None:
            raise NotFoundError("Delivery slot not found.")

        if not updated:
            if not slot.is_available:
                raise BookingCapacityExceeded("Delivery slot is not available.")
            # Raises with the actionable numbers
            check_booking_capacity(slot, qty)
            raise BookingCapacityExceeded("Delivery slot capacity exceeded.")

        return slot

    @staticmethod
    @transaction.atomic
    def release_slot(slot_id, qty: int) -> DeliverySlot:
        validate_quantity(qty)

        updated = DeliverySlot.objects.filter(id=slot_id, reserved__gte=qty).update(
            reserved=F("reserved") - qty
        )
        if not updated:
            # Releasing more than was booked means the counters drifted
            raise InternalError(f"Slot {slot_id} reserved counter below release quantity {qty}.")

        return DeliverySlot.objects.get(id=slot_id)

    @staticmethod
    @transaction.atomic
    def set_availability(actor, slot_id, is_available: bool) -> DeliverySlot:
        try:
            slot = DeliverySlot.objects.select_for_update().select_related("product").get(id=slot_id)
        except DeliverySlot.DoesNotExist:
            raise NotFoundError("Delivery slot not found.")

        if not actor.is_admin and slot.product.producer_id != actor.user_id:
            raise ForbiddenError("You can only manage slots of your own products.")

        slot.is_available = is_available
        slot.save(update_fields=["is_available", "updated_at"])
        return slot
