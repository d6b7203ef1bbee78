import datetime

from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient

from apps.delivery.capacity import CandidateSlot, validate_new_slots
from apps.delivery.models import DeliverySlot
from apps.delivery.services import DeliverySlotService
from apps.utils.exceptions import (
    BookingCapacityExceeded,
    ConflictError,
    ForbiddenError,
    InternalError,
    ValidationError,
)
from apps.utils.testing import MarketplaceFixtures

DAY = datetime.date(2030, 1, 15)


@override_settings(MAX_DAILY_DELIVERIES=10, MAX_DAILY_CAPACITY=100)
class CapacityRuleTests(SimpleTestCase):

    def test_within_limits(self):
        report = validate_new_slots([CandidateSlot(DAY, 30), CandidateSlot(DAY, 30)], [])
        self.assertTrue(report.is_valid)
        self.assertEqual(report.warnings, [])

    def test_eleventh_slot_of_the_day_rejected(self):
        existing = [DeliverySlot(date=DAY, max_capacity=1) for _ in range(10)]
        report = validate_new_slots([CandidateSlot(DAY, 1)], existing)
        self.assertFalse(report.is_valid)
        self.assertIn("Maximum of 10 deliveries per day", report.errors[0])

    def test_batch_counts_every_candidate(self):
        report = validate_new_slots([CandidateSlot(DAY, 1) for _ in range(11)], [])
        self.assertFalse(report.is_valid)

    def test_capacity_ceiling(self):
        report = validate_new_slots([CandidateSlot(DAY, 60)], [DeliverySlot(date=DAY, max_capacity=41)])
        self.assertFalse(report.is_valid)
        self.assertIn("101 kg", report.errors[0])

    def test_high_load_is_only_a_warning(self):
        report = validate_new_slots([CandidateSlot(DAY, 85)], [], unit="box")
        self.assertTrue(report.is_valid)
        self.assertEqual(len(report.warnings), 1)
        self.assertIn("85 of 100 box", report.warnings[0])

    def test_other_days_do_not_count(self):
        existing = [DeliverySlot(date=DAY + datetime.timedelta(days=1), max_capacity=100)]
        report = validate_new_slots([CandidateSlot(DAY, 50)], existing)
        self.assertTrue(report.is_valid)
        self.assertEqual(report.warnings, [])


class DeliverySlotServiceTests(MarketplaceFixtures, TestCase):

    def setUp(self):
        self.producer = self.make_producer()
        self.product = self.make_product(self.producer, requires_slot=True, stock=500)
        self.slot = self.make_slot(self.product, max_capacity=50)

    def test_overbooking_rejected(self):
        with self.assertRaises(BookingCapacityExceeded) as ctx:
            DeliverySlotService.book_slot(self.slot.id, 60)
        self.assertEqual(ctx.exception.message, "Slot capacity exceeded: available 50, requested 60.")
        self.slot.refresh_from_db()
        self.assertEqual(self.slot.reserved, 0)

    def test_bookings_accumulate(self):
        DeliverySlotService.book_slot(self.slot.id, 10)
        slot = DeliverySlotService.book_slot(self.slot.id, 10)
        self.assertEqual(slot.reserved, 20)
        self.assertEqual(slot.available_capacity, 30)

    def test_book_to_exact_capacity(self):
        slot = DeliverySlotService.book_slot(self.slot.id, 50)
        self.assertEqual(slot.available_capacity, 0)
        with self.assertRaises(BookingCapacityExceeded):
            DeliverySlotService.book_slot(self.slot.id, 1)

    def test_closed_slot_not_bookable(self):
        DeliverySlotService.set_availability(self.actor(self.producer), self.slot.id, False)
        with self.assertRaises(BookingCapacityExceeded):
            DeliverySlotService.book_slot(self.slot.id, 1)

    def test_release_below_zero_is_internal_error(self):
        DeliverySlotService.book_slot(self.slot.id, 5)
        with self.assertRaises(InternalError):
            DeliverySlotService.release_slot(self.slot.id, 6)
        self.assertEqual(DeliverySlotService.release_slot(self.slot.id, 5).reserved, 0)

    def test_create_slots_returns_warnings(self):
        slots, warnings = DeliverySlotService.create_slots(
            self.actor(self.producer),
            self.product.id,
            [{"date": DAY, "max_capacity": 90}],
        )
        self.assertEqual(len(slots), 1)
        self.assertEqual(len(warnings), 1)

    def test_create_slots_over_ceiling_creates_nothing(self):
        with self.assertRaises(ConflictError) as ctx:
            DeliverySlotService.create_slots(
                self.actor(self.producer),
                self.product.id,
                [CandidateSlot(DAY, 60), CandidateSlot(DAY, 41)],
            )
        self.assertEqual(ctx.exception.code, "delivery_capacity_exceeded")
        self.assertEqual(DeliverySlot.objects.filter(date=DAY).count(), 0)

    def test_only_owner_creates_slots(self):
        with self.assertRaises(ForbiddenError):
            DeliverySlotService.create_slots(
                self.actor(self.make_producer()), self.product.id, [CandidateSlot(DAY, 10)]
            )

    def test_product_without_slots(self):
        plain = self.make_product(self.producer, name="Dried Porcini")
        with self.assertRaises(ValidationError):
            DeliverySlotService.create_slots(self.actor(self.producer), plain.id, [CandidateSlot(DAY, 10)])


class DeliverySlotApiTests(MarketplaceFixtures, TestCase):

    def setUp(self):
        self.client = APIClient()
        self.producer = self.make_producer()
        self.product = self.make_product(self.producer, requires_slot=True)

    def test_producer_creates_slots(self):
        self.client.force_authenticate(self.producer)
        response = self.client.post(
            "/api/v1/delivery/slots/",
            {"product_id": str(self.product.id), "slots": [{"date": DAY.isoformat(), "max_capacity": 40}]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["slots"][0]["available_capacity"], 40)
        self.assertEqual(response.data["warnings"], [])

    def test_buyer_cannot_create_slots(self):
        self.client.force_authenticate(self.make_buyer())
        response = self.client.post(
            "/api/v1/delivery/slots/",
            {"product_id": str(self.product.id), "slots": [{"date": DAY.isoformat(), "max_capacity": 40}]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_buyers_only_see_open_slots(self):
        open_slot = self.make_slot(self.product)
        closed = self.make_slot(self.product)
        closed.is_available = False
        closed.save()

        self.client.force_authenticate(self.make_buyer())
        response = self.client.get("/api/v1/delivery/slots/", {"product": str(self.product.id)})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row["id"] for row in response.data], [str(open_slot.id)])
