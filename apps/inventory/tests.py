import concurrent.futures
import unittest

from django.db import connection
from django.test import TestCase, TransactionTestCase
from rest_framework import status
from rest_framework.test import APIClient

from apps.inventory.models import Stock, StockMovementLog
from apps.inventory.services import InventoryService
from apps.utils.exceptions import InsufficientStock, NotFoundError, ValidationError
from apps.utils.testing import MarketplaceFixtures


class InventoryServiceTests(MarketplaceFixtures, TestCase):

    def setUp(self):
        self.producer = self.make_producer()
        self.product = self.make_product(self.producer, stock=10)

    def test_reserve_then_release_restores_quantity(self):
        self.assertEqual(InventoryService.reserve(self.product.id, 4, "ORDER-1"), 6)
        self.assertEqual(InventoryService.release(self.product.id, 4, "CANCEL-1"), 10)

        self.assertEqual(
            set(StockMovementLog.objects.values_list("quantity_change", "balance_after")),
            {(-4, 6), (4, 10)},
        )

    def test_reserve_reports_available_and_requested(self):
        with self.assertRaises(InsufficientStock) as ctx:
            InventoryService.reserve(self.product.id, 11, "ORDER-1")
        self.assertEqual(ctx.exception.message, "Insufficient stock: available 10, requested 11.")
        self.assertEqual(self.stock_of(self.product), 10)

    def test_reserve_exact_remaining(self):
        InventoryService.reserve(self.product.id, 10, "ORDER-1")
        self.assertEqual(self.stock_of(self.product), 0)

    def test_reserve_without_stock_row(self):
        bare = self.make_product(self.producer, name="Enoki")
        with self.assertRaises(NotFoundError):
            InventoryService.reserve(bare.id, 1, "ORDER-1")

    def test_non_positive_quantity_rejected(self):
        for qty in (0, -2):
            with self.assertRaises(ValidationError):
                InventoryService.reserve(self.product.id, qty, "ORDER-1")

    def test_adjust_creates_stock_and_logs_user(self):
        bare = self.make_product(self.producer, name="Enoki")
        stock = InventoryService.adjust(bare.id, 25, self.producer, "harvest")
        self.assertEqual(stock.quantity, 25)

        log = StockMovementLog.objects.get(stock=stock)
        self.assertEqual(log.movement_type, StockMovementLog.MovementType.ADJUSTMENT)
        self.assertEqual(log.reference, "MANUAL: harvest")
        self.assertEqual(log.created_by, self.producer)

    def test_adjust_cannot_go_negative(self):
        with self.assertRaises(InsufficientStock):
            InventoryService.adjust(self.product.id, -11, self.producer, "spoilage")

    def test_low_stock_warning(self):
        with self.assertLogs("apps.inventory.services", level="WARNING"):
            InventoryService.adjust(self.product.id, -5, self.producer, "spoilage")


class StockApiTests(MarketplaceFixtures, TestCase):

    def setUp(self):
        self.client = APIClient()
        self.producer = self.make_producer()
        self.product = self.make_product(self.producer, stock=3)

    def test_producer_lists_own_stock(self):
        self.make_product(self.make_producer(), name="Other", stock=7)
        self.client.force_authenticate(self.producer)

        response = self.client.get("/api/v1/inventory/stock/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["quantity"], 3)

    def test_adjust_foreign_product_forbidden(self):
        self.client.force_authenticate(self.make_producer())
        response = self.client.post(
            "/api/v1/inventory/stock/adjust/",
            {"product_id": str(self.product.id), "delta": 5, "reason": "harvest"},
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(self.stock_of(self.product), 3)

    def test_buyer_cannot_adjust(self):
        self.client.force_authenticate(self.make_buyer())
        response = self.client.post(
            "/api/v1/inventory/stock/adjust/",
            {"product_id": str(self.product.id), "delta": 5, "reason": "harvest"},
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


@unittest.skipUnless(connection.vendor == "postgresql", "Row locking needs PostgreSQL")
class ConcurrencyTests(MarketplaceFixtures, TransactionTestCase):
    # Use TransactionTestCase to allow real DB transactions for concurrency testing

    def setUp(self):
        self.producer = self.make_producer()
        self.product = self.make_product(self.producer, stock=1)

    def test_last_unit_reserved_once(self):
        """Two buyers racing for the last unit: exactly one wins."""
        def reserve(ref):
            try:
                InventoryService.reserve(self.product.id, 1, ref)
                return "SUCCESS"
            except InsufficientStock:
                return "FAILED"
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            results = list(executor.map(reserve, ["ORDER-A", "ORDER-B"]))

        self.assertEqual(results.count("SUCCESS"), 1)
        self.assertEqual(results.count("FAILED"), 1)
        self.assertEqual(Stock.objects.get(product=self.product).quantity, 0)
