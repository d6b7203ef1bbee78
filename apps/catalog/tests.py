from django.db import IntegrityError
from django.test import TestCase

from apps.accounts.models import Role, User
from apps.catalog.models import Product


class ProductModelTests(TestCase):

    def setUp(self):
        self.producer = User.objects.create_user(email="farm@example.com", role=Role.PRODUCER)

    def test_defaults(self):
        product = Product.objects.create(producer=self.producer, name="Oyster", price=1200)
        self.assertTrue(product.is_available)
        self.assertTrue(product.tracks_stock)
        self.assertFalse(product.requires_delivery_slot)
        self.assertEqual(product.unit, "kg")
        self.assertEqual(str(product), "Oyster")

    def test_negative_price_rejected(self):
        with self.assertRaises(IntegrityError):
            Product.objects.create(producer=self.producer, name="Broken", price=-1)
