# apps/utils/testing.py
"""
Shared fixtures for the app test suites.
"""
import datetime

from django.utils import timezone

from apps.accounts.actors import Actor
from apps.accounts.models import ProducerProfile, Role, User
from apps.catalog.models import Product
from apps.delivery.models import DeliverySlot
from apps.inventory.models import Stock


class MarketplaceFixtures:
    """
    Mixin for TestCase classes. Counters keep emails unique per test.
    """
    _seq = 0

    def make_user(self, role=Role.BUYER, **extra):
        MarketplaceFixtures._seq += 1
        email = extra.pop("email", f"{role.lower()}{MarketplaceFixtures._seq}@example.com")
        return User.objects.create_user(email=email, password="pass1234", role=role, **extra)

    def make_buyer(self, **extra):
        return self.make_user(Role.BUYER, **extra)

    def make_producer(self, bank_details=True, **extra):
        user = self.make_user(Role.PRODUCER, **extra)
        profile = ProducerProfile.objects.create(user=user, company_name=f"Farm {user.email}")
        if bank_details:
            profile.bank_name = "Alpine Bank"
            profile.bank_account_name = "Mushroom Farm GmbH"
            profile.iban = "CH9300762011623852957"
            profile.save()
        return user

    def make_admin(self, **extra):
        return self.make_user(Role.ADMIN, **extra)

    def make_product(self, producer, price=1000, stock=None, requires_slot=False, tracks_stock=True, **extra):
        product = Product.objects.create(
            producer=producer,
            name=extra.pop("name", "Shiitake"),
            price=price,
            requires_delivery_slot=requires_slot,
            tracks_stock=tracks_stock,
            **extra,
        )
        if stock is not None:
            Stock.objects.create(product=product, quantity=stock)
        return product

    def make_slot(self, product, max_capacity=50, date=None, reserved=0):
        return DeliverySlot.objects.create(
            product=product,
            date=date or timezone.localdate() + datetime.timedelta(days=3),
            max_capacity=max_capacity,
            reserved=reserved,
        )

    @staticmethod
    def actor(user):
        return Actor.from_user(user)

    @staticmethod
    def stock_of(product):
        return Stock.objects.get(product=product).quantity
