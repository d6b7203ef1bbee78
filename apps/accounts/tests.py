from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient

from apps.accounts.actors import Actor
from apps.accounts.models import ProducerProfile, Role, User


class UserManagerTests(TestCase):

    def test_create_user_normalizes_email(self):
        user = User.objects.create_user(email="Grower@Example.COM", password="pass1234", role=Role.PRODUCER)
        self.assertEqual(user.email, "Grower@example.com")
        self.assertTrue(user.check_password("pass1234"))
        self.assertTrue(user.is_producer)
        self.assertFalse(user.is_staff)

    def test_create_user_requires_email(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email="", password="x")

    def test_superuser_is_marketplace_admin(self):
        admin = User.objects.create_superuser(email="root@example.com", password="pass1234")
        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_marketplace_admin)


class ProducerProfileTests(TestCase):

    def test_bank_details_required_fields(self):
        user = User.objects.create_user(email="farm@example.com", role=Role.PRODUCER)
        profile = ProducerProfile.objects.create(user=user, bank_name="Alpine Bank")
        self.assertFalse(profile.has_bank_details)

        profile.bank_account_name = "Farm GmbH"
        profile.iban = "CH9300762011623852957"
        self.assertTrue(profile.has_bank_details)
        self.assertEqual(profile.bank_details_snapshot()["bic"], None)


class ActorTests(TestCase):

    def test_from_user(self):
        user = User.objects.create_user(email="buyer@example.com")
        actor = Actor.from_user(user)
        self.assertEqual(actor.user_id, user.id)
        self.assertTrue(actor.is_buyer)
        self.assertFalse(actor.is_admin)

    def test_system_actor_is_admin_without_user(self):
        actor = Actor.system()
        self.assertIsNone(actor.user_id)
        self.assertTrue(actor.is_admin)


class TokenAuthTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        User.objects.create_user(email="buyer@example.com", password="pass1234")

    def test_obtain_token_pair(self):
        response = self.client.post(
            "/api/v1/accounts/token/", {"email": "buyer@example.com", "password": "pass1234"}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("access", response.data)
        self.assertIn("refresh", response.data)

    def test_wrong_password_rejected(self):
        response = self.client.post(
            "/api/v1/accounts/token/", {"email": "buyer@example.com", "password": "nope"}
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
