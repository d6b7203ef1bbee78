# apps/notifications/tests.py
from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from apps.utils.exceptions import NotFoundError
from .models import Notification, NotificationStatus, NotificationTemplate
from .services import create_notification, mark_all_read, mark_read, notify


User = get_user_model()


class NotificationServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="buyer@example.com", password="testpass")

        self.template = NotificationTemplate.objects.create(
            key="TEST_EVENT",
            title_template="Hello ${name}",
            body_template="Hi ${name}, order ${order_id} created.",
        )

    def test_create_notification_renders_template_and_sends(self):
        notif = create_notification(self.user.id, "TEST_EVENT", {"name": "Mira", "order_id": "OD123"})

        self.assertIsNotNone(notif)
        self.assertEqual(notif.user, self.user)
        self.assertIn("Mira", notif.body)

        # Celery runs eagerly under test settings
        notif.refresh_from_db()
        self.assertEqual(notif.status, NotificationStatus.SENT)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn("Hello Mira", mail.outbox[0].subject)

    def test_unknown_type_falls_back_to_type_name(self):
        notif = create_notification(self.user.id, "SOMETHING_ELSE", {})
        self.assertEqual(notif.body, "SOMETHING_ELSE")

    def test_missing_user_is_skipped(self):
        import uuid
        self.assertIsNone(create_notification(uuid.uuid4(), "TEST_EVENT", {}))
        self.assertEqual(Notification.objects.count(), 0)

    def test_notify_waits_for_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            notify(self.user.id, "TEST_EVENT", {"name": "A", "order_id": "1"})
            self.assertEqual(Notification.objects.count(), 0)

        self.assertEqual(len(callbacks), 1)
        callbacks[0]()
        self.assertEqual(Notification.objects.filter(user=self.user).count(), 1)


class NotificationInboxTests(APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="grower@example.com", password="testpass")
        self.other = User.objects.create_user(email="other@example.com", password="testpass")
        self.first = create_notification(self.user.id, "ORDER_CONFIRMED", {"order_id": "A"})
        self.second = create_notification(self.user.id, "ORDER_SHIPPED", {"order_id": "A"})
        self.foreign = create_notification(self.other.id, "ORDER_CONFIRMED", {"order_id": "B"})

    def test_mark_read_only_touches_own_notifications(self):
        mark_read(self.user.id, self.first.id)
        self.first.refresh_from_db()
        self.assertTrue(self.first.is_read)

        with self.assertRaises(NotFoundError):
            mark_read(self.user.id, self.foreign.id)

    def test_mark_all_read(self):
        self.assertEqual(mark_all_read(self.user.id), 2)
        self.assertEqual(mark_all_read(self.user.id), 0)
        self.foreign.refresh_from_db()
        self.assertFalse(self.foreign.is_read)

    def test_inbox_endpoints(self):
        self.client.force_authenticate(self.user)

        response = self.client.get("/api/v1/notifications/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

        response = self.client.post(f"/api/v1/notifications/{self.second.id}/read/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_read"])

        response = self.client.post(f"/api/v1/notifications/{self.foreign.id}/read/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.client.post("/api/v1/notifications/read-all/")
        self.assertEqual(response.data, {"status": "all_read", "updated": 1})
