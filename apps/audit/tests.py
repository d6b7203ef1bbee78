import uuid
from unittest import mock

from django.test import TestCase

from .models import AuditLog
from .services import append, write_entry


class AuditLogTests(TestCase):
    def test_append_records_after_commit(self):
        entity_id = uuid.uuid4()
        with self.captureOnCommitCallbacks(execute=True):
            append("order.status_changed", "Order", entity_id, None, {"to": "CONFIRMED"})
            self.assertFalse(AuditLog.objects.exists())

        entry = AuditLog.objects.get()
        self.assertEqual(entry.entity_id, str(entity_id))
        self.assertEqual(entry.details["to"], "CONFIRMED")

    def test_write_failure_is_swallowed_and_logged(self):
        with mock.patch.object(AuditLog.objects, "create", side_effect=RuntimeError("db down")):
            with self.assertLogs("apps.audit.services", level="ERROR"):
                self.assertIsNone(write_entry("x", "Order", "1"))
