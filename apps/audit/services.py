import logging
from django.db import transaction

from .models import AuditLog

logger = logging.getLogger(__name__)


def write_entry(action, entity_type, entity_id, actor_id=None, details=None):
    try:
        return AuditLog.objects.create(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor_id=actor_id,
            details=details or {},
        )
    except Exception:
        logger.exception(f"Audit write failed: {action} {entity_type}:{entity_id}")
        return None


def append(action, entity_type, entity_id, actor_id=None, details=None):
    """
    Best-effort: recorded after the business transaction commits;
    a failure here is logged and never reaches the caller.
    """
    transaction.on_commit(lambda: write_entry(action, entity_type, entity_id, actor_id, details))
