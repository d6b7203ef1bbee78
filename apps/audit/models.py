from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from apps.utils.models import TimestampedModel


class AuditLog(TimestampedModel):
    """
    Append-only trail of business actions. Rows are never updated.
    """
    action = models.CharField(max_length=100, db_index=True)
    entity_type = models.CharField(max_length=50)
    entity_id = models.CharField(max_length=64)
    # No FK: the trail must outlive the actor
    actor_id = models.UUIDField(null=True, blank=True)
    details = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['entity_type', 'entity_id'], name='audit_entity_idx'),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_type}:{self.entity_id}"
