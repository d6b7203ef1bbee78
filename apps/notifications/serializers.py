# apps/notifications/serializers.py
from rest_framework import serializers

from .models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Notification
        fields = [
            "id",
            "type",
            "channel",
            "title",
            "body",
            "data",
            "status",
            "is_read",
            "created_at",
            "sent_at",
        ]
