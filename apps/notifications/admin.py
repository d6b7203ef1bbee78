# apps/notifications/admin.py
from django.contrib import admin

from .models import Notification, NotificationTemplate


@admin.register(NotificationTemplate)
class NotificationTemplateAdmin(admin.ModelAdmin):
    list_display = ("key", "channel", "is_active")
    search_fields = ("key", "title_template", "body_template")
    list_filter = ("channel", "is_active")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("user", "type", "channel", "status", "is_read", "created_at", "sent_at")
    list_filter = ("channel", "status", "is_read")
    search_fields = ("title", "body", "user__email")
    readonly_fields = (
        "user", "type", "channel", "title", "body", "data",
        "status", "error_message", "sent_at", "created_at", "updated_at",
    )

    def has_add_permission(self, request):
        return False
