# apps/notifications/views.py
from rest_framework import generics, permissions, views
from rest_framework.response import Response

from .models import Notification
from .serializers import NotificationSerializer
from .services import mark_all_read, mark_read


class NotificationListView(generics.ListAPIView):
    """
    GET /api/v1/notifications/
    """
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Notification.objects.filter(user=self.request.user).order_by("-created_at")


class NotificationMarkReadView(views.APIView):
    """
    POST /api/v1/notifications/<id>/read/
    POST /api/v1/notifications/read-all/
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, pk=None):
        if pk is None:
            updated = mark_all_read(request.user.id)
            return Response({"status": "all_read", "updated": updated})

        notification = mark_read(request.user.id, pk)
        return Response(NotificationSerializer(notification).data)
