import logging
from django.utils.deprecation import MiddlewareMixin
from django.http import JsonResponse

logger = logging.getLogger("django")


class GlobalExceptionMiddleware(MiddlewareMixin):
    """
    Last line of defense for non-DRF views.
    """
    def process_exception(self, request, exception):
        logger.exception(f"Unhandled exception on {request.method} {request.path}: {exception}")
        if request.path.startswith('/api/'):
            return JsonResponse(
                {"error": "Internal Server Error", "code": "server_error"},
                status=500
            )
        return None
