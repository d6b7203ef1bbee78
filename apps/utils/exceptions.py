from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').
    Subclasses pick the HTTP status the API layer answers with.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "business_error"

    def __init__(self, message, code=None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class ValidationError(BusinessLogicException):
    """Malformed or out-of-range input (negative quantity, empty note...)."""
    default_code = "validation_error"


class NotFoundError(BusinessLogicException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ConflictError(BusinessLogicException):
    """
    The request is well formed but the current state forbids it:
    capacity exceeded, insufficient stock or balance, duplicate withdrawal.
    """
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class InsufficientStock(ConflictError):
    default_code = "insufficient_stock"


class BookingCapacityExceeded(ConflictError):
    default_code = "booking_capacity_exceeded"


class InvalidTransition(ConflictError):
    default_code = "invalid_transition"


class ForbiddenError(BusinessLogicException):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"


class InternalError(BusinessLogicException):
    """
    Unexpected persistence failure. The detail stays in the logs,
    clients only ever see a generic message.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "server_error"
    public_message = "Internal Server Error"


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, InternalError):
        logger.error(f"Internal error: {exc.message}", exc_info=True)
        return Response(
            {"error": exc.public_message, "code": exc.code},
            status=exc.status_code
        )

    if isinstance(exc, BusinessLogicException):
        return Response(
            {"error": exc.message, "code": exc.code},
            status=exc.status_code
        )

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"error": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return response
