import functools
import logging
from django.core.cache import cache
from apps.utils.exceptions import ConflictError

logger = logging.getLogger(__name__)


class ServiceUnavailable(ConflictError):
    status_code = 503
    default_code = "service_unavailable"


class CircuitBreaker:
    """
    Cache-backed breaker around calls to an external collaborator.
    After `failure_threshold` errors inside the counting window the circuit
    opens and calls fail fast for `recovery_timeout` seconds.
    """

    def __init__(self, service_name, failure_threshold=5, recovery_timeout=60, window=120):
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.window = window
        self.cache_key_failures = f"cb_failures:{service_name}"
        self.cache_key_open = f"cb_open:{service_name}"

    def is_open(self):
        return bool(cache.get(self.cache_key_open))

    def record_failure(self):
        # add() is a no-op when the counter already exists
        cache.add(self.cache_key_failures, 0, timeout=self.window)
        try:
            failures = cache.incr(self.cache_key_failures)
        except ValueError:
            # Counter expired between add() and incr()
            cache.set(self.cache_key_failures, 1, timeout=self.window)
            failures = 1

        if failures >= self.failure_threshold:
            logger.warning(f"Circuit for {self.service_name} opened after {failures} failures")
            cache.set(self.cache_key_open, "OPEN", timeout=self.recovery_timeout)
            cache.delete(self.cache_key_failures)

    def __call__(self, func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if self.is_open():
                raise ServiceUnavailable(
                    f"{self.service_name} is temporarily unavailable. Please try again later."
                )

            try:
                return func(*args, **kwargs)
            except Exception:
                self.record_failure()
                raise

        return wrapper
