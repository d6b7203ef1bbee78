# apps/utils/tests.py
from decimal import Decimal

from django.core.cache import cache
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from .exceptions import (
    ConflictError,
    InsufficientStock,
    InternalError,
    NotFoundError,
    ValidationError,
    custom_exception_handler,
)
from .logging import JSONFormatter
from .money import format_money, round_half_away, to_decimal, to_minor
from .resilience import CircuitBreaker, ServiceUnavailable
from .serializers import MoneyField
from .validators import validate_iban, validate_positive_amount, validate_quantity


class MoneyTests(SimpleTestCase):
    def test_round_half_away_from_zero(self):
        self.assertEqual(round_half_away(Decimal("2.5")), 3)
        self.assertEqual(round_half_away(Decimal("-2.5")), -3)
        self.assertEqual(round_half_away(Decimal("2.4999")), 2)
        self.assertEqual(round_half_away(Decimal("0.5")), 1)

    def test_to_minor(self):
        self.assertEqual(to_minor("65.00"), 6500)
        self.assertEqual(to_minor(Decimal("0.005")), 1)
        self.assertEqual(to_minor(15), 1500)

    def test_to_minor_refuses_floats(self):
        with self.assertRaises(TypeError):
            to_minor(0.1)

    def test_to_minor_refuses_garbage(self):
        with self.assertRaises(ValueError):
            to_minor("twelve")

    def test_to_decimal_and_format(self):
        self.assertEqual(to_decimal(325), Decimal("3.25"))
        self.assertEqual(format_money(6175), "61.75 CHF")


class ValidatorTests(SimpleTestCase):
    def test_quantity_validator(self):
        self.assertEqual(validate_quantity(3), 3)
        for bad in (0, -1, 1.5, "2", True):
            with self.assertRaises(ValidationError):
                validate_quantity(bad)

    def test_positive_amount_validator(self):
        self.assertEqual(validate_positive_amount(100), 100)
        with self.assertRaises(ValidationError):
            validate_positive_amount(0)
        with self.assertRaises(ValidationError):
            validate_positive_amount(Decimal("10"))

    def test_iban_validator(self):
        self.assertEqual(validate_iban("ch93 0076 2011 6238 5295 7"), "CH9300762011623852957")
        with self.assertRaises(ValidationError):
            validate_iban("not-an-iban")


class ExceptionHandlerTests(SimpleTestCase):
    def test_domain_errors_map_to_status_and_code(self):
        cases = [
            (ValidationError("bad qty"), 400, "validation_error"),
            (NotFoundError("missing"), 404, "not_found"),
            (InsufficientStock("Insufficient stock: available 2, requested 5."), 409, "insufficient_stock"),
            (ConflictError("dup", code="withdrawal_pending"), 409, "withdrawal_pending"),
        ]
        for exc, status_code, code in cases:
            response = custom_exception_handler(exc, {})
            self.assertEqual(response.status_code, status_code)
            self.assertEqual(response.data["code"], code)
            self.assertEqual(response.data["error"], exc.message)

    def test_internal_error_hides_detail(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            response = custom_exception_handler(InternalError("slot counter drifted"), {})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["error"], "Internal Server Error")

    def test_unknown_exception_is_500(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["code"], "server_error")


class CircuitBreakerTests(TestCase):
    def setUp(self):
        cache.clear()

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("flaky", failure_threshold=2, recovery_timeout=60)
        calls = []

        @breaker
        def call():
            calls.append(1)
            raise RuntimeError("down")

        with self.assertRaises(RuntimeError):
            call()
        with self.assertLogs("apps.utils.resilience", level="WARNING"):
            with self.assertRaises(RuntimeError):
                call()

        with self.assertRaises(ServiceUnavailable):
            call()
        self.assertEqual(len(calls), 2)


class MoneyFieldTests(SimpleTestCase):
    def test_round_trip_representation(self):
        field = MoneyField()
        self.assertEqual(field.to_representation(1250), "12.50")
        self.assertEqual(field.to_internal_value("12.5"), 1250)

    def test_rejects_sub_cent_input(self):
        from rest_framework.exceptions import ValidationError as DRFValidationError
        with self.assertRaises(DRFValidationError):
            MoneyField().to_internal_value("1.005")


class JSONFormatterTests(SimpleTestCase):
    def test_scrubs_bank_details(self):
        formatter = JSONFormatter()
        scrubbed = formatter._scrub({"iban": "CH93", "nested": [{"token": "x", "amount": 5}]})
        self.assertEqual(scrubbed["iban"], "***REDACTED***")
        self.assertEqual(scrubbed["nested"][0]["token"], "***REDACTED***")
        self.assertEqual(scrubbed["nested"][0]["amount"], 5)


class PublicEndpointTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_health(self):
        response = self.client.get("/api/v1/utils/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["components"]["db"], "ok")

    def test_config_exposes_business_settings(self):
        response = self.client.get("/api/v1/utils/config/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["currency"], "CHF")
        self.assertEqual(response.data["home_delivery_fee"], "15.00")
