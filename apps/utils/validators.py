import re

from apps.utils.exceptions import ValidationError

IBAN_PATTERN = re.compile(r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{8,30}$")


def validate_quantity(value):
    """
    Quantities are strictly positive integers. bool is rejected on purpose.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Quantity must be an integer, got {value!r}.")
    if value <= 0:
        raise ValidationError(f"Quantity must be positive, got {value}.")
    return value


def validate_positive_amount(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Amount must be an integer number of minor units, got {value!r}.")
    if value <= 0:
        raise ValidationError("Amount must be positive.")
    return value


def normalize_iban(value):
    return re.sub(r"\s+", "", value or "").upper()


def validate_iban(value):
    iban = normalize_iban(value)
    if not IBAN_PATTERN.match(iban):
        raise ValidationError("Invalid IBAN format in producer profile.")
    return iban
