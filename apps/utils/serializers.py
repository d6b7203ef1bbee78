from decimal import Decimal, InvalidOperation

from rest_framework import serializers

from apps.utils.money import to_decimal, to_minor


class MoneyField(serializers.Field):
    """
    Minor units inside, "12.50" strings on the wire.
    """
    default_error_messages = {
        'invalid': 'Enter a valid amount with at most two decimal places.',
    }

    def to_representation(self, value):
        return str(to_decimal(value))

    def to_internal_value(self, data):
        try:
            amount = Decimal(str(data))
        except (InvalidOperation, TypeError):
            self.fail('invalid')
        if not amount.is_finite() or amount.as_tuple().exponent < -2:
            self.fail('invalid')
        return to_minor(amount)
