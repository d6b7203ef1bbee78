import logging
from django.db import transaction
from django.db.models import F

from apps.utils.exceptions import InsufficientStock, NotFoundError, ValidationError
from apps.utils.validators import validate_quantity
from .models import Stock, StockMovementLog

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Core Logic for Stock Management.
    ALL stock changes must pass through here, inside the transaction of the
    order mutation that triggered them.
    """

    @staticmethod
    def _log(stock_id, delta, movement_type, reference, user=None):
        # Re-read the committed value for the snapshot, not the F() expression
        balance = Stock.objects.values_list("quantity", flat=True).get(id=stock_id)
        StockMovementLog.objects.create(
            stock_id=stock_id,
            quantity_change=delta,
            movement_type=movement_type,
            reference=str(reference),
            balance_after=balance,
            created_by=user,
        )
        return balance

    @staticmethod
    def _get_stock_id(product_id):
        try:
            return Stock.objects.values_list("id", flat=True).get(product_id=product_id)
        except Stock.DoesNotExist:
            raise NotFoundError(f"No stock record for product {product_id}.")

    @staticmethod
    @transaction.atomic
    def reserve(product_id, qty: int, reference) -> int:
        """
        Check-and-set decrement. Two concurrent reservations can never both
        pass when their combined demand exceeds what is left.
        Returns the remaining quantity.
        """
        validate_quantity(qty)
        stock_id = InventoryService._get_stock_id(product_id)

        updated = Stock.objects.filter(id=stock_id, quantity__gte=qty).update(
            quantity=F("quantity") - qty
        )
        if not updated:
            available = Stock.objects.values_list("quantity", flat=True).get(id=stock_id)
            raise InsufficientStock(
                f"Insufficient stock: available {available}, requested {qty}."
            )

        return InventoryService._log(
            stock_id, -qty, StockMovementLog.MovementType.RESERVATION, reference
        )

    @staticmethod
    @transaction.atomic
    def release(product_id, qty: int, reference) -> int:
        """
        Reverses a reservation (cancellation, line removal, expired hold).
        """
        validate_quantity(qty)
        stock_id = InventoryService._get_stock_id(product_id)

        Stock.objects.filter(id=stock_id).update(quantity=F("quantity") + qty)

        return InventoryService._log(
            stock_id, qty, StockMovementLog.MovementType.RELEASE, reference
        )

    @staticmethod
    @transaction.atomic
    def adjust(product_id, delta_qty: int, user, reason: str) -> Stock:
        """
        Producer stock correction (harvest in, spoilage out).
        Creates the stock row on first use.
        """
        if isinstance(delta_qty, bool) or not isinstance(delta_qty, int) or delta_qty == 0:
            raise ValidationError("Adjustment must be a non-zero integer.")

        stock, _ = Stock.objects.get_or_create(product_id=product_id)
        stock = Stock.objects.select_for_update().get(id=stock.id)

        if stock.quantity + delta_qty < 0:
            raise InsufficientStock(
                f"Insufficient stock: available {stock.quantity}, requested {-delta_qty}."
            )

        Stock.objects.filter(id=stock.id).update(quantity=F("quantity") + delta_qty)
        InventoryService._log(
            stock.id, delta_qty, StockMovementLog.MovementType.ADJUSTMENT,
            f"MANUAL: {reason}", user=user,
        )
        stock.refresh_from_db()
        if stock.is_low:
            logger.warning(f"Low stock for product {product_id}: {stock.quantity} left")
        return stock
