import logging
from collections import defaultdict

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from apps.accounts.models import ProducerProfile
from apps.audit.services import append as audit
from apps.notifications.services import notify
from apps.utils.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from apps.utils.money import format_money, to_minor
from apps.utils.utils import short_id
from apps.utils.validators import validate_iban, validate_positive_amount
from . import commission
from .models import Wallet, WalletTransaction, Withdrawal

logger = logging.getLogger(__name__)


class WalletLedgerService:
    """
    Producer ledger. Called by OrderService inside its transaction; every
    method is idempotent per (order, producer, transaction type) and locks
    wallets in producer id order.
    """

    @staticmethod
    def producer_subtotals(order) -> dict:
        subtotals = defaultdict(int)
        for item in order.items.select_related("product"):
            subtotals[item.product.producer_id] += item.line_total
        for booking in order.bookings.select_related("slot__product").exclude(status="CANCELLED"):
            subtotals[booking.slot.product.producer_id] += booking.line_total
        return dict(subtotals)

    @staticmethod
    def _lock_wallets(producer_ids) -> dict:
        wallets = (
            Wallet.objects.select_for_update()
            .filter(producer_id__in=producer_ids)
            .order_by("producer_id")
        )
        return {w.producer_id: w for w in wallets}

    @staticmethod
    @transaction.atomic
    def post_sale(order) -> list:
        """
        Credits each producer's pending balance with their share of the order
        and stores the summed commission on the order.
        """
        subtotals = WalletLedgerService.producer_subtotals(order)
        if not subtotals:
            return []

        percent = commission.get_fee_percent()
        for producer_id in sorted(subtotals, key=str):
            Wallet.objects.get_or_create(producer_id=producer_id)
        wallets = WalletLedgerService._lock_wallets(subtotals.keys())

        created, total_fee = [], 0
        for producer_id in sorted(subtotals, key=str):
            wallet = wallets[producer_id]
            gross = subtotals[producer_id]
            fee = commission.fee(gross, percent)
            share = gross - fee
            total_fee += fee

            if WalletTransaction.objects.filter(
                wallet=wallet, order=order, type=WalletTransaction.Type.SALE
            ).exists():
                logger.info(f"Sale for order {order.id} already posted to wallet {wallet.id}")
                continue

            created.append(WalletTransaction.objects.create(
                wallet=wallet,
                order=order,
                type=WalletTransaction.Type.SALE,
                status=WalletTransaction.Status.PENDING,
                amount=share,
                gross_amount=gross,
                fee=fee,
                fee_percent=percent,
                description=f"Sale - order #{short_id(order.id)}",
            ))
            Wallet.objects.filter(id=wallet.id).update(pending_balance=F("pending_balance") + share)

        order.platform_fee = total_fee
        order.save(update_fields=["platform_fee", "updated_at"])

        logger.info(
            f"Posted {len(created)} sale(s) for order {order.id}, platform fee {total_fee}",
            extra={"order_id": order.id},
        )
        return created

    @staticmethod
    def _settle_pending_sales(order, new_status, wallet_update):
        sales = list(
            WalletTransaction.objects.filter(
                order=order,
                type=WalletTransaction.Type.SALE,
                status=WalletTransaction.Status.PENDING,
            ).select_related("wallet")
        )
        if not sales:
            return []

        WalletLedgerService._lock_wallets({s.wallet.producer_id for s in sales})

        settled = []
        for sale in sorted(sales, key=lambda s: str(s.wallet.producer_id)):
            # Conditional flip: a concurrent settle of the same row updates nothing
            flipped = WalletTransaction.objects.filter(
                id=sale.id, status=WalletTransaction.Status.PENDING
            ).update(status=new_status, updated_at=timezone.now())
            if not flipped:
                continue
            Wallet.objects.filter(id=sale.wallet_id).update(**wallet_update(sale.amount))
            settled.append(sale)
        return settled

    @staticmethod
    @transaction.atomic
    def release_on_delivery(order) -> list:
        """
        Moves each producer's share from pending to available balance.
        """
        settled = WalletLedgerService._settle_pending_sales(
            order,
            WalletTransaction.Status.COMPLETED,
            lambda amount: {
                "pending_balance": F("pending_balance") - amount,
                "balance": F("balance") + amount,
                "total_earned": F("total_earned") + amount,
            },
        )
        if settled:
            logger.info(f"Released {len(settled)} sale(s) for delivered order {order.id}")
        return settled

    @staticmethod
    @transaction.atomic
    def reverse_sale(order) -> list:
        """
        Undoes pending sales of a cancelled order. Completed sales are left
        alone: a delivered order cannot be cancelled.
        """
        settled = WalletLedgerService._settle_pending_sales(
            order,
            WalletTransaction.Status.CANCELLED,
            lambda amount: {"pending_balance": F("pending_balance") - amount},
        )
        for sale in settled:
            WalletTransaction.objects.get_or_create(
                wallet_id=sale.wallet_id,
                order=order,
                type=WalletTransaction.Type.REVERSAL,
                defaults={
                    "status": WalletTransaction.Status.COMPLETED,
                    "amount": -sale.amount,
                    "gross_amount": -sale.gross_amount,
                    "fee": -sale.fee,
                    "fee_percent": sale.fee_percent,
                    "description": f"Reversal - order #{short_id(order.id)} cancelled",
                },
            )

        if settled:
            order.platform_fee = 0
            order.save(update_fields=["platform_fee", "updated_at"])
            logger.info(f"Reversed {len(settled)} sale(s) for cancelled order {order.id}")
        return settled


class WithdrawalService:
    """
    Producer payouts. The balance only moves when an admin completes the
    withdrawal; requesting one just reserves the right to the amount.
    """

    @staticmethod
    def _amount_bounds():
        return to_minor(settings.WITHDRAWAL_MIN_AMOUNT), to_minor(settings.WITHDRAWAL_MAX_AMOUNT)

    @staticmethod
    @transaction.atomic
    def create(actor, amount: int) -> Withdrawal:
        if not actor.is_producer:
            raise ForbiddenError("Only producers can request withdrawals.")

        validate_positive_amount(amount)
        min_amount, max_amount = WithdrawalService._amount_bounds()
        if amount < min_amount or amount > max_amount:
            raise ValidationError(
                f"Withdrawal amount must be between {format_money(min_amount)} and {format_money(max_amount)}."
            )

        profile = ProducerProfile.objects.filter(user_id=actor.user_id).first()
        if profile is None or not profile.has_bank_details:
            raise ValidationError("Bank details are not configured.", code="bank_details_missing")
        validate_iban(profile.iban)

        try:
            wallet = Wallet.objects.select_for_update().get(producer_id=actor.user_id)
        except Wallet.DoesNotExist:
            raise NotFoundError("Wallet not found.")

        if wallet.balance < amount:
            raise ConflictError(
                f"Insufficient balance: available {format_money(wallet.balance)}, "
                f"requested {format_money(amount)}.",
                code="insufficient_balance",
            )

        if Withdrawal.objects.filter(wallet=wallet, status__in=Withdrawal.OPEN_STATUSES).exists():
            raise ConflictError("A withdrawal request is already pending.", code="withdrawal_pending")

        try:
            with transaction.atomic():
                withdrawal = Withdrawal.objects.create(
                    wallet=wallet,
                    amount=amount,
                    bank_details=profile.bank_details_snapshot(),
                )
        except IntegrityError:
            raise ConflictError("A withdrawal request is already pending.", code="withdrawal_pending")

        WalletTransaction.objects.create(
            wallet=wallet,
            withdrawal=withdrawal,
            type=WalletTransaction.Type.WITHDRAWAL,
            status=WalletTransaction.Status.PENDING,
            amount=-amount,
            gross_amount=-amount,
            description=f"Withdrawal request #{short_id(withdrawal.id)}",
        )

        logger.info(
            f"Withdrawal {withdrawal.id} requested: {format_money(amount)}",
            extra={"wallet_id": wallet.id, "withdrawal_id": withdrawal.id},
        )
        audit("withdrawal.requested", "Withdrawal", withdrawal.id, actor.user_id, {"amount": amount})
        return withdrawal

    ALLOWED_DECISIONS = {
        Withdrawal.Status.PENDING: {
            Withdrawal.Status.APPROVED, Withdrawal.Status.COMPLETED, Withdrawal.Status.REJECTED,
        },
        Withdrawal.Status.APPROVED: {Withdrawal.Status.COMPLETED, Withdrawal.Status.REJECTED},
    }

    @staticmethod
    @transaction.atomic
    def process(withdrawal_id, decision, actor, note: str = "", reference: str = "") -> Withdrawal:
        if not actor.is_admin:
            raise ForbiddenError("Only administrators can process withdrawals.")

        if decision not in (Withdrawal.Status.APPROVED, Withdrawal.Status.COMPLETED, Withdrawal.Status.REJECTED):
            raise ValidationError(f"Unknown decision {decision!r}.")

        note = (note or "").strip()
        if decision == Withdrawal.Status.REJECTED and not note:
            raise ValidationError("A note is required when rejecting a withdrawal.")

        wallet_id = Withdrawal.objects.filter(id=withdrawal_id).values_list("wallet_id", flat=True).first()
        if wallet_id is None:
            raise NotFoundError("Withdrawal not found.")

        # Wallet before withdrawal, same order as create()
        wallet = Wallet.objects.select_for_update().get(id=wallet_id)
        withdrawal = Withdrawal.objects.select_for_update().get(id=withdrawal_id)

        allowed = WithdrawalService.ALLOWED_DECISIONS.get(withdrawal.status, set())
        if decision not in allowed:
            raise ConflictError(
                f"Withdrawal is {withdrawal.status}, cannot move to {decision}.",
                code="withdrawal_already_processed",
            )

        txn_status = None
        if decision == Withdrawal.Status.COMPLETED:
            if wallet.balance < withdrawal.amount:
                raise ConflictError(
                    f"Insufficient balance: available {format_money(wallet.balance)}, "
                    f"requested {format_money(withdrawal.amount)}.",
                    code="insufficient_balance",
                )
            Wallet.objects.filter(id=wallet.id).update(
                balance=F("balance") - withdrawal.amount,
                total_withdrawn=F("total_withdrawn") + withdrawal.amount,
            )
            withdrawal.reference = reference or withdrawal.reference
            txn_status = WalletTransaction.Status.COMPLETED
        elif decision == Withdrawal.Status.REJECTED:
            txn_status = WalletTransaction.Status.CANCELLED

        if txn_status:
            withdrawal.transactions.filter(
                type=WalletTransaction.Type.WITHDRAWAL
            ).update(status=txn_status, updated_at=timezone.now())

        withdrawal.status = decision
        if note:
            withdrawal.note = note
        withdrawal.processed_at = timezone.now()
        withdrawal.processed_by_id = actor.user_id
        withdrawal.save()

        logger.info(
            f"Withdrawal {withdrawal.id} -> {decision}",
            extra={"wallet_id": wallet.id, "withdrawal_id": withdrawal.id},
        )
        payload = {"withdrawal_id": str(withdrawal.id), "status": decision, "amount": withdrawal.amount}
        notify(wallet.producer_id, f"WITHDRAWAL_{decision}", payload)
        audit("withdrawal.processed", "Withdrawal", withdrawal.id, actor.user_id, payload)
        return withdrawal
