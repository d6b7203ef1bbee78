import concurrent.futures
import unittest
from decimal import Decimal

from django.db import connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from apps.accounts.models import ProducerProfile
from apps.orders.models import Order, OrderItem
from apps.utils.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from apps.utils.testing import MarketplaceFixtures
from apps.wallets import commission
from apps.wallets.models import Wallet, WalletTransaction, Withdrawal
from apps.wallets.services import WalletLedgerService, WithdrawalService


@override_settings(PLATFORM_FEE_PERCENT="5")
class CommissionTests(SimpleTestCase):

    def test_five_percent_of_sixty_five(self):
        self.assertEqual(commission.fee(6500), 325)
        self.assertEqual(commission.producer_share(6500), 6175)

    def test_fee_rounds_half_away_from_zero(self):
        # 5% of 0.10 is half a centime
        self.assertEqual(commission.fee(10), 1)
        self.assertEqual(commission.fee(9), 0)

    def test_buyer_total_excludes_platform_fee(self):
        parts = commission.breakdown(6500, delivery_fee=1500)
        self.assertEqual(parts.platform_fee, 325)
        self.assertEqual(parts.producer_amount, 6175)
        self.assertEqual(parts.buyer_total, 8000)
        self.assertEqual(parts.fee_percent, Decimal("5"))

    def test_fee_is_withheld_not_charged_on_top(self):
        # Two historical commission rules disagree here: one charged the buyer
        # subtotal + fee. Withholding from the subtotal is the rule in force.
        parts = commission.breakdown(6500)
        self.assertEqual(parts.buyer_total, parts.subtotal)
        self.assertNotEqual(parts.buyer_total, parts.subtotal + parts.platform_fee)
        self.assertEqual(parts.platform_fee + parts.producer_amount, parts.subtotal)

    def test_explicit_percent(self):
        self.assertEqual(commission.fee(10000, Decimal("12.5")), 1250)


class CommissionSettingTests(SimpleTestCase):

    def test_invalid_values_fall_back_to_default(self):
        for raw in ("abc", "-1", "150", "", None, "NaN"):
            with self.subTest(raw=raw), override_settings(PLATFORM_FEE_PERCENT=raw):
                with self.assertLogs("apps.wallets.commission", level="WARNING"):
                    self.assertEqual(commission.get_fee_percent(), commission.DEFAULT_FEE_PERCENT)

    @override_settings(PLATFORM_FEE_PERCENT="7.5")
    def test_configured_percent(self):
        self.assertEqual(commission.get_fee_percent(), Decimal("7.5"))


@override_settings(PLATFORM_FEE_PERCENT="5")
class LedgerTests(MarketplaceFixtures, TestCase):

    def setUp(self):
        self.buyer = self.make_buyer()
        self.producer = self.make_producer()
        self.grower = self.make_producer()
        self.order = Order.objects.create(buyer=self.buyer, status=Order.Status.PENDING)
        self._line(self.make_product(self.producer, price=6500), 1)
        self._line(self.make_product(self.grower, name="Enoki", price=1000), 2)

    def _line(self, product, qty):
        OrderItem.objects.create(
            order=self.order,
            product=product,
            product_name_snapshot=product.name,
            unit_price_snapshot=product.price,
            quantity=qty,
        )

    def wallet(self, producer):
        return Wallet.objects.get(producer=producer)

    def test_producer_subtotals(self):
        self.assertEqual(
            WalletLedgerService.producer_subtotals(self.order),
            {self.producer.id: 6500, self.grower.id: 2000},
        )

    def test_post_sale_credits_pending_balance(self):
        sales = WalletLedgerService.post_sale(self.order)

        self.assertEqual(len(sales), 2)
        self.assertEqual(self.wallet(self.producer).pending_balance, 6175)
        self.assertEqual(self.wallet(self.grower).pending_balance, 1900)
        self.order.refresh_from_db()
        self.assertEqual(self.order.platform_fee, 325 + 100)

        sale = WalletTransaction.objects.get(wallet__producer=self.producer, type=WalletTransaction.Type.SALE)
        self.assertEqual((sale.gross_amount, sale.fee, sale.amount), (6500, 325, 6175))
        self.assertEqual(sale.status, WalletTransaction.Status.PENDING)

    def test_post_sale_is_idempotent(self):
        WalletLedgerService.post_sale(self.order)
        self.assertEqual(WalletLedgerService.post_sale(self.order), [])
        self.assertEqual(self.wallet(self.producer).pending_balance, 6175)
        self.assertEqual(WalletTransaction.objects.filter(type=WalletTransaction.Type.SALE).count(), 2)

    def test_release_on_delivery(self):
        WalletLedgerService.post_sale(self.order)
        WalletLedgerService.release_on_delivery(self.order)
        WalletLedgerService.release_on_delivery(self.order)

        wallet = self.wallet(self.producer)
        self.assertEqual((wallet.pending_balance, wallet.balance, wallet.total_earned), (0, 6175, 6175))
        self.assertFalse(
            WalletTransaction.objects.filter(order=self.order, status=WalletTransaction.Status.PENDING).exists()
        )

    def test_reverse_sale(self):
        WalletLedgerService.post_sale(self.order)
        reversed_sales = WalletLedgerService.reverse_sale(self.order)
        self.assertEqual(len(reversed_sales), 2)
        self.assertEqual(WalletLedgerService.reverse_sale(self.order), [])

        wallet = self.wallet(self.producer)
        self.assertEqual((wallet.pending_balance, wallet.balance), (0, 0))
        reversal = WalletTransaction.objects.get(wallet=wallet, type=WalletTransaction.Type.REVERSAL)
        self.assertEqual(reversal.amount, -6175)
        self.order.refresh_from_db()
        self.assertEqual(self.order.platform_fee, 0)

    def test_reverse_without_sale_is_noop(self):
        self.assertEqual(WalletLedgerService.reverse_sale(self.order), [])
        self.assertFalse(Wallet.objects.exists())


@override_settings(WITHDRAWAL_MIN_AMOUNT="10.00", WITHDRAWAL_MAX_AMOUNT="10000.00")
class WithdrawalTests(MarketplaceFixtures, TestCase):

    def setUp(self):
        self.producer = self.make_producer()
        self.as_producer = self.actor(self.producer)
        self.admin = self.actor(self.make_admin())
        self.wallet = Wallet.objects.create(producer=self.producer, balance=50000, total_earned=50000)

    def test_request_snapshots_bank_details(self):
        withdrawal = WithdrawalService.create(self.as_producer, 20000)

        self.assertEqual(withdrawal.status, Withdrawal.Status.PENDING)
        self.assertEqual(withdrawal.bank_details["iban"], "CH9300762011623852957")
        self.wallet.refresh_from_db()
        self.assertEqual(self.wallet.balance, 50000)
        txn = withdrawal.transactions.get()
        self.assertEqual((txn.type, txn.amount), (WalletTransaction.Type.WITHDRAWAL, -20000))

    def test_amount_bounds(self):
        for amount in (999, 1000001):
            with self.assertRaises(ValidationError):
                WithdrawalService.create(self.as_producer, amount)
        with self.assertRaises(ValidationError):
            WithdrawalService.create(self.as_producer, 0)

    def test_insufficient_balance_message(self):
        with self.assertRaises(ConflictError) as ctx:
            WithdrawalService.create(self.as_producer, 60000)
        self.assertEqual(ctx.exception.code, "insufficient_balance")
        self.assertEqual(
            ctx.exception.message, "Insufficient balance: available 500.00 CHF, requested 600.00 CHF."
        )

    def test_bank_details_required(self):
        ProducerProfile.objects.filter(user=self.producer).update(iban="")
        with self.assertRaises(ValidationError) as ctx:
            WithdrawalService.create(self.as_producer, 1000)
        self.assertEqual(ctx.exception.code, "bank_details_missing")

    def test_malformed_iban(self):
        ProducerProfile.objects.filter(user=self.producer).update(iban="12345")
        with self.assertRaises(ValidationError):
            WithdrawalService.create(self.as_producer, 1000)

    def test_one_open_request_at_a_time(self):
        WithdrawalService.create(self.as_producer, 1000)
        with self.assertRaises(ConflictError) as ctx:
            WithdrawalService.create(self.as_producer, 1000)
        self.assertEqual(ctx.exception.code, "withdrawal_pending")

    def test_only_producers_withdraw(self):
        with self.assertRaises(ForbiddenError):
            WithdrawalService.create(self.admin, 1000)

    def test_producer_without_wallet(self):
        other = self.make_producer()
        with self.assertRaises(NotFoundError):
            WithdrawalService.create(self.actor(other), 1000)

    def test_complete_moves_balance(self):
        withdrawal = WithdrawalService.create(self.as_producer, 20000)
        WithdrawalService.process(withdrawal.id, Withdrawal.Status.APPROVED, self.admin)
        withdrawal = WithdrawalService.process(
            withdrawal.id, Withdrawal.Status.COMPLETED, self.admin, reference="SEPA-0042"
        )

        self.assertEqual(withdrawal.reference, "SEPA-0042")
        self.assertIsNotNone(withdrawal.processed_at)
        self.wallet.refresh_from_db()
        self.assertEqual((self.wallet.balance, self.wallet.total_withdrawn), (30000, 20000))
        self.assertEqual(withdrawal.transactions.get().status, WalletTransaction.Status.COMPLETED)

        # A new request is allowed once the previous one is closed
        WithdrawalService.create(self.as_producer, 1000)

    def test_reject_requires_note(self):
        withdrawal = WithdrawalService.create(self.as_producer, 20000)
        with self.assertRaises(ValidationError):
            WithdrawalService.process(withdrawal.id, Withdrawal.Status.REJECTED, self.admin, note="  ")

        withdrawal = WithdrawalService.process(
            withdrawal.id, Withdrawal.Status.REJECTED, self.admin, note="IBAN closed"
        )
        self.assertEqual(withdrawal.note, "IBAN closed")
        self.assertEqual(withdrawal.transactions.get().status, WalletTransaction.Status.CANCELLED)
        self.wallet.refresh_from_db()
        self.assertEqual(self.wallet.balance, 50000)

    def test_processed_withdrawal_is_final(self):
        withdrawal = WithdrawalService.create(self.as_producer, 20000)
        WithdrawalService.process(withdrawal.id, Withdrawal.Status.REJECTED, self.admin, note="no")
        with self.assertRaises(ConflictError):
            WithdrawalService.process(withdrawal.id, Withdrawal.Status.COMPLETED, self.admin)

    def test_complete_rechecks_balance(self):
        withdrawal = WithdrawalService.create(self.as_producer, 20000)
        Wallet.objects.filter(id=self.wallet.id).update(balance=100)
        with self.assertRaises(ConflictError):
            WithdrawalService.process(withdrawal.id, Withdrawal.Status.COMPLETED, self.admin)

    def test_only_admins_process(self):
        withdrawal = WithdrawalService.create(self.as_producer, 20000)
        with self.assertRaises(ForbiddenError):
            WithdrawalService.process(withdrawal.id, Withdrawal.Status.COMPLETED, self.as_producer)


@unittest.skipUnless(connection.vendor == "postgresql", "Row locking needs PostgreSQL")
@override_settings(WITHDRAWAL_MIN_AMOUNT="10.00", WITHDRAWAL_MAX_AMOUNT="10000.00")
class WithdrawalConcurrencyTests(MarketplaceFixtures, TransactionTestCase):
    # Real transactions so both requests contend for the wallet row

    def setUp(self):
        self.producer = self.make_producer()
        self.as_producer = self.actor(self.producer)
        self.admin = self.actor(self.make_admin())
        self.wallet = Wallet.objects.create(producer=self.producer, balance=50000, total_earned=50000)

    def test_one_open_withdrawal_per_wallet(self):
        """Two simultaneous requests from one producer: exactly one is opened."""
        def request(amount):
            try:
                WithdrawalService.create(self.as_producer, amount)
                return "SUCCESS"
            except ConflictError:
                return "FAILED"
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            results = list(executor.map(request, [20000, 30000]))

        self.assertEqual(results.count("SUCCESS"), 1)
        self.assertEqual(results.count("FAILED"), 1)
        self.assertEqual(Withdrawal.objects.filter(wallet=self.wallet).count(), 1)

    def test_withdrawal_paid_out_once(self):
        withdrawal = WithdrawalService.create(self.as_producer, 20000)

        def complete(reference):
            try:
                WithdrawalService.process(
                    withdrawal.id, Withdrawal.Status.COMPLETED, self.admin, reference=reference
                )
                return "SUCCESS"
            except ConflictError:
                return "FAILED"
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            results = list(executor.map(complete, ["PAYOUT-A", "PAYOUT-B"]))

        self.assertEqual(results.count("SUCCESS"), 1)
        self.wallet.refresh_from_db()
        self.assertEqual((self.wallet.balance, self.wallet.total_withdrawn), (30000, 20000))


@override_settings(WITHDRAWAL_MIN_AMOUNT="10.00", WITHDRAWAL_MAX_AMOUNT="10000.00")
class WalletApiTests(MarketplaceFixtures, APITestCase):

    def setUp(self):
        self.producer = self.make_producer()
        self.admin = self.make_admin()
        Wallet.objects.create(producer=self.producer, balance=12345)

    def test_wallet_detail(self):
        self.client.force_authenticate(self.producer)
        response = self.client.get("/api/v1/wallet/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["balance"], "123.45")

    def test_withdrawal_request_and_admin_completion(self):
        self.client.force_authenticate(self.producer)
        response = self.client.post("/api/v1/wallet/withdrawals/", {"amount": "100.00"})
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        withdrawal_id = response.data["id"]

        self.client.force_authenticate(self.admin)
        response = self.client.get("/api/v1/wallet/admin/withdrawals/", {"status": "PENDING"})
        self.assertEqual([row["id"] for row in response.data], [withdrawal_id])

        response = self.client.post(
            f"/api/v1/wallet/admin/withdrawals/{withdrawal_id}/process/", {"status": "COMPLETED"}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "COMPLETED")
        self.assertEqual(Wallet.objects.get(producer=self.producer).balance, 2345)

    def test_overdraw_is_conflict(self):
        self.client.force_authenticate(self.producer)
        response = self.client.post("/api/v1/wallet/withdrawals/", {"amount": "200.00"})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "insufficient_balance")

    def test_producer_cannot_process(self):
        self.client.force_authenticate(self.producer)
        response = self.client.get("/api/v1/wallet/admin/withdrawals/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
