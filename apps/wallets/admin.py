from django.contrib import admin
from .models import Wallet, WalletTransaction, Withdrawal


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ('producer', 'balance', 'pending_balance', 'total_earned', 'total_withdrawn')
    search_fields = ('producer__email',)
    # Balances only move through WalletLedgerService / WithdrawalService
    readonly_fields = ('balance', 'pending_balance', 'total_earned', 'total_withdrawn')


@admin.register(WalletTransaction)
class WalletTransactionAdmin(admin.ModelAdmin):
    list_display = ('wallet', 'type', 'status', 'amount', 'fee', 'order', 'created_at')
    list_filter = ('type', 'status')
    search_fields = ('wallet__producer__email', 'description')

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(Withdrawal)
class WithdrawalAdmin(admin.ModelAdmin):
    list_display = ('id', 'wallet', 'amount', 'status', 'processed_at')
    list_filter = ('status',)
    readonly_fields = ('amount', 'bank_details', 'processed_at', 'processed_by')
