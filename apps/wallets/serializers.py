from rest_framework import serializers

from apps.utils.serializers import MoneyField
from .models import Wallet, WalletTransaction, Withdrawal


class WalletTransactionSerializer(serializers.ModelSerializer):
    amount = MoneyField(read_only=True)
    fee = MoneyField(read_only=True)
    gross_amount = MoneyField(read_only=True)

    class Meta:
        model = WalletTransaction
        fields = [
            'id', 'type', 'status', 'amount', 'gross_amount', 'fee', 'fee_percent',
            'order', 'withdrawal', 'description', 'created_at',
        ]


class WalletSerializer(serializers.ModelSerializer):
    balance = MoneyField(read_only=True)
    pending_balance = MoneyField(read_only=True)
    total_earned = MoneyField(read_only=True)
    total_withdrawn = MoneyField(read_only=True)
    recent_transactions = serializers.SerializerMethodField()

    class Meta:
        model = Wallet
        fields = [
            'id', 'balance', 'pending_balance', 'total_earned', 'total_withdrawn',
            'recent_transactions', 'updated_at',
        ]

    def get_recent_transactions(self, obj):
        return WalletTransactionSerializer(obj.transactions.all()[:20], many=True).data


class WithdrawalSerializer(serializers.ModelSerializer):
    amount = MoneyField(read_only=True)

    class Meta:
        model = Withdrawal
        fields = [
            'id', 'amount', 'status', 'bank_details', 'reference', 'note',
            'processed_at', 'created_at',
        ]


class WithdrawalRequestSerializer(serializers.Serializer):
    amount = MoneyField()


class WithdrawalDecisionSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[
        Withdrawal.Status.APPROVED, Withdrawal.Status.COMPLETED, Withdrawal.Status.REJECTED,
    ])
    note = serializers.CharField(required=False, allow_blank=True, default="")
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=100)
