from rest_framework import generics, status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.accounts.actors import Actor
from apps.accounts.permissions import IsMarketplaceAdmin, IsProducer
from apps.utils.exceptions import NotFoundError
from .models import Wallet, Withdrawal
from .serializers import (
    WalletSerializer,
    WithdrawalDecisionSerializer,
    WithdrawalRequestSerializer,
    WithdrawalSerializer,
)
from .services import WithdrawalService


class WalletDetailView(views.APIView):
    """
    The producer's balances and latest ledger rows.
    """
    permission_classes = [IsAuthenticated, IsProducer]

    def get(self, request):
        wallet = Wallet.objects.filter(producer=request.user).first()
        if wallet is None:
            raise NotFoundError("No wallet yet. It is created with your first sale.")
        return Response(WalletSerializer(wallet).data)


class WithdrawalListCreateView(views.APIView):
    permission_classes = [IsAuthenticated, IsProducer]

    def get(self, request):
        withdrawals = Withdrawal.objects.filter(wallet__producer=request.user)
        return Response(WithdrawalSerializer(withdrawals, many=True).data)

    def post(self, request):
        serializer = WithdrawalRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        withdrawal = WithdrawalService.create(
            Actor.from_user(request.user), serializer.validated_data['amount']
        )
        return Response(WithdrawalSerializer(withdrawal).data, status=status.HTTP_201_CREATED)


class AdminWithdrawalListView(generics.ListAPIView):
    permission_classes = [IsAuthenticated, IsMarketplaceAdmin]
    serializer_class = WithdrawalSerializer
    queryset = Withdrawal.objects.select_related('wallet__producer')
    filterset_fields = ['status']


class AdminWithdrawalProcessView(views.APIView):
    permission_classes = [IsAuthenticated, IsMarketplaceAdmin]

    def post(self, request, pk):
        serializer = WithdrawalDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        withdrawal = WithdrawalService.process(
            pk,
            data['status'],
            Actor.from_user(request.user),
            note=data['note'],
            reference=data['reference'],
        )
        return Response(WithdrawalSerializer(withdrawal).data)
