from django.urls import path
from .views import (
    AdminWithdrawalListView,
    AdminWithdrawalProcessView,
    WalletDetailView,
    WithdrawalListCreateView,
)

urlpatterns = [
    path('', WalletDetailView.as_view(), name='wallet-detail'),
    path('withdrawals/', WithdrawalListCreateView.as_view(), name='wallet-withdrawals'),
    path('admin/withdrawals/', AdminWithdrawalListView.as_view(), name='admin-withdrawals'),
    path('admin/withdrawals/<uuid:pk>/process/', AdminWithdrawalProcessView.as_view(), name='admin-withdrawal-process'),
]
