from rest_framework.permissions import BasePermission
from .models import Role


class IsBuyer(BasePermission):
    def has_permission(self, request, view):
        return (
            request.user.is_authenticated and
            request.user.role == Role.BUYER
        )


class IsProducer(BasePermission):
    def has_permission(self, request, view):
        return (
            request.user.is_authenticated and
            request.user.role == Role.PRODUCER
        )


class IsMarketplaceAdmin(BasePermission):
    def has_permission(self, request, view):
        return (
            request.user.is_authenticated and
            request.user.role == Role.ADMIN
        )
