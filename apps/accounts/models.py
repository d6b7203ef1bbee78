import uuid
from django.db import models
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.utils import timezone

from apps.utils.models import TimestampedModel
from .managers import UserManager


class Role(models.TextChoices):
    BUYER = "BUYER", "Buyer"
    PRODUCER = "PRODUCER", "Producer"
    ADMIN = "ADMIN", "Admin"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Core Identity Model.
    Email is the login identifier; a user holds exactly one marketplace role.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, db_index=True)
    full_name = models.CharField(max_length=255, blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.BUYER, db_index=True)

    is_staff = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    date_joined = models.DateTimeField(default=timezone.now)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = 'User'
        verbose_name_plural = 'Users'

    def __str__(self):
        return self.email

    @property
    def is_producer(self):
        return self.role == Role.PRODUCER

    @property
    def is_marketplace_admin(self):
        return self.role == Role.ADMIN


class ProducerProfile(TimestampedModel):
    """
    Seller identity. Bank details are required before any withdrawal.
    """
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='producer_profile')
    company_name = models.CharField(max_length=255, blank=True)

    bank_name = models.CharField(max_length=255, blank=True)
    bank_account_name = models.CharField(max_length=255, blank=True)
    iban = models.CharField(max_length=34, blank=True)
    bic = models.CharField(max_length=11, blank=True)

    def __str__(self):
        return self.company_name or self.user.email

    @property
    def has_bank_details(self):
        return bool(self.bank_name and self.bank_account_name and self.iban)

    def bank_details_snapshot(self):
        return {
            "bank_name": self.bank_name,
            "account_name": self.bank_account_name,
            "iban": self.iban,
            "bic": self.bic or None,
        }
