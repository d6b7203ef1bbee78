from dataclasses import dataclass
from typing import Optional
import uuid

from .models import Role


@dataclass(frozen=True)
class Actor:
    """
    Who is asking. Services receive this explicitly instead of a request,
    so background jobs and tests can act without an HTTP layer.
    """
    user_id: Optional[uuid.UUID]
    role: str

    @classmethod
    def from_user(cls, user):
        return cls(user_id=user.id, role=user.role)

    @classmethod
    def system(cls):
        # Payment confirmation and reaper jobs act with admin rights
        return cls(user_id=None, role=Role.ADMIN)

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    @property
    def is_producer(self):
        return self.role == Role.PRODUCER

    @property
    def is_buyer(self):
        return self.role == Role.BUYER
