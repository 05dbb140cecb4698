"""
Caller Identity

The identity and role of whoever invokes an engine operation. It is passed
explicitly into each operation; how it was established (token, session,
test fixture) is the transport layer's business.
"""

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    """Caller roles"""
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller"""
    user_id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


