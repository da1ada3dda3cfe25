"""Actor identity handed in by the external authentication layer."""

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    CUSTOMER = "Customer"
    VENDOR = "Vendor"
    DELIVERY_AGENT = "Delivery_Agent"
    ADMIN = "Admin"
    SYSTEM = "System"


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    role: Role

    @classmethod
    def system(cls) -> "AuthContext":
        return cls(user_id="system", role=Role.SYSTEM)

    @classmethod
    def of(cls, user_id, role) -> "AuthContext":
        """Build the context from command fields; no role means the platform itself."""
        if not role:
            return cls.system()
        return cls(user_id=str(user_id) if user_id else "", role=Role(role))

    @property
    def is_privileged(self) -> bool:
        return self.role in (Role.ADMIN, Role.SYSTEM)
