"""User model mapping an authenticated identity onto its tenant."""

import enum
from typing import Optional

from sqlalchemy import Column, String

from genbook.database.base import Base, TenantScopedMixin, TimestampMixin


class UserRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    STAFF = "staff"
    VIEWER = "viewer"


def normalize_role(role: Optional[str]) -> Optional[str]:
    """Map legacy/variant role spellings onto UserRole values."""
    if not role:
        return None
    value = role.strip().lower()
    aliases = {"administrator": "admin", "member": "staff", "read_only": "viewer"}
    value = aliases.get(value, value)
    return value if value in {r.value for r in UserRole} else None


class User(Base, TimestampMixin, TenantScopedMixin):
    """A user of a tenant; id is the auth provider's subject."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    email = Column(String(320), nullable=True)
    role = Column(String(50), nullable=False, default=UserRole.STAFF.value)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, tenant_id={self.tenant_id}, role={self.role})>"
