"""
Tenant model: the organization-level account boundary.

Tenants are never hard-deleted; closing an account moves status to CLOSED.
"""

import enum
import uuid

from sqlalchemy import Column, String

from genbook.database.base import Base, TimestampMixin


class TenantStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CLOSED = "closed"


class Tenant(Base, TimestampMixin):
    """An organization that owns users, subscriptions and usage counters."""

    __tablename__ = "tenants"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default=TenantStatus.ACTIVE.value)

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, status={self.status})>"
