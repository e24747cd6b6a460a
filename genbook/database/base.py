"""Declarative base and shared column mixins."""

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.orm import declarative_base, declared_attr

Base = declarative_base()


class TimestampMixin:
    """created_at / updated_at maintained by the database."""

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class TenantScopedMixin:
    """
    Every tenant-owned row carries tenant_id.

    Queries against these tables MUST filter on tenant_id; on PostgreSQL the
    row-level security policies also key on the session's app.tenant_id.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(String(255), nullable=False, index=True)
