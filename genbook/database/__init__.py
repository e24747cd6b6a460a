from genbook.database.base import Base, TenantScopedMixin, TimestampMixin
from genbook.database.session import apply_tenant_scope, get_db_session, get_engine

__all__ = [
    "Base",
    "TenantScopedMixin",
    "TimestampMixin",
    "apply_tenant_scope",
    "get_db_session",
    "get_engine",
]
