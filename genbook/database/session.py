"""
Database engine and session management.

get_db_session is the FastAPI dependency; tests override it with an
in-memory SQLite session.
"""

import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from genbook.config.settings import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Create the process engine lazily from DATABASE_URL."""
    global _engine
    if _engine is None:
        url = get_settings().database_url
        kwargs = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
        _engine = create_engine(url, **kwargs)
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _session_factory


def get_db_session() -> Generator[Session, None, None]:
    """Yield a session for one request; rolled back if the handler raised."""
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


TENANT_SCOPE_KEY = "tenant_id"


def _set_tenant_config(connection, tenant_id: str) -> None:
    if connection.dialect.name != "postgresql":
        return
    connection.execute(
        text("SELECT set_config('app.tenant_id', :tenant_id, true)"),
        {"tenant_id": tenant_id},
    )


def _scope_new_transaction(session: Session, transaction, connection) -> None:
    tenant_id = session.info.get(TENANT_SCOPE_KEY)
    if tenant_id:
        _set_tenant_config(connection, tenant_id)


def apply_tenant_scope(session: Session, tenant_id: str) -> None:
    """
    Expose the tenant to PostgreSQL row-level security.

    set_config(..., true) only lasts for one transaction, so the tenant is
    kept in session.info and set again at the start of every transaction
    the session begins, including the ones after a commit or rollback.
    No-op on other dialects.
    """
    session.info[TENANT_SCOPE_KEY] = tenant_id
    if not event.contains(session, "after_begin", _scope_new_transaction):
        event.listen(session, "after_begin", _scope_new_transaction)
    if session.in_transaction():
        _set_tenant_config(session.connection(), tenant_id)


def check_database() -> dict:
    """Run SELECT 1 against the engine for the health endpoint."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "ok", "message": "Database connection successful"}
    except Exception as e:
        logger.error("Database connection failed", extra={"error": str(e)})
        return {"status": "error", "message": "Database connection failed"}
