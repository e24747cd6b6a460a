"""
Tenant context resolution.

Every authenticated request carries a Supabase session token
(``Authorization: Bearer <jwt>``). The token's ``sub`` identifies a row in
``users``; that row's tenant_id is the ONLY source of tenant identity.
tenant_id is never read from request bodies or query strings.

The resolved TenantContext is cached on request.state so several gates on
one route share a single lookup.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import jwt
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from genbook.config.settings import get_settings
from genbook.database.session import apply_tenant_scope, get_db_session
from genbook.models.user import User, normalize_role
from genbook.platform.errors import ForbiddenError, UnauthenticatedError

logger = logging.getLogger(__name__)

JWT_ALGORITHMS = ["HS256"]
JWT_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class TenantContext:
    """Identity of the caller for one request."""
    tenant_id: str
    user_id: str
    role: Optional[str] = None
    email: Optional[str] = None


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_session_token(token: str, secret: str) -> dict:
    """
    Verify and decode a Supabase access token.

    Raises UnauthenticatedError on any signature, expiry or shape problem.
    """
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=JWT_ALGORITHMS,
            options={"verify_aud": False, "require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Session expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Rejected session token", extra={"error": str(e)})
        raise UnauthenticatedError("Invalid session")

    # Supabase issues aud="authenticated"; tokens without aud are accepted
    aud = claims.get("aud")
    audiences = aud if isinstance(aud, list) else [aud]
    if aud is not None and JWT_AUDIENCE not in audiences:
        raise UnauthenticatedError("Invalid session")
    return claims


def get_tenant_context(
    request: Request,
    db: Session = Depends(get_db_session),
) -> TenantContext:
    """
    FastAPI dependency: authenticate the caller and resolve their tenant.

    Raises UnauthenticatedError (402) when the token is missing or invalid,
    or when the user has no tenant.
    """
    cached = getattr(request.state, "tenant_context", None)
    if isinstance(cached, TenantContext):
        return cached

    token = _bearer_token(request)
    if not token:
        raise UnauthenticatedError()

    secret = get_settings().supabase_jwt_secret
    if not secret:
        logger.error("SUPABASE_JWT_SECRET is not configured; rejecting request")
        raise UnauthenticatedError()

    claims = decode_session_token(token, secret)
    user_id = str(claims["sub"])

    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.tenant_id:
        logger.warning("Authenticated user has no tenant", extra={"user_id": user_id})
        raise UnauthenticatedError()

    ctx = TenantContext(
        tenant_id=user.tenant_id,
        user_id=user.id,
        role=normalize_role(user.role),
        email=user.email or claims.get("email"),
    )
    apply_tenant_scope(db, ctx.tenant_id)
    request.state.tenant_context = ctx
    request.state.tenant_id = ctx.tenant_id
    return ctx


def require_role(*roles: str) -> Callable:
    """Dependency allowing only callers whose role is one of ``roles``."""
    allowed = frozenset(normalize_role(r) for r in roles) - {None}

    def _check(ctx: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if ctx.role not in allowed:
            logger.warning("Role check failed", extra={
                "tenant_id": ctx.tenant_id,
                "user_id": ctx.user_id,
                "role": ctx.role,
            })
            raise ForbiddenError()
        return ctx

    return _check
