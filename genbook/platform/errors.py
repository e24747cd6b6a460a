"""
Consistent error handling for the GenBook API.

All API errors MUST use these error classes and shapes.
Stack traces are NEVER returned to clients.

Every error body carries a human-readable ``error`` string and a
machine-readable ``code``:

    {"error": "Monthly appointment limit reached", "code": "USAGE_LIMIT_EXCEEDED", "details": {...}}

Entitlement failures (unauthenticated, plan required, feature not entitled,
usage limit exceeded) all surface as 402 Payment Required so the client can
route every one of them to the billing page.
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class WebhookSignatureError(AppError):
    """Webhook signature missing or invalid (401)."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(
            code="INVALID_SIGNATURE",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class EntitlementError(AppError):
    """Base for gate failures; always 402 Payment Required."""

    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details=details,
        )


class UnauthenticatedError(EntitlementError):
    """No resolvable tenant or session."""

    def __init__(self, message: str = "Missing tenant context"):
        super().__init__(code="UNAUTHENTICATED", message=message)


class PlanRequiredError(EntitlementError):
    """No active subscription, or the active plan is not permitted."""

    def __init__(
        self,
        message: str = "Subscription inactive",
        plan: Optional[str] = None,
        status_value: Optional[str] = None,
        allowed_plans: Optional[list[str]] = None,
    ):
        details: dict[str, Any] = {"plan": plan, "status": status_value}
        if allowed_plans is not None:
            details["allowed_plans"] = allowed_plans
        super().__init__(code="PLAN_REQUIRED", message=message, details=details)


class FeatureNotEntitledError(EntitlementError):
    """The resolved plan lacks the requested feature."""

    def __init__(self, feature_key: str, plan: str):
        super().__init__(
            code="FEATURE_NOT_ENTITLED",
            message="Feature not available on current plan",
            details={"feature": feature_key, "plan": plan},
        )
        self.feature_key = feature_key
        self.plan = plan


class UsageLimitExceededError(EntitlementError):
    """Usage for a metered resource reached the plan limit."""

    def __init__(self, metric: str, plan: str, used: int, limit: int):
        super().__init__(
            code="USAGE_LIMIT_EXCEEDED",
            message=f"Usage limit reached for {metric}",
            details={"metric": metric, "plan": plan, "used": used, "limit": limit},
        )
        self.metric = metric
        self.used = used
        self.limit = limit


class ForbiddenError(AppError):
    """Authenticated but not allowed (403)."""

    def __init__(self, message: str = "Insufficient role"):
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ConflictError(AppError):
    """Request conflicts with existing state (409)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="CONFLICT",
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class BillingProviderError(AppError):
    """Upstream billing provider failure (502)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="BILLING_PROVIDER_ERROR",
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


class ServiceUnavailableError(AppError):
    """Service unavailable (503)."""

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(
            code="SERVICE_UNAVAILABLE",
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Get correlation ID from request or generate new one.

    Checks X-Correlation-ID header first, then request state.
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render an AppError raised from a route or dependency."""
    correlation_id = get_correlation_id(request)
    logger.warning(
        "Application error",
        extra={
            "correlation_id": correlation_id,
            "error_code": exc.code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": correlation_id},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Convert HTTPException, including routing 404/405, to the standard error shape."""
    headers = dict(getattr(exc, "headers", None) or {})
    headers["X-Correlation-ID"] = get_correlation_id(request)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": "HTTP_ERROR", "details": {}},
        headers=headers,
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Attaches correlation IDs and turns unhandled exceptions into a generic 500.

    IMPORTANT: Stack traces are NEVER returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except AppError as e:
            logger.warning(
                "Application error",
                extra={
                    "correlation_id": correlation_id,
                    "error_code": e.code,
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_dict(),
                headers={"X-Correlation-ID": correlation_id},
            )

        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "An unexpected error occurred",
                    "code": "INTERNAL_ERROR",
                    "details": {"correlation_id": correlation_id},
                },
                headers={"X-Correlation-ID": correlation_id},
            )


def register_error_handlers(app: FastAPI) -> None:
    """Install exception handlers and the correlation-id middleware."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_middleware(ErrorHandlerMiddleware)
