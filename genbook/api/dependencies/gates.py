"""
Subscription and entitlement gates.

FastAPI dependencies that run before a route handler and block the request
with a 402 when the tenant's plan does not allow it. Gates are read-only:
they never write usage or subscription state.

Usage:

    @router.post("/voice/commands",
                 dependencies=[Depends(require_entitlement(FeatureKey.VOICE_COMMANDS))])

    @router.post("/appointments")
    async def create(check: LimitCheck = Depends(require_within_limit(UsageMetric.APPOINTMENTS_PER_MONTH))):
        ...

Every gate resolves the tenant first; a missing session fails with
UnauthenticatedError before any plan lookup.
"""

import logging
from typing import Callable, Iterable, Optional, Union

from fastapi import Depends
from sqlalchemy.orm import Session

from genbook.config.settings import get_settings
from genbook.database.session import get_db_session
from genbook.entitlements.keys import (
    FeatureKey,
    PlanTier,
    UsageMetric,
    parse_feature_key,
    parse_usage_metric,
)
from genbook.entitlements.loader import get_plan_catalog
from genbook.entitlements.models import Entitlements, LimitCheck
from genbook.entitlements.resolver import EntitlementsResolver
from genbook.platform.errors import (
    FeatureNotEntitledError,
    PlanRequiredError,
    UsageLimitExceededError,
)
from genbook.platform.tenant_context import TenantContext, get_tenant_context

logger = logging.getLogger(__name__)


def get_entitlements_resolver(db: Session = Depends(get_db_session)) -> EntitlementsResolver:
    return EntitlementsResolver(db, get_plan_catalog(), grace_days=get_settings().grace_days)


def get_current_entitlements(
    ctx: TenantContext = Depends(get_tenant_context),
    resolver: EntitlementsResolver = Depends(get_entitlements_resolver),
) -> Entitlements:
    """Entitlements for the calling tenant, resolved once per request."""
    return resolver.resolve(ctx.tenant_id)


def _deny(gate: str, ctx: TenantContext, reason: str, **extra) -> None:
    logger.warning(
        "Gate denied request",
        extra={"tenant_id": ctx.tenant_id, "gate": gate, "reason": reason, **extra},
    )


def require_subscription(
    allowed_plans: Optional[Iterable[Union[PlanTier, str]]] = None,
) -> Callable:
    """
    Require an active, non-lapsed subscription.

    Args:
        allowed_plans: optional plan tiers the subscription must be on

    Returns:
        Dependency returning the TenantContext when the gate passes
    """
    allowed = None
    if allowed_plans is not None:
        allowed = frozenset(PlanTier(str(getattr(p, "value", p)).strip()) for p in allowed_plans)

    def _check(
        ctx: TenantContext = Depends(get_tenant_context),
        resolver: EntitlementsResolver = Depends(get_entitlements_resolver),
    ) -> TenantContext:
        subscription = resolver.get_current_subscription(ctx.tenant_id)
        if not resolver.is_effective(subscription):
            latest = subscription or resolver.get_latest_subscription(ctx.tenant_id)
            status_value = latest.status if latest is not None else None
            _deny("require_subscription", ctx, "subscription_inactive", status=status_value)
            raise PlanRequiredError(plan=None, status_value=status_value)

        plan = resolver.effective_plan(subscription)
        if allowed is not None and plan.tier not in allowed:
            allowed_values = sorted(p.value for p in allowed)
            _deny("require_subscription", ctx, "plan_not_allowed",
                  plan=plan.tier.value, allowed_plans=allowed_values)
            raise PlanRequiredError(
                message="Current plan does not include this feature",
                plan=plan.tier.value,
                status_value=subscription.status,
                allowed_plans=allowed_values,
            )
        return ctx

    return _check


def require_entitlement(feature_key: Union[FeatureKey, str]) -> Callable:
    """
    Require a feature flag on the tenant's effective plan.

    Free-plan features pass without a subscription. Unknown keys fail at
    import time, not per request.
    """
    key = parse_feature_key(feature_key)

    def _check(
        ctx: TenantContext = Depends(get_tenant_context),
        entitlements: Entitlements = Depends(get_current_entitlements),
    ) -> Entitlements:
        if not entitlements.has_feature(key):
            _deny("require_entitlement", ctx, "feature_not_entitled",
                  feature=key.value, plan=entitlements.plan.value)
            raise FeatureNotEntitledError(key.value, entitlements.plan.value)
        return entitlements

    return _check


def require_within_limit(metric: Union[UsageMetric, str]) -> Callable:
    """
    Reject when current usage has reached the plan limit (usage >= limit).

    The check does not reserve capacity; the route increments the counter
    after the resource is created.
    """
    usage_metric = parse_usage_metric(metric)

    def _check(
        ctx: TenantContext = Depends(get_tenant_context),
        resolver: EntitlementsResolver = Depends(get_entitlements_resolver),
    ) -> LimitCheck:
        check = resolver.check_limit(ctx.tenant_id, usage_metric)
        if not check.allowed:
            _deny("require_within_limit", ctx, "usage_limit_exceeded",
                  metric=usage_metric.value, used=check.used, limit=check.limit)
            raise UsageLimitExceededError(
                usage_metric.value, check.plan.value, check.used, check.limit
            )
        return check

    return _check
