"""
Entitlements resolution: subscription -> catalog plan -> features, limits, usage.

Read-only. Recomputed on every call; there is no server-side cache, so a
webhook-driven plan change is visible on the very next request.

Fallback rules:
- no subscription row                        -> default (free) plan
- status other than active                   -> default plan
- active but period ended more than grace_days ago -> default plan
- plan id unknown to the catalog             -> default plan
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from genbook.entitlements.keys import FeatureKey, UsageMetric
from genbook.entitlements.loader import PlanCatalog
from genbook.entitlements.models import Entitlements, LimitCheck, PlanDefinition
from genbook.entitlements.usage import get_usage, get_usage_snapshot
from genbook.models.subscription import SubscriptionStatus, UserSubscription
from genbook.platform.errors import UnauthenticatedError

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EntitlementsResolver:
    """Computes the Entitlements view for a tenant."""

    def __init__(self, db_session: Session, catalog: PlanCatalog, grace_days: int = 3):
        self.db = db_session
        self.catalog = catalog
        self.grace_days = grace_days

    def get_current_subscription(self, tenant_id: str) -> Optional[UserSubscription]:
        """The tenant's most recent active subscription row, if any."""
        return (
            self.db.query(UserSubscription)
            .filter(
                UserSubscription.tenant_id == tenant_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(UserSubscription.created_at.desc())
            .first()
        )

    def get_latest_subscription(self, tenant_id: str) -> Optional[UserSubscription]:
        """Most recent subscription row in any status."""
        return (
            self.db.query(UserSubscription)
            .filter(UserSubscription.tenant_id == tenant_id)
            .order_by(UserSubscription.updated_at.desc(), UserSubscription.created_at.desc())
            .first()
        )

    def is_lapsed(self, subscription: UserSubscription, now: Optional[datetime] = None) -> bool:
        """True once the paid period plus grace days has elapsed."""
        period_end = _as_utc(subscription.current_period_end)
        if period_end is None:
            return False
        now = _as_utc(now) or datetime.now(timezone.utc)
        return now > period_end + timedelta(days=self.grace_days)

    def is_effective(self, subscription: Optional[UserSubscription], now: Optional[datetime] = None) -> bool:
        return (
            subscription is not None
            and subscription.status == SubscriptionStatus.ACTIVE.value
            and not self.is_lapsed(subscription, now)
        )

    def has_active_subscription(self, tenant_id: str, now: Optional[datetime] = None) -> bool:
        return self.is_effective(self.get_current_subscription(tenant_id), now)

    def effective_plan(
        self,
        subscription: Optional[UserSubscription],
        now: Optional[datetime] = None,
    ) -> PlanDefinition:
        if not self.is_effective(subscription, now):
            return self.catalog.default_plan
        plan = self.catalog.find_plan(subscription.plan_id)
        if plan is None:
            logger.warning(
                "Subscription references unknown plan; using default plan",
                extra={"tenant_id": subscription.tenant_id, "plan_id": subscription.plan_id},
            )
            return self.catalog.default_plan
        return plan

    def resolve(
        self,
        tenant_id: str,
        now: Optional[datetime] = None,
        metrics: Iterable[UsageMetric] = tuple(UsageMetric),
    ) -> Entitlements:
        """Compose plan, status, feature flags, limits and usage for a tenant."""
        normalized_tenant_id = str(tenant_id or "").strip()
        if not normalized_tenant_id:
            raise UnauthenticatedError()

        now = _as_utc(now) or datetime.now(timezone.utc)
        subscription = self.get_current_subscription(normalized_tenant_id)
        if subscription is None:
            subscription = self.get_latest_subscription(normalized_tenant_id)
        plan = self.effective_plan(subscription, now)

        entitlements = Entitlements(
            tenant_id=normalized_tenant_id,
            plan=plan.tier,
            plan_id=plan.plan_id,
            status=subscription.status if subscription is not None else None,
            features={key: plan.has_feature(key) for key in FeatureKey},
            limits={metric: plan.limit_for(metric) for metric in metrics},
            usage=get_usage_snapshot(self.db, normalized_tenant_id, metrics, now=now),
            resolved_at=now,
        )
        logger.debug(
            "Entitlements resolved",
            extra={
                "tenant_id": normalized_tenant_id,
                "plan": plan.plan_id,
                "status": entitlements.status,
            },
        )
        return entitlements

    def check_limit(
        self,
        tenant_id: str,
        metric: UsageMetric,
        now: Optional[datetime] = None,
    ) -> LimitCheck:
        """Compare one metric's usage with the effective plan's limit."""
        normalized_tenant_id = str(tenant_id or "").strip()
        if not normalized_tenant_id:
            raise UnauthenticatedError()
        plan = self.effective_plan(self.get_current_subscription(normalized_tenant_id), now)
        return LimitCheck(
            metric=metric,
            plan=plan.tier,
            used=get_usage(self.db, normalized_tenant_id, metric, now=now),
            limit=plan.limit_for(metric),
        )
