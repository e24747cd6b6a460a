from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from .keys import ALL_FEATURE_KEYS, FeatureKey, PlanTier, UsageMetric


@dataclass(frozen=True)
class PlanDefinition:
    """A catalog plan. Immutable once loaded; new versions get new plan ids."""

    plan_id: str
    name: str
    tier: PlanTier
    feature_keys: FrozenSet[FeatureKey]
    limits: Mapping[UsageMetric, Optional[int]] = field(default_factory=dict)
    price_cents: int = 0
    currency: str = "INR"
    billing_interval: str = "month"
    is_active: bool = True
    provider_plan_ids: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "plan_id", self.plan_id.strip())
        object.__setattr__(self, "feature_keys", frozenset(self.feature_keys))
        object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))
        object.__setattr__(self, "provider_plan_ids", tuple(self.provider_plan_ids))

    def has_feature(self, feature_key: FeatureKey) -> bool:
        return feature_key in self.feature_keys

    def limit_for(self, metric: UsageMetric) -> Optional[int]:
        """Numeric limit, or None when unlimited or not metered."""
        return self.limits.get(metric)

    def to_dict(self) -> dict:
        return {
            "id": self.plan_id,
            "name": self.name,
            "tier": self.tier.value,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "billing_interval": self.billing_interval,
            "is_active": self.is_active,
            "features": sorted(k.value for k in self.feature_keys),
            "limits": {m.value: v for m, v in self.limits.items()},
        }


@dataclass(frozen=True)
class PlansConfig:
    """Parsed catalog loaded from plans.json."""

    plans: Mapping[str, PlanDefinition]
    default_plan_id: str = PlanTier.FREE.value

    def __post_init__(self) -> None:
        object.__setattr__(self, "plans", MappingProxyType(dict(self.plans)))

    @property
    def default_plan(self) -> PlanDefinition:
        return self.plans[self.default_plan_id]


@dataclass(frozen=True)
class Entitlements:
    """
    Derived view of what a tenant may do right now.

    Never persisted; recomputed per request from the tenant's subscription
    and usage counters.
    """

    tenant_id: str
    plan: PlanTier
    plan_id: str
    status: Optional[str]
    features: Mapping[FeatureKey, bool]
    limits: Mapping[UsageMetric, Optional[int]]
    usage: Mapping[UsageMetric, int]
    resolved_at: datetime

    def __post_init__(self) -> None:
        features: Dict[FeatureKey, bool] = {key: False for key in ALL_FEATURE_KEYS}
        features.update(self.features)
        object.__setattr__(self, "features", MappingProxyType(features))
        object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))
        object.__setattr__(self, "usage", MappingProxyType(dict(self.usage)))

    def has_feature(self, feature_key: FeatureKey) -> bool:
        return bool(self.features.get(feature_key, False))

    def limit_for(self, metric: UsageMetric) -> Optional[int]:
        return self.limits.get(metric)

    def usage_for(self, metric: UsageMetric) -> int:
        return int(self.usage.get(metric, 0))

    def to_dict(self) -> dict:
        """JSON shape served by GET /api/v1/tenants/current."""
        return {
            "plan": self.plan.value,
            "plan_id": self.plan_id,
            "status": self.status,
            "features": {k.value: v for k, v in sorted(self.features.items(), key=lambda i: i[0].value)},
            "limits": {m.value: v for m, v in self.limits.items()},
            "usage": {m.value: v for m, v in self.usage.items()},
        }


@dataclass(frozen=True)
class LimitCheck:
    """Outcome of comparing current usage with a plan limit."""

    metric: UsageMetric
    plan: PlanTier
    used: int
    limit: Optional[int]

    @property
    def allowed(self) -> bool:
        return self.limit is None or self.used < self.limit

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)
