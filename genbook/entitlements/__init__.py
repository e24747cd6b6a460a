"""
Plan-based entitlements for tenants.

This module provides:
- PlanCatalog: load the static plan catalog from config/plans.json
- EntitlementsResolver: subscription + catalog + usage -> Entitlements
- Usage counters: monthly metered resources (appointments, chat messages)
- Closed enums for feature keys, usage metrics and plan tiers
"""

from genbook.entitlements.keys import (
    FeatureKey,
    PlanTier,
    UsageMetric,
    parse_feature_key,
    parse_usage_metric,
)
from genbook.entitlements.loader import PlanCatalog, get_plan_catalog
from genbook.entitlements.models import Entitlements, LimitCheck, PlanDefinition, PlansConfig
from genbook.entitlements.resolver import EntitlementsResolver
from genbook.entitlements.usage import current_month_window, get_usage, increment_usage

__all__ = [
    # Keys
    "FeatureKey",
    "PlanTier",
    "UsageMetric",
    "parse_feature_key",
    "parse_usage_metric",
    # Catalog
    "PlanCatalog",
    "get_plan_catalog",
    # Models
    "Entitlements",
    "LimitCheck",
    "PlanDefinition",
    "PlansConfig",
    # Resolver
    "EntitlementsResolver",
    # Usage
    "current_month_window",
    "get_usage",
    "increment_usage",
]
