"""Closed sets of feature keys, usage metrics and plan tiers."""

import enum
from typing import FrozenSet


class FeatureKey(str, enum.Enum):
    BASIC_ANALYTICS = "basic_analytics"
    VOICE_COMMANDS = "voice_commands"
    ADVANCED_ANALYTICS = "advanced_analytics"
    TEAM_COLLABORATION = "team_collaboration"
    CUSTOM_BRANDING = "custom_branding"
    API_ACCESS = "api_access"
    PRIORITY_SUPPORT = "priority_support"
    AI_INSIGHTS = "ai_insights"


class UsageMetric(str, enum.Enum):
    APPOINTMENTS_PER_MONTH = "appointments_per_month"
    CHAT_MESSAGES_PER_MONTH = "chat_messages_per_month"
    TEAM_MEMBERS = "team_members"

    @property
    def is_monthly(self) -> bool:
        return self is not UsageMetric.TEAM_MEMBERS


class PlanTier(str, enum.Enum):
    FREE = "free"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


ALL_FEATURE_KEYS: FrozenSet[FeatureKey] = frozenset(FeatureKey)
ALL_USAGE_METRICS: FrozenSet[UsageMetric] = frozenset(UsageMetric)


def parse_feature_key(value) -> FeatureKey:
    """Coerce a string to FeatureKey; ValueError for unknown keys."""
    if isinstance(value, FeatureKey):
        return value
    normalized = str(value).strip()
    try:
        return FeatureKey(normalized)
    except ValueError:
        raise ValueError(f"unknown feature key: {value!r}")


def parse_usage_metric(value) -> UsageMetric:
    if isinstance(value, UsageMetric):
        return value
    normalized = str(value).strip()
    try:
        return UsageMetric(normalized)
    except ValueError:
        raise ValueError(f"unknown usage metric: {value!r}")
