"""
Python client for the GenBook API: cached entitlements and feature gates.
"""

from genbook.client.cache import (
    CacheEntry,
    EntitlementsCache,
    MemoryEntitlementsCache,
    RedisEntitlementsCache,
)
from genbook.client.entitlements import (
    ApiError,
    EntitlementsClient,
    PaymentRequiredApiError,
    is_entitled,
    usage_and_limit,
)
from genbook.client.feature_gate import FeatureGate, GateState, UpgradePrompt

__all__ = [
    "ApiError",
    "CacheEntry",
    "EntitlementsCache",
    "EntitlementsClient",
    "FeatureGate",
    "GateState",
    "MemoryEntitlementsCache",
    "PaymentRequiredApiError",
    "RedisEntitlementsCache",
    "UpgradePrompt",
    "is_entitled",
    "usage_and_limit",
]
