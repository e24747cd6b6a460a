from genbook.api.dependencies.gates import (
    get_current_entitlements,
    get_entitlements_resolver,
    require_entitlement,
    require_subscription,
    require_within_limit,
)

__all__ = [
    "get_current_entitlements",
    "get_entitlements_resolver",
    "require_entitlement",
    "require_subscription",
    "require_within_limit",
]
