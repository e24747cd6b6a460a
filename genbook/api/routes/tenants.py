"""
Tenant API routes.

GET /api/v1/tenants/current returns the caller's entitlements: the shape the
client library caches and the feature gate reads.
"""

import logging

from fastapi import APIRouter, Depends

from genbook.api.dependencies.gates import get_current_entitlements
from genbook.entitlements.models import Entitlements

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.get("/current")
def get_current_tenant(entitlements: Entitlements = Depends(get_current_entitlements)):
    """
    Plan, subscription status, feature flags, limits and usage.

    Tenants without an active subscription get the free plan; this endpoint
    never 402s for a resolvable tenant.
    """
    return entitlements.to_dict()
