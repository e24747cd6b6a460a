"""
Billing API routes for managing Razorpay subscriptions.

All routes except /plans require tenant context from the session token.
tenant_id is NEVER accepted from request body.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from genbook.config.settings import get_settings
from genbook.database.session import get_db_session
from genbook.entitlements.loader import get_plan_catalog
from genbook.models.subscription import UserSubscription
from genbook.platform.tenant_context import TenantContext, get_tenant_context, require_role
from genbook.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


# Request/Response Models

class CreateSubscriptionRequest(BaseModel):
    """Request to start checkout for a paid plan."""
    plan_id: str = Field(..., min_length=1, description="Catalog plan id")


class CreateSubscriptionResponse(BaseModel):
    checkout_url: Optional[str]
    subscription_id: str
    plan_id: str


class VerifyPaymentRequest(BaseModel):
    """Fields returned by Razorpay Checkout after a successful payment."""
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_subscription_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class SubscriptionResponse(BaseModel):
    """Subscription details response."""
    id: str
    plan_id: str
    status: str
    provider_subscription_id: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    canceled_at: Optional[datetime]


class PlanResponse(BaseModel):
    """Plan details response."""
    id: str
    name: str
    tier: str
    price_cents: int
    currency: str
    billing_interval: str
    is_active: bool
    features: List[str]
    limits: dict


def _subscription_response(row: UserSubscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=row.id,
        plan_id=row.plan_id,
        status=row.status,
        provider_subscription_id=row.provider_subscription_id,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        cancel_at_period_end=bool(row.cancel_at_period_end),
        canceled_at=row.canceled_at,
    )


def get_billing_service_factory() -> Callable[[Session, str], BillingService]:
    """Overridable in tests to inject a fake provider client."""
    def _factory(db: Session, tenant_id: str) -> BillingService:
        return BillingService(db, tenant_id, get_plan_catalog(), get_settings())
    return _factory


def get_billing_service(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
    factory: Callable[[Session, str], BillingService] = Depends(get_billing_service_factory),
) -> BillingService:
    return factory(db, ctx.tenant_id)


@router.get("/plans", response_model=List[PlanResponse])
def list_plans():
    """
    List all available subscription plans.

    This endpoint does not require tenant context.
    """
    return [PlanResponse(**plan.to_dict()) for plan in get_plan_catalog().active_plans()]


@router.get("/subscription", response_model=Optional[SubscriptionResponse])
def get_subscription(service: BillingService = Depends(get_billing_service)):
    """Current subscription for the tenant, or null."""
    row = service.get_subscription()
    return _subscription_response(row) if row is not None else None


@router.post(
    "/subscriptions",
    response_model=CreateSubscriptionResponse,
    dependencies=[Depends(require_role("owner", "admin"))],
)
async def create_subscription(
    body: CreateSubscriptionRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    service: BillingService = Depends(get_billing_service),
):
    """
    Create a Razorpay subscription and return its hosted checkout URL.

    The row stays in `created` until the payment is verified or the
    activation webhook arrives.
    """
    logger.info("Creating subscription checkout", extra={
        "tenant_id": ctx.tenant_id,
        "plan_id": body.plan_id,
    })
    result = await service.create_checkout(body.plan_id, customer_email=ctx.email)
    return CreateSubscriptionResponse(
        checkout_url=result.checkout_url,
        subscription_id=result.subscription_id,
        plan_id=result.plan_id,
    )


@router.post(
    "/verify-payment",
    response_model=SubscriptionResponse,
    dependencies=[Depends(require_role("owner", "admin"))],
)
async def verify_payment(
    body: VerifyPaymentRequest,
    service: BillingService = Depends(get_billing_service),
):
    """Verify the checkout signature and activate the subscription."""
    row = await service.verify_payment(
        body.razorpay_payment_id,
        body.razorpay_subscription_id,
        body.razorpay_signature,
    )
    return _subscription_response(row)


@router.post(
    "/subscription/cancel",
    response_model=SubscriptionResponse,
    dependencies=[Depends(require_role("owner", "admin"))],
)
async def cancel_subscription(service: BillingService = Depends(get_billing_service)):
    """Cancel at the end of the current billing cycle."""
    row = await service.cancel_subscription()
    return _subscription_response(row)
