"""
Billing service: checkout, cancellation and webhook-driven subscription state.

All subscription writes go through upsert_subscription, an
INSERT ... ON CONFLICT (provider_subscription_id) DO UPDATE. Webhooks are
delivered at least once; replaying an event re-applies the same values and
leaves the row in the same final state.

SECURITY:
- tenant_id for user-initiated calls comes from the session, never the body
- webhook payloads are trusted only after signature verification
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from genbook.config.settings import Settings
from genbook.database.upsert import dialect_insert
from genbook.entitlements.keys import PlanTier
from genbook.entitlements.loader import PlanCatalog
from genbook.entitlements.models import PlanDefinition
from genbook.integrations.razorpay.client import (
    RazorpayClient,
    RazorpayError,
    RazorpaySubscription,
    from_epoch,
    verify_checkout_signature,
)
from genbook.models.subscription import SubscriptionStatus, UserSubscription
from genbook.platform.errors import (
    BillingProviderError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# Razorpay subscription.status -> local status
PROVIDER_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "created": SubscriptionStatus.CREATED,
    "authenticated": SubscriptionStatus.CREATED,
    "active": SubscriptionStatus.ACTIVE,
    "pending": SubscriptionStatus.PAST_DUE,
    "halted": SubscriptionStatus.HALTED,
    "paused": SubscriptionStatus.PAUSED,
    "cancelled": SubscriptionStatus.CANCELED,
    "completed": SubscriptionStatus.COMPLETED,
    "expired": SubscriptionStatus.EXPIRED,
}

# Webhook event -> local status; None means "take the entity's status"
EVENT_STATUS_MAP: Dict[str, Optional[SubscriptionStatus]] = {
    "subscription.authenticated": SubscriptionStatus.CREATED,
    "subscription.activated": SubscriptionStatus.ACTIVE,
    "subscription.charged": None,
    "subscription.resumed": SubscriptionStatus.ACTIVE,
    "subscription.pending": SubscriptionStatus.PAST_DUE,
    "subscription.halted": SubscriptionStatus.HALTED,
    "subscription.paused": SubscriptionStatus.PAUSED,
    "subscription.cancelled": SubscriptionStatus.CANCELED,
    "subscription.completed": SubscriptionStatus.COMPLETED,
    "subscription.updated": None,
}

# Events that only move the billing period; the row keeps its status
PERIOD_ONLY_EVENTS = frozenset({"subscription.charged"})

# A row in one of these states is never moved back to a live state
TERMINAL_STATUSES = frozenset({
    SubscriptionStatus.CANCELED,
    SubscriptionStatus.COMPLETED,
    SubscriptionStatus.EXPIRED,
})


def map_provider_status(value: Optional[str]) -> SubscriptionStatus:
    return PROVIDER_STATUS_MAP.get((value or "").strip().lower(), SubscriptionStatus.CREATED)


@dataclass
class SubscriptionUpsert:
    """Values applied to a subscription row, keyed by provider_subscription_id."""
    provider_subscription_id: str
    status: SubscriptionStatus
    plan_id: Optional[str] = None
    tenant_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    canceled_at: Optional[datetime] = None
    update_status: bool = True


def upsert_subscription(session: Session, values: SubscriptionUpsert) -> UserSubscription:
    """
    Insert or update the row for values.provider_subscription_id.

    tenant_id is only written on insert; a row never moves between tenants.
    Period bounds and plan are kept when the update does not carry them.
    With update_status=False the status is written on insert only.
    A canceled, completed or expired row keeps its status unless the update
    is itself terminal, so a late or replayed event cannot revive it.
    When this call leaves the row ACTIVE, any other active row of the tenant
    is canceled so the tenant holds at most one active subscription.
    Caller commits.
    """
    if not values.provider_subscription_id:
        raise ValueError("provider_subscription_id is required")

    table = UserSubscription.__table__
    existing = (
        session.query(UserSubscription.tenant_id, UserSubscription.plan_id)
        .filter(UserSubscription.provider_subscription_id == values.provider_subscription_id)
        .first()
    )
    existing_tenant, existing_plan = existing if existing is not None else (None, None)
    tenant_id = existing_tenant or values.tenant_id
    # NOT NULL is checked before the conflict, so the insert row must be complete
    plan_id = values.plan_id or existing_plan
    if not tenant_id:
        raise ValueError(
            f"cannot attribute subscription {values.provider_subscription_id} to a tenant"
        )
    if not plan_id:
        raise ValueError("plan_id is required for a new subscription")

    stmt = dialect_insert(session, table).values(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        provider_subscription_id=values.provider_subscription_id,
        plan_id=plan_id,
        status=values.status.value,
        current_period_start=values.current_period_start,
        current_period_end=values.current_period_end,
        cancel_at_period_end=bool(values.cancel_at_period_end),
        canceled_at=values.canceled_at,
    )
    excluded = stmt.excluded
    set_: Dict[str, Any] = {
        "plan_id": excluded.plan_id,
        "current_period_start": func.coalesce(excluded.current_period_start, table.c.current_period_start),
        "current_period_end": func.coalesce(excluded.current_period_end, table.c.current_period_end),
        "canceled_at": func.coalesce(excluded.canceled_at, table.c.canceled_at),
        "updated_at": func.now(),
    }
    if values.update_status:
        if values.status in TERMINAL_STATUSES:
            set_["status"] = excluded.status
        else:
            set_["status"] = case(
                (table.c.status.in_([s.value for s in TERMINAL_STATUSES]), table.c.status),
                else_=excluded.status,
            )
    if values.cancel_at_period_end is not None:
        set_["cancel_at_period_end"] = excluded.cancel_at_period_end
    stmt = stmt.on_conflict_do_update(index_elements=["provider_subscription_id"], set_=set_)
    session.execute(stmt)

    session.expire_all()
    row = (
        session.query(UserSubscription)
        .filter(UserSubscription.provider_subscription_id == values.provider_subscription_id)
        .one()
    )

    status_written = values.update_status or existing is None
    if status_written and row.status == SubscriptionStatus.ACTIVE.value:
        for other in superseded_subscriptions(session, tenant_id, values.provider_subscription_id):
            other.status = SubscriptionStatus.CANCELED.value
            other.canceled_at = datetime.now(timezone.utc)
            logger.info("Superseded active subscription canceled", extra={
                "tenant_id": tenant_id,
                "provider_subscription_id": other.provider_subscription_id,
            })
        session.flush()
    return row


def superseded_subscriptions(
    session: Session,
    tenant_id: str,
    provider_subscription_id: str,
) -> List[UserSubscription]:
    """Active rows of the tenant other than provider_subscription_id."""
    return (
        session.query(UserSubscription)
        .filter(
            UserSubscription.tenant_id == tenant_id,
            UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            UserSubscription.provider_subscription_id != provider_subscription_id,
        )
        .all()
    )


@dataclass
class CheckoutResult:
    checkout_url: Optional[str]
    subscription_id: str
    plan_id: str


class BillingService:
    """Tenant-scoped billing operations."""

    def __init__(
        self,
        db_session: Session,
        tenant_id: str,
        catalog: PlanCatalog,
        settings: Settings,
        client_factory: Optional[Callable[[], RazorpayClient]] = None,
    ):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        self.db = db_session
        self.tenant_id = tenant_id
        self.catalog = catalog
        self.settings = settings
        self._client_factory = client_factory or self._default_client

    def _default_client(self) -> RazorpayClient:
        if not self.settings.billing_configured:
            raise ServiceUnavailableError("Billing is not configured")
        return RazorpayClient(self.settings.razorpay_key_id, self.settings.razorpay_key_secret)

    def get_subscription(self) -> Optional[UserSubscription]:
        """The active subscription, else the most recently updated row."""
        active = (
            self.db.query(UserSubscription)
            .filter(
                UserSubscription.tenant_id == self.tenant_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(UserSubscription.created_at.desc())
            .first()
        )
        if active is not None:
            return active
        return (
            self.db.query(UserSubscription)
            .filter(UserSubscription.tenant_id == self.tenant_id)
            .order_by(UserSubscription.updated_at.desc(), UserSubscription.created_at.desc())
            .first()
        )

    def _paid_plan(self, plan_id: str) -> PlanDefinition:
        plan = self.catalog.find_plan(plan_id)
        if plan is None or not plan.is_active:
            raise ValidationError("Invalid plan selected", {"plan_id": plan_id})
        if plan.tier is PlanTier.FREE:
            raise ValidationError("The free plan does not require checkout", {"plan_id": plan_id})
        if not plan.provider_plan_ids:
            raise ValidationError("Plan is not available for purchase", {"plan_id": plan_id})
        return plan

    async def create_checkout(self, plan_id: str, customer_email: Optional[str] = None) -> CheckoutResult:
        """Create a provider subscription and persist it in CREATED state."""
        plan = self._paid_plan(plan_id)
        try:
            async with self._client_factory() as client:
                remote = await client.create_subscription(
                    provider_plan_id=plan.provider_plan_ids[0],
                    tenant_id=self.tenant_id,
                    customer_email=customer_email,
                )
        except RazorpayError as e:
            raise BillingProviderError("Failed to create subscription", {"provider_error": str(e)}) from e

        upsert_subscription(self.db, SubscriptionUpsert(
            provider_subscription_id=remote.subscription_id,
            tenant_id=self.tenant_id,
            plan_id=plan.plan_id,
            status=SubscriptionStatus.CREATED,
        ))
        self.db.commit()
        return CheckoutResult(
            checkout_url=remote.short_url,
            subscription_id=remote.subscription_id,
            plan_id=plan.plan_id,
        )

    def _owned_subscription(self, provider_subscription_id: str) -> UserSubscription:
        row = (
            self.db.query(UserSubscription)
            .filter(
                UserSubscription.provider_subscription_id == provider_subscription_id,
                UserSubscription.tenant_id == self.tenant_id,
            )
            .first()
        )
        if row is None:
            raise NotFoundError("Subscription", provider_subscription_id)
        return row

    async def _cancel_superseded(self, client: RazorpayClient, provider_subscription_id: str) -> None:
        """
        Stop billing for a plan the tenant has replaced.

        The payment for the new plan has already been captured, so a provider
        failure here is logged and activation goes ahead. The local row is
        canceled by upsert_subscription either way.
        """
        try:
            await client.cancel_subscription(provider_subscription_id, cancel_at_cycle_end=False)
        except RazorpayError as e:
            logger.error("Failed to cancel superseded subscription", extra={
                "tenant_id": self.tenant_id,
                "subscription_id": provider_subscription_id,
                "error": str(e),
            })

    async def verify_payment(
        self,
        payment_id: str,
        provider_subscription_id: str,
        signature: str,
    ) -> UserSubscription:
        """Activate a subscription after a verified checkout payment."""
        if not verify_checkout_signature(
            payment_id, provider_subscription_id, signature, self.settings.razorpay_key_secret
        ):
            logger.warning("Invalid checkout signature", extra={
                "tenant_id": self.tenant_id,
                "subscription_id": provider_subscription_id,
            })
            raise ValidationError("Invalid payment signature")

        self._owned_subscription(provider_subscription_id)
        superseded_ids = [
            row.provider_subscription_id
            for row in superseded_subscriptions(self.db, self.tenant_id, provider_subscription_id)
        ]
        try:
            async with self._client_factory() as client:
                remote = await client.get_subscription(provider_subscription_id)
                for superseded_id in superseded_ids:
                    await self._cancel_superseded(client, superseded_id)
        except RazorpayError as e:
            raise BillingProviderError("Failed to fetch subscription", {"provider_error": str(e)}) from e

        row = upsert_subscription(self.db, SubscriptionUpsert(
            provider_subscription_id=provider_subscription_id,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=remote.current_start,
            current_period_end=remote.current_end,
        ))
        self.db.commit()
        logger.info("Subscription activated from checkout", extra={
            "tenant_id": self.tenant_id,
            "subscription_id": provider_subscription_id,
            "payment_id": payment_id,
        })
        return row

    async def cancel_subscription(self) -> UserSubscription:
        """Cancel the active subscription at the end of the current cycle."""
        row = (
            self.db.query(UserSubscription)
            .filter(
                UserSubscription.tenant_id == self.tenant_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(UserSubscription.created_at.desc())
            .first()
        )
        if row is None or not row.provider_subscription_id:
            raise NotFoundError("Active subscription")

        try:
            async with self._client_factory() as client:
                await client.cancel_subscription(row.provider_subscription_id, cancel_at_cycle_end=True)
        except RazorpayError as e:
            raise BillingProviderError("Failed to cancel subscription", {"provider_error": str(e)}) from e

        row = upsert_subscription(self.db, SubscriptionUpsert(
            provider_subscription_id=row.provider_subscription_id,
            status=SubscriptionStatus.ACTIVE,
            cancel_at_period_end=True,
        ))
        self.db.commit()
        return row


@dataclass
class WebhookResult:
    handled: bool
    event: str
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None


class WebhookProcessor:
    """Applies verified Razorpay subscription events."""

    def __init__(self, db_session: Session, catalog: PlanCatalog):
        self.db = db_session
        self.catalog = catalog

    def process_event(self, event: Dict[str, Any]) -> WebhookResult:
        event_type = str(event.get("event") or "").strip()
        if event_type not in EVENT_STATUS_MAP:
            logger.info("Unhandled webhook event", extra={"event": event_type})
            return WebhookResult(handled=False, event=event_type, reason="unhandled_event")

        payload = event.get("payload")
        subscription = payload.get("subscription") if isinstance(payload, dict) else None
        entity = subscription.get("entity") if isinstance(subscription, dict) else None
        if not isinstance(entity, dict) or not entity.get("id"):
            raise ValidationError("Invalid payload", {"event": event_type})

        status = EVENT_STATUS_MAP[event_type] or map_provider_status(entity.get("status"))
        update_status = event_type not in PERIOD_ONLY_EVENTS
        notes = entity.get("notes") or {}
        tenant_id = notes.get("tenant_id") if isinstance(notes, dict) else None

        plan_id = None
        if entity.get("plan_id"):
            plan = self.catalog.find_plan(entity["plan_id"])
            plan_id = plan.plan_id if plan is not None else entity["plan_id"]

        canceled_at = None
        if update_status and status is SubscriptionStatus.CANCELED:
            canceled_at = from_epoch(entity.get("ended_at")) or datetime.now(timezone.utc)

        values = SubscriptionUpsert(
            provider_subscription_id=entity["id"],
            status=status,
            plan_id=plan_id,
            tenant_id=tenant_id,
            current_period_start=from_epoch(entity.get("current_start")),
            current_period_end=from_epoch(entity.get("current_end")),
            canceled_at=canceled_at,
            update_status=update_status,
        )
        try:
            row = upsert_subscription(self.db, values)
        except ValueError as e:
            self.db.rollback()
            logger.warning("Webhook could not be applied", extra={
                "event": event_type,
                "subscription_id": entity["id"],
                "error": str(e),
            })
            return WebhookResult(
                handled=False,
                event=event_type,
                subscription_id=entity["id"],
                reason="not_applied",
            )

        self.db.commit()
        logger.info("Webhook applied", extra={
            "event": event_type,
            "tenant_id": row.tenant_id,
            "subscription_id": row.provider_subscription_id,
            "status": row.status,
        })
        return WebhookResult(
            handled=True,
            event=event_type,
            subscription_id=row.provider_subscription_id,
            status=row.status,
        )
