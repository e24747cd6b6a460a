"""
UserSubscription model: a tenant's link to a catalog plan.

Rows are created on checkout and mutated by billing-provider webhooks, keyed
by provider_subscription_id. A tenant has at most one ACTIVE row.
"""

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, String

from genbook.database.base import Base, TenantScopedMixin, TimestampMixin


class SubscriptionStatus(str, enum.Enum):
    CREATED = "created"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    HALTED = "halted"
    CANCELED = "canceled"
    COMPLETED = "completed"
    EXPIRED = "expired"


class UserSubscription(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "user_subscriptions"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    plan_id = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default=SubscriptionStatus.CREATED.value)
    provider_subscription_id = Column(String(255), nullable=True, unique=True)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_user_subscriptions_tenant_status", "tenant_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value

    def __repr__(self) -> str:
        return (
            f"<UserSubscription(tenant_id={self.tenant_id}, plan_id={self.plan_id}, "
            f"status={self.status})>"
        )
