"""Monthly usage counters for metered resources."""

import uuid

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from genbook.database.base import Base, TenantScopedMixin, TimestampMixin


class UsageCounter(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "usage_counters"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    metric = Column(String(100), nullable=False)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("tenant_id", "metric", "period_start", name="uq_usage_counter_period"),
    )

    def __repr__(self) -> str:
        return f"<UsageCounter(tenant_id={self.tenant_id}, metric={self.metric}, count={self.count})>"
