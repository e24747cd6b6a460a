"""
Usage counters for metered resources.

Monthly metrics live in usage_counters, one row per
(tenant, metric, UTC calendar month). Increments are a single
INSERT ... ON CONFLICT DO UPDATE so concurrent requests cannot lose counts.
team_members is not a counter; it is the live number of users in the tenant
plus pending, unexpired invites.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from genbook.database.upsert import dialect_insert
from genbook.entitlements.keys import ALL_USAGE_METRICS, UsageMetric
from genbook.models.team_invite import InviteStatus, TeamInvite
from genbook.models.usage import UsageCounter
from genbook.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageWindow:
    start: datetime
    end: datetime


def current_month_window(now: Optional[datetime] = None) -> UsageWindow:
    """[first instant of this UTC month, first instant of next UTC month)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return UsageWindow(start=start, end=end)


def count_team_seats(session: Session, tenant_id: str, now: Optional[datetime] = None) -> int:
    """Users of the tenant plus pending invites that have not expired."""
    now = now or datetime.now(timezone.utc)
    users = session.query(func.count(User.id)).filter(User.tenant_id == tenant_id).scalar() or 0
    invites = (
        session.query(func.count(TeamInvite.id))
        .filter(
            TeamInvite.tenant_id == tenant_id,
            TeamInvite.status == InviteStatus.PENDING.value,
            TeamInvite.expires_at > now,
        )
        .scalar()
        or 0
    )
    return int(users) + int(invites)


def get_usage(
    session: Session,
    tenant_id: str,
    metric: UsageMetric,
    now: Optional[datetime] = None,
) -> int:
    """Current usage for one metric; 0 when no counter exists."""
    if metric is UsageMetric.TEAM_MEMBERS:
        return count_team_seats(session, tenant_id, now)

    window = current_month_window(now)
    count = (
        session.query(UsageCounter.count)
        .filter(
            UsageCounter.tenant_id == tenant_id,
            UsageCounter.metric == metric.value,
            UsageCounter.period_start == window.start,
        )
        .scalar()
    )
    return int(count or 0)


def get_usage_snapshot(
    session: Session,
    tenant_id: str,
    metrics: Iterable[UsageMetric] = ALL_USAGE_METRICS,
    now: Optional[datetime] = None,
) -> Dict[UsageMetric, int]:
    return {metric: get_usage(session, tenant_id, metric, now=now) for metric in metrics}


def increment_usage(
    session: Session,
    tenant_id: str,
    metric: UsageMetric,
    delta: int = 1,
    now: Optional[datetime] = None,
) -> None:
    """Add ``delta`` to this month's counter. Caller commits."""
    if not metric.is_monthly:
        raise ValueError(f"{metric.value} is not a monthly counter")
    if delta < 1:
        raise ValueError("delta must be positive")

    window = current_month_window(now)
    table = UsageCounter.__table__
    stmt = dialect_insert(session, table).values(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        metric=metric.value,
        period_start=window.start,
        period_end=window.end,
        count=delta,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "metric", "period_start"],
        set_={"count": table.c.count + stmt.excluded.count, "updated_at": func.now()},
    )
    session.execute(stmt)
    logger.debug(
        "Usage incremented",
        extra={"tenant_id": tenant_id, "metric": metric.value, "delta": delta},
    )
