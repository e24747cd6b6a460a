"""
TeamInvite model for inviting users into a tenant.

Lifecycle:
1. Owner or admin invites an email address (status=pending)
2. The invitee signs in and is added to users; the invite is marked accepted
3. Pending invites past expires_at are treated as expired

A pending, unexpired invite holds a seat: team_members counts users plus
these invites, so a plan cannot be exceeded by inviting ahead of sign-up.

SECURITY:
- Duplicate pending invites for the same email and tenant are rejected
- Invites expire after 7 days
"""

import enum
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, DateTime, Index, String

from genbook.database.base import Base, TenantScopedMixin, TimestampMixin

INVITE_TTL = timedelta(days=7)


class InviteStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"


class TeamInvite(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "team_invites"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=False)
    role = Column(String(50), nullable=False)
    status = Column(String(50), nullable=False, default=InviteStatus.PENDING.value)
    invited_by = Column(String(255), nullable=True)
    expires_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc) + INVITE_TTL,
    )

    __table_args__ = (
        Index("ix_team_invites_tenant_email", "tenant_id", "email"),
        Index("ix_team_invites_tenant_status", "tenant_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<TeamInvite(id={self.id}, email={self.email}, status={self.status})>"
