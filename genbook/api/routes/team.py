"""
Team routes.

Every team route needs an active subscription. Inviting additionally needs
a professional or enterprise plan, an owner or admin caller, and a free
seat under team_members (users plus pending invites).
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from genbook.api.dependencies.gates import require_subscription, require_within_limit
from genbook.database.session import get_db_session
from genbook.entitlements.keys import PlanTier, UsageMetric
from genbook.models.team_invite import InviteStatus, TeamInvite
from genbook.models.user import User, UserRole, normalize_role
from genbook.platform.errors import ConflictError, ValidationError
from genbook.platform.tenant_context import TenantContext, get_tenant_context, require_role

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/team",
    tags=["team"],
    dependencies=[Depends(require_subscription())],
)


class MemberResponse(BaseModel):
    id: str
    email: Optional[str]
    role: str
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class MembersResponse(BaseModel):
    members: List[MemberResponse]


class InviteRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    role: str = Field(default=UserRole.STAFF.value)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("invalid email address")
        return value


class InviteResponse(BaseModel):
    id: str
    email: str
    role: str
    status: str
    expires_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.get("/members", response_model=MembersResponse)
def list_members(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    members = (
        db.query(User)
        .filter(User.tenant_id == ctx.tenant_id)
        .order_by(User.created_at.desc())
        .all()
    )
    return MembersResponse(members=members)


@router.post(
    "/invite",
    response_model=InviteResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[
        Depends(require_subscription([PlanTier.PROFESSIONAL, PlanTier.ENTERPRISE])),
        Depends(require_role("owner", "admin")),
        Depends(require_within_limit(UsageMetric.TEAM_MEMBERS)),
    ],
)
def invite_member(
    body: InviteRequest,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    role = normalize_role(body.role)
    if role is None or role == UserRole.OWNER.value:
        raise ValidationError("Invalid role", {"role": body.role})

    existing_user = (
        db.query(User.id)
        .filter(User.tenant_id == ctx.tenant_id, User.email == body.email)
        .first()
    )
    if existing_user is not None:
        raise ConflictError("User is already a member", {"email": body.email})
    pending = (
        db.query(TeamInvite.id)
        .filter(
            TeamInvite.tenant_id == ctx.tenant_id,
            TeamInvite.email == body.email,
            TeamInvite.status == InviteStatus.PENDING.value,
            TeamInvite.expires_at > datetime.now(timezone.utc),
        )
        .first()
    )
    if pending is not None:
        raise ConflictError("Invite already pending", {"email": body.email})

    invite = TeamInvite(
        tenant_id=ctx.tenant_id,
        email=body.email,
        role=role,
        invited_by=ctx.user_id,
    )
    db.add(invite)
    db.commit()

    logger.info("Team invite created", extra={
        "tenant_id": ctx.tenant_id,
        "invite_id": invite.id,
        "role": role,
    })
    return invite
