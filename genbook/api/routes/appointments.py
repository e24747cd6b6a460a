"""
Appointment routes.

Creating an appointment is metered by appointments_per_month: the gate
rejects at the limit and the handler increments the counter in the same
transaction as the insert.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from genbook.api.dependencies.gates import require_within_limit
from genbook.database.session import get_db_session
from genbook.entitlements.keys import UsageMetric
from genbook.entitlements.usage import increment_usage
from genbook.models.appointment import Appointment
from genbook.platform.errors import NotFoundError
from genbook.platform.tenant_context import TenantContext, get_tenant_context, require_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["appointments"])


class AppointmentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    starts_at: datetime
    notes: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: str
    title: str
    starts_at: datetime
    notes: Optional[str]
    created_by: Optional[str]

    model_config = ConfigDict(from_attributes=True)


@router.get("", response_model=List[AppointmentResponse])
def list_appointments(
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    return (
        db.query(Appointment)
        .filter(Appointment.tenant_id == ctx.tenant_id)
        .order_by(Appointment.starts_at.asc())
        .all()
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    row = (
        db.query(Appointment)
        .filter(Appointment.id == appointment_id, Appointment.tenant_id == ctx.tenant_id)
        .first()
    )
    if row is None:
        raise NotFoundError("Appointment", appointment_id)
    return row


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[
        Depends(require_role("owner", "admin")),
        Depends(require_within_limit(UsageMetric.APPOINTMENTS_PER_MONTH)),
    ],
)
def create_appointment(
    body: AppointmentCreate,
    ctx: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    appointment = Appointment(
        tenant_id=ctx.tenant_id,
        title=body.title,
        starts_at=body.starts_at,
        notes=body.notes,
        created_by=ctx.user_id,
    )
    db.add(appointment)
    db.flush()
    increment_usage(db, ctx.tenant_id, UsageMetric.APPOINTMENTS_PER_MONTH)
    db.commit()

    logger.info("Appointment created", extra={
        "tenant_id": ctx.tenant_id,
        "appointment_id": appointment.id,
    })
    return appointment
