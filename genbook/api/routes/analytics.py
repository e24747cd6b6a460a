"""Advanced analytics: paid plans with the advanced_analytics feature only."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from genbook.api.dependencies.gates import require_entitlement, require_subscription
from genbook.database.session import get_db_session
from genbook.entitlements.keys import FeatureKey
from genbook.entitlements.models import Entitlements
from genbook.entitlements.usage import current_month_window
from genbook.models.appointment import Appointment
from genbook.platform.tenant_context import TenantContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/advanced")
def advanced_analytics(
    ctx: TenantContext = Depends(require_subscription()),
    entitlements: Entitlements = Depends(require_entitlement(FeatureKey.ADVANCED_ANALYTICS)),
    db: Session = Depends(get_db_session),
):
    """Usage for the current UTC month plus appointment volume in that window."""
    window = current_month_window(entitlements.resolved_at)
    scheduled = (
        db.query(func.count(Appointment.id))
        .filter(
            Appointment.tenant_id == ctx.tenant_id,
            Appointment.starts_at >= window.start,
            Appointment.starts_at < window.end,
        )
        .scalar()
    )
    return {
        "period_start": window.start.isoformat(),
        "period_end": window.end.isoformat(),
        "plan": entitlements.plan.value,
        "usage": {m.value: v for m, v in entitlements.usage.items()},
        "appointments_scheduled": int(scheduled or 0),
    }
