from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from genbook.database.session import check_database
from genbook.entitlements.loader import get_plan_catalog

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/readiness")
def readiness():
    """Readiness probe: database reachable and plan catalog loaded."""
    database = check_database()
    try:
        plans = len(get_plan_catalog().active_plans())
        catalog = {"status": "ok", "active_plans": plans}
    except (OSError, ValueError) as e:
        catalog = {"status": "error", "message": str(e)}
    ready = database["status"] == "ok" and catalog["status"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "checks": {"database": database, "plan_catalog": catalog},
        },
    )
