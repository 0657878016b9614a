# clinicgate/routers/health.py
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/health",
    tags=["Health Checks"],
)

STARTED_AT = time.monotonic()


def _rate_limit_store_status(request: Request) -> str:
    registry = getattr(request.app.state, "rate_limiters", None)
    if registry is None:
        return "unknown"
    return registry.store_status()


@router.get("")
def health_check(request: Request, db: Session = Depends(get_db)):
    """Liveness check with database and rate limit store checks. 503 when degraded."""
    healthcheck = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "checks": {
            "database": "unknown",
            "rate_limit_store": _rate_limit_store_status(request),
        },
    }

    try:
        db.execute(text("SELECT 1"))
        healthcheck["checks"]["database"] = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Health check: database unreachable: {e}")
        healthcheck["checks"]["database"] = "error"

    if any(value == "error" for value in healthcheck["checks"].values()):
        healthcheck["status"] = "degraded"

    status_code = status.HTTP_200_OK if healthcheck["status"] == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=healthcheck)
