"""Health check endpoints for monitoring."""

import os
from datetime import datetime, timezone
from pathlib import Path

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from report_api.config.settings import settings
from report_api.config.database import get_db

logger = structlog.get_logger()
router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: str
    database: str
    output_dir: str


def check_database(db: Session) -> tuple[str, str | None]:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return "connected", None
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return "disconnected", str(e)


def check_output_dir() -> tuple[str, str | None]:
    """Generated PDFs must be writable; a missing directory is created on first write."""
    path = Path(settings.REPORT_OUTPUT_DIR)
    existing = next((p for p in (path, *path.parents) if p.exists()), None)
    if existing is None or not os.access(existing, os.W_OK):
        return "not_writable", f"{path} is not writable"
    return "writable", None


@router.get("", response_model=HealthResponse)
@router.get("/", response_model=HealthResponse)
async def health_check(
    db: Session = Depends(get_db),
) -> HealthResponse:
    """Overall status plus database and output directory state."""
    db_status, _ = check_database(db)
    output_status, _ = check_output_dir()

    healthy = db_status == "connected" and output_status == "writable"
    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=settings.APP_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=db_status,
        output_dir=output_status,
    )


@router.get("/ready")
async def readiness_check(
    db: Session = Depends(get_db),
) -> dict:
    """Readiness probe: 200 with ready=False until the database answers."""
    db_status, _ = check_database(db)
    if db_status != "connected":
        return {"ready": False, "reason": "Database not connected"}
    return {"ready": True}


@router.get("/live")
async def liveness_check() -> dict:
    """Liveness probe."""
    return {"alive": True}
