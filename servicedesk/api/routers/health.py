"""Health check endpoints."""

import logging
from datetime import datetime
from typing import Dict, Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from servicedesk import __version__
from servicedesk.api.deps import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy"}
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        return {
            "status": "unhealthy",
            "error": str(e),
        }


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """
    Liveness and database check.

    Returns 503 when the database cannot be reached.
    """
    checks = {"database": check_database(db)}
    unhealthy = [name for name, check in checks.items() if check["status"] == "unhealthy"]

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if unhealthy else status.HTTP_200_OK,
        content={
            "status": "unhealthy" if unhealthy else "healthy",
            "version": __version__,
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
