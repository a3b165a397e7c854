"""Health check endpoints."""

import time

from fastapi import APIRouter, status

from ..core.config import get_settings_instance
from ..core.database import check_db_connection
from ..core.response import MailSyncResponse

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/liveness", summary="Liveness probe")
async def liveness():
    return MailSyncResponse.success({"status": "alive", "timestamp": time.time()})


@router.get("/readiness", summary="Readiness probe")
async def readiness():
    """Ready when the database answers."""
    settings = get_settings_instance()
    database_ok = await check_db_connection()
    data = {
        "status": "ready" if database_ok else "not_ready",
        "version": settings.version,
        "checks": {"database": database_ok},
    }
    code = status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return MailSyncResponse.success(data, status_code=code)
