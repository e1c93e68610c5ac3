"""Health check API endpoints"""
import time
from datetime import datetime, timezone
from fastapi import APIRouter

from stackform import __version__
from stackform.schemas import HealthResponse

router = APIRouter()

_startup_time = time.time()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Report compiler service status and version."""
    uptime = int(time.time() - _startup_time)

    return HealthResponse(
        status="ok",
        version=__version__,
        uptime_seconds=uptime,
        now=datetime.now(timezone.utc)
    )
