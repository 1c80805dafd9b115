from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from datetime import datetime, timezone
import logging

from ..config import settings
from ..database import check_database_health
from ..utils.redis_client import redis_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rides", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: datetime
    dependencies: dict


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check(request: Request):
    """Health check endpoint for Kubernetes liveness checks"""
    dependencies = {}
    healthy = True

    if settings.use_database:
        db_healthy = await check_database_health()
        dependencies["database"] = "connected" if db_healthy else "disconnected"
        healthy = healthy and db_healthy
    else:
        dependencies["database"] = "in-memory"

    if settings.redis_enabled:
        redis_healthy = await redis_client.health_check()
        dependencies["redis"] = "connected" if redis_healthy else "disconnected"
        healthy = healthy and redis_healthy
    else:
        dependencies["redis"] = "disabled"

    ride_service = getattr(request.app.state, "ride_service", None)
    dependencies["active_timers"] = ride_service.timers.active_count() if ride_service else 0

    response = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        service="ride-engine",
        timestamp=datetime.now(timezone.utc),
        dependencies=dependencies,
    )
    response_status = status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=response_status, content=response.model_dump(mode="json"))
