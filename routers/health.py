"""Health check and status endpoints."""
import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import Optional
import redis
from version import __version__
from temperature_data import StoreBackedCache, TemperatureDataService
from routers.dependencies import get_redis_client, get_temperature_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    """Simple health check endpoint for load balancers."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@router.get("/health/detailed")
async def detailed_health_check(
    service: TemperatureDataService = Depends(get_temperature_service),
    redis_client: Optional[redis.Redis] = Depends(get_redis_client),
):
    """Check the temperature store and the geocode cache."""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
        "checks": {}
    }

    cache = service.cache
    if isinstance(cache, StoreBackedCache):
        try:
            await cache.data_store.ping()
            health_status["checks"]["store"] = {
                "status": "healthy",
                "backend": type(cache.data_store).__name__,
            }
        except Exception as e:
            logger.error(f"❌ Store health check failed: {e}")
            health_status["checks"]["store"] = {"status": "unhealthy", "error": str(e)}
            health_status["status"] = "unhealthy"
    else:
        health_status["checks"]["store"] = {"status": "disabled", "message": "Running in pass-through mode"}

    if redis_client is None:
        health_status["checks"]["redis"] = {"status": "disabled", "message": "Geocode cache not configured"}
    else:
        try:
            redis_client.ping()
            health_status["checks"]["redis"] = {"status": "healthy"}
        except Exception as e:
            # Geocoding still works without Redis
            health_status["checks"]["redis"] = {"status": "unhealthy", "error": str(e)}
            if health_status["status"] == "healthy":
                health_status["status"] = "degraded"

    status_code = 503 if health_status["status"] == "unhealthy" else 200
    return JSONResponse(content=health_status, status_code=status_code)
