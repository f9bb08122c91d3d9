"""Shared dependencies for routers."""
import redis
from typing import Optional
from temperature_data import TemperatureDataService

# Global instances - will be set by main.py during app initialization
_temperature_service: Optional[TemperatureDataService] = None
_redis_client: Optional[redis.Redis] = None


def get_temperature_service() -> TemperatureDataService:
    """Dependency to get the temperature data service."""
    if _temperature_service is None:
        raise RuntimeError("Temperature service not initialized. Ensure app is properly started.")
    return _temperature_service


def get_redis_client() -> Optional[redis.Redis]:
    """Dependency to get the Redis client; None when the geocode cache is disabled."""
    return _redis_client


def initialize_dependencies(
    temperature_service: TemperatureDataService,
    redis_client: Optional[redis.Redis],
):
    """Initialize shared dependencies. Called from main.py during app startup."""
    global _temperature_service, _redis_client

    _temperature_service = temperature_service
    _redis_client = redis_client
