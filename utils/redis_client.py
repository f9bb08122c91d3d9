"""Redis client creation for the geocode cache."""
import logging
from typing import Optional
from urllib.parse import urlparse
import redis
from config import ENVIRONMENT

logger = logging.getLogger(__name__)


def create_redis_client(url: str) -> Optional[redis.Redis]:
    """Create and validate a Redis client.

    Returns None when no URL is configured or the server cannot be reached;
    the geocoder then works without a shared cache.
    """
    if not url:
        return None

    parsed = urlparse(url)
    if ENVIRONMENT == "production" and not parsed.password:
        logger.error("❌ Redis password required in production")
        raise ValueError("Redis password required in production environment")
    if ENVIRONMENT == "production" and parsed.scheme != "rediss":
        logger.warning("⚠️  Redis not using SSL (rediss://) in production! Consider using rediss:// for encrypted connections.")

    client = redis.from_url(url, decode_responses=True)
    try:
        client.ping()
    except redis.RedisError as e:
        logger.error(f"❌ Redis connection failed, geocode cache disabled: {e}")
        return None
    logger.info("✅ Redis connection validated successfully")
    return client
