# Standard library imports
import logging
from contextlib import asynccontextmanager
from typing import Optional

# Third-party imports
import redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import (
    CACHE_ENABLED, CHUNK_DELAY_SECONDS, CHUNK_YEARS, CORS_ORIGINS, COVERAGE_THRESHOLD_PCT,
    DEFAULT_HISTORY_START, GEOCODE_CACHE_TTL_HOURS, HISTORY_LAG_DAYS, INVALID_LOCATION_TTL_HOURS,
    PG_COMMAND_TIMEOUT, PG_DSN, PG_POOL_MAX_SIZE, PG_POOL_MIN_SIZE, REDIS_URL, STORE_BACKEND,
    configure_logging,
)
from exceptions import register_exception_handlers
from middleware import log_requests_middleware, request_id_middleware
from routers.dependencies import initialize_dependencies
from routers.health import router as health_router
from routers.root import router as root_router
from routers.temperature import router as temperature_router
from temperature_data import DisabledCache, RecordCache, StoreBackedCache, TemperatureDataService
from utils.daily_temperature_store import InMemoryTemperatureStore, PostgresTemperatureStore
from utils.geocoding import GeocodeCache, OpenMeteoGeocoder
from utils.http_client import close_http_session
from utils.open_meteo_archive import OpenMeteoArchiveProvider
from utils.redis_client import create_redis_client

configure_logging()
logger = logging.getLogger(__name__)


def build_record_cache() -> RecordCache:
    """Select the cache variant from configuration."""
    if not CACHE_ENABLED or STORE_BACKEND == "none":
        logger.warning("⚠️  Temperature cache disabled: every request is fetched from the provider")
        return DisabledCache()
    if STORE_BACKEND == "memory":
        logger.info("Temperature cache: in-memory store (not durable)")
        return StoreBackedCache(InMemoryTemperatureStore())
    return StoreBackedCache(
        PostgresTemperatureStore(
            PG_DSN,
            min_size=PG_POOL_MIN_SIZE,
            max_size=PG_POOL_MAX_SIZE,
            command_timeout=PG_COMMAND_TIMEOUT,
        )
    )


def build_temperature_service(redis_client: Optional[redis.Redis]) -> TemperatureDataService:
    geocode_cache = None
    if redis_client is not None:
        geocode_cache = GeocodeCache(
            redis_client,
            ttl_hours=GEOCODE_CACHE_TTL_HOURS,
            invalid_ttl_hours=INVALID_LOCATION_TTL_HOURS,
        )
    geocoder = OpenMeteoGeocoder(cache=geocode_cache)
    return TemperatureDataService(
        geocoder,
        OpenMeteoArchiveProvider(geocoder),
        build_record_cache(),
        chunk_years=CHUNK_YEARS,
        chunk_delay_seconds=CHUNK_DELAY_SECONDS,
        coverage_threshold_pct=COVERAGE_THRESHOLD_PCT,
        history_start=DEFAULT_HISTORY_START,
        history_lag_days=HISTORY_LAG_DAYS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown events."""
    # Startup
    redis_client = create_redis_client(REDIS_URL)
    service = build_temperature_service(redis_client)
    initialize_dependencies(temperature_service=service, redis_client=redis_client)
    logger.info("✅ Temperature service initialized")

    yield  # Application runs here

    # Shutdown
    cache = service.cache
    if isinstance(cache, StoreBackedCache):
        try:
            await cache.data_store.close()
        except Exception as e:
            logger.error(f"⚠️  Error closing temperature store: {e}")
    try:
        await close_http_session()
    except Exception as e:
        logger.error(f"⚠️  Error closing HTTP client session: {e}")
    if redis_client is not None:
        redis_client.close()


app = FastAPI(title="Temperature History API", lifespan=lifespan)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)
app.middleware("http")(log_requests_middleware)
app.middleware("http")(request_id_middleware)

app.include_router(root_router)
app.include_router(health_router)
app.include_router(temperature_router)
