"""Application configuration and environment variables."""
import os
import logging
from datetime import date
from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip()
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default).strip()
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


# Environment and debug settings
ENVIRONMENT = os.getenv("ENVIRONMENT", os.getenv("ENV", "development")).lower()
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Prevent DEBUG mode in production
if ENVIRONMENT == "production" and DEBUG:
    raise ValueError("DEBUG=true is forbidden in production. Set ENVIRONMENT=production and DEBUG=false")

LOG_VERBOSITY = os.getenv("LOG_VERBOSITY", "normal").lower()  # "minimal", "normal", "verbose"

# Persistent cache configuration
PG_DSN = (os.getenv("TEMPHIST_PG_DSN") or os.getenv("DATABASE_URL") or "").strip()
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"
STORE_BACKEND = os.getenv("STORE_BACKEND", "postgres" if PG_DSN else "none").lower()
if STORE_BACKEND not in ("postgres", "memory", "none"):
    raise ValueError(f"STORE_BACKEND must be postgres, memory or none, got {STORE_BACKEND!r}")
if STORE_BACKEND == "postgres" and CACHE_ENABLED and not PG_DSN:
    raise ValueError("STORE_BACKEND=postgres requires TEMPHIST_PG_DSN (or DATABASE_URL)")
PG_POOL_MIN_SIZE = _env_int("PG_POOL_MIN_SIZE", "2")
PG_POOL_MAX_SIZE = _env_int("PG_POOL_MAX_SIZE", "10")
PG_COMMAND_TIMEOUT = _env_float("PG_COMMAND_TIMEOUT", "10.0")

# Geocode cache (Redis); empty URL disables it
REDIS_URL = os.getenv("REDIS_URL", "").strip()
GEOCODE_CACHE_TTL_HOURS = _env_int("GEOCODE_CACHE_TTL_HOURS", "168")
INVALID_LOCATION_TTL_HOURS = _env_int("INVALID_LOCATION_TTL_HOURS", "24")

# Backfill behaviour
try:
    DEFAULT_HISTORY_START = date.fromisoformat(os.getenv("DEFAULT_HISTORY_START", "1940-01-01").strip())
except ValueError:
    raise ValueError("DEFAULT_HISTORY_START must be a YYYY-MM-DD date")
HISTORY_LAG_DAYS = _env_int("HISTORY_LAG_DAYS", "7")  # upstream reporting delay
CHUNK_YEARS = _env_int("CHUNK_YEARS", "10")
CHUNK_DELAY_SECONDS = _env_float("CHUNK_DELAY_SECONDS", "1.0")
COVERAGE_THRESHOLD_PCT = _env_float("COVERAGE_THRESHOLD_PCT", "95.0")

# Open-Meteo API configuration
OPEN_METEO_ARCHIVE_URL = os.getenv("OPEN_METEO_ARCHIVE_URL", "https://archive-api.open-meteo.com/v1/archive").strip()
OPEN_METEO_GEOCODING_URL = os.getenv(
    "OPEN_METEO_GEOCODING_URL", "https://geocoding-api.open-meteo.com/v1/search"
).strip()
HTTP_TIMEOUT_OPEN_METEO = _env_float("HTTP_TIMEOUT_OPEN_METEO", "30.0")

# CORS configuration
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()]
if "*" in CORS_ORIGINS and ENVIRONMENT == "production":
    raise ValueError("Wildcard CORS not allowed in production")


def configure_logging() -> None:
    """Configure root logging from LOG_VERBOSITY and DEBUG."""
    if LOG_VERBOSITY == "minimal":
        log_level = logging.WARNING
    elif LOG_VERBOSITY == "verbose" or DEBUG:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    # Reduce verbosity of noisy third-party loggers
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
