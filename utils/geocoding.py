"""Location name to coordinate resolution."""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import aiohttp
import redis

from config import OPEN_METEO_GEOCODING_URL
from utils.errors import LocationNotFound, UpstreamFailure
from utils.http_client import get_http_session

logger = logging.getLogger(__name__)

Coordinates = Tuple[float, float]


class GeocodeProvider(ABC):
    @abstractmethod
    async def resolve_location(self, name: str) -> Coordinates:
        """Return (latitude, longitude) for a location name.

        Raises:
            LocationNotFound: if the name cannot be resolved
        """


class GeocodeCache:
    """Redis cache of resolved coordinates and of names known to be unresolvable."""

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl_hours: int = 168,
        invalid_ttl_hours: int = 24,
    ):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_hours * 3600
        self.invalid_ttl_seconds = invalid_ttl_hours * 3600
        self.key_prefix = "geocode:"
        self.invalid_key_prefix = "invalid_location:"

    def get(self, name: str) -> Optional[Coordinates]:
        try:
            data = self.redis_client.get(f"{self.key_prefix}{name.lower()}")
            if not data:
                return None
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            cached = json.loads(data)
            return float(cached["latitude"]), float(cached["longitude"])
        except Exception as e:
            logger.error(f"Error reading geocode cache: {e}")
            return None

    def set(self, name: str, coordinates: Coordinates) -> None:
        latitude, longitude = coordinates
        try:
            self.redis_client.setex(
                f"{self.key_prefix}{name.lower()}",
                self.ttl_seconds,
                json.dumps({"latitude": latitude, "longitude": longitude}),
            )
        except Exception as e:
            logger.error(f"Error writing geocode cache: {e}")

    def is_invalid_location(self, name: str) -> bool:
        try:
            return self.redis_client.exists(f"{self.invalid_key_prefix}{name.lower()}") > 0
        except Exception as e:
            logger.error(f"Error checking invalid location cache: {e}")
            return False

    def mark_location_invalid(self, name: str, reason: str = "not_found") -> None:
        try:
            data = {
                "location": name,
                "reason": reason,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            self.redis_client.setex(
                f"{self.invalid_key_prefix}{name.lower()}",
                self.invalid_ttl_seconds,
                json.dumps(data),
            )
            logger.info(f"Marked location as invalid: {name} (reason: {reason})")
        except Exception as e:
            logger.error(f"Error marking location as invalid: {e}")


class OpenMeteoGeocoder(GeocodeProvider):
    """Geocoder backed by the Open-Meteo search API, memoized per process and optionally in Redis."""

    def __init__(self, cache: Optional[GeocodeCache] = None, base_url: str = OPEN_METEO_GEOCODING_URL):
        self._cache = cache
        self._base_url = base_url
        self._memo: Dict[str, Coordinates] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def resolve_location(self, name: str) -> Coordinates:
        key = name.lower()
        if key in self._memo:
            return self._memo[key]
        if self._cache is not None:
            if self._cache.is_invalid_location(name):
                raise LocationNotFound(name)
            cached = self._cache.get(name)
            if cached is not None:
                self._memo[key] = cached
                return cached

        # Serialize lookups per name only
        async with self._locks.setdefault(key, asyncio.Lock()):
            if key in self._memo:
                return self._memo[key]
            coordinates = await self._search(name)
            self._memo[key] = coordinates
        if self._cache is not None:
            self._cache.set(name, coordinates)
        return coordinates

    async def _search(self, name: str) -> Coordinates:
        session = await get_http_session()
        try:
            async with session.get(self._base_url, params={"name": name, "count": 1}) as response:
                if response.status >= 400:
                    raise UpstreamFailure(
                        f"Open-Meteo geocoding error ({response.status})", status=response.status
                    )
                payload = await response.json()
        except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
            raise UpstreamFailure(f"Open-Meteo geocoding request failed: {exc}") from exc

        results = payload.get("results") if isinstance(payload, dict) else None
        if not results:
            if self._cache is not None:
                self._cache.mark_location_invalid(name)
            raise LocationNotFound(name)

        first = results[0]
        coordinates = (float(first["latitude"]), float(first["longitude"]))
        logger.debug("Geocoded %s to lat=%s, lon=%s", name, coordinates[0], coordinates[1])
        return coordinates
