import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional

import aiohttp

from config import OPEN_METEO_ARCHIVE_URL
from utils.errors import UpstreamFailure, UpstreamRateLimited
from utils.geocoding import GeocodeProvider
from utils.http_client import get_http_session
from utils.records import DailyRecord

logger = logging.getLogger(__name__)

OPEN_METEO_PROVIDER_ID = 1
_RATE_LIMIT_MARKERS = ("limit exceeded", "rate limit", "too many requests")


class HistoryProvider(ABC):
    """Upstream source of daily min/max temperature history."""

    provider_id: int
    name: str

    @abstractmethod
    async def fetch_daily_records(self, location: str, start: date, end: date) -> List[DailyRecord]:
        """Fetch records for ``[start, end]`` inclusive.

        Raises:
            UpstreamRateLimited: when the upstream throttles the request
            UpstreamFailure: for any other upstream error
        """


def _is_rate_limited(status: int, reason: Optional[str]) -> bool:
    if status == 429:
        return True
    lowered = (reason or "").lower()
    return any(marker in lowered for marker in _RATE_LIMIT_MARKERS)


def _parse_daily_payload(payload: Dict[str, Any], provider_id: int) -> List[DailyRecord]:
    """Convert an Open-Meteo ``daily`` block into records, dropping days with missing temperatures."""
    daily = payload.get("daily")
    if not isinstance(daily, dict):
        return []
    times = daily.get("time") or []
    maxima = daily.get("temperature_2m_max") or []
    minima = daily.get("temperature_2m_min") or []
    if not (len(times) == len(maxima) == len(minima)):
        raise UpstreamFailure(
            f"Open-Meteo daily arrays differ in length: time={len(times)} max={len(maxima)} min={len(minima)}"
        )

    records: List[DailyRecord] = []
    for day_text, max_c, min_c in zip(times, maxima, minima):
        if max_c is None or min_c is None:
            continue
        try:
            record = DailyRecord(
                date=date.fromisoformat(day_text),
                max_temperature_c=float(max_c),
                min_temperature_c=float(min_c),
                provider_id=provider_id,
            )
        except (TypeError, ValueError) as exc:
            raise UpstreamFailure(f"Malformed Open-Meteo archive payload for day {day_text!r}: {exc}") from exc
        records.append(record)
    return records


class OpenMeteoArchiveProvider(HistoryProvider):
    """Historical daily temperatures from the Open-Meteo archive API.

    One request per call with no retries; throttling is reported as
    ``UpstreamRateLimited`` so the caller can stop issuing chunks.
    """

    provider_id = OPEN_METEO_PROVIDER_ID
    name = "Open-Meteo"

    def __init__(self, geocoder: GeocodeProvider, base_url: str = OPEN_METEO_ARCHIVE_URL):
        self._geocoder = geocoder
        self._base_url = base_url

    async def fetch_daily_records(self, location: str, start: date, end: date) -> List[DailyRecord]:
        if start > end:
            raise ValueError("start date must not be after end date")

        latitude, longitude = await self._geocoder.resolve_location(location)
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "daily": "temperature_2m_max,temperature_2m_min",
            "timezone": "UTC",
        }
        session = await get_http_session()
        logger.debug("🌡️ archive GET %s %s", self._base_url, params)
        try:
            async with session.get(self._base_url, params=params) as response:
                if response.status >= 400:
                    reason = await self._error_reason(response)
                    logger.error(
                        "Open-Meteo archive error: status=%s location=%s range=%s..%s reason=%s",
                        response.status,
                        location,
                        start,
                        end,
                        (reason or "")[:200],
                    )
                    if _is_rate_limited(response.status, reason):
                        raise UpstreamRateLimited(
                            f"Open-Meteo rate limit ({response.status}): {reason}", status=response.status
                        )
                    raise UpstreamFailure(
                        f"Open-Meteo archive error ({response.status}): {reason}", status=response.status
                    )
                try:
                    payload = await response.json()
                except ValueError as exc:
                    raise UpstreamFailure(f"Malformed Open-Meteo archive payload: {exc}") from exc
        except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
            raise UpstreamFailure(f"Open-Meteo archive request failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise UpstreamFailure("Unexpected Open-Meteo archive payload")
        records = _parse_daily_payload(payload, self.provider_id)
        if not records:
            logger.warning("No temperature data available from Open-Meteo for %s (%s..%s)", location, start, end)
        return records

    @staticmethod
    async def _error_reason(response: aiohttp.ClientResponse) -> Optional[str]:
        text = await response.text()
        try:
            body = await response.json(content_type=None)
        except ValueError:
            return text
        if isinstance(body, dict) and body.get("reason"):
            return str(body["reason"])
        return text
