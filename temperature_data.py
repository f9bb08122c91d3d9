"""
Cache-and-backfill engine for daily temperature history.

A request is answered from the durable cache when it already covers enough
of the range; otherwise the range is pulled from the history provider in
bounded chunks, and every chunk is persisted as soon as it arrives so that
an interrupted backfill keeps what it already fetched.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Awaitable, Callable, List, Optional

from utils.coverage import DEFAULT_COVERAGE_THRESHOLD_PCT, CoverageResult, evaluate_coverage
from utils.daily_temperature_store import TemperatureDataStore, upsert_daily_records
from utils.date_ranges import DateRange, default_window, expected_days, partition_range
from utils.errors import CacheWriteFailure, InvalidRange, StoreReadFailure, UpstreamRateLimited
from utils.geocoding import Coordinates, GeocodeProvider
from utils.open_meteo_archive import HistoryProvider
from utils.records import CoverageMetadata, DailyRecord
from utils.validation import sanitize_for_logging

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class BackfillObserver:
    """Receives progress events from the backfill engine. All hooks default to no-ops."""

    def cache_hit(self, location: str, coverage: CoverageResult) -> None:
        pass

    def cache_miss(self, location: str, coverage: CoverageResult) -> None:
        pass

    def cache_read_failed(self, location: str, error: Exception) -> None:
        pass

    def chunk_started(self, location: str, chunk: DateRange, index: int, total: int) -> None:
        pass

    def chunk_fetched(self, location: str, chunk: DateRange, count: int) -> None:
        pass

    def chunk_stored(self, location: str, chunk: DateRange, inserted: int) -> None:
        pass

    def cache_write_failed(self, location: str, chunk: DateRange, error: Exception) -> None:
        pass

    def rate_limited(self, location: str, chunk: DateRange, error: Exception) -> None:
        pass

    def upstream_failed(self, location: str, chunk: DateRange, error: Exception) -> None:
        pass

    def fetch_completed(self, location: str, count: int, complete: bool) -> None:
        pass


class LoggingBackfillObserver(BackfillObserver):
    """Renders backfill events as log lines."""

    def cache_hit(self, location, coverage):
        logger.info(
            "✅ Cache hit: returning %d cached records for %s (%.1f%% coverage)",
            coverage.cached_count,
            sanitize_for_logging(location),
            coverage.coverage_pct,
        )

    def cache_miss(self, location, coverage):
        logger.info(
            "Insufficient cached data for %s: %d/%d records (%.1f%% coverage). Fetching from provider.",
            sanitize_for_logging(location),
            coverage.cached_count,
            coverage.expected_days,
            coverage.coverage_pct,
        )

    def cache_read_failed(self, location, error):
        logger.warning(
            "Cache read failed for %s (%s); fetching fresh data",
            sanitize_for_logging(location),
            error,
        )

    def chunk_started(self, location, chunk, index, total):
        logger.info(
            "Fetching chunk %d/%d for %s: %s to %s",
            index,
            total,
            sanitize_for_logging(location),
            chunk[0].isoformat(),
            chunk[1].isoformat(),
        )

    def chunk_fetched(self, location, chunk, count):
        logger.info("Retrieved %d records for %s..%s", count, chunk[0].isoformat(), chunk[1].isoformat())

    def chunk_stored(self, location, chunk, inserted):
        logger.debug(
            "Cached %d new records for %s (%s..%s)",
            inserted,
            sanitize_for_logging(location),
            chunk[0].isoformat(),
            chunk[1].isoformat(),
        )

    def cache_write_failed(self, location, chunk, error):
        logger.warning(
            "Failed to cache chunk %s..%s for %s. Continuing. (%s)",
            chunk[0].isoformat(),
            chunk[1].isoformat(),
            sanitize_for_logging(location),
            error,
            exc_info=error,
        )

    def rate_limited(self, location, chunk, error):
        logger.warning(
            "⚠️ Rate limit encountered at chunk %s..%s for %s. Returning partial data. (%s)",
            chunk[0].isoformat(),
            chunk[1].isoformat(),
            sanitize_for_logging(location),
            error,
        )

    def upstream_failed(self, location, chunk, error):
        logger.error(
            "❌ Error fetching chunk %s..%s for %s: %s",
            chunk[0].isoformat(),
            chunk[1].isoformat(),
            sanitize_for_logging(location),
            error,
        )

    def fetch_completed(self, location, count, complete):
        logger.info(
            "Retrieved %d total records for %s from provider%s",
            count,
            sanitize_for_logging(location),
            "" if complete else " (partial)",
        )


class RecordCache(ABC):
    """Cache policy chosen when the service is built: backed by a store, or disabled."""

    enabled: bool

    @abstractmethod
    async def lookup(self, location: str, start: date, end: date) -> List[DailyRecord]:
        ...

    @abstractmethod
    async def store(self, location: str, coordinates: Coordinates, records: List[DailyRecord]) -> int:
        ...

    @abstractmethod
    async def metadata(self, location: str) -> Optional[CoverageMetadata]:
        ...


class StoreBackedCache(RecordCache):
    enabled = True

    def __init__(self, store: TemperatureDataStore):
        self.data_store = store

    async def lookup(self, location: str, start: date, end: date) -> List[DailyRecord]:
        return await self.data_store.read_records(location, start, end)

    async def store(self, location: str, coordinates: Coordinates, records: List[DailyRecord]) -> int:
        latitude, longitude = coordinates
        return await upsert_daily_records(self.data_store, location, latitude, longitude, records)

    async def metadata(self, location: str) -> Optional[CoverageMetadata]:
        return await self.data_store.read_metadata(location)


class DisabledCache(RecordCache):
    """Pass-through mode: nothing is read from or written to a store."""

    enabled = False

    async def lookup(self, location: str, start: date, end: date) -> List[DailyRecord]:
        return []

    async def store(self, location: str, coordinates: Coordinates, records: List[DailyRecord]) -> int:
        return 0

    async def metadata(self, location: str) -> Optional[CoverageMetadata]:
        return None


class _LazyCoordinates:
    """Geocodes a location on first use only; a failure is remembered for the rest of the request."""

    def __init__(self, geocoder: GeocodeProvider, location: str):
        self._geocoder = geocoder
        self._location = location
        self._coordinates: Optional[Coordinates] = None
        self._error: Optional[Exception] = None

    async def resolve(self) -> Coordinates:
        if self._error is not None:
            raise CacheWriteFailure(f"Geocoding {self._location} already failed") from self._error
        if self._coordinates is None:
            try:
                self._coordinates = await self._geocoder.resolve_location(self._location)
            except Exception as exc:
                self._error = exc
                raise
        return self._coordinates


class TemperatureDataService:
    """Serves daily temperature records, backfilling the cache from the history provider."""

    def __init__(
        self,
        geocoder: GeocodeProvider,
        history_provider: HistoryProvider,
        cache: RecordCache,
        *,
        observer: Optional[BackfillObserver] = None,
        chunk_years: int = 10,
        chunk_delay_seconds: float = 1.0,
        coverage_threshold_pct: float = DEFAULT_COVERAGE_THRESHOLD_PCT,
        history_start: date = date(1940, 1, 1),
        history_lag_days: int = 7,
        sleep: Sleep = asyncio.sleep,
    ):
        self._geocoder = geocoder
        self._provider = history_provider
        self._cache = cache
        self._observer = observer or LoggingBackfillObserver()
        self._chunk_years = chunk_years
        self._chunk_delay_seconds = chunk_delay_seconds
        self._coverage_threshold_pct = coverage_threshold_pct
        self._history_start = history_start
        self._history_lag_days = history_lag_days
        self._sleep = sleep

    @property
    def cache(self) -> RecordCache:
        return self._cache

    def resolve_window(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> DateRange:
        """Apply the default historical window to missing bounds."""
        return default_window(start_date, end_date, self._history_start, self._history_lag_days)

    async def get_daily_records(
        self,
        location: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[DailyRecord]:
        """Return daily records for a location, from cache when coverage suffices.

        Raises:
            InvalidRange: if the resolved end date precedes the start date
            UpstreamFailure: if the provider fails for a reason other than rate limiting
        """
        start, end = self.resolve_window(start_date, end_date)
        coverage = await self.evaluate(location, start, end)
        if coverage.sufficient:
            return coverage.cached_records
        return await self.fetch(location, start, end)

    async def evaluate(self, location: str, start: date, end: date) -> CoverageResult:
        """Check whether the cache covers ``[start, end]``; read-only.

        A failed cache read counts as an empty cache.
        """
        if end < start:
            raise InvalidRange(start, end)
        if not self._cache.enabled:
            return CoverageResult(sufficient=False, expected_days=expected_days(start, end))

        try:
            cached = await self._cache.lookup(location, start, end)
        except StoreReadFailure as exc:
            self._observer.cache_read_failed(location, exc)
            cached = []

        coverage = evaluate_coverage(cached, start, end, self._coverage_threshold_pct)
        if coverage.sufficient:
            self._observer.cache_hit(location, coverage)
        else:
            self._observer.cache_miss(location, coverage)
        return coverage

    async def fetch(self, location: str, start: date, end: date) -> List[DailyRecord]:
        """Pull ``[start, end]`` from the provider chunk by chunk, in chronological order.

        Each chunk is persisted before the next is requested. A rate-limited
        chunk ends the backfill and the records gathered so far are returned;
        any other provider error propagates.
        """
        if end < start:
            raise InvalidRange(start, end)

        chunks = partition_range(start, end, self._chunk_years)
        coordinates = _LazyCoordinates(self._geocoder, location)
        records: List[DailyRecord] = []

        for index, chunk in enumerate(chunks):
            self._observer.chunk_started(location, chunk, index + 1, len(chunks))
            try:
                chunk_records = await self._provider.fetch_daily_records(location, chunk[0], chunk[1])
            except UpstreamRateLimited as exc:
                self._observer.rate_limited(location, chunk, exc)
                self._observer.fetch_completed(location, len(records), complete=False)
                return records
            except Exception as exc:
                self._observer.upstream_failed(location, chunk, exc)
                raise

            self._observer.chunk_fetched(location, chunk, len(chunk_records))
            if chunk_records and self._cache.enabled:
                await self._persist_chunk(location, chunk, chunk_records, coordinates)
            records.extend(chunk_records)

            if index < len(chunks) - 1:
                await self._sleep(self._chunk_delay_seconds)

        self._observer.fetch_completed(location, len(records), complete=True)
        return records

    async def _persist_chunk(
        self,
        location: str,
        chunk: DateRange,
        chunk_records: List[DailyRecord],
        coordinates: _LazyCoordinates,
    ) -> None:
        """Store one fetched chunk; a failure is reported to the observer and not raised."""
        try:
            resolved = await coordinates.resolve()
            inserted = await self._cache.store(location, resolved, chunk_records)
        except Exception as exc:
            self._observer.cache_write_failed(location, chunk, exc)
            return
        self._observer.chunk_stored(location, chunk, inserted)

    async def get_metadata(self, location: str) -> Optional[CoverageMetadata]:
        """Return coverage metadata for a location name, or None if it is unknown."""
        return await self._cache.metadata(location)
