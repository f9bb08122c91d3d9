"""
Tests for the cache-and-backfill engine.

Tests cover:
- Cache hits served without upstream calls
- Chunked backfill with per-chunk persistence
- Partial results on upstream rate limiting
- Best-effort caching when the store or geocoder fails
- Pass-through mode with the cache disabled
"""

from datetime import date, timedelta
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from temperature_data import BackfillObserver, DisabledCache, StoreBackedCache, TemperatureDataService
from utils.daily_temperature_store import InMemoryTemperatureStore, upsert_daily_records
from utils.errors import (
    InvalidRange, LocationNotFound, StoreReadFailure, UpstreamFailure, UpstreamRateLimited
)
from utils.geocoding import GeocodeProvider
from utils.open_meteo_archive import HistoryProvider
from utils.records import DailyRecord


def _daily(start: date, end: date, provider_id: int = 1) -> List[DailyRecord]:
    days = (end - start).days + 1
    return [
        DailyRecord(
            date=start + timedelta(days=i),
            max_temperature_c=15.0 + (i % 10),
            min_temperature_c=5.0 - (i % 10),
            provider_id=provider_id,
        )
        for i in range(days)
    ]


class FakeGeocoder(GeocodeProvider):
    def __init__(self, error: Optional[Exception] = None):
        self.calls = 0
        self.error = error

    async def resolve_location(self, name):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return (48.8534, 2.3488)


class FakeProvider(HistoryProvider):
    provider_id = 1
    name = "fake"

    def __init__(self, failures=None):
        self.requests = []
        self.failures = failures or {}

    async def fetch_daily_records(self, location, start, end):
        index = len(self.requests)
        self.requests.append((start, end))
        if index in self.failures:
            raise self.failures[index]
        return _daily(start, end)


class RecordingObserver(BackfillObserver):
    def __init__(self):
        self.events = []

    def cache_hit(self, location, coverage):
        self.events.append("cache_hit")

    def cache_miss(self, location, coverage):
        self.events.append("cache_miss")

    def cache_read_failed(self, location, error):
        self.events.append("cache_read_failed")

    def cache_write_failed(self, location, chunk, error):
        self.events.append("cache_write_failed")

    def rate_limited(self, location, chunk, error):
        self.events.append("rate_limited")

    def fetch_completed(self, location, count, complete):
        self.events.append(("fetch_completed", count, complete))


class UnreadableStore(InMemoryTemperatureStore):
    async def read_records(self, location_name, start, end):
        raise StoreReadFailure("connection refused")


class UnwritableStore(InMemoryTemperatureStore):
    def transaction(self):
        raise ConnectionError("pool exhausted")


@pytest.fixture
def store():
    return InMemoryTemperatureStore()


@pytest.fixture
def sleep():
    return AsyncMock()


def _service(geocoder, provider, cache, sleep, observer=None):
    return TemperatureDataService(
        geocoder,
        provider,
        cache,
        observer=observer or RecordingObserver(),
        sleep=sleep,
    )


@pytest.mark.asyncio
async def test_empty_cache_fetches_and_persists_single_chunk(store, sleep):
    geocoder, provider = FakeGeocoder(), FakeProvider()
    service = _service(geocoder, provider, StoreBackedCache(store), sleep)

    records = await service.get_daily_records("Paris", date(2020, 1, 1), date(2020, 1, 10))

    assert len(records) == 10
    assert provider.requests == [(date(2020, 1, 1), date(2020, 1, 10))]
    sleep.assert_not_awaited()

    metadata = await service.get_metadata("Paris")
    assert metadata.oldest_date == date(2020, 1, 1)
    assert metadata.newest_date == date(2020, 1, 10)
    assert metadata.latitude == 48.8534


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache(store, sleep):
    geocoder, provider = FakeGeocoder(), FakeProvider()
    observer = RecordingObserver()
    service = _service(geocoder, provider, StoreBackedCache(store), sleep, observer)

    first = await service.get_daily_records("Paris", date(2020, 1, 1), date(2020, 1, 10))
    second = await service.get_daily_records("Paris", date(2020, 1, 1), date(2020, 1, 10))

    assert second == first
    assert len(provider.requests) == 1
    assert geocoder.calls == 1
    assert observer.events[0] == "cache_miss"
    assert observer.events[-1] == "cache_hit"


@pytest.mark.asyncio
async def test_cache_hit_makes_no_upstream_calls(store, sleep):
    await upsert_daily_records(store, "Paris", 48.8534, 2.3488, _daily(date(2021, 1, 1), date(2021, 12, 31)))
    geocoder, provider = FakeGeocoder(), FakeProvider()
    service = _service(geocoder, provider, StoreBackedCache(store), sleep)

    records = await service.get_daily_records("Paris", date(2021, 1, 1), date(2021, 12, 31))

    assert len(records) == 365
    assert provider.requests == []
    assert geocoder.calls == 0


@pytest.mark.asyncio
async def test_partial_cache_below_threshold_triggers_full_fetch(store, sleep):
    await upsert_daily_records(store, "Paris", 48.8534, 2.3488, _daily(date(2021, 1, 1), date(2021, 6, 30)))
    provider = FakeProvider()
    service = _service(FakeGeocoder(), provider, StoreBackedCache(store), sleep)

    records = await service.get_daily_records("Paris", date(2021, 1, 1), date(2021, 12, 31))

    assert len(records) == 365
    assert provider.requests == [(date(2021, 1, 1), date(2021, 12, 31))]
    cached = await store.read_records("Paris", date(2021, 1, 1), date(2021, 12, 31))
    assert len(cached) == 365


@pytest.mark.asyncio
async def test_rate_limit_returns_partial_data_and_keeps_earlier_chunks(store, sleep):
    geocoder = FakeGeocoder()
    provider = FakeProvider(failures={1: UpstreamRateLimited("Daily API request limit exceeded", status=429)})
    observer = RecordingObserver()
    service = _service(geocoder, provider, StoreBackedCache(store), sleep, observer)

    records = await service.get_daily_records("Paris", date(1990, 1, 1), date(2014, 12, 31))

    first_chunk_days = (date(2000, 1, 1) - date(1990, 1, 1)).days
    assert len(records) == first_chunk_days
    assert provider.requests == [
        (date(1990, 1, 1), date(1999, 12, 31)),
        (date(2000, 1, 1), date(2009, 12, 31)),
    ]
    sleep.assert_awaited_once_with(1.0)
    assert "rate_limited" in observer.events
    assert observer.events[-1] == ("fetch_completed", first_chunk_days, False)

    cached = await store.read_records("Paris", date(1990, 1, 1), date(2014, 12, 31))
    assert len(cached) == first_chunk_days
    metadata = await store.read_metadata("Paris")
    assert metadata.newest_date == date(1999, 12, 31)


@pytest.mark.asyncio
async def test_full_backfill_sleeps_between_chunks_only(store, sleep):
    provider = FakeProvider()
    service = _service(FakeGeocoder(), provider, StoreBackedCache(store), sleep)

    records = await service.fetch("Paris", date(1990, 1, 1), date(2014, 12, 31))

    assert len(provider.requests) == 3
    assert sleep.await_count == 2
    assert records[0].date == date(1990, 1, 1)
    assert records[-1].date == date(2014, 12, 31)
    assert [r.date for r in records] == sorted(r.date for r in records)


@pytest.mark.asyncio
async def test_upstream_failure_propagates(store, sleep):
    provider = FakeProvider(failures={0: UpstreamFailure("Open-Meteo archive error (500)", status=500)})
    service = _service(FakeGeocoder(), provider, StoreBackedCache(store), sleep)

    with pytest.raises(UpstreamFailure):
        await service.get_daily_records("Paris", date(2020, 1, 1), date(2020, 1, 10))

    assert await store.read_metadata("Paris") is None


@pytest.mark.asyncio
async def test_later_chunk_failure_still_keeps_earlier_chunks(store, sleep):
    provider = FakeProvider(failures={1: UpstreamFailure("bad gateway", status=502)})
    service = _service(FakeGeocoder(), provider, StoreBackedCache(store), sleep)

    with pytest.raises(UpstreamFailure):
        await service.fetch("Paris", date(1990, 1, 1), date(2014, 12, 31))

    cached = await store.read_records("Paris", date(1990, 1, 1), date(1999, 12, 31))
    assert len(cached) == (date(2000, 1, 1) - date(1990, 1, 1)).days


@pytest.mark.asyncio
async def test_cache_write_failure_is_not_fatal(sleep):
    observer = RecordingObserver()
    service = _service(FakeGeocoder(), FakeProvider(), StoreBackedCache(UnwritableStore()), sleep, observer)

    records = await service.get_daily_records("Paris", date(2020, 1, 1), date(2020, 1, 10))

    assert len(records) == 10
    assert "cache_write_failed" in observer.events


@pytest.mark.asyncio
async def test_geocoding_failure_skips_caching_and_is_attempted_once(store, sleep):
    geocoder = FakeGeocoder(error=LocationNotFound("Paris"))
    observer = RecordingObserver()
    service = _service(geocoder, FakeProvider(), StoreBackedCache(store), sleep, observer)

    records = await service.fetch("Paris", date(1990, 1, 1), date(2014, 12, 31))

    assert len(records) == (date(2015, 1, 1) - date(1990, 1, 1)).days
    assert geocoder.calls == 1
    assert observer.events.count("cache_write_failed") == 3
    assert await store.read_metadata("Paris") is None


@pytest.mark.asyncio
async def test_store_read_failure_falls_through_to_fetch(sleep):
    observer = RecordingObserver()
    provider = FakeProvider()
    service = _service(FakeGeocoder(), provider, StoreBackedCache(UnreadableStore()), sleep, observer)

    records = await service.get_daily_records("Paris", date(2020, 1, 1), date(2020, 1, 10))

    assert len(records) == 10
    assert len(provider.requests) == 1
    assert observer.events[:2] == ["cache_read_failed", "cache_miss"]


@pytest.mark.asyncio
async def test_disabled_cache_always_fetches_and_never_geocodes(sleep):
    geocoder, provider = FakeGeocoder(), FakeProvider()
    service = _service(geocoder, provider, DisabledCache(), sleep)

    await service.get_daily_records("Paris", date(2020, 1, 1), date(2020, 1, 10))
    await service.get_daily_records("Paris", date(2020, 1, 1), date(2020, 1, 10))

    assert len(provider.requests) == 2
    assert geocoder.calls == 0
    assert await service.get_metadata("Paris") is None


@pytest.mark.asyncio
async def test_reversed_range_is_rejected_before_any_io(store, sleep):
    geocoder, provider = FakeGeocoder(), FakeProvider()
    service = _service(geocoder, provider, StoreBackedCache(store), sleep)

    with pytest.raises(InvalidRange):
        await service.get_daily_records("Paris", date(2020, 1, 10), date(2020, 1, 1))
    with pytest.raises(InvalidRange):
        await service.fetch("Paris", date(2020, 1, 10), date(2020, 1, 1))

    assert provider.requests == []
    assert geocoder.calls == 0


@pytest.mark.asyncio
async def test_evaluate_is_read_only(store, sleep):
    provider = FakeProvider()
    service = _service(FakeGeocoder(), provider, StoreBackedCache(store), sleep)

    coverage = await service.evaluate("Paris", date(2020, 1, 1), date(2020, 1, 10))

    assert coverage.sufficient is False
    assert coverage.expected_days == 10
    assert provider.requests == []
    assert await store.read_metadata("Paris") is None


def test_resolve_window_keeps_explicit_bounds(store, sleep):
    service = _service(FakeGeocoder(), FakeProvider(), StoreBackedCache(store), sleep)

    assert service.resolve_window(date(2000, 1, 1), date(2000, 1, 31)) == (date(2000, 1, 1), date(2000, 1, 31))
    start, end = service.resolve_window()
    assert start == date(1940, 1, 1)
    assert end < date.today()
