"""
Tests for the temperature router.

Tests cover:
- Records endpoint with cache backfill
- Metadata endpoint
- Error mapping for bad ranges, unknown locations and upstream failures
- Health and root endpoints
"""

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from main import app as main_app
from routers.dependencies import get_redis_client, get_temperature_service
from temperature_data import BackfillObserver, DisabledCache, StoreBackedCache, TemperatureDataService
from utils.daily_temperature_store import InMemoryTemperatureStore
from utils.errors import LocationNotFound, UpstreamFailure, UpstreamRateLimited
from utils.geocoding import GeocodeProvider
from utils.open_meteo_archive import HistoryProvider
from utils.records import DailyRecord


class StaticGeocoder(GeocodeProvider):
    async def resolve_location(self, name):
        if name == "Atlantis":
            raise LocationNotFound(name)
        return (51.5072, -0.1276)


class StaticProvider(HistoryProvider):
    provider_id = 1
    name = "static"

    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    async def fetch_daily_records(self, location, start, end):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if location == "Atlantis":
            raise LocationNotFound(location)
        return [
            DailyRecord(
                date=start + timedelta(days=i),
                max_temperature_c=10.0 + i,
                min_temperature_c=2.0 + i,
                provider_id=1,
            )
            for i in range((end - start).days + 1)
        ]


async def _no_sleep(seconds):
    return None


def _build_service(provider=None, cache=None):
    return TemperatureDataService(
        StaticGeocoder(),
        provider or StaticProvider(),
        cache or StoreBackedCache(InMemoryTemperatureStore()),
        observer=BackfillObserver(),
        sleep=_no_sleep,
    )


@pytest.fixture
def service():
    return _build_service()


@pytest.fixture
def client(service):
    """Test client with the temperature service replaced; the lifespan is not run."""
    main_app.dependency_overrides[get_temperature_service] = lambda: service
    main_app.dependency_overrides[get_redis_client] = lambda: None
    yield TestClient(main_app)
    main_app.dependency_overrides.clear()


class TestTemperatureRecords:
    def test_returns_records_for_range(self, client):
        response = client.get("/temperature/London", params={"start_date": "2020-01-01", "end_date": "2020-01-10"})

        assert response.status_code == 200
        data = response.json()
        assert data["city"] == "London"
        assert data["start_date"] == "2020-01-01"
        assert data["end_date"] == "2020-01-10"
        assert data["record_count"] == 10
        assert data["records"][0] == {
            "date": "2020-01-01",
            "max_temperature_c": 10.0,
            "min_temperature_c": 2.0,
            "provider_id": 1,
        }

    def test_request_id_is_echoed(self, client):
        response = client.get(
            "/temperature/London",
            params={"start_date": "2020-01-01", "end_date": "2020-01-02"},
            headers={"X-Request-ID": "abc-123"},
        )
        assert response.headers["X-Request-ID"] == "abc-123"

    def test_reversed_range_is_bad_request(self, client):
        response = client.get("/temperature/London", params={"start_date": "2020-01-10", "end_date": "2020-01-01"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_RANGE"

    def test_malformed_date_is_validation_error(self, client):
        response = client.get("/temperature/London", params={"start_date": "not-a-date"})

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_unsafe_location_is_rejected(self, client):
        response = client.get("/temperature/user@host", params={"start_date": "2020-01-01", "end_date": "2020-01-02"})
        assert response.status_code == 400

    def test_unknown_location_is_not_found(self, client):
        response = client.get("/temperature/Atlantis", params={"start_date": "2020-01-01", "end_date": "2020-01-02"})

        assert response.status_code == 404
        assert response.json()["code"] == "LOCATION_NOT_FOUND"

    @pytest.mark.parametrize("error,expected_status", [
        (UpstreamFailure("Open-Meteo archive error (500)", status=500), 502),
        (UpstreamRateLimited("Too many requests", status=429), 404),
    ])
    def test_upstream_errors(self, error, expected_status):
        # A rate limit on the first chunk yields no records at all
        main_app.dependency_overrides[get_temperature_service] = lambda: _build_service(StaticProvider(error))
        try:
            response = TestClient(main_app).get(
                "/temperature/London", params={"start_date": "2020-01-01", "end_date": "2020-01-02"}
            )
        finally:
            main_app.dependency_overrides.clear()

        assert response.status_code == expected_status


class TestTemperatureMetadata:
    def test_metadata_after_backfill(self, client):
        client.get("/temperature/London", params={"start_date": "2020-01-01", "end_date": "2020-01-10"})

        response = client.get("/temperature/London/metadata")

        assert response.status_code == 200
        data = response.json()
        assert data["city_name"] == "London"
        assert data["oldest_data_date"] == "2020-01-01"
        assert data["newest_data_date"] == "2020-01-10"
        assert data["min_temperature_c"] == 2.0
        assert data["max_temperature_c"] == 19.0
        assert data["latitude"] == 51.5072

    def test_metadata_unknown_city(self, client):
        response = client.get("/temperature/Nowhere/metadata")
        assert response.status_code == 404

    def test_metadata_with_cache_disabled(self):
        main_app.dependency_overrides[get_temperature_service] = lambda: _build_service(cache=DisabledCache())
        try:
            response = TestClient(main_app).get("/temperature/London/metadata")
        finally:
            main_app.dependency_overrides.clear()

        assert response.status_code == 404


class TestHealthAndRoot:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "records" in response.json()["endpoints"]

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_detailed_health_with_memory_store(self, client):
        response = client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["checks"]["store"]["status"] == "healthy"
        assert data["checks"]["redis"]["status"] == "disabled"
