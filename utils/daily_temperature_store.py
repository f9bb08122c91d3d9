import asyncio
import logging
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import AsyncContextManager, AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

import asyncpg  # type: ignore[import-untyped]

from utils.errors import CacheWriteFailure, StoreReadFailure
from utils.records import CoverageMetadata, DailyRecord, Location, RecordKey, summarize_records

logger = logging.getLogger(__name__)


class StoreTransaction(ABC):
    """Mutating store operations composed into a single atomic unit of work."""

    @abstractmethod
    async def find_or_create_location(self, name: str, latitude: float, longitude: float) -> Location:
        """Return the location matching (name, latitude, longitude) exactly, creating it if absent."""

    @abstractmethod
    async def existing_keys(self, location_id: int) -> Set[RecordKey]:
        """Return every stored (date, provider_id) key for a location in one read."""

    @abstractmethod
    async def insert_records(self, location_id: int, records: List[DailyRecord]) -> int:
        """Insert records, skipping any whose key is already present.

        Returns:
            Number of rows actually inserted
        """

    @abstractmethod
    async def refresh_metadata(self, location_id: int) -> None:
        """Recompute the coverage summary of a location from its stored records."""


class TemperatureDataStore(ABC):
    """Durable cache of daily temperature records keyed by (location, date, provider)."""

    @abstractmethod
    async def read_records(self, location_name: str, start: date, end: date) -> List[DailyRecord]:
        """Return cached records for ``location_name`` dated within ``[start, end]``.

        When several coordinate rows share the name, only the lowest-id one is
        read, matching ``read_metadata``.

        Raises:
            StoreReadFailure: if the store cannot be read
        """

    @abstractmethod
    async def read_metadata(self, location_name: str) -> Optional[CoverageMetadata]:
        """Return coverage metadata, or None when no location has this name."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[StoreTransaction]:
        """Open a unit of work that commits on clean exit and rolls back on error."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


def _select_new_records(records: Iterable[DailyRecord], existing: Set[RecordKey]) -> List[DailyRecord]:
    """Filter out records whose key is already stored or repeated within the batch."""
    seen = set(existing)
    new_records: List[DailyRecord] = []
    for record in records:
        if record.key in seen:
            continue
        seen.add(record.key)
        new_records.append(record)
    return new_records


async def upsert_daily_records(
    store: TemperatureDataStore,
    location_name: str,
    latitude: float,
    longitude: float,
    records: Iterable[DailyRecord],
) -> int:
    """Persist the records not yet stored for a location, atomically.

    The location row, the existing-key read, the insert and the metadata
    refresh share one transaction. Existing keys are loaded once into a set
    so that membership checks never round-trip to the store.

    Args:
        store: Store to write to
        location_name: Canonical location name as supplied by the caller
        latitude: Geocoded latitude in decimal degrees
        longitude: Geocoded longitude in decimal degrees
        records: Candidate records, possibly overlapping what is stored

    Returns:
        Number of records inserted

    Raises:
        CacheWriteFailure: if any step failed; nothing from this call is persisted
    """
    candidates = list(records)
    if not candidates:
        return 0

    try:
        async with store.transaction() as tx:
            location = await tx.find_or_create_location(location_name, latitude, longitude)
            existing = await tx.existing_keys(location.id)
            new_records = _select_new_records(candidates, existing)
            logger.debug(
                "upsert_daily_records: %d candidates, %d existing keys, %d new for location_id=%s",
                len(candidates),
                len(existing),
                len(new_records),
                location.id,
            )
            if not new_records:
                return 0
            inserted = await tx.insert_records(location.id, new_records)
            await tx.refresh_metadata(location.id)
    except CacheWriteFailure:
        raise
    except Exception as exc:
        raise CacheWriteFailure(
            f"Failed to store {len(candidates)} records for {location_name}: {exc}"
        ) from exc
    return inserted


class PostgresStoreTransaction(StoreTransaction):
    """Store operations bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def find_or_create_location(self, name: str, latitude: float, longitude: float) -> Location:
        # DO NOTHING plus re-select keeps concurrent creators from failing
        row = await self._conn.fetchrow(
            """
            INSERT INTO cities (city_name, latitude, longitude)
            VALUES ($1::text, $2::double precision, $3::double precision)
            ON CONFLICT ON CONSTRAINT uq_city_location DO NOTHING
            RETURNING city_id
            """,
            name,
            latitude,
            longitude,
        )
        if row:
            logger.info("Created new city: %s (city_id=%s)", name, row["city_id"])
        else:
            row = await self._conn.fetchrow(
                """
                SELECT city_id
                FROM cities
                WHERE city_name = $1 AND latitude = $2 AND longitude = $3
                """,
                name,
                latitude,
                longitude,
            )
            if not row:
                raise RuntimeError(f"City row for {name} vanished during upsert")
        return Location(id=int(row["city_id"]), name=name, latitude=latitude, longitude=longitude)

    async def existing_keys(self, location_id: int) -> Set[RecordKey]:
        rows = await self._conn.fetch(
            "SELECT record_date, provider_id FROM temperature_data WHERE city_id = $1",
            location_id,
        )
        return {(row["record_date"], int(row["provider_id"])) for row in rows}

    async def insert_records(self, location_id: int, records: List[DailyRecord]) -> int:
        if not records:
            return 0
        status = await self._conn.execute(
            """
            INSERT INTO temperature_data (
                city_id,
                record_date,
                max_temperature_c,
                min_temperature_c,
                provider_id
            )
            SELECT $1::integer, r.record_date, r.max_c, r.min_c, r.provider_id
            FROM unnest($2::date[], $3::double precision[], $4::double precision[], $5::integer[])
                AS r(record_date, max_c, min_c, provider_id)
            ON CONFLICT ON CONSTRAINT uq_city_date_provider DO NOTHING
            """,
            location_id,
            [record.date for record in records],
            [record.max_temperature_c for record in records],
            [record.min_temperature_c for record in records],
            [record.provider_id for record in records],
        )
        # asyncpg returns the command tag, e.g. "INSERT 0 365"
        inserted = int(status.split()[-1])
        if inserted < len(records):
            logger.info(
                "Skipped %d records already inserted concurrently for city_id=%s",
                len(records) - inserted,
                location_id,
            )
        return inserted

    async def refresh_metadata(self, location_id: int) -> None:
        await self._conn.execute(
            """
            UPDATE cities AS c
            SET
                oldest_data_date = s.oldest_date,
                newest_data_date = s.newest_date,
                min_temperature_c = s.min_temp,
                max_temperature_c = s.max_temp,
                last_updated_utc = NOW()
            FROM (
                SELECT
                    MIN(record_date) AS oldest_date,
                    MAX(record_date) AS newest_date,
                    MIN(min_temperature_c) AS min_temp,
                    MAX(max_temperature_c) AS max_temp
                FROM temperature_data
                WHERE city_id = $1
            ) AS s
            WHERE c.city_id = $1
            """,
            location_id,
        )


class PostgresTemperatureStore(TemperatureDataStore):
    """Persistent cache for daily temperature data backed by Postgres."""

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 10.0,
    ):
        """Initialize the store with an optional DSN override.

        Args:
            dsn: PostgreSQL connection string. If None, uses TEMPHIST_PG_DSN or DATABASE_URL env vars.
            min_size: Connections kept open in the pool
            max_size: Upper bound on pooled connections
            command_timeout: Per-query timeout in seconds
        """
        self._dsn = dsn or os.getenv("TEMPHIST_PG_DSN") or os.getenv("DATABASE_URL")
        if not self._dsn:
            raise ValueError("PostgresTemperatureStore requires TEMPHIST_PG_DSN (or DATABASE_URL)")
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._pool: Optional[asyncpg.Pool] = None
        self._pool_lock = asyncio.Lock()

    async def _ensure_pool(self) -> asyncpg.Pool:
        """Create the connection pool and schema on first use."""
        if self._pool:
            return self._pool
        async with self._pool_lock:
            if self._pool:
                return self._pool
            pool = await asyncpg.create_pool(
                dsn=self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                max_inactive_connection_lifetime=300.0,
            )
            try:
                async with pool.acquire() as conn:
                    await self._initialize_schema(conn)
            except Exception:
                await pool.close()
                raise
            self._pool = pool
            return self._pool

    async def _initialize_schema(self, conn: asyncpg.Connection) -> None:
        """Create the cities and temperature_data tables and their indexes if missing."""
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cities (
                city_id SERIAL PRIMARY KEY,
                city_name VARCHAR(255) NOT NULL,
                latitude DOUBLE PRECISION NOT NULL,
                longitude DOUBLE PRECISION NOT NULL,
                oldest_data_date DATE,
                newest_data_date DATE,
                min_temperature_c DOUBLE PRECISION,
                max_temperature_c DOUBLE PRECISION,
                last_updated_utc TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CONSTRAINT uq_city_location UNIQUE (city_name, latitude, longitude)
            )
            """
        )
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_cities_name ON cities (city_name)")
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS temperature_data (
                temperature_data_id BIGSERIAL PRIMARY KEY,
                city_id INTEGER NOT NULL REFERENCES cities (city_id) ON DELETE CASCADE,
                record_date DATE NOT NULL,
                max_temperature_c DOUBLE PRECISION NOT NULL,
                min_temperature_c DOUBLE PRECISION NOT NULL,
                provider_id INTEGER NOT NULL,
                created_utc TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CONSTRAINT uq_city_date_provider UNIQUE (city_id, record_date, provider_id)
            )
            """
        )
        await conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_temperature_city_date
            ON temperature_data (city_id, record_date)
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_temperature_provider ON temperature_data (provider_id)"
        )

    @staticmethod
    def _log_sql_error(operation: str, location_name: str, exc: Exception) -> None:
        if isinstance(exc, asyncpg.PostgresError):
            logger.error(
                "PostgresTemperatureStore.%s SQL error for %s: sqlstate=%s detail=%s hint=%s",
                operation,
                location_name,
                getattr(exc, "sqlstate", None),
                getattr(exc, "detail", None),
                getattr(exc, "hint", None),
            )
        else:
            logger.warning(
                "PostgresTemperatureStore.%s failed for %s due to %s",
                operation,
                location_name,
                exc,
            )

    async def read_records(self, location_name: str, start: date, end: date) -> List[DailyRecord]:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT td.record_date, td.max_temperature_c, td.min_temperature_c, td.provider_id
                    FROM temperature_data AS td
                    WHERE td.city_id = (
                        SELECT MIN(city_id) FROM cities WHERE city_name = $1
                    )
                      AND td.record_date BETWEEN $2 AND $3
                    ORDER BY td.record_date, td.provider_id
                    """,
                    location_name,
                    start,
                    end,
                )
        except Exception as exc:  # asyncpg raises multiple subclasses
            self._log_sql_error("read_records", location_name, exc)
            raise StoreReadFailure(f"Could not read cached records for {location_name}") from exc

        logger.debug(
            "Retrieved %d cached records for %s from %s to %s",
            len(rows),
            location_name,
            start,
            end,
        )
        return [
            DailyRecord(
                date=row["record_date"],
                max_temperature_c=row["max_temperature_c"],
                min_temperature_c=row["min_temperature_c"],
                provider_id=int(row["provider_id"]),
            )
            for row in rows
        ]

    async def read_metadata(self, location_name: str) -> Optional[CoverageMetadata]:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT
                        city_id,
                        city_name,
                        latitude,
                        longitude,
                        oldest_data_date,
                        newest_data_date,
                        min_temperature_c,
                        max_temperature_c,
                        last_updated_utc
                    FROM cities
                    WHERE city_name = $1
                    ORDER BY city_id
                    LIMIT 1
                    """,
                    location_name,
                )
        except Exception as exc:
            self._log_sql_error("read_metadata", location_name, exc)
            raise StoreReadFailure(f"Could not read metadata for {location_name}") from exc

        if not row:
            return None
        return CoverageMetadata(
            location_id=int(row["city_id"]),
            location_name=row["city_name"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            oldest_date=row["oldest_data_date"],
            newest_date=row["newest_data_date"],
            min_temperature_c=row["min_temperature_c"],
            max_temperature_c=row["max_temperature_c"],
            last_updated_utc=row["last_updated_utc"],
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresStoreTransaction(conn)

    async def ping(self) -> bool:
        pool = await self._ensure_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None


@dataclass
class _MemoryState:
    next_location_id: int = 1
    locations: Dict[int, Location] = field(default_factory=dict)
    location_index: Dict[Tuple[str, float, float], int] = field(default_factory=dict)
    records: Dict[int, Dict[RecordKey, DailyRecord]] = field(default_factory=dict)
    metadata: Dict[int, CoverageMetadata] = field(default_factory=dict)

    def copy(self) -> "_MemoryState":
        return _MemoryState(
            next_location_id=self.next_location_id,
            locations=dict(self.locations),
            location_index=dict(self.location_index),
            records={location_id: dict(rows) for location_id, rows in self.records.items()},
            metadata=dict(self.metadata),
        )


class _InMemoryTransaction(StoreTransaction):
    def __init__(self, state: _MemoryState):
        self._state = state

    async def find_or_create_location(self, name: str, latitude: float, longitude: float) -> Location:
        index_key = (name, latitude, longitude)
        location_id = self._state.location_index.get(index_key)
        if location_id is not None:
            return self._state.locations[location_id]

        location = Location(
            id=self._state.next_location_id,
            name=name,
            latitude=latitude,
            longitude=longitude,
        )
        self._state.next_location_id += 1
        self._state.locations[location.id] = location
        self._state.location_index[index_key] = location.id
        self._state.records[location.id] = {}
        self._state.metadata[location.id] = CoverageMetadata(
            location_id=location.id,
            location_name=name,
            latitude=latitude,
            longitude=longitude,
            oldest_date=None,
            newest_date=None,
            min_temperature_c=None,
            max_temperature_c=None,
            last_updated_utc=datetime.now(timezone.utc),
        )
        return location

    async def existing_keys(self, location_id: int) -> Set[RecordKey]:
        return set(self._state.records.get(location_id, {}))

    async def insert_records(self, location_id: int, records: List[DailyRecord]) -> int:
        rows = self._state.records.setdefault(location_id, {})
        inserted = 0
        for record in records:
            if record.key in rows:
                continue
            rows[record.key] = record
            inserted += 1
        return inserted

    async def refresh_metadata(self, location_id: int) -> None:
        location = self._state.locations.get(location_id)
        if location is None:
            return
        summary = summarize_records(self._state.records.get(location_id, {}).values())
        self._state.metadata[location_id] = CoverageMetadata(
            location_id=location.id,
            location_name=location.name,
            latitude=location.latitude,
            longitude=location.longitude,
            oldest_date=summary.oldest_date,
            newest_date=summary.newest_date,
            min_temperature_c=summary.min_temperature_c,
            max_temperature_c=summary.max_temperature_c,
            last_updated_utc=datetime.now(timezone.utc),
        )


class InMemoryTemperatureStore(TemperatureDataStore):
    """Process-local store with the same contract as the Postgres store.

    Each transaction works on a copy of the state that replaces the live
    state only when the unit of work exits cleanly.
    """

    def __init__(self):
        self._state = _MemoryState()
        self._lock = asyncio.Lock()

    def _location_ids(self, location_name: str) -> List[int]:
        return sorted(
            location_id
            for location_id, location in self._state.locations.items()
            if location.name == location_name
        )

    async def read_records(self, location_name: str, start: date, end: date) -> List[DailyRecord]:
        location_ids = self._location_ids(location_name)
        if not location_ids:
            return []
        matches = [
            record
            for record in self._state.records.get(location_ids[0], {}).values()
            if start <= record.date <= end
        ]
        return sorted(matches, key=lambda record: (record.date, record.provider_id))

    async def read_metadata(self, location_name: str) -> Optional[CoverageMetadata]:
        location_ids = self._location_ids(location_name)
        if not location_ids:
            return None
        return self._state.metadata.get(location_ids[0])

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._lock:
            working = self._state.copy()
            yield _InMemoryTransaction(working)
            self._state = working
