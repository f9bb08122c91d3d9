"""Value types shared by the cache, the providers and the service layer."""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Tuple

RecordKey = Tuple[date, int]


@dataclass(frozen=True)
class DailyRecord:
    """A single day's min/max temperature in Celsius from one provider."""

    date: date
    max_temperature_c: float
    min_temperature_c: float
    provider_id: int

    @property
    def key(self) -> RecordKey:
        return (self.date, self.provider_id)


@dataclass(frozen=True)
class Location:
    """A persisted location row, identified by (name, latitude, longitude)."""

    id: int
    name: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class CoverageMetadata:
    """Derived coverage summary for a location.

    Recomputed from the stored records after every write; the date and
    temperature fields stay ``None`` while a location has no records.
    """

    location_id: int
    location_name: str
    latitude: float
    longitude: float
    oldest_date: Optional[date]
    newest_date: Optional[date]
    min_temperature_c: Optional[float]
    max_temperature_c: Optional[float]
    last_updated_utc: datetime


@dataclass(frozen=True)
class RecordSummary:
    oldest_date: Optional[date]
    newest_date: Optional[date]
    min_temperature_c: Optional[float]
    max_temperature_c: Optional[float]


def summarize_records(records: Iterable[DailyRecord]) -> RecordSummary:
    """Compute the date bounds and temperature extremes of a record set."""
    oldest: Optional[date] = None
    newest: Optional[date] = None
    lowest: Optional[float] = None
    highest: Optional[float] = None
    for record in records:
        if oldest is None or record.date < oldest:
            oldest = record.date
        if newest is None or record.date > newest:
            newest = record.date
        if lowest is None or record.min_temperature_c < lowest:
            lowest = record.min_temperature_c
        if highest is None or record.max_temperature_c > highest:
            highest = record.max_temperature_c
    return RecordSummary(oldest, newest, lowest, highest)
