"""Decide whether cached records cover a requested range well enough."""
from dataclasses import dataclass, field
from datetime import date
from typing import List, Sequence

from utils.date_ranges import expected_days
from utils.errors import InvalidRange
from utils.records import DailyRecord

# Tolerates upstream gaps (unreported days, short provider outages)
DEFAULT_COVERAGE_THRESHOLD_PCT = 95.0


@dataclass(frozen=True)
class CoverageResult:
    sufficient: bool
    cached_records: List[DailyRecord] = field(default_factory=list)
    expected_days: int = 0
    coverage_pct: float = 0.0

    @property
    def cached_count(self) -> int:
        return len(self.cached_records)


def evaluate_coverage(
    cached_records: Sequence[DailyRecord],
    start: date,
    end: date,
    threshold_pct: float = DEFAULT_COVERAGE_THRESHOLD_PCT,
) -> CoverageResult:
    """Compare the cached record count for ``[start, end]`` against the day count.

    Raises:
        InvalidRange: if ``end`` precedes ``start``.
    """
    if end < start:
        raise InvalidRange(start, end)
    days = expected_days(start, end)
    coverage_pct = (100.0 * len(cached_records) / days) if days > 0 else 0.0
    return CoverageResult(
        sufficient=coverage_pct >= threshold_pct,
        cached_records=list(cached_records),
        expected_days=days,
        coverage_pct=coverage_pct,
    )
