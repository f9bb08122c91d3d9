"""Calendar-day range helpers used for coverage checks and chunked fetches."""
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple

DateRange = Tuple[date, date]


def add_years(day: date, years: int) -> date:
    """Shift a date by whole years, clamping Feb 29 to Feb 28 in non-leap years."""
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return day.replace(year=day.year + years, day=28)


def expected_days(start: date, end: date) -> int:
    """Number of calendar days in the inclusive range, or 0 if it is empty."""
    return max((end - start).days + 1, 0)


def partition_range(start: date, end: date, years: int = 10) -> List[DateRange]:
    """Split ``[start, end]`` into consecutive inclusive chunks of at most ``years`` years.

    Chunks are returned in chronological order, never overlap and leave no
    gaps; only the last chunk may be shorter.
    """
    if years < 1:
        raise ValueError("years must be at least 1")
    chunks: List[DateRange] = []
    current = start
    while current <= end:
        chunk_end = min(add_years(current, years) - timedelta(days=1), end)
        chunks.append((current, chunk_end))
        current = chunk_end + timedelta(days=1)
    return chunks


def default_window(
    start: Optional[date],
    end: Optional[date],
    history_start: date,
    lag_days: int,
    today: Optional[date] = None,
) -> DateRange:
    """Fill in missing bounds: earliest available history up to ``lag_days`` ago."""
    if today is None:
        today = datetime.now(timezone.utc).date()
    resolved_end = end if end is not None else today - timedelta(days=lag_days)
    resolved_start = start if start is not None else history_start
    return resolved_start, resolved_end
