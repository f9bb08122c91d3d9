"""Utility functions for the application."""
from .records import CoverageMetadata, DailyRecord, Location, summarize_records
from .errors import (
    CacheWriteFailure, InvalidRange, LocationNotFound, StoreReadFailure,
    TemperatureDataError, UpstreamFailure, UpstreamRateLimited,
)

__all__ = [
    "CoverageMetadata",
    "DailyRecord",
    "Location",
    "summarize_records",
    "CacheWriteFailure",
    "InvalidRange",
    "LocationNotFound",
    "StoreReadFailure",
    "TemperatureDataError",
    "UpstreamFailure",
    "UpstreamRateLimited",
]
