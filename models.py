"""Pydantic models for API requests and responses."""
from datetime import date as dt_date, datetime
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Union

from utils.records import CoverageMetadata, DailyRecord


class DailyRecordModel(BaseModel):
    """Individual daily temperature record."""
    date: dt_date = Field(..., description="Calendar day in YYYY-MM-DD format")
    max_temperature_c: float = Field(..., description="Daily maximum temperature in Celsius")
    min_temperature_c: float = Field(..., description="Daily minimum temperature in Celsius")
    provider_id: int = Field(..., description="Identifier of the upstream data provider")

    @classmethod
    def from_record(cls, record: DailyRecord) -> "DailyRecordModel":
        return cls(
            date=record.date,
            max_temperature_c=record.max_temperature_c,
            min_temperature_c=record.min_temperature_c,
            provider_id=record.provider_id,
        )


class TemperatureRecordsResponse(BaseModel):
    """Daily records for a city over a date range."""
    city: str = Field(..., description="Location name as requested")
    start_date: dt_date = Field(..., description="First day of the range served")
    end_date: dt_date = Field(..., description="Last day of the range served")
    record_count: int = Field(..., description="Number of records returned")
    records: List[DailyRecordModel] = Field(..., description="Records ordered by date")


class CityMetadataResponse(BaseModel):
    """Coverage summary of the cached data for a city."""
    city_id: int = Field(..., description="Store-assigned location id")
    city_name: str = Field(..., description="Location name")
    latitude: float = Field(..., description="Latitude in decimal degrees")
    longitude: float = Field(..., description="Longitude in decimal degrees")
    oldest_data_date: Optional[dt_date] = Field(None, description="Earliest cached day")
    newest_data_date: Optional[dt_date] = Field(None, description="Latest cached day")
    min_temperature_c: Optional[float] = Field(None, description="Lowest cached minimum temperature")
    max_temperature_c: Optional[float] = Field(None, description="Highest cached maximum temperature")
    last_updated_utc: datetime = Field(..., description="When the cache for this city last changed")

    @classmethod
    def from_metadata(cls, metadata: CoverageMetadata) -> "CityMetadataResponse":
        return cls(
            city_id=metadata.location_id,
            city_name=metadata.location_name,
            latitude=metadata.latitude,
            longitude=metadata.longitude,
            oldest_data_date=metadata.oldest_date,
            newest_data_date=metadata.newest_date,
            min_temperature_c=metadata.min_temperature_c,
            max_temperature_c=metadata.max_temperature_c,
            last_updated_utc=metadata.last_updated_utc,
        )


# Error Response Model
class ErrorResponse(BaseModel):
    """Standardized error response format for consistent API error handling."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    code: Optional[str] = Field(None, description="Error code for programmatic handling")
    details: Optional[Union[List[Dict], Dict, str]] = Field(None, description="Additional error details")
    path: Optional[str] = Field(None, description="Request path where error occurred")
    method: Optional[str] = Field(None, description="HTTP method")
    request_id: Optional[str] = Field(None, description="Request ID for tracing")
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat(),
                           description="Error timestamp")
