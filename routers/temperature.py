"""Daily temperature history endpoints."""
import logging
from datetime import date as dt_date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Path, Query
from models import CityMetadataResponse, DailyRecordModel, TemperatureRecordsResponse
from temperature_data import TemperatureDataService
from routers.dependencies import get_temperature_service
from utils.validation import sanitize_for_logging, validate_location_name

logger = logging.getLogger(__name__)
router = APIRouter()


def _validated_city(city: str) -> str:
    try:
        return validate_location_name(city)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/temperature/{city}", response_model=TemperatureRecordsResponse)
async def get_temperature_data(
    city: str = Path(..., description="Location name", max_length=200),
    start_date: Optional[dt_date] = Query(None, description="First day (YYYY-MM-DD); defaults to the earliest available history"),
    end_date: Optional[dt_date] = Query(None, description="Last day (YYYY-MM-DD); defaults to a week ago"),
    service: TemperatureDataService = Depends(get_temperature_service),
):
    """Get historical daily min/max temperatures for a city."""
    location = _validated_city(city)
    start, end = service.resolve_window(start_date, end_date)
    logger.info(f"Fetching temperature data for {sanitize_for_logging(location)} ({start} to {end})")

    records = await service.get_daily_records(location, start, end)
    if not records:
        raise HTTPException(status_code=404, detail=f"No temperature data found for {location}")

    return TemperatureRecordsResponse(
        city=location,
        start_date=start,
        end_date=end,
        record_count=len(records),
        records=[DailyRecordModel.from_record(record) for record in records],
    )


@router.get("/temperature/{city}/metadata", response_model=CityMetadataResponse)
async def get_temperature_metadata(
    city: str = Path(..., description="Location name", max_length=200),
    service: TemperatureDataService = Depends(get_temperature_service),
):
    """Get the cached data coverage and temperature extremes for a city."""
    location = _validated_city(city)
    metadata = await service.get_metadata(location)
    if metadata is None:
        raise HTTPException(status_code=404, detail=f"No cached data for {location}")
    return CityMetadataResponse.from_metadata(metadata)
