"""Root endpoint and API information."""
from fastapi import APIRouter
from version import __version__

router = APIRouter()


@router.api_route("/", methods=["GET", "OPTIONS"])
async def root():
    """Root endpoint that returns API information"""
    return {
        "name": "Temperature History API",
        "version": __version__,
        "description": "Daily min/max temperature history with a durable backfilled cache",
        "endpoints": {
            "records": "/temperature/{city}?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD",
            "metadata": "/temperature/{city}/metadata",
            "health": ["/health", "/health/detailed"],
        },
        "examples": [
            "/temperature/Paris?start_date=2020-01-01&end_date=2020-01-10",
            "/temperature/Paris/metadata",
        ],
    }
