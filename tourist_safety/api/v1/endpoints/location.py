"""
Location API Endpoints
Location updates (geofence checks) and location risk lookups
"""
from fastapi import APIRouter, Depends, Query

from tourist_safety.core.dependencies import get_geofence_monitor, get_risk_assessor
from tourist_safety.models.schemas.emergency_schemas import (
    Coordinate, LocationRisk, LocationUpdateRequest, GeofenceResult
)
from tourist_safety.services.geofence_service import GeofenceMonitor
from tourist_safety.services.location_risk import LocationRiskAssessor

router = APIRouter()


@router.post("/update", response_model=GeofenceResult)
async def update_location(
    request: LocationUpdateRequest,
    monitor: GeofenceMonitor = Depends(get_geofence_monitor)
):
    """
    Accept a location update and check it against danger zones
    """
    return await monitor.evaluate(request.subject_id, request.coordinate)


@router.get("/risk", response_model=LocationRisk)
async def get_location_risk(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    assessor: LocationRiskAssessor = Depends(get_risk_assessor)
):
    """Crime, weather, isolation and emergency-service risk for a coordinate"""
    return await assessor.assess(Coordinate(latitude=latitude, longitude=longitude))
