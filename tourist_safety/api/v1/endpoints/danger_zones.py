from fastapi import APIRouter, Depends
from typing import List, Optional

from tourist_safety.core.dependencies import get_geofence_monitor
from tourist_safety.models.schemas.emergency_schemas import DangerZoneResponse, ZoneClassification
from tourist_safety.services.geofence_service import GeofenceMonitor

router = APIRouter()


@router.get("/", response_model=List[DangerZoneResponse])
async def list_danger_zones(
    classification: Optional[ZoneClassification] = None,
    monitor: GeofenceMonitor = Depends(get_geofence_monitor)
):
    """
    Registered zones. Zones are loaded with scripts/seed_danger_zones.py.
    """
    return await monitor.list_zones(classification)
