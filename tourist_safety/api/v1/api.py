"""
API router for the Tourist Safety emergency service.
"""
from fastapi import APIRouter

from tourist_safety.api.v1.endpoints import alerts, danger_zones, emergency, location

api_router = APIRouter()

api_router.include_router(emergency.router, prefix="/emergency", tags=["Emergency"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["Alerts"])
api_router.include_router(location.router, prefix="/location", tags=["Location"])
api_router.include_router(danger_zones.router, prefix="/danger-zones", tags=["Danger Zones"])
