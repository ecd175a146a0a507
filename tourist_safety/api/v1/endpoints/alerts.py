"""
Alert API Endpoints
Handles HTTP endpoints for the alert lifecycle and reporting
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from tourist_safety.core.dependencies import get_alert_service
from tourist_safety.models.schemas.emergency_schemas import (
    AlertResponse, AlertListResponse, AlertStats, AlertStatus, AlertType,
    AlertTimelineResponse, AlertTransitionRequest, Coordinate, NearbyAlertResponse, SeverityTier
)
from tourist_safety.services.alert_service import AlertService

router = APIRouter()


@router.get("/", response_model=AlertListResponse)
async def list_alerts(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Number of records to return"),
    status_filter: Optional[AlertStatus] = Query(None, alias="status", description="Filter by status"),
    severity: Optional[SeverityTier] = Query(None, description="Filter by severity"),
    alert_type: Optional[AlertType] = Query(None, description="Filter by alert type"),
    subject_id: Optional[str] = Query(None, description="Filter by tracked subject"),
    service: AlertService = Depends(get_alert_service)
):
    """
    List alerts with optional filtering and pagination, newest first
    """
    return await service.list_alerts(
        skip=skip,
        limit=limit,
        status=status_filter.value if status_filter else None,
        severity=severity.value if severity else None,
        alert_type=alert_type.value if alert_type else None,
        subject_id=subject_id
    )


@router.get("/stats", response_model=AlertStats)
async def get_alert_statistics(service: AlertService = Depends(get_alert_service)):
    """Counts by status and severity, plus average time to acknowledgement"""
    return await service.get_alert_statistics()


@router.get("/nearby", response_model=List[NearbyAlertResponse])
async def list_nearby_alerts(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_m: float = Query(5000, gt=0, le=100000, description="Search radius in metres"),
    limit: int = Query(20, ge=1, le=100, description="Number of alerts to return"),
    service: AlertService = Depends(get_alert_service)
):
    """
    Active alerts around a coordinate, most severe first, then nearest first
    """
    return await service.list_nearby_alerts(
        Coordinate(latitude=latitude, longitude=longitude), radius_m=radius_m, limit=limit
    )


@router.get("/{alert_id}", response_model=AlertResponse)
async def get_alert(
    alert_id: str,
    service: AlertService = Depends(get_alert_service)
):
    return await service.get_alert(alert_id)


@router.get("/{alert_id}/timeline", response_model=AlertTimelineResponse)
async def get_alert_timeline(
    alert_id: str,
    service: AlertService = Depends(get_alert_service)
):
    """
    Alert status with its notification attempts and lifecycle events
    """
    return await service.get_timeline(alert_id)


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: str,
    request: AlertTransitionRequest,
    service: AlertService = Depends(get_alert_service)
):
    """
    Acknowledge an alert. Repeating the call returns the alert unchanged.
    """
    return await service.acknowledge_alert(alert_id, request.actor)


@router.post("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: str,
    request: AlertTransitionRequest,
    service: AlertService = Depends(get_alert_service)
):
    """
    Resolve an alert with optional notes. Repeating the call returns the alert unchanged.
    """
    return await service.resolve_alert(alert_id, request.actor, request.notes)
