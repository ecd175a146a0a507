"""
Geofence Monitor - danger zone checks on location updates
Circular zones use great-circle distance to the center; polygon zones use
shapely containment (boundary counts as inside).
"""
from typing import List, Optional, Tuple
from datetime import datetime, timedelta
import logging

from shapely.errors import GEOSException
from shapely.geometry import shape, Point
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tourist_safety.core.config import get_settings
from tourist_safety.models.emergency_models import DangerZone
from tourist_safety.models.schemas.emergency_schemas import (
    Coordinate, AlertCreate, AlertType, AlertResponse, AlertWithNotifications,
    SeverityTier, ZoneClassification, ZoneMatch, GeofenceResult
)
from tourist_safety.services.alert_service import AlertService
from tourist_safety.services.geo import haversine_m
from tourist_safety.services.response_policy import build_response_policies

logger = logging.getLogger(__name__)

def zone_contains(zone: DangerZone, coordinate: Coordinate) -> Tuple[bool, Optional[float]]:
    """
    Point-in-zone test

    Returns:
        (inside, distance_m) - distance to the center for circular zones, else None
    """
    if zone.polygon:
        try:
            geometry = shape(zone.polygon)
        except (GEOSException, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Danger zone {zone.id} has an invalid polygon: {e}")
            return False, None
        return geometry.covers(Point(coordinate.longitude, coordinate.latitude)), None

    if zone.center_latitude is None or zone.center_longitude is None or zone.radius_m is None:
        logger.warning(f"Danger zone {zone.id} has no shape")
        return False, None

    distance = haversine_m(
        coordinate.latitude, coordinate.longitude,
        zone.center_latitude, zone.center_longitude
    )
    return distance <= zone.radius_m, round(distance, 2)


class GeofenceMonitor:
    """
    Evaluates location updates against danger zones

    Every update inside a danger zone raises a new HIGH geofence alert. With
    GEOFENCE_COOLDOWN_SECONDS > 0 a repeat is suppressed while an unresolved
    alert for the same subject and zone exists inside the window.
    """

    def __init__(self, db: AsyncSession, alert_service: AlertService, cooldown_seconds: Optional[int] = None):
        settings = get_settings()
        self.db = db
        self.alert_service = alert_service
        self.cooldown_seconds = settings.GEOFENCE_COOLDOWN_SECONDS if cooldown_seconds is None else cooldown_seconds
        self.policy = build_response_policies(settings)[SeverityTier.HIGH]

    async def list_zones(self, classification: Optional[ZoneClassification] = None) -> List[DangerZone]:
        query = select(DangerZone).order_by(DangerZone.id)
        if classification:
            query = query.where(DangerZone.classification == classification.value)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def matching_zones(self, coordinate: Coordinate) -> List[Tuple[DangerZone, Optional[float]]]:
        zones = await self.list_zones(ZoneClassification.DANGER)
        matches = []
        for zone in zones:
            inside, distance = zone_contains(zone, coordinate)
            if inside:
                matches.append((zone, distance))
        return matches

    async def evaluate(self, subject_id: str, coordinate: Coordinate) -> GeofenceResult:
        """
        Check one location update and raise alerts for entered danger zones
        """
        matches = await self.matching_zones(coordinate)
        result = GeofenceResult(
            subject_id=subject_id,
            matched_zones=[
                ZoneMatch(zone_id=zone.id, zone_name=zone.name, distance_m=distance)
                for zone, distance in matches
            ]
        )

        for zone, _ in matches:
            if self.cooldown_seconds > 0:
                since = datetime.utcnow() - timedelta(seconds=self.cooldown_seconds)
                if await self.alert_service.has_recent_zone_alert(subject_id, zone.id, since):
                    logger.info(f"Geofence alert for {subject_id} in zone {zone.id} suppressed by cooldown")
                    result.suppressed_zone_ids.append(zone.id)
                    continue

            logger.warning(f"Subject {subject_id} entered danger zone {zone.id} ({zone.name})")
            alert, summary = await self.alert_service.create_alert(
                AlertCreate(
                    subject_id=subject_id,
                    alert_type=AlertType.GEOFENCE_VIOLATION,
                    severity=SeverityTier.HIGH,
                    message=f"Entered danger zone: {zone.name}",
                    coordinate=coordinate,
                    zone_id=zone.id
                ),
                channels=self.policy.channels
            )
            result.alerts.append(AlertWithNotifications(
                alert=AlertResponse.model_validate(alert),
                notifications=summary
            ))

        return result
