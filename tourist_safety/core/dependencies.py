"""
FastAPI dependencies for the Tourist Safety emergency service.
Long-lived collaborators (channels, dispatcher, risk feeds, lock registry)
are built once in the application lifespan and kept on app.state.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from tourist_safety.db.database import get_db
from tourist_safety.services.alert_service import AlertService, AlertLockRegistry
from tourist_safety.services.contact_service import ContactService
from tourist_safety.services.emergency_service import EmergencyService
from tourist_safety.services.geofence_service import GeofenceMonitor
from tourist_safety.services.location_risk import LocationRiskAssessor
from tourist_safety.services.notification_service import NotificationDispatcher


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def get_alert_locks(request: Request) -> AlertLockRegistry:
    return request.app.state.alert_locks


def get_risk_assessor(request: Request) -> LocationRiskAssessor:
    return request.app.state.risk_assessor


def get_alert_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    locks: AlertLockRegistry = Depends(get_alert_locks)
) -> AlertService:
    return AlertService(db, dispatcher, locks)


def get_contact_service(db: AsyncSession = Depends(get_db)) -> ContactService:
    return ContactService(db)


def get_emergency_service(
    alert_service: AlertService = Depends(get_alert_service),
    assessor: LocationRiskAssessor = Depends(get_risk_assessor)
) -> EmergencyService:
    return EmergencyService(alert_service, assessor)


def get_geofence_monitor(
    db: AsyncSession = Depends(get_db),
    alert_service: AlertService = Depends(get_alert_service)
) -> GeofenceMonitor:
    return GeofenceMonitor(db, alert_service)
