"""
Alert Service - Alert store and lifecycle
Handles alert creation (with notification fan-out), lifecycle transitions,
listing, timelines and statistics
"""
from typing import List, Optional, Dict, Any, Iterable, Tuple
from datetime import datetime
from weakref import WeakValueDictionary
import asyncio
import logging

from sqlalchemy import select, func, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from tourist_safety.core.config import get_settings
from tourist_safety.core.exceptions import NotFoundException, StateConflictException
from tourist_safety.models.emergency_models import Alert, AlertNotification
from tourist_safety.models.schemas.emergency_schemas import (
    AlertCreate, AlertStatus, AlertStats, AlertResponse, AlertTimelineEvent,
    AlertTimelineResponse, Coordinate, NearbyAlertResponse, NotificationResponse,
    NotificationChannel, NoticeKind, DispatchSummary, SeverityTier
)
from tourist_safety.services.contact_service import ContactService
from tourist_safety.services.geo import METRES_PER_DEGREE, haversine_m
from tourist_safety.services.notification_service import NotificationDispatcher, NotificationLog

logger = logging.getLogger(__name__)

STATUS_ORDER = {
    AlertStatus.ACTIVE: 0,
    AlertStatus.ACKNOWLEDGED: 1,
    AlertStatus.RESOLVED: 2,
}

RESOLUTION_CHANNELS = (NotificationChannel.SMS, NotificationChannel.EMAIL)

SEVERITY_RANK = {
    SeverityTier.CRITICAL.value: 0,
    SeverityTier.HIGH.value: 1,
    SeverityTier.MODERATE.value: 2,
    SeverityTier.LOW.value: 3,
    SeverityTier.MINIMAL.value: 4,
}


class AlertLockRegistry:
    """
    Per-alert asyncio locks
    Transitions on the same alert are serialized; different alerts never contend.
    """

    def __init__(self):
        self._locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()

    def lock_for(self, alert_id: str) -> asyncio.Lock:
        lock = self._locks.get(alert_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[alert_id] = lock
        return lock


class AlertService:
    """
    Service class for alert operations
    The only writer of alert status; other components go through these methods.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        locks: Optional[AlertLockRegistry] = None
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.locks = locks or AlertLockRegistry()
        self.settings = get_settings()

    async def create_alert(
        self,
        alert_data: AlertCreate,
        channels: Iterable[NotificationChannel] = ()
    ) -> Tuple[Alert, DispatchSummary]:
        """
        Persist a new ACTIVE alert, then fan out notifications

        The alert is committed before dispatch begins. Notification failures
        are reported in the summary and never undo the alert.
        """
        new_alert = Alert(
            subject_id=alert_data.subject_id,
            alert_type=alert_data.alert_type.value,
            severity=alert_data.severity.value,
            status=AlertStatus.ACTIVE.value,
            message=alert_data.message,
            latitude=alert_data.coordinate.latitude,
            longitude=alert_data.coordinate.longitude,
            zone_id=alert_data.zone_id,
            risk_score=alert_data.risk_score,
            confidence=alert_data.confidence,
        )

        self.db.add(new_alert)
        await self.db.commit()
        await self.db.refresh(new_alert)

        logger.info(
            f"Alert {new_alert.id} created: {new_alert.alert_type} / {new_alert.severity} "
            f"for subject {new_alert.subject_id}"
        )

        summary = await self.notify(new_alert, channels, NoticeKind.ALERT)
        return new_alert, summary

    async def notify(
        self,
        alert: Alert,
        channels: Iterable[NotificationChannel],
        notice: NoticeKind = NoticeKind.ALERT
    ) -> DispatchSummary:
        """Send a notice for an alert to the subject's contacts"""
        contacts = await ContactService(self.db).list_contacts(alert.subject_id)
        return await self.dispatcher.dispatch(
            alert,
            contacts,
            channels,
            recorder=NotificationLog(self.db),
            notice=notice
        )

    async def get_alert(self, alert_id: str) -> Alert:
        """Get alert by id, raises NotFoundException"""
        result = await self.db.execute(
            select(Alert).where(Alert.id == alert_id)
        )
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundException(f"Alert {alert_id} not found")
        return alert

    async def list_alerts(
        self,
        skip: int = 0,
        limit: int = 100,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        alert_type: Optional[str] = None,
        subject_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        List alerts with filtering and pagination, newest first
        """
        filters = []
        if status:
            filters.append(Alert.status == status)
        if severity:
            filters.append(Alert.severity == severity)
        if alert_type:
            filters.append(Alert.alert_type == alert_type)
        if subject_id:
            filters.append(Alert.subject_id == subject_id)

        query = select(Alert)
        count_query = select(func.count()).select_from(Alert)
        if filters:
            query = query.where(and_(*filters))
            count_query = count_query.where(and_(*filters))

        total_result = await self.db.execute(count_query)
        total = total_result.scalar()

        query = query.order_by(desc(Alert.created_at), desc(Alert.id)).offset(skip).limit(limit)
        result = await self.db.execute(query)
        alerts = result.scalars().all()

        return {
            "total": total,
            "page": skip // limit + 1 if limit > 0 else 1,
            "page_size": limit,
            "alerts": alerts
        }

    async def list_nearby_alerts(
        self,
        coordinate: Coordinate,
        radius_m: float = 5000,
        limit: int = 20
    ) -> List[NearbyAlertResponse]:
        """
        ACTIVE alerts within radius_m of a coordinate

        Ordered by severity (CRITICAL first), then by distance.
        """
        # Latitude band narrows the scan; exact filtering is by great-circle distance
        lat_delta = radius_m / METRES_PER_DEGREE
        result = await self.db.execute(
            select(Alert).where(
                and_(
                    Alert.status == AlertStatus.ACTIVE.value,
                    Alert.latitude >= coordinate.latitude - lat_delta,
                    Alert.latitude <= coordinate.latitude + lat_delta
                )
            )
        )

        nearby = []
        for alert in result.scalars().all():
            distance = haversine_m(coordinate.latitude, coordinate.longitude, alert.latitude, alert.longitude)
            if distance <= radius_m:
                nearby.append((SEVERITY_RANK.get(alert.severity, len(SEVERITY_RANK)), distance, alert))

        nearby.sort(key=lambda entry: (entry[0], entry[1]))
        return [
            NearbyAlertResponse(
                **AlertResponse.model_validate(alert).model_dump(), distance_m=round(distance, 2)
            )
            for _, distance, alert in nearby[:limit]
        ]

    # --- Lifecycle ---

    async def acknowledge_alert(self, alert_id: str, actor: str) -> Alert:
        """ACTIVE -> ACKNOWLEDGED; repeating it is a no-op"""
        alert, _ = await self._transition(alert_id, AlertStatus.ACKNOWLEDGED, actor)
        return alert

    async def resolve_alert(self, alert_id: str, actor: str, notes: Optional[str] = None) -> Alert:
        """
        ACTIVE/ACKNOWLEDGED -> RESOLVED; repeating it is a no-op

        Contacts get a resolution notice only when the alert actually changed state.
        """
        alert, changed = await self._transition(alert_id, AlertStatus.RESOLVED, actor, notes)

        if changed and self.settings.NOTIFY_CONTACTS_ON_RESOLUTION:
            try:
                await self.notify(alert, RESOLUTION_CHANNELS, NoticeKind.RESOLUTION)
            except Exception as e:
                # The alert is already RESOLVED; a lost notice must not fail the call
                logger.error(f"Resolution notice for alert {alert_id} failed: {e}", exc_info=True)
                await self.db.rollback()
                await self.db.refresh(alert)

        return alert

    async def _transition(
        self,
        alert_id: str,
        target: AlertStatus,
        actor: str,
        notes: Optional[str] = None
    ) -> Tuple[Alert, bool]:
        async with self.locks.lock_for(alert_id):
            result = await self.db.execute(
                select(Alert)
                .where(Alert.id == alert_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            alert = result.scalar_one_or_none()
            if alert is None:
                await self.db.commit()
                raise NotFoundException(f"Alert {alert_id} not found")

            current = AlertStatus(alert.status)
            if current == target:
                # Releases the row lock; expire_on_commit is off so the record stays loaded
                await self.db.commit()
                return alert, False

            if STATUS_ORDER[target] < STATUS_ORDER[current]:
                await self.db.commit()
                raise StateConflictException(
                    f"Alert {alert_id} is {current.value} and cannot move back to {target.value}"
                )

            now = datetime.utcnow()
            alert.status = target.value
            if target == AlertStatus.ACKNOWLEDGED:
                alert.acknowledged_at = now
                alert.acknowledged_by = actor
            else:
                alert.resolved_at = now
                alert.resolved_by = actor
                alert.resolution_notes = notes
            alert.updated_at = now

            await self.db.commit()
            await self.db.refresh(alert)

        logger.info(f"Alert {alert_id} {current.value} -> {target.value} by {actor}")
        return alert, True

    # --- Audit / reporting ---

    async def get_notifications(self, alert_id: str) -> List[AlertNotification]:
        result = await self.db.execute(
            select(AlertNotification)
            .where(AlertNotification.alert_id == alert_id)
            .order_by(AlertNotification.sent_at, AlertNotification.id)
        )
        return list(result.scalars().all())

    async def get_timeline(self, alert_id: str) -> AlertTimelineResponse:
        """Alert, its notification attempts and an ordered event list"""
        alert = await self.get_alert(alert_id)
        notifications = await self.get_notifications(alert_id)

        events = [AlertTimelineEvent(
            event_type="created",
            description=f"{alert.severity} {alert.alert_type} alert raised: {alert.message}",
            timestamp=alert.created_at
        )]

        for notification in notifications:
            verb = "sent" if notification.status == "SENT" else "failed"
            description = f"{notification.channel} {notification.notice.lower()} to {notification.recipient} {verb}"
            if notification.error_message:
                description += f" ({notification.error_message})"
            events.append(AlertTimelineEvent(
                event_type=f"notification_{verb}",
                description=description,
                timestamp=notification.sent_at
            ))

        if alert.acknowledged_at:
            events.append(AlertTimelineEvent(
                event_type="acknowledged",
                description=f"Acknowledged by {alert.acknowledged_by}",
                timestamp=alert.acknowledged_at
            ))

        if alert.resolved_at:
            description = f"Resolved by {alert.resolved_by}"
            if alert.resolution_notes:
                description += f": {alert.resolution_notes}"
            events.append(AlertTimelineEvent(
                event_type="resolved",
                description=description,
                timestamp=alert.resolved_at
            ))

        events.sort(key=lambda event: event.timestamp)

        return AlertTimelineResponse(
            alert=AlertResponse.model_validate(alert),
            notifications=[NotificationResponse.model_validate(n) for n in notifications],
            timeline=events
        )

    async def has_recent_zone_alert(self, subject_id: str, zone_id: int, since: datetime) -> bool:
        """True when an unresolved alert exists for this subject and zone since `since`"""
        result = await self.db.execute(
            select(func.count(Alert.id)).where(
                and_(
                    Alert.subject_id == subject_id,
                    Alert.zone_id == zone_id,
                    Alert.status != AlertStatus.RESOLVED.value,
                    Alert.created_at >= since
                )
            )
        )
        return (result.scalar() or 0) > 0

    async def get_alert_statistics(self) -> AlertStats:
        """Get overall alert statistics"""
        status_counts = await self.db.execute(
            select(
                Alert.status,
                func.count(Alert.id).label('count')
            ).group_by(Alert.status)
        )
        status_dict = {row.status: row.count for row in status_counts}

        severity_counts = await self.db.execute(
            select(
                Alert.severity,
                func.count(Alert.id).label('count')
            ).group_by(Alert.severity)
        )
        severity_dict = {row.severity: row.count for row in severity_counts}

        # Averaged in Python so it works on every backend
        acknowledged = await self.db.execute(
            select(Alert.created_at, Alert.acknowledged_at).where(Alert.acknowledged_at.isnot(None))
        )
        response_hours = [
            (row.acknowledged_at - row.created_at).total_seconds() / 3600
            for row in acknowledged
        ]
        avg_response_hours = (
            round(sum(response_hours) / len(response_hours), 4) if response_hours else None
        )

        return AlertStats(
            total_alerts=sum(status_dict.values()),
            active=status_dict.get(AlertStatus.ACTIVE.value, 0),
            acknowledged=status_dict.get(AlertStatus.ACKNOWLEDGED.value, 0),
            resolved=status_dict.get(AlertStatus.RESOLVED.value, 0),
            high_severity=severity_dict.get(SeverityTier.HIGH.value, 0),
            critical_severity=severity_dict.get(SeverityTier.CRITICAL.value, 0),
            avg_response_time_hours=avg_response_hours
        )
