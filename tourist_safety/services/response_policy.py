"""
Response policy - what each severity tier triggers
Kept as a single table so the escalation rules live in one place.
"""
from dataclasses import dataclass, field
from typing import Dict, Tuple
import logging

from tourist_safety.core.config import Settings
from tourist_safety.models.schemas.emergency_schemas import SeverityTier, NotificationChannel


@dataclass(frozen=True)
class ResponsePolicy:
    action: str
    create_alert: bool = False
    channels: Tuple[NotificationChannel, ...] = field(default_factory=tuple)
    log_level: int = logging.DEBUG


def build_response_policies(settings: Settings) -> Dict[SeverityTier, ResponsePolicy]:
    """
    CRITICAL: full protocol, contacts and the external emergency service
    HIGH: alert contacts
    MODERATE: logged only
    LOW / MINIMAL: no action
    """
    critical_channels = [
        NotificationChannel.SMS,
        NotificationChannel.EMAIL,
        NotificationChannel.EXTERNAL_SERVICE,
    ]
    if settings.VOICE_CALLS_ENABLED:
        critical_channels.append(NotificationChannel.VOICE)

    return {
        SeverityTier.CRITICAL: ResponsePolicy(
            action="full_emergency_protocol",
            create_alert=True,
            channels=tuple(critical_channels),
            log_level=logging.CRITICAL
        ),
        SeverityTier.HIGH: ResponsePolicy(
            action="contacts_alerted",
            create_alert=True,
            channels=(NotificationChannel.SMS, NotificationChannel.EMAIL),
            log_level=logging.ERROR
        ),
        SeverityTier.MODERATE: ResponsePolicy(
            action="logged_only",
            log_level=logging.WARNING
        ),
        SeverityTier.LOW: ResponsePolicy(action="no_action", log_level=logging.INFO),
        SeverityTier.MINIMAL: ResponsePolicy(action="no_action"),
    }
