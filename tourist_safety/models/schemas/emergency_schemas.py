"""
Pydantic schemas for the emergency subsystem
Handles request/response validation and the ephemeral risk types
"""
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum
import re


# Enums for validation
class SeverityTier(str, Enum):
    MINIMAL = "MINIMAL"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class AlertType(str, Enum):
    MANUAL_SOS = "MANUAL_SOS"
    MANUAL_PANIC = "MANUAL_PANIC"
    AUTOMATIC_DETECTION = "AUTOMATIC_DETECTION"
    GEOFENCE_VIOLATION = "GEOFENCE_VIOLATION"
    MEDICAL = "MEDICAL"
    CRIME = "CRIME"
    ACCIDENT = "ACCIDENT"
    NATURAL_DISASTER = "NATURAL_DISASTER"


class EmergencyCategory(str, Enum):
    SOS = "SOS"
    PANIC = "PANIC"
    MEDICAL = "MEDICAL"
    CRIME = "CRIME"
    ACCIDENT = "ACCIDENT"
    NATURAL_DISASTER = "NATURAL_DISASTER"


CATEGORY_ALERT_TYPES: Dict[EmergencyCategory, AlertType] = {
    EmergencyCategory.SOS: AlertType.MANUAL_SOS,
    EmergencyCategory.PANIC: AlertType.MANUAL_PANIC,
    EmergencyCategory.MEDICAL: AlertType.MEDICAL,
    EmergencyCategory.CRIME: AlertType.CRIME,
    EmergencyCategory.ACCIDENT: AlertType.ACCIDENT,
    EmergencyCategory.NATURAL_DISASTER: AlertType.NATURAL_DISASTER,
}


class NotificationChannel(str, Enum):
    SMS = "SMS"
    EMAIL = "EMAIL"
    VOICE = "VOICE"
    EXTERNAL_SERVICE = "EXTERNAL_SERVICE"


class AttemptStatus(str, Enum):
    SENT = "SENT"
    FAILED = "FAILED"


class NoticeKind(str, Enum):
    ALERT = "ALERT"
    RESOLUTION = "RESOLUTION"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    UNKNOWN = "UNKNOWN"


class ZoneClassification(str, Enum):
    DANGER = "danger"
    CAUTION = "caution"
    SAFE = "safe"


class Coordinate(BaseModel):
    """WGS84 coordinate"""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    class Config:
        allow_inf_nan = False


# Sensor snapshot
class AccelerometerReading(BaseModel):
    x: float
    y: float
    z: float

    class Config:
        allow_inf_nan = False


class HeartRateReading(BaseModel):
    current: float = Field(..., ge=0)
    average: Optional[float] = Field(None, ge=0)
    variability: Optional[float] = Field(None, ge=0)

    class Config:
        allow_inf_nan = False


class MovementReading(BaseModel):
    speed: Optional[float] = Field(None, ge=0)
    direction: Optional[float] = None
    consistency: Optional[float] = Field(None, ge=0, le=1)
    previous_speed: Optional[float] = Field(None, ge=0)
    previous_direction: Optional[float] = None

    class Config:
        allow_inf_nan = False


class DeviceInteractionReading(BaseModel):
    last_interaction: Optional[datetime] = None
    battery_level: Optional[float] = Field(None, ge=0, le=100)
    screen_time: Optional[float] = Field(None, ge=0, description="Screen time in seconds")

    class Config:
        allow_inf_nan = False


class AudioReading(BaseModel):
    volume: Optional[float] = Field(None, ge=0)
    frequency: Optional[float] = Field(None, ge=0, description="Dominant frequency (Hz)")
    pattern: Optional[str] = None

    class Config:
        allow_inf_nan = False


class SensorSnapshot(BaseModel):
    """Batched device readings; an absent reading is not evaluated"""
    accelerometer: Optional[AccelerometerReading] = None
    heart_rate: Optional[HeartRateReading] = None
    movement: Optional[MovementReading] = None
    device: Optional[DeviceInteractionReading] = None
    audio: Optional[AudioReading] = None


# Risk results
class RiskAssessment(BaseModel):
    """Sensor pattern analysis result"""
    patterns: List[str] = Field(default_factory=list)
    risk_factors: List[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0, le=1)
    emergency_probability: float = Field(0.0, ge=0, le=1)


class RiskFactorScore(BaseModel):
    level: RiskLevel = RiskLevel.UNKNOWN
    score: float = Field(0.0, ge=0, le=100)


class LocationRisk(BaseModel):
    """Location risk from the four external feeds"""
    crime: RiskFactorScore = Field(default_factory=RiskFactorScore)
    weather: RiskFactorScore = Field(default_factory=RiskFactorScore)
    isolation: RiskFactorScore = Field(default_factory=RiskFactorScore)
    emergency_services: RiskFactorScore = Field(default_factory=RiskFactorScore)
    overall_location_risk: float = Field(0.0, ge=0, le=100)


class OverallRisk(BaseModel):
    """Risk classifier output"""
    severity: SeverityTier
    score: float = Field(..., ge=0, le=1)
    factors: List[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0, le=1)


# Alert Schemas
class AlertCreate(BaseModel):
    """Internal schema for creating alerts"""
    subject_id: str = Field(..., min_length=1, max_length=100)
    alert_type: AlertType
    severity: SeverityTier
    message: str = Field(..., min_length=1)
    coordinate: Coordinate
    risk_score: Optional[float] = Field(None, ge=0, le=1)
    confidence: Optional[float] = Field(None, ge=0, le=1)
    zone_id: Optional[int] = None


class AlertResponse(BaseModel):
    """Schema for alert responses"""
    id: str
    subject_id: str
    alert_type: AlertType
    severity: SeverityTier
    status: AlertStatus
    message: str
    latitude: float
    longitude: float
    zone_id: Optional[int] = None
    risk_score: Optional[float] = None
    confidence: Optional[float] = None
    created_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None

    class Config:
        from_attributes = True  # For SQLAlchemy ORM compatibility


class AlertListResponse(BaseModel):
    """Schema for paginated alert list"""
    total: int
    page: int
    page_size: int
    alerts: List[AlertResponse]


class NearbyAlertResponse(AlertResponse):
    """Active alert with its distance from the queried coordinate"""
    distance_m: float


class AlertTransitionRequest(BaseModel):
    """Acknowledge / resolve request body"""
    actor: str = Field(..., min_length=1, max_length=200, description="Name or ID of the person acting")
    notes: Optional[str] = None


# Notification Schemas
class NotificationResponse(BaseModel):
    """Schema for a recorded notification attempt"""
    id: int
    alert_id: str
    contact_id: Optional[int]
    channel: NotificationChannel
    recipient: str
    notice: NoticeKind
    status: AttemptStatus
    error_message: Optional[str]
    sent_at: datetime

    class Config:
        from_attributes = True


class AttemptOutcome(BaseModel):
    """Result of one delivery try on one channel"""
    channel: NotificationChannel
    recipient: str
    contact_id: Optional[int] = None
    status: AttemptStatus
    error: Optional[str] = None
    provider_reference: Optional[str] = None
    sent_at: datetime


class ChannelCounts(BaseModel):
    sent: int = 0
    failed: int = 0


class DispatchSummary(BaseModel):
    """Fan-out summary returned to the caller (informational only)"""
    alert_id: str
    notice: NoticeKind = NoticeKind.ALERT
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    by_channel: Dict[NotificationChannel, ChannelCounts] = Field(default_factory=dict)
    attempts: List[AttemptOutcome] = Field(default_factory=list)


class AlertWithNotifications(BaseModel):
    alert: AlertResponse
    notifications: DispatchSummary


# Contact Schemas
EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class EmergencyContactIn(BaseModel):
    """One entry of a contact-list replacement"""
    name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=255)
    relationship: Optional[str] = Field(None, max_length=50)
    priority: int = Field(1, ge=1)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        """Basic email validation"""
        if v and not re.match(EMAIL_PATTERN, v):
            raise ValueError(f"Invalid email: {v}")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        """E.164-ish phone validation"""
        if v and not re.match(r'^\+?[0-9 ()-]{6,20}$', v):
            raise ValueError(f"Invalid phone number: {v}")
        return v

    @model_validator(mode="after")
    def require_reachable(self):
        if not self.phone and not self.email:
            raise ValueError("Contact needs a phone number or an email address")
        return self


class ContactListUpdate(BaseModel):
    contacts: List[EmergencyContactIn]


class EmergencyContactResponse(BaseModel):
    id: int
    subject_id: str
    name: str
    phone: Optional[str]
    email: Optional[str]
    relationship: Optional[str]
    priority: int

    class Config:
        from_attributes = True


class ContactListResponse(BaseModel):
    subject_id: str
    count: int
    contacts: List[EmergencyContactResponse]


# Detection / trigger Schemas
class DetectionRequest(BaseModel):
    subject_id: str = Field(..., min_length=1, max_length=100)
    sensors: SensorSnapshot = Field(default_factory=SensorSnapshot)
    coordinate: Coordinate
    manual_trigger: bool = False
    category: Optional[EmergencyCategory] = None


class DetectionResponse(BaseModel):
    subject_id: str
    analysis: RiskAssessment
    location_risk: LocationRisk
    overall_risk: OverallRisk
    response_action: str
    alert: Optional[AlertResponse] = None
    notifications: Optional[DispatchSummary] = None
    recommendations: List[str] = Field(default_factory=list)
    timestamp: datetime


class ManualTriggerRequest(BaseModel):
    subject_id: str = Field(..., min_length=1, max_length=100)
    category: EmergencyCategory = EmergencyCategory.SOS
    coordinate: Coordinate
    message: Optional[str] = Field(None, max_length=1000)


class ManualTriggerResponse(BaseModel):
    alert: AlertResponse
    notifications: DispatchSummary
    status: str = "emergency_triggered"
    message: str = "Emergency contacts and services have been notified"
    timestamp: datetime


# Location / geofence Schemas
class LocationUpdateRequest(BaseModel):
    subject_id: str = Field(..., min_length=1, max_length=100)
    coordinate: Coordinate
    accuracy: Optional[float] = Field(None, ge=0)
    speed: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = None


class DangerZoneResponse(BaseModel):
    id: int
    name: str
    classification: ZoneClassification
    description: Optional[str] = None
    center_latitude: Optional[float] = None
    center_longitude: Optional[float] = None
    radius_m: Optional[float] = None
    polygon: Optional[dict] = None

    class Config:
        from_attributes = True


class ZoneMatch(BaseModel):
    zone_id: int
    zone_name: str
    distance_m: Optional[float] = None


class GeofenceResult(BaseModel):
    subject_id: str
    matched_zones: List[ZoneMatch] = Field(default_factory=list)
    alerts: List[AlertWithNotifications] = Field(default_factory=list)
    suppressed_zone_ids: List[int] = Field(default_factory=list)


# Timeline / statistics
class AlertTimelineEvent(BaseModel):
    event_type: str
    description: str
    timestamp: datetime


class AlertTimelineResponse(BaseModel):
    alert: AlertResponse
    notifications: List[NotificationResponse]
    timeline: List[AlertTimelineEvent]


class AlertStats(BaseModel):
    """Alert statistics schema"""
    total_alerts: int
    active: int
    acknowledged: int
    resolved: int
    high_severity: int
    critical_severity: int
    avg_response_time_hours: Optional[float]
