"""
Emergency subsystem database models
Alerts, notification attempts, emergency contacts and danger zones
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Text, JSON, ForeignKey, Index
from datetime import datetime
import uuid

from tourist_safety.db.database import Base


def generate_alert_id() -> str:
    return f"ALT-{uuid.uuid4().hex[:12].upper()}"


class Alert(Base):
    """
    Emergency alerts table - the only entity with a lifecycle.
    Type, severity, message and coordinate are fixed at creation.
    """
    __tablename__ = "emergency_alerts"
    __table_args__ = (
        Index("idx_alerts_subject_created", "subject_id", "created_at"),
    )

    id = Column(String(32), primary_key=True, default=generate_alert_id)
    subject_id = Column(String(100), nullable=False, index=True)

    # Alert classification
    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="ACTIVE", index=True)
    message = Column(Text, nullable=False)

    # Location
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    zone_id = Column(Integer, ForeignKey("danger_zones.id"), nullable=True)

    # Detection metrics
    risk_score = Column(Float, nullable=True)
    confidence = Column(Float, nullable=True)

    # Lifecycle tracking
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String(200), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(200), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Alert(id='{self.id}', type='{self.alert_type}', severity='{self.severity}', status='{self.status}')>"


class AlertNotification(Base):
    """
    Notification attempts table - one immutable row per (alert, contact, channel) try
    """
    __tablename__ = "alert_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(String(32), ForeignKey("emergency_alerts.id"), nullable=False, index=True)
    # Not a foreign key: contact lists are replaced wholesale, attempts are kept
    contact_id = Column(Integer, nullable=True)

    # Notification details
    channel = Column(String(20), nullable=False)
    recipient = Column(String(255), nullable=False)
    notice = Column(String(20), nullable=False, default="ALERT")

    # Delivery tracking
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)
    provider_reference = Column(String(100), nullable=True)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class EmergencyContact(Base):
    """
    Emergency contacts of a tracked subject, contacted by ascending priority
    """
    __tablename__ = "emergency_contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(100), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    relationship = Column(String(50), nullable=True)
    priority = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<EmergencyContact(id={self.id}, subject_id='{self.subject_id}', priority={self.priority})>"


class DangerZone(Base):
    """
    Registered geographic zones. A zone is either a circle (center + radius)
    or a GeoJSON polygon.
    """
    __tablename__ = "danger_zones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    classification = Column(String(20), nullable=False, default="danger", index=True)
    description = Column(Text, nullable=True)

    center_latitude = Column(Float, nullable=True)
    center_longitude = Column(Float, nullable=True)
    radius_m = Column(Float, nullable=True)
    polygon = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<DangerZone(id={self.id}, name='{self.name}', classification='{self.classification}')>"
