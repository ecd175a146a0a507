"""
Sensor Pattern Analyzer - threshold rules over a batched sensor snapshot
Each present reading is evaluated independently; absent readings are skipped.
"""
from typing import Optional, Union, Dict, Any
from datetime import datetime, timezone
from dataclasses import dataclass
import math

from pydantic import ValidationError

from tourist_safety.core.config import Settings, get_settings
from tourist_safety.core.exceptions import ValidationException
from tourist_safety.models.schemas.emergency_schemas import (
    SensorSnapshot, RiskAssessment,
    AccelerometerReading, HeartRateReading, MovementReading,
    DeviceInteractionReading, AudioReading
)


@dataclass(frozen=True)
class SensorThresholds:
    """Trigger thresholds and confidence increments per signal"""
    fall_magnitude: float = 15.0
    fall_increment: float = 0.30
    heart_rate_high: float = 120.0
    heart_rate_low: float = 50.0
    heart_rate_variability: float = 50.0
    heart_rate_increment: float = 0.20
    movement_consistency_floor: float = 0.3
    movement_sudden_stop_speed: float = 5.0
    movement_direction_change: float = 90.0
    movement_increment: float = 0.15
    inactivity_seconds: int = 3600
    low_battery_percent: float = 10.0
    device_increment: float = 0.25
    audio_volume: float = 80.0
    audio_frequency_min: float = 500.0
    audio_frequency_max: float = 2000.0
    audio_pattern: str = "repetitive_high"
    audio_increment: float = 0.20

    @classmethod
    def from_settings(cls, settings: Settings) -> "SensorThresholds":
        return cls(
            fall_magnitude=settings.FALL_MAGNITUDE_THRESHOLD,
            fall_increment=settings.FALL_CONFIDENCE_INCREMENT,
            heart_rate_high=settings.HEART_RATE_HIGH_BPM,
            heart_rate_low=settings.HEART_RATE_LOW_BPM,
            heart_rate_variability=settings.HEART_RATE_VARIABILITY_LIMIT,
            heart_rate_increment=settings.HEART_RATE_CONFIDENCE_INCREMENT,
            movement_consistency_floor=settings.MOVEMENT_CONSISTENCY_FLOOR,
            movement_sudden_stop_speed=settings.MOVEMENT_SUDDEN_STOP_SPEED,
            movement_direction_change=settings.MOVEMENT_DIRECTION_CHANGE_DEG,
            movement_increment=settings.MOVEMENT_CONFIDENCE_INCREMENT,
            inactivity_seconds=settings.INACTIVITY_LIMIT_SECONDS,
            low_battery_percent=settings.LOW_BATTERY_PERCENT,
            device_increment=settings.DEVICE_CONFIDENCE_INCREMENT,
            audio_volume=settings.AUDIO_VOLUME_THRESHOLD,
            audio_frequency_min=settings.AUDIO_FREQUENCY_MIN_HZ,
            audio_frequency_max=settings.AUDIO_FREQUENCY_MAX_HZ,
            audio_pattern=settings.AUDIO_DISTRESS_PATTERN,
            audio_increment=settings.AUDIO_CONFIDENCE_INCREMENT,
        )


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SensorPatternAnalyzer:
    """
    Turns a SensorSnapshot into detected patterns and an accumulated confidence.
    Output depends only on the snapshot, the thresholds and `now`.
    """

    def __init__(self, thresholds: Optional[SensorThresholds] = None):
        self.thresholds = thresholds or SensorThresholds.from_settings(get_settings())

    def analyze(
        self,
        snapshot: Union[SensorSnapshot, Dict[str, Any]],
        now: Optional[datetime] = None
    ) -> RiskAssessment:
        """
        Analyze a snapshot for emergency patterns

        Args:
            snapshot: SensorSnapshot or its dict form
            now: Reference time for inactivity checks (defaults to current UTC time)

        Returns:
            RiskAssessment with confidence clamped to [0, 1]

        Raises:
            ValidationException: if the snapshot is malformed
        """
        snapshot = self._validate(snapshot)
        now = _as_naive_utc(now) if now else datetime.utcnow()
        t = self.thresholds

        patterns = []
        risk_factors = []
        confidence = 0.0

        if snapshot.accelerometer and self.fall_detected(snapshot.accelerometer):
            patterns.append("fall_detected")
            risk_factors.append("Sudden impact/fall detected")
            confidence += t.fall_increment

        if snapshot.heart_rate and self.heart_rate_abnormal(snapshot.heart_rate):
            patterns.append("heart_rate_abnormal")
            risk_factors.append("Abnormal heart rate detected")
            confidence += t.heart_rate_increment

        if snapshot.movement and self.movement_concerning(snapshot.movement):
            patterns.append("movement_concerning")
            risk_factors.append("Unusual movement pattern")
            confidence += t.movement_increment

        if snapshot.device and self.emergency_interaction(snapshot.device, now):
            patterns.append("emergency_interaction")
            risk_factors.append("Emergency interaction pattern")
            confidence += t.device_increment

        if snapshot.audio and self.audio_distress(snapshot.audio):
            patterns.append("audio_distress")
            risk_factors.append("Distress audio detected")
            confidence += t.audio_increment

        confidence = round(min(1.0, max(0.0, confidence)), 6)

        return RiskAssessment(
            patterns=patterns,
            risk_factors=risk_factors,
            confidence=confidence,
            emergency_probability=confidence
        )

    def _validate(self, snapshot) -> SensorSnapshot:
        if isinstance(snapshot, SensorSnapshot):
            return snapshot
        if snapshot is None:
            return SensorSnapshot()
        try:
            return SensorSnapshot.model_validate(snapshot)
        except ValidationError as e:
            raise ValidationException(f"Malformed sensor snapshot: {e.errors()}")

    # --- Per-signal rules ---

    def fall_detected(self, reading: AccelerometerReading) -> bool:
        magnitude = math.sqrt(reading.x ** 2 + reading.y ** 2 + reading.z ** 2)
        return magnitude > self.thresholds.fall_magnitude

    def heart_rate_abnormal(self, reading: HeartRateReading) -> bool:
        t = self.thresholds
        tachycardia = reading.current > t.heart_rate_high
        bradycardia = reading.current < t.heart_rate_low
        high_variability = reading.variability is not None and reading.variability > t.heart_rate_variability
        return tachycardia or bradycardia or high_variability

    def movement_concerning(self, reading: MovementReading) -> bool:
        t = self.thresholds
        erratic = reading.consistency is not None and reading.consistency < t.movement_consistency_floor
        sudden_stop = (
            reading.speed == 0
            and reading.previous_speed is not None
            and reading.previous_speed > t.movement_sudden_stop_speed
        )
        rapid_turn = (
            reading.direction is not None
            and reading.previous_direction is not None
            and abs(reading.direction - reading.previous_direction) > t.movement_direction_change
        )
        return erratic or sudden_stop or rapid_turn

    def emergency_interaction(self, reading: DeviceInteractionReading, now: datetime) -> bool:
        # Without a last-interaction timestamp neither condition can hold
        if reading.last_interaction is None:
            return False
        idle_seconds = (now - _as_naive_utc(reading.last_interaction)).total_seconds()
        no_interaction = idle_seconds > self.thresholds.inactivity_seconds
        low_battery = (
            reading.battery_level is not None
            and reading.battery_level < self.thresholds.low_battery_percent
        )
        return no_interaction or (low_battery and no_interaction)

    def audio_distress(self, reading: AudioReading) -> bool:
        t = self.thresholds
        if reading.volume is None or reading.frequency is None:
            return False
        high_volume = reading.volume > t.audio_volume
        distress_band = t.audio_frequency_min <= reading.frequency <= t.audio_frequency_max
        return high_volume and distress_band and reading.pattern == t.audio_pattern
