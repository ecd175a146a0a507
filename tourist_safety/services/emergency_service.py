"""
Emergency Service - detection and manual trigger orchestration
Sensor analysis and location risk run concurrently, the classifier picks a
tier, and the response policy decides whether an alert is raised.
"""
from typing import List, Optional
from datetime import datetime
import asyncio
import logging

from tourist_safety.core.config import get_settings
from tourist_safety.models.schemas.emergency_schemas import (
    DetectionRequest, DetectionResponse, ManualTriggerRequest, ManualTriggerResponse,
    AlertCreate, AlertResponse, AlertType, EmergencyCategory, SeverityTier,
    RiskAssessment, LocationRisk, OverallRisk, RiskLevel, CATEGORY_ALERT_TYPES
)
from tourist_safety.services.alert_service import AlertService
from tourist_safety.services.location_risk import LocationRiskAssessor
from tourist_safety.services.response_policy import build_response_policies
from tourist_safety.services.risk_classifier import RiskClassifier
from tourist_safety.services.sensor_analysis import SensorPatternAnalyzer

logger = logging.getLogger(__name__)


def generate_recommendations(overall_risk: OverallRisk, location_risk: LocationRisk) -> List[str]:
    """Safety advice from the severity tier and the location sub-levels"""
    recommendations = []

    if overall_risk.severity == SeverityTier.CRITICAL:
        recommendations.append("Emergency services and your contacts have been notified - stay where you are if it is safe")
    elif overall_risk.severity == SeverityTier.HIGH:
        recommendations.append("Your emergency contacts have been alerted - move to a safe, public place")
    elif overall_risk.severity == SeverityTier.MODERATE:
        recommendations.append("Stay alert and share your live location with a trusted contact")

    if location_risk.weather.level in (RiskLevel.MEDIUM, RiskLevel.HIGH):
        recommendations.append("Check weather conditions before going out")

    if location_risk.crime.level == RiskLevel.HIGH:
        recommendations.append("Avoid isolated areas and stay in well-lit public spaces")

    if location_risk.emergency_services.level in (RiskLevel.MEDIUM, RiskLevel.HIGH):
        recommendations.append("Keep emergency contact numbers handy")

    if location_risk.isolation.level == RiskLevel.HIGH:
        recommendations.append("Stay close to other people and avoid traveling alone")

    if not recommendations:
        recommendations.append("No elevated risk detected - continue to exercise normal caution")

    return recommendations


def alert_type_for(severity: SeverityTier, category: Optional[EmergencyCategory], manual: bool) -> AlertType:
    if manual:
        return CATEGORY_ALERT_TYPES[category or EmergencyCategory.SOS]
    if severity == SeverityTier.CRITICAL and category:
        return CATEGORY_ALERT_TYPES[category]
    return AlertType.AUTOMATIC_DETECTION


class EmergencyService:
    """
    Orchestrates one detection or manual trigger request
    """

    def __init__(
        self,
        alert_service: AlertService,
        assessor: LocationRiskAssessor,
        analyzer: Optional[SensorPatternAnalyzer] = None,
        classifier: Optional[RiskClassifier] = None
    ):
        self.alert_service = alert_service
        self.assessor = assessor
        self.analyzer = analyzer or SensorPatternAnalyzer()
        self.classifier = classifier or RiskClassifier()
        self.policies = build_response_policies(get_settings())

    async def detect(self, request: DetectionRequest) -> DetectionResponse:
        """
        Run detection for one batched sensor snapshot

        The response always carries the computed risk; notification failures
        only show up in the dispatch summary.
        """
        analysis, location_risk = await asyncio.gather(
            asyncio.to_thread(self.analyzer.analyze, request.sensors),
            self.assessor.assess(request.coordinate)
        )
        overall_risk = self.classifier.classify(analysis, location_risk, request.manual_trigger)
        policy = self.policies[overall_risk.severity]

        logger.log(
            policy.log_level,
            f"Detection for {request.subject_id}: {overall_risk.severity.value} "
            f"(score {overall_risk.score}, factors {overall_risk.factors}) -> {policy.action}"
        )

        alert = summary = None
        if policy.create_alert:
            alert_record, summary = await self.alert_service.create_alert(
                AlertCreate(
                    subject_id=request.subject_id,
                    alert_type=alert_type_for(overall_risk.severity, request.category, request.manual_trigger),
                    severity=overall_risk.severity,
                    message=self._detection_message(overall_risk, request),
                    coordinate=request.coordinate,
                    risk_score=overall_risk.score,
                    confidence=overall_risk.confidence
                ),
                channels=policy.channels
            )
            alert = AlertResponse.model_validate(alert_record)

        return DetectionResponse(
            subject_id=request.subject_id,
            analysis=analysis,
            location_risk=location_risk,
            overall_risk=overall_risk,
            response_action=policy.action,
            alert=alert,
            notifications=summary,
            recommendations=generate_recommendations(overall_risk, location_risk),
            timestamp=datetime.utcnow()
        )

    async def trigger(self, request: ManualTriggerRequest) -> ManualTriggerResponse:
        """Manual SOS / panic: always a CRITICAL alert with the full protocol"""
        overall_risk = self.classifier.classify(RiskAssessment(), LocationRisk(), manual_trigger=True)
        policy = self.policies[overall_risk.severity]

        logger.critical(f"Manual {request.category.value} emergency triggered by {request.subject_id}")

        alert, summary = await self.alert_service.create_alert(
            AlertCreate(
                subject_id=request.subject_id,
                alert_type=alert_type_for(overall_risk.severity, request.category, manual=True),
                severity=overall_risk.severity,
                message=request.message or f"Manual {request.category.value} emergency triggered",
                coordinate=request.coordinate,
                risk_score=overall_risk.score,
                confidence=overall_risk.confidence
            ),
            channels=policy.channels
        )

        return ManualTriggerResponse(
            alert=AlertResponse.model_validate(alert),
            notifications=summary,
            timestamp=datetime.utcnow()
        )

    @staticmethod
    def _detection_message(overall_risk: OverallRisk, request: DetectionRequest) -> str:
        if request.manual_trigger:
            category = (request.category or EmergencyCategory.SOS).value
            return f"Manual {category} emergency triggered"
        if overall_risk.factors:
            return f"{overall_risk.severity.value} risk detected: {', '.join(overall_risk.factors)}"
        return f"{overall_risk.severity.value} risk detected at current location"
