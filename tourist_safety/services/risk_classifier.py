"""
Risk Classifier - combines sensor confidence and location risk into a severity tier
"""
from typing import Optional, List, Tuple

from tourist_safety.core.config import get_settings
from tourist_safety.models.schemas.emergency_schemas import (
    RiskAssessment, LocationRisk, OverallRisk, SeverityTier
)

MANUAL_TRIGGER_FACTOR = "manual trigger"

# Lower bounds are exclusive: a score must exceed the bound to reach the tier
SEVERITY_THRESHOLDS: Tuple[Tuple[float, SeverityTier], ...] = (
    (0.8, SeverityTier.CRITICAL),
    (0.6, SeverityTier.HIGH),
    (0.4, SeverityTier.MODERATE),
    (0.2, SeverityTier.LOW),
)


def tier_for_score(score: float) -> SeverityTier:
    for bound, tier in SEVERITY_THRESHOLDS:
        if score > bound:
            return tier
    return SeverityTier.MINIMAL


class RiskClassifier:
    """Pure severity classification"""

    def __init__(self, sensor_weight: Optional[float] = None, location_weight: Optional[float] = None):
        settings = get_settings()
        self.sensor_weight = settings.SENSOR_RISK_WEIGHT if sensor_weight is None else sensor_weight
        self.location_weight = settings.LOCATION_RISK_WEIGHT if location_weight is None else location_weight

    def classify(
        self,
        assessment: RiskAssessment,
        location_risk: LocationRisk,
        manual_trigger: bool = False
    ) -> OverallRisk:
        """
        Classify overall risk

        A manual trigger overrides every other input and yields CRITICAL.
        """
        if manual_trigger:
            return OverallRisk(
                severity=SeverityTier.CRITICAL,
                score=1.0,
                factors=[MANUAL_TRIGGER_FACTOR],
                confidence=1.0
            )

        score = self.score(assessment.emergency_probability, location_risk.overall_location_risk)

        return OverallRisk(
            severity=tier_for_score(score),
            score=score,
            factors=self._factors(assessment.risk_factors),
            confidence=assessment.confidence
        )

    def score(self, emergency_probability: float, location_aggregate: float) -> float:
        raw = emergency_probability * self.sensor_weight + (location_aggregate / 100) * self.location_weight
        # Rounded so documented boundaries (e.g. exactly 0.6) compare exactly
        return round(min(1.0, max(0.0, raw)), 6)

    @staticmethod
    def _factors(risk_factors: List[str]) -> List[str]:
        seen = set()
        ordered = []
        for factor in risk_factors:
            if factor not in seen:
                seen.add(factor)
                ordered.append(factor)
        return ordered
