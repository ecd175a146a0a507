"""
Location Risk Assessor - combines the four risk feeds for a coordinate
Feeds are queried concurrently; any failure or timeout degrades that feed to UNKNOWN/0.
"""
from typing import Dict, Optional, Mapping
import asyncio
import logging

from tourist_safety.core.config import get_settings
from tourist_safety.models.schemas.emergency_schemas import (
    Coordinate, LocationRisk, RiskFactorScore
)
from tourist_safety.services.risk_providers import RiskFeedProvider, unknown_risk

logger = logging.getLogger(__name__)

RISK_DIMENSIONS = ("crime", "weather", "isolation", "emergency_services")


class LocationRiskAssessor:
    """
    Location risk assessment

    The aggregate score is sum(weight[d] * score[d]) over the four dimensions,
    with weights taken from LOCATION_RISK_WEIGHTS. Thresholds in the risk
    classifier are calibrated against these weights.
    """

    def __init__(
        self,
        providers: Mapping[str, RiskFeedProvider],
        timeout: Optional[float] = None,
        weights: Optional[Dict[str, float]] = None
    ):
        settings = get_settings()
        missing = [d for d in RISK_DIMENSIONS if d not in providers]
        if missing:
            raise ValueError(f"Missing risk providers: {missing}")

        self.providers = providers
        self.timeout = timeout if timeout is not None else settings.RISK_FEED_TIMEOUT_SECONDS
        self.weights = dict(weights or settings.LOCATION_RISK_WEIGHTS)

        if set(self.weights) != set(RISK_DIMENSIONS):
            raise ValueError(f"Location risk weights must cover exactly {RISK_DIMENSIONS}")
        if abs(sum(self.weights.values()) - 1.0) > 1e-6:
            raise ValueError("Location risk weights must sum to 1")

    async def assess(self, coordinate: Coordinate) -> LocationRisk:
        """Query every feed concurrently and aggregate the sub-scores"""
        scores = await asyncio.gather(
            *(self._lookup(dimension, coordinate) for dimension in RISK_DIMENSIONS)
        )
        by_dimension = dict(zip(RISK_DIMENSIONS, scores))

        return LocationRisk(
            **by_dimension,
            overall_location_risk=self.aggregate(by_dimension)
        )

    def aggregate(self, scores: Mapping[str, RiskFactorScore]) -> float:
        total = sum(self.weights[d] * scores[d].score for d in RISK_DIMENSIONS)
        return round(max(0.0, min(100.0, total)), 6)

    async def _lookup(self, dimension: str, coordinate: Coordinate) -> RiskFactorScore:
        provider = self.providers[dimension]
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(provider.get_risk, coordinate),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Risk feed '{dimension}' timed out after {self.timeout}s, using UNKNOWN")
        except Exception as e:
            logger.warning(f"Risk feed '{dimension}' unavailable ({e}), using UNKNOWN")
        return unknown_risk()
