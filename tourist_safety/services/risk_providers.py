"""
Risk feed providers - external data sources for location risk
- Weather: OpenWeather current conditions
- Emergency services / isolation: Google Places nearby search
- Crime: configurable JSON feed

Providers are synchronous and raise ProviderUnavailableException on
transport errors. A provider with no configuration has no data and
returns UNKNOWN.
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
import logging

import requests

from tourist_safety.core.config import Settings
from tourist_safety.core.exceptions import ProviderUnavailableException
from tourist_safety.models.schemas.emergency_schemas import (
    Coordinate, RiskFactorScore, RiskLevel
)

logger = logging.getLogger(__name__)

PLACES_NEARBY_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"

SEVERE_WEATHER_CONDITIONS = {"Thunderstorm", "Snow", "Tornado", "Hurricane"}


def level_for_score(score: float) -> RiskLevel:
    """Map a 0-100 sub-score to a risk level"""
    if score >= 70:
        return RiskLevel.HIGH
    if score >= 40:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def unknown_risk() -> RiskFactorScore:
    return RiskFactorScore(level=RiskLevel.UNKNOWN, score=0.0)


class RiskFeedProvider(ABC):
    """Abstract risk feed for a single risk dimension."""

    name: str = "risk_feed"

    @abstractmethod
    def get_risk(self, coordinate: Coordinate) -> RiskFactorScore:
        """Return the risk for a coordinate, UNKNOWN when there is no data."""
        pass


class HttpRiskProvider(RiskFeedProvider):
    """Base class for providers backed by a JSON HTTP API."""

    def __init__(self, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.Timeout:
            raise ProviderUnavailableException(self.name, "timed out")
        except (requests.RequestException, ValueError) as e:
            raise ProviderUnavailableException(self.name, str(e))


class WeatherRiskProvider(HttpRiskProvider):
    """
    Weather risk from OpenWeather current conditions
    Temperature extremes, severe conditions, wind and low visibility add risk.
    """

    name = "weather"

    def __init__(self, api_key: Optional[str], base_url: str, timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        super().__init__(timeout, session)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def get_risk(self, coordinate: Coordinate) -> RiskFactorScore:
        if not self.api_key:
            return unknown_risk()

        data = self._get_json(
            f"{self.base_url}/weather",
            {
                "lat": coordinate.latitude,
                "lon": coordinate.longitude,
                "appid": self.api_key,
                "units": "metric"
            }
        )
        score = self.weather_risk_factor(data) * 100
        return RiskFactorScore(level=level_for_score(score), score=score)

    @staticmethod
    def weather_risk_factor(data: Dict[str, Any]) -> float:
        """0-1 risk factor from an OpenWeather payload"""
        risk = 0.0

        temp = data.get("main", {}).get("temp")
        if temp is not None and (temp < 0 or temp > 40):
            risk += 0.3

        conditions = data.get("weather") or [{}]
        if conditions[0].get("main") in SEVERE_WEATHER_CONDITIONS:
            risk += 0.5

        wind_speed = (data.get("wind") or {}).get("speed")
        if wind_speed is not None and wind_speed > 10:
            risk += 0.2

        visibility = data.get("visibility")
        if visibility is not None and visibility < 5000:
            risk += 0.2

        return min(1.0, risk)


class PlacesRiskProvider(HttpRiskProvider):
    """Shared Google Places nearby-search plumbing."""

    def __init__(self, api_key: Optional[str], radius_m: int = 1000, timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        super().__init__(timeout, session)
        self.api_key = api_key
        self.radius_m = radius_m

    def _count_nearby(self, coordinate: Coordinate, place_type: Optional[str] = None) -> int:
        params = {
            "location": f"{coordinate.latitude},{coordinate.longitude}",
            "radius": self.radius_m,
            "key": self.api_key
        }
        if place_type:
            params["type"] = place_type

        data = self._get_json(PLACES_NEARBY_URL, params)
        status = data.get("status")
        if status not in ("OK", "ZERO_RESULTS"):
            raise ProviderUnavailableException(self.name, f"places status {status}")
        return len(data.get("results", []))


class EmergencyServiceProximityProvider(PlacesRiskProvider):
    """Fewer hospitals and police stations nearby means higher risk."""

    name = "emergency_services"

    def get_risk(self, coordinate: Coordinate) -> RiskFactorScore:
        if not self.api_key:
            return unknown_risk()

        nearby = self._count_nearby(coordinate, "hospital") + self._count_nearby(coordinate, "police")
        if nearby == 0:
            return RiskFactorScore(level=RiskLevel.HIGH, score=90.0)
        if nearby < 2:
            return RiskFactorScore(level=RiskLevel.MEDIUM, score=50.0)
        return RiskFactorScore(level=RiskLevel.LOW, score=10.0)


class IsolationRiskProvider(PlacesRiskProvider):
    """Crowd density estimate from the number of nearby places."""

    name = "isolation"

    def get_risk(self, coordinate: Coordinate) -> RiskFactorScore:
        if not self.api_key:
            return unknown_risk()

        total = self._count_nearby(coordinate)
        if total > 20:
            return RiskFactorScore(level=RiskLevel.LOW, score=10.0)
        if total > 10:
            return RiskFactorScore(level=RiskLevel.MEDIUM, score=40.0)
        return RiskFactorScore(level=RiskLevel.HIGH, score=80.0)


class CrimeRiskProvider(HttpRiskProvider):
    """
    Crime risk from a JSON feed answering ?lat=&lon= with either
    {"score": 0-100} or {"riskLevel": "LOW|MEDIUM|HIGH"}.
    """

    name = "crime"

    LEVEL_SCORES = {
        RiskLevel.LOW: 20.0,
        RiskLevel.MEDIUM: 50.0,
        RiskLevel.HIGH: 85.0,
    }

    def __init__(self, feed_url: Optional[str], timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        super().__init__(timeout, session)
        self.feed_url = feed_url

    def get_risk(self, coordinate: Coordinate) -> RiskFactorScore:
        if not self.feed_url:
            return unknown_risk()

        data = self._get_json(self.feed_url, {"lat": coordinate.latitude, "lon": coordinate.longitude})

        if data.get("score") is not None:
            score = max(0.0, min(100.0, float(data["score"])))
            return RiskFactorScore(level=level_for_score(score), score=score)

        raw_level = str(data.get("riskLevel", "")).upper()
        try:
            level = RiskLevel(raw_level)
        except ValueError:
            return unknown_risk()
        if level == RiskLevel.UNKNOWN:
            return unknown_risk()
        return RiskFactorScore(level=level, score=self.LEVEL_SCORES[level])


def build_risk_providers(settings: Settings) -> Dict[str, RiskFeedProvider]:
    """Construct the four risk feeds once at process start."""
    timeout = settings.RISK_FEED_TIMEOUT_SECONDS
    session = requests.Session()
    return {
        "crime": CrimeRiskProvider(settings.CRIME_FEED_URL, timeout, session),
        "weather": WeatherRiskProvider(
            settings.OPENWEATHER_API_KEY, settings.OPENWEATHER_BASE_URL, timeout, session
        ),
        "isolation": IsolationRiskProvider(
            settings.GOOGLE_MAPS_API_KEY, settings.PLACES_SEARCH_RADIUS_M, timeout, session
        ),
        "emergency_services": EmergencyServiceProximityProvider(
            settings.GOOGLE_MAPS_API_KEY, settings.PLACES_SEARCH_RADIUS_M, timeout, session
        ),
    }
