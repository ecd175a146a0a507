import pytest
import requests

from tourist_safety.core.exceptions import ProviderUnavailableException
from tourist_safety.models.schemas.emergency_schemas import Coordinate, RiskLevel
from tourist_safety.services.location_risk import LocationRiskAssessor
from tourist_safety.services.risk_providers import (
    CrimeRiskProvider, EmergencyServiceProximityProvider, IsolationRiskProvider,
    WeatherRiskProvider, level_for_score
)

from conftest import FailingRiskProvider, SlowRiskProvider, StaticRiskProvider, static_providers

GOA = Coordinate(latitude=15.4909, longitude=73.8278)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.headers = {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    """Answers GETs from a list of canned payloads, recording the params"""

    def __init__(self, *payloads, error=None):
        self.payloads = list(payloads)
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        if self.error:
            raise self.error
        return FakeResponse(self.payloads.pop(0))


@pytest.mark.asyncio
async def test_weighted_aggregate():
    assessor = LocationRiskAssessor({
        "crime": StaticRiskProvider(80),
        "weather": StaticRiskProvider(20),
        "isolation": StaticRiskProvider(40),
        "emergency_services": StaticRiskProvider(10),
    })
    risk = await assessor.assess(GOA)

    # 0.35*80 + 0.20*20 + 0.25*40 + 0.20*10
    assert risk.overall_location_risk == 44.0
    assert risk.crime.level == RiskLevel.HIGH
    assert risk.weather.level == RiskLevel.LOW


@pytest.mark.asyncio
async def test_uniform_scores_aggregate_to_same_value(make_assessor):
    risk = await make_assessor(50).assess(GOA)
    assert risk.overall_location_risk == 50.0


@pytest.mark.asyncio
async def test_provider_failure_degrades_to_unknown(make_assessor):
    assessor = make_assessor(100, crime=FailingRiskProvider())
    risk = await assessor.assess(GOA)

    assert risk.crime.level == RiskLevel.UNKNOWN
    assert risk.crime.score == 0.0
    assert risk.overall_location_risk == 65.0


@pytest.mark.asyncio
async def test_provider_timeout_degrades_to_unknown():
    providers = static_providers(100)
    providers["weather"] = SlowRiskProvider(0.5)
    assessor = LocationRiskAssessor(providers, timeout=0.05)

    risk = await assessor.assess(GOA)
    assert risk.weather.level == RiskLevel.UNKNOWN
    assert risk.overall_location_risk == 80.0


@pytest.mark.asyncio
async def test_all_providers_down_is_zero_not_an_error(make_assessor):
    failing = FailingRiskProvider()
    assessor = make_assessor(
        0, crime=failing, weather=failing, isolation=failing, emergency_services=failing
    )
    risk = await assessor.assess(GOA)
    assert risk.overall_location_risk == 0.0


def test_weights_must_cover_dimensions_and_sum_to_one():
    with pytest.raises(ValueError):
        LocationRiskAssessor(static_providers(0), weights={"crime": 1.0})
    with pytest.raises(ValueError):
        LocationRiskAssessor(static_providers(0), weights={
            "crime": 0.5, "weather": 0.5, "isolation": 0.5, "emergency_services": 0.5
        })


def test_missing_provider_is_rejected():
    providers = static_providers(0)
    del providers["isolation"]
    with pytest.raises(ValueError):
        LocationRiskAssessor(providers)


@pytest.mark.parametrize("score, level", [(0, RiskLevel.LOW), (40, RiskLevel.MEDIUM), (70, RiskLevel.HIGH)])
def test_level_for_score(score, level):
    assert level_for_score(score) == level


# --- Concrete providers ---

def test_unconfigured_providers_return_unknown():
    for provider in (
        WeatherRiskProvider(None, "https://weather.test"),
        EmergencyServiceProximityProvider(None),
        IsolationRiskProvider(None),
        CrimeRiskProvider(None),
    ):
        result = provider.get_risk(GOA)
        assert result.level == RiskLevel.UNKNOWN
        assert result.score == 0.0


def test_weather_risk_from_conditions():
    session = FakeSession({
        "main": {"temp": 42},
        "weather": [{"main": "Thunderstorm"}],
        "wind": {"speed": 4},
        "visibility": 10000,
    })
    provider = WeatherRiskProvider("key", "https://weather.test/", session=session)
    result = provider.get_risk(GOA)

    assert result.score == pytest.approx(80.0)
    assert result.level == RiskLevel.HIGH
    url, params = session.calls[0]
    assert url == "https://weather.test/weather"
    assert params["units"] == "metric"


def test_weather_risk_factor_is_capped():
    data = {
        "main": {"temp": -5},
        "weather": [{"main": "Snow"}],
        "wind": {"speed": 20},
        "visibility": 100,
    }
    assert WeatherRiskProvider.weather_risk_factor(data) == 1.0
    assert WeatherRiskProvider.weather_risk_factor({"main": {"temp": 22}, "weather": [{"main": "Clear"}]}) == 0.0


@pytest.mark.parametrize("hospitals, police, level, score", [
    (0, 0, RiskLevel.HIGH, 90.0),
    (1, 0, RiskLevel.MEDIUM, 50.0),
    (1, 1, RiskLevel.LOW, 10.0),
])
def test_emergency_service_proximity(hospitals, police, level, score):
    session = FakeSession(
        {"status": "OK" if hospitals else "ZERO_RESULTS", "results": [{}] * hospitals},
        {"status": "OK" if police else "ZERO_RESULTS", "results": [{}] * police},
    )
    result = EmergencyServiceProximityProvider("key", session=session).get_risk(GOA)
    assert (result.level, result.score) == (level, score)
    assert [params["type"] for _, params in session.calls] == ["hospital", "police"]


@pytest.mark.parametrize("places, level", [(25, RiskLevel.LOW), (15, RiskLevel.MEDIUM), (3, RiskLevel.HIGH)])
def test_isolation_from_place_density(places, level):
    session = FakeSession({"status": "OK", "results": [{}] * places})
    assert IsolationRiskProvider("key", session=session).get_risk(GOA).level == level


def test_places_error_status_raises_provider_unavailable():
    session = FakeSession({"status": "REQUEST_DENIED", "results": []})
    with pytest.raises(ProviderUnavailableException):
        IsolationRiskProvider("key", session=session).get_risk(GOA)


def test_crime_feed_levels_and_scores():
    assert CrimeRiskProvider("https://crime.test", session=FakeSession({"riskLevel": "high"})).get_risk(GOA).score == 85.0
    assert CrimeRiskProvider("https://crime.test", session=FakeSession({"score": 33})).get_risk(GOA).level == RiskLevel.LOW
    assert CrimeRiskProvider("https://crime.test", session=FakeSession({})).get_risk(GOA).level == RiskLevel.UNKNOWN


def test_transport_error_raises_provider_unavailable():
    session = FakeSession(error=requests.ConnectionError("no route"))
    with pytest.raises(ProviderUnavailableException) as exc_info:
        CrimeRiskProvider("https://crime.test", session=session).get_risk(GOA)
    assert exc_info.value.provider == "crime"
