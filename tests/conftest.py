# pytest fixtures: in-memory database, fake channels and fake risk feeds
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import threading
import time
from typing import Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tourist_safety.core.exceptions import ProviderUnavailableException
from tourist_safety.db.database import Base
from tourist_safety.models import emergency_models  # noqa: F401
from tourist_safety.models.emergency_models import EmergencyContact
from tourist_safety.models.schemas.emergency_schemas import RiskFactorScore, RiskLevel
from tourist_safety.services.alert_service import AlertLockRegistry, AlertService
from tourist_safety.services.location_risk import LocationRiskAssessor
from tourist_safety.services.notification_service import NotificationChannels, NotificationDispatcher
from tourist_safety.services.risk_providers import RiskFeedProvider, level_for_score


def make_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )


@pytest_asyncio.fixture
async def db_session():
    engine = make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


# --- Fake notification channels ---

class FakeChannel:
    """Records deliveries; fails for recipients listed in fail_for."""

    def __init__(self, name: str, fail_for=(), delay: float = 0.0):
        self.name = name
        self.fail_for = set(fail_for)
        self.delay = delay
        self.delivered: List[str] = []
        self.in_flight: Dict[str, int] = {}
        self.max_in_flight_per_recipient: Dict[str, int] = {}
        self.max_in_flight = 0
        self._total_in_flight = 0
        self._lock = threading.Lock()

    def _deliver(self, recipient: str) -> str:
        with self._lock:
            self._total_in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._total_in_flight)
            self.in_flight[recipient] = self.in_flight.get(recipient, 0) + 1
            self.max_in_flight_per_recipient[recipient] = max(
                self.max_in_flight_per_recipient.get(recipient, 0), self.in_flight[recipient]
            )
        try:
            if self.delay:
                time.sleep(self.delay)
            if recipient in self.fail_for or "*" in self.fail_for:
                raise ProviderUnavailableException(self.name, f"{recipient} unreachable")
            with self._lock:
                self.delivered.append(recipient)
            return f"{self.name}-{len(self.delivered)}"
        finally:
            with self._lock:
                self._total_in_flight -= 1
                self.in_flight[recipient] -= 1


class FakeSMS(FakeChannel):
    def __init__(self, **kwargs):
        super().__init__("sms", **kwargs)
        self.bodies: List[str] = []

    def send_sms(self, to_number: str, body: str) -> str:
        self.bodies.append(body)
        return self._deliver(to_number)


class FakeEmail(FakeChannel):
    def __init__(self, **kwargs):
        super().__init__("email", **kwargs)
        self.subjects: List[str] = []

    def send_email(self, to_email, subject, body, html_body=None) -> str:
        self.subjects.append(subject)
        return self._deliver(to_email)


class FakeVoice(FakeChannel):
    def __init__(self, **kwargs):
        super().__init__("voice", **kwargs)

    def place_call(self, to_number: str, message: str) -> str:
        return self._deliver(to_number)


class FakeExternal(FakeChannel):
    def __init__(self, **kwargs):
        super().__init__("external_service", **kwargs)
        self.payloads: List[dict] = []

    def send_alert(self, payload: dict) -> str:
        self.payloads.append(payload)
        return self._deliver("emergency-services")


@pytest.fixture
def fake_channels() -> NotificationChannels:
    return NotificationChannels(sms=FakeSMS(), email=FakeEmail(), voice=FakeVoice(), external=FakeExternal())


@pytest.fixture
def dispatcher(fake_channels) -> NotificationDispatcher:
    return NotificationDispatcher(fake_channels, max_concurrency=4, timeout=2.0)


@pytest.fixture
def alert_service(db_session, dispatcher) -> AlertService:
    return AlertService(db_session, dispatcher, AlertLockRegistry())


# --- Fake risk feeds ---

class StaticRiskProvider(RiskFeedProvider):
    def __init__(self, score: float, level: Optional[RiskLevel] = None):
        self.result = RiskFactorScore(level=level or level_for_score(score), score=score)

    def get_risk(self, coordinate):
        return self.result


class FailingRiskProvider(RiskFeedProvider):
    def get_risk(self, coordinate):
        raise ProviderUnavailableException("fake", "feed down")


class SlowRiskProvider(RiskFeedProvider):
    def __init__(self, seconds: float):
        self.seconds = seconds

    def get_risk(self, coordinate):
        time.sleep(self.seconds)
        return RiskFactorScore(level=RiskLevel.HIGH, score=100.0)


def static_providers(score: float) -> Dict[str, RiskFeedProvider]:
    return {
        name: StaticRiskProvider(score)
        for name in ("crime", "weather", "isolation", "emergency_services")
    }


@pytest.fixture
def make_assessor() -> Callable[..., LocationRiskAssessor]:
    def _make(score: float = 0.0, **overrides) -> LocationRiskAssessor:
        providers = static_providers(score)
        providers.update(overrides)
        return LocationRiskAssessor(providers, timeout=1.0)
    return _make


# --- Seed helpers ---

def sample_contacts(subject_id: str = "tourist-1") -> List[EmergencyContact]:
    return [
        EmergencyContact(subject_id=subject_id, name="Asha", phone="+15550000001",
                         email="asha@example.com", relationship="sister", priority=1),
        EmergencyContact(subject_id=subject_id, name="Ben", phone="+15550000002",
                         email="ben@example.com", relationship="friend", priority=2),
        EmergencyContact(subject_id=subject_id, name="Chen", phone="+15550000003",
                         email="chen@example.com", relationship="guide", priority=3),
    ]


@pytest_asyncio.fixture
async def seeded_contacts(db_session) -> List[EmergencyContact]:
    contacts = sample_contacts()
    db_session.add_all(contacts)
    await db_session.commit()
    return contacts
