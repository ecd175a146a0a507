import pytest
from sqlalchemy import select

from tourist_safety.models.emergency_models import Alert, DangerZone
from tourist_safety.models.schemas.emergency_schemas import Coordinate, NotificationChannel
from tourist_safety.services.geofence_service import GeofenceMonitor, haversine_m, zone_contains

CENTER = (15.5000, 73.8000)

# ~0.001 deg latitude is ~111 m
INSIDE = Coordinate(latitude=15.5010, longitude=73.8000)
OUTSIDE = Coordinate(latitude=15.5100, longitude=73.8000)

SQUARE = {
    "type": "Polygon",
    "coordinates": [[[73.90, 15.40], [73.92, 15.40], [73.92, 15.42], [73.90, 15.42], [73.90, 15.40]]],
}


@pytest.fixture
def circle_zone():
    return DangerZone(
        name="Cliff edge", classification="danger",
        center_latitude=CENTER[0], center_longitude=CENTER[1], radius_m=500
    )


async def add_zones(db_session, *zones):
    db_session.add_all(zones)
    await db_session.commit()
    return zones


async def all_alerts(db_session):
    return (await db_session.execute(select(Alert))).scalars().all()


def test_haversine_one_degree_latitude():
    assert haversine_m(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)


def test_zone_contains_circle_and_polygon(circle_zone):
    inside, distance = zone_contains(circle_zone, INSIDE)
    assert inside
    assert distance == pytest.approx(111.2, abs=1)
    assert not zone_contains(circle_zone, OUTSIDE)[0]

    polygon_zone = DangerZone(name="Closed beach", classification="danger", polygon=SQUARE)
    assert zone_contains(polygon_zone, Coordinate(latitude=15.41, longitude=73.91)) == (True, None)
    assert zone_contains(polygon_zone, Coordinate(latitude=15.43, longitude=73.91)) == (False, None)
    # Boundary counts as inside
    assert zone_contains(polygon_zone, Coordinate(latitude=15.40, longitude=73.91))[0]


def test_zone_without_shape_never_matches():
    zone = DangerZone(id=9, name="Broken", classification="danger")
    assert zone_contains(zone, INSIDE) == (False, None)


@pytest.mark.asyncio
async def test_inside_danger_zone_creates_one_high_alert(db_session, alert_service, seeded_contacts, circle_zone):
    await add_zones(db_session, circle_zone)
    monitor = GeofenceMonitor(db_session, alert_service, cooldown_seconds=0)

    result = await monitor.evaluate("tourist-1", INSIDE)

    assert [m.zone_name for m in result.matched_zones] == ["Cliff edge"]
    assert len(result.alerts) == 1
    created = result.alerts[0]
    assert created.alert.alert_type.value == "GEOFENCE_VIOLATION"
    assert created.alert.severity.value == "HIGH"
    assert created.alert.message == "Entered danger zone: Cliff edge"
    assert created.alert.zone_id == circle_zone.id
    assert set(created.notifications.by_channel) == {NotificationChannel.SMS, NotificationChannel.EMAIL}


@pytest.mark.asyncio
async def test_outside_creates_nothing(db_session, alert_service, circle_zone):
    await add_zones(db_session, circle_zone)
    monitor = GeofenceMonitor(db_session, alert_service, cooldown_seconds=0)

    result = await monitor.evaluate("tourist-1", OUTSIDE)
    assert result.matched_zones == []
    assert result.alerts == []
    assert await all_alerts(db_session) == []


@pytest.mark.asyncio
async def test_every_update_inside_raises_a_new_alert_without_cooldown(db_session, alert_service, circle_zone):
    await add_zones(db_session, circle_zone)
    monitor = GeofenceMonitor(db_session, alert_service, cooldown_seconds=0)

    for _ in range(3):
        result = await monitor.evaluate("tourist-1", INSIDE)
        assert len(result.alerts) == 1

    assert len(await all_alerts(db_session)) == 3


@pytest.mark.asyncio
async def test_cooldown_suppresses_repeat_alerts(db_session, alert_service, circle_zone):
    await add_zones(db_session, circle_zone)
    monitor = GeofenceMonitor(db_session, alert_service, cooldown_seconds=600)

    first = await monitor.evaluate("tourist-1", INSIDE)
    second = await monitor.evaluate("tourist-1", INSIDE)
    other_subject = await monitor.evaluate("tourist-2", INSIDE)

    assert len(first.alerts) == 1
    assert second.alerts == []
    assert second.suppressed_zone_ids == [circle_zone.id]
    assert len(other_subject.alerts) == 1


@pytest.mark.asyncio
async def test_cooldown_ends_when_alert_resolved(db_session, alert_service, circle_zone):
    await add_zones(db_session, circle_zone)
    monitor = GeofenceMonitor(db_session, alert_service, cooldown_seconds=600)

    first = await monitor.evaluate("tourist-1", INSIDE)
    await alert_service.resolve_alert(first.alerts[0].alert.id, "ops-1")

    again = await monitor.evaluate("tourist-1", INSIDE)
    assert len(again.alerts) == 1


@pytest.mark.asyncio
async def test_only_danger_zones_are_evaluated(db_session, alert_service):
    await add_zones(
        db_session,
        DangerZone(name="Market", classification="caution",
                   center_latitude=CENTER[0], center_longitude=CENTER[1], radius_m=500),
        DangerZone(name="Hotel", classification="safe",
                   center_latitude=CENTER[0], center_longitude=CENTER[1], radius_m=500),
    )
    monitor = GeofenceMonitor(db_session, alert_service, cooldown_seconds=0)

    result = await monitor.evaluate("tourist-1", INSIDE)
    assert result.matched_zones == []
    assert len(await monitor.list_zones()) == 2
