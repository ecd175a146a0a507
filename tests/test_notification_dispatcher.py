from datetime import datetime

import pytest
from sqlalchemy import select

from tourist_safety.models.emergency_models import Alert, AlertNotification, EmergencyContact
from tourist_safety.models.schemas.emergency_schemas import (
    AttemptStatus, NoticeKind, NotificationChannel
)
from tourist_safety.core.config import get_settings
from tourist_safety.services.notification_service import (
    NotificationChannels, NotificationDispatcher, NotificationLog,
    SMSNotificationService, VoiceCallService,
    compose_email, compose_sms, external_payload
)

from conftest import FakeEmail, FakeExternal, FakeSMS, FakeVoice, sample_contacts

CONTACT_CHANNELS = (NotificationChannel.SMS, NotificationChannel.EMAIL)


def make_alert(alert_id: str = "ALT-TEST00000001") -> Alert:
    return Alert(
        id=alert_id,
        subject_id="tourist-1",
        alert_type="MANUAL_SOS",
        severity="CRITICAL",
        status="ACTIVE",
        message="Manual SOS emergency triggered",
        latitude=15.4909,
        longitude=73.8278,
        created_at=datetime(2026, 3, 1, 12, 0, 0)
    )


def contacts_with_ids():
    contacts = sample_contacts()
    for index, contact in enumerate(contacts, start=1):
        contact.id = index
    return contacts


@pytest.mark.asyncio
async def test_one_failing_channel_does_not_abort_fan_out():
    # Contact 2's SMS always fails
    channels = NotificationChannels(
        sms=FakeSMS(fail_for={"+15550000002"}), email=FakeEmail(), voice=FakeVoice(), external=FakeExternal()
    )
    dispatcher = NotificationDispatcher(channels, max_concurrency=4, timeout=2.0)

    summary = await dispatcher.dispatch(make_alert(), contacts_with_ids(), CONTACT_CHANNELS)

    assert summary.attempted == 6
    assert summary.sent == 5
    assert summary.failed == 1
    assert summary.by_channel[NotificationChannel.SMS].failed == 1
    assert summary.by_channel[NotificationChannel.SMS].sent == 2
    assert summary.by_channel[NotificationChannel.EMAIL].sent == 3
    assert sorted(channels.email.delivered) == ["asha@example.com", "ben@example.com", "chen@example.com"]
    assert sorted(channels.sms.delivered) == ["+15550000001", "+15550000003"]

    failed = [a for a in summary.attempts if a.status == AttemptStatus.FAILED]
    assert len(failed) == 1
    assert failed[0].contact_id == 2
    assert "unreachable" in failed[0].error


@pytest.mark.asyncio
async def test_every_attempt_is_recorded(db_session):
    alert = make_alert()
    db_session.add(alert)
    contacts = sample_contacts()
    db_session.add_all(contacts)
    await db_session.commit()

    channels = NotificationChannels(
        sms=FakeSMS(fail_for={"+15550000002"}), email=FakeEmail(), voice=FakeVoice(), external=FakeExternal()
    )
    dispatcher = NotificationDispatcher(channels, max_concurrency=4, timeout=2.0)
    await dispatcher.dispatch(
        alert, contacts, CONTACT_CHANNELS + (NotificationChannel.EXTERNAL_SERVICE,),
        recorder=NotificationLog(db_session)
    )

    rows = (await db_session.execute(select(AlertNotification))).scalars().all()
    assert len(rows) == 7
    assert {row.status for row in rows} == {"SENT", "FAILED"}
    external = [row for row in rows if row.channel == "EXTERNAL_SERVICE"]
    assert len(external) == 1
    assert external[0].contact_id is None
    assert all(row.notice == "ALERT" for row in rows)


@pytest.mark.asyncio
async def test_attempts_are_planned_by_priority(dispatcher):
    contacts = contacts_with_ids()
    contacts[0].priority, contacts[2].priority = 5, 0

    plan = dispatcher.plan(make_alert(), contacts, set(CONTACT_CHANNELS))
    assert [item.contact_id for item in plan] == [3, 3, 2, 2, 1, 1]
    assert [item.channel for item in plan[:2]] == [NotificationChannel.SMS, NotificationChannel.EMAIL]


@pytest.mark.asyncio
async def test_contact_channels_follow_available_details(dispatcher):
    phone_only = EmergencyContact(id=1, subject_id="tourist-1", name="P", phone="+15551112222", priority=1)
    email_only = EmergencyContact(id=2, subject_id="tourist-1", name="E", email="e@example.com", priority=2)

    summary = await dispatcher.dispatch(make_alert(), [phone_only, email_only], CONTACT_CHANNELS)
    assert [(a.contact_id, a.channel) for a in summary.attempts] == [
        (1, NotificationChannel.SMS),
        (2, NotificationChannel.EMAIL),
    ]


@pytest.mark.asyncio
async def test_voice_only_when_requested(fake_channels, dispatcher):
    summary = await dispatcher.dispatch(
        make_alert(), contacts_with_ids()[:1],
        CONTACT_CHANNELS + (NotificationChannel.VOICE,)
    )
    assert summary.by_channel[NotificationChannel.VOICE].sent == 1
    assert fake_channels.voice.delivered == ["+15550000001"]


@pytest.mark.asyncio
async def test_timed_out_attempt_is_failed_and_not_retried():
    slow_sms = FakeSMS(delay=0.5)
    channels = NotificationChannels(sms=slow_sms, email=FakeEmail(), voice=FakeVoice(), external=FakeExternal())
    dispatcher = NotificationDispatcher(channels, max_concurrency=4, timeout=0.05)

    summary = await dispatcher.dispatch(make_alert(), contacts_with_ids()[:1], CONTACT_CHANNELS)

    sms = [a for a in summary.attempts if a.channel == NotificationChannel.SMS]
    assert len(sms) == 1
    assert sms[0].status == AttemptStatus.FAILED
    assert "timed out" in sms[0].error
    assert summary.by_channel[NotificationChannel.EMAIL].sent == 1

    await dispatcher.wait_idle()
    assert slow_sms.delivered == ["+15550000001"]


@pytest.mark.asyncio
async def test_unexpected_channel_error_becomes_failed_attempt():
    class BrokenEmail(FakeEmail):
        def send_email(self, *args, **kwargs):
            raise RuntimeError("smtp library bug")

    channels = NotificationChannels(sms=FakeSMS(), email=BrokenEmail(), voice=FakeVoice(), external=FakeExternal())
    dispatcher = NotificationDispatcher(channels, max_concurrency=4, timeout=2.0)

    summary = await dispatcher.dispatch(make_alert(), contacts_with_ids(), CONTACT_CHANNELS)
    assert summary.by_channel[NotificationChannel.EMAIL].failed == 3
    assert summary.by_channel[NotificationChannel.SMS].sent == 3


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    sms = FakeSMS(delay=0.05)
    email = FakeEmail(delay=0.05)
    channels = NotificationChannels(sms=sms, email=email, voice=FakeVoice(), external=FakeExternal())
    dispatcher = NotificationDispatcher(channels, max_concurrency=2, timeout=2.0)

    summary = await dispatcher.dispatch(make_alert(), contacts_with_ids(), CONTACT_CHANNELS)
    assert summary.sent == 6
    assert sms.max_in_flight + email.max_in_flight <= 4
    assert sms.max_in_flight <= 2
    assert email.max_in_flight <= 2


@pytest.mark.asyncio
async def test_same_recipient_same_channel_never_overlaps():
    sms = FakeSMS(delay=0.05)
    channels = NotificationChannels(sms=sms, email=FakeEmail(), voice=FakeVoice(), external=FakeExternal())
    dispatcher = NotificationDispatcher(channels, max_concurrency=8, timeout=2.0)

    shared_phone = [
        EmergencyContact(id=i, subject_id="tourist-1", name=f"C{i}", phone="+15559990000", priority=i)
        for i in range(1, 4)
    ]
    summary = await dispatcher.dispatch(make_alert(), shared_phone, (NotificationChannel.SMS,))

    assert summary.sent == 3
    assert sms.max_in_flight_per_recipient["+15559990000"] == 1


@pytest.mark.asyncio
async def test_no_contacts_and_no_external_is_empty_summary(dispatcher):
    summary = await dispatcher.dispatch(make_alert(), [], CONTACT_CHANNELS)
    assert summary.attempted == 0
    assert summary.attempts == []


def test_message_content():
    alert = make_alert()
    assert compose_sms(alert) == (
        "EMERGENCY ALERT: Manual SOS emergency triggered. "
        "Location: https://maps.google.com/maps?q=15.4909,73.8278"
    )
    subject, body, html_body = compose_email(alert)
    assert subject == "EMERGENCY ALERT - Immediate Action Required"
    assert "ALT-TEST00000001" in body
    assert "Manual SOS emergency triggered" in html_body

    resolved_subject, _, _ = compose_email(alert, NoticeKind.RESOLUTION)
    assert resolved_subject == "Emergency Alert Resolved - ALT-TEST00000001"

    payload = external_payload(alert)
    assert payload["alert_id"] == "ALT-TEST00000001"
    assert payload["location"] == {"latitude": 15.4909, "longitude": 73.8278}
    assert payload["timestamp"] == "2026-03-01T12:00:00"


@pytest.mark.asyncio
async def test_timed_out_send_keeps_its_slot_until_it_returns():
    slow_sms = FakeSMS(delay=0.2)
    channels = NotificationChannels(sms=slow_sms, email=FakeEmail(), voice=FakeVoice(), external=FakeExternal())
    dispatcher = NotificationDispatcher(channels, max_concurrency=1, timeout=0.05)
    contacts = contacts_with_ids()[:2]

    summaries = [
        await dispatcher.dispatch(make_alert(), contacts, (NotificationChannel.SMS,))
        for _ in range(3)
    ]
    await dispatcher.wait_idle()

    assert all(s.failed == 2 for s in summaries)
    assert len(slow_sms.delivered) == 6
    assert slow_sms.max_in_flight == 1
    assert slow_sms.max_in_flight_per_recipient == {"+15550000001": 1, "+15550000002": 1}


def test_twilio_clients_carry_the_notification_timeout():
    settings = get_settings().model_copy(update={
        "TWILIO_ACCOUNT_SID": "AC" + "0" * 32,
        "TWILIO_AUTH_TOKEN": "token",
        "TWILIO_PHONE_NUMBER": "+15550001111",
    })

    sms = SMSNotificationService(settings, timeout=3.0)
    voice = VoiceCallService(settings, timeout=3.0)

    assert sms.client.http_client.timeout == 3.0
    assert voice.client.http_client.timeout == 3.0
    assert NotificationChannels.from_settings(settings).sms.client.http_client.timeout == (
        settings.NOTIFICATION_TIMEOUT_SECONDS
    )
