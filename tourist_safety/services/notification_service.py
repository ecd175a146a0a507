"""
Notification Service - Fan out emergency alerts to contacts and emergency services
Channels:
- Email: SMTP
- SMS / Voice: Twilio
- External emergency service: webhook POST

Channels are synchronous adapters that return a provider reference or raise
ProviderUnavailableException. The dispatcher runs them in worker threads with
a timeout and bounded concurrency, and turns every failure into a FAILED
attempt instead of letting it escape.
"""
from typing import List, Optional, Dict, Any, Callable, Sequence, Tuple, Iterable
from dataclasses import dataclass
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import make_msgid
from datetime import datetime
from weakref import WeakValueDictionary
import asyncio
import smtplib
import logging

import requests
from twilio.rest import Client
from twilio.http.http_client import TwilioHttpClient
from twilio.base.exceptions import TwilioException
from twilio.twiml.voice_response import VoiceResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tourist_safety.core.config import Settings, get_settings
from tourist_safety.core.exceptions import ProviderUnavailableException
from tourist_safety.models.emergency_models import Alert, AlertNotification, EmergencyContact
from tourist_safety.models.schemas.emergency_schemas import (
    NotificationChannel, AttemptStatus, NoticeKind,
    AttemptOutcome, ChannelCounts, DispatchSummary
)

logger = logging.getLogger(__name__)

EXTERNAL_SERVICE_RECIPIENT = "emergency-services"


def map_link(alert: Alert) -> str:
    return f"https://maps.google.com/maps?q={alert.latitude},{alert.longitude}"


# --- Message content ---

def compose_sms(alert: Alert, notice: NoticeKind = NoticeKind.ALERT) -> str:
    if notice == NoticeKind.RESOLUTION:
        return f"RESOLVED: Emergency alert {alert.id} has been resolved. No further action is needed."
    return f"EMERGENCY ALERT: {alert.message}. Location: {map_link(alert)}"


def compose_voice(alert: Alert, notice: NoticeKind = NoticeKind.ALERT) -> str:
    if notice == NoticeKind.RESOLUTION:
        return "This is a follow up from the tourist safety service. The emergency alert has been resolved."
    return (
        "This is an emergency alert from the tourist safety service. "
        f"{alert.message}. The location has been sent to you by text message."
    )


def compose_email(alert: Alert, notice: NoticeKind = NoticeKind.ALERT) -> Tuple[str, str, str]:
    """
    Build subject, plain text body and HTML body for an alert email

    Returns:
        (subject, body, html_body)
    """
    created = alert.created_at.strftime('%Y-%m-%d %H:%M UTC') if alert.created_at else "N/A"

    if notice == NoticeKind.RESOLUTION:
        subject = f"Emergency Alert Resolved - {alert.id}"
        body = f"""
Emergency Alert Resolved
========================

Alert ID: {alert.id}
Type: {alert.alert_type}
Raised: {created}

The emergency alert has been resolved. No further action is needed.
        """
        html_body = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #333;">
    <h2 style="color: #16a34a;">Emergency Alert Resolved</h2>
    <p>Alert <strong>{alert.id}</strong> ({alert.alert_type}) raised at {created} has been resolved.</p>
    <p>No further action is needed.</p>
</body>
</html>
        """
        return subject, body, html_body

    subject = "EMERGENCY ALERT - Immediate Action Required"
    body = f"""
EMERGENCY ALERT
===============

Alert ID: {alert.id}
Type: {alert.alert_type}
Severity: {alert.severity}
Time: {created}

Message:
{alert.message}

Location: {alert.latitude}, {alert.longitude}
Map: {map_link(alert)}

Next steps:
- Try to contact the person immediately
- If you cannot reach them, contact local emergency services
        """
    header_color = '#dc2626' if alert.severity == 'CRITICAL' else '#ea580c'
    html_body = f"""
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background: {header_color}; color: white; padding: 20px; border-radius: 5px; }}
        .content {{ background: #f9fafb; padding: 20px; margin: 20px 0; border-radius: 5px; }}
        .label {{ font-weight: bold; color: #4b5563; }}
        .button {{ background: #2563eb; color: white; padding: 12px 24px; text-decoration: none;
                  border-radius: 5px; display: inline-block; margin-top: 20px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h2>EMERGENCY ALERT</h2>
        </div>
        <div class="content">
            <p><span class="label">Type:</span> {alert.alert_type}</p>
            <p><span class="label">Severity:</span> {alert.severity}</p>
            <p><span class="label">Message:</span> {alert.message}</p>
            <p><span class="label">Time:</span> {created}</p>
            <p><span class="label">Location:</span> {alert.latitude}, {alert.longitude}</p>
            <a href="{map_link(alert)}" class="button">View Location</a>
        </div>
        <h3>Next steps</h3>
        <ol>
            <li>Try to contact the person immediately</li>
            <li>If you cannot reach them, contact local emergency services</li>
        </ol>
    </div>
</body>
</html>
        """
    return subject, body, html_body


def external_payload(alert: Alert, notice: NoticeKind = NoticeKind.ALERT) -> Dict[str, Any]:
    return {
        "alert_id": alert.id,
        "notice": notice.value,
        "subject_id": alert.subject_id,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "location": {
            "latitude": alert.latitude,
            "longitude": alert.longitude
        },
        "timestamp": alert.created_at.isoformat() if alert.created_at else None
    }


# --- Channel adapters ---

class EmailNotificationService:
    """
    Email channel using SMTP
    Works with Gmail, Outlook, or any SMTP server
    """

    def __init__(self, settings: Settings, timeout: float = 10.0):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL or settings.SMTP_USERNAME
        self.use_tls = settings.SMTP_TLS
        self.timeout = timeout
        self.enabled = bool(self.smtp_username and self.smtp_password)

    def send_email(
        self,
        to_email: str,
        subject: str,
        body: str,
        html_body: Optional[str] = None
    ) -> str:
        """
        Send an email

        Returns:
            str: Message-ID of the sent message

        Raises:
            ProviderUnavailableException: if SMTP is not configured or delivery fails
        """
        if not self.enabled:
            raise ProviderUnavailableException("email", "SMTP not configured")

        msg = MIMEMultipart('alternative')
        msg['From'] = self.from_email
        msg['To'] = to_email
        msg['Subject'] = subject
        msg['Message-ID'] = make_msgid()

        msg.attach(MIMEText(body, 'plain'))
        if html_body:
            msg.attach(MIMEText(html_body, 'html'))

        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise ProviderUnavailableException("email", str(e))

        logger.info(f"Email sent successfully to {to_email}")
        return msg['Message-ID']


def twilio_client(settings: Settings, timeout: float) -> Client:
    """Twilio REST client whose HTTP requests give up after `timeout` seconds"""
    return Client(
        settings.TWILIO_ACCOUNT_SID,
        settings.TWILIO_AUTH_TOKEN,
        http_client=TwilioHttpClient(timeout=timeout)
    )


class SMSNotificationService:
    """SMS channel using Twilio"""

    def __init__(self, settings: Settings, timeout: float = 10.0, client: Optional[Client] = None):
        self.from_number = settings.TWILIO_PHONE_NUMBER
        self.enabled = all([settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, self.from_number])
        self.client = client
        if self.enabled and self.client is None:
            self.client = twilio_client(settings, timeout)

    def send_sms(self, to_number: str, body: str) -> str:
        """
        Send an SMS

        Args:
            to_number: Recipient phone number (E.164 format)
            body: Message text

        Returns:
            str: Twilio message SID
        """
        if not self.enabled:
            raise ProviderUnavailableException("sms", "Twilio not configured")

        try:
            message = self.client.messages.create(body=body, from_=self.from_number, to=to_number)
        except TwilioException as e:
            raise ProviderUnavailableException("sms", str(e))

        logger.info(f"SMS sent successfully to {to_number}: {message.sid}")
        return message.sid


class VoiceCallService:
    """Voice call channel using Twilio, reads the alert out with TwiML <Say>"""

    def __init__(self, settings: Settings, timeout: float = 10.0, client: Optional[Client] = None):
        self.from_number = settings.TWILIO_PHONE_NUMBER
        self.enabled = all([settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, self.from_number])
        self.client = client
        if self.enabled and self.client is None:
            self.client = twilio_client(settings, timeout)

    def place_call(self, to_number: str, message: str) -> str:
        if not self.enabled:
            raise ProviderUnavailableException("voice", "Twilio not configured")

        twiml = VoiceResponse()
        twiml.say(message, voice="alice")
        twiml.pause(length=1)
        twiml.say(message, voice="alice")

        try:
            call = self.client.calls.create(twiml=str(twiml), to=to_number, from_=self.from_number)
        except TwilioException as e:
            raise ProviderUnavailableException("voice", str(e))

        logger.info(f"Voice call placed to {to_number}: {call.sid}")
        return call.sid


class EmergencyServiceWebhook:
    """
    External emergency service channel
    POSTs a JSON alert to the configured dispatch endpoint
    """

    def __init__(self, url: Optional[str], timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send_alert(self, payload: Dict[str, Any]) -> str:
        if not self.url:
            raise ProviderUnavailableException("external_service", "webhook URL not configured")

        try:
            response = self.session.post(
                self.url,
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise ProviderUnavailableException("external_service", str(e))

        logger.info(f"Emergency service notified for alert {payload.get('alert_id')}")
        return response.headers.get("X-Request-ID") or str(response.status_code)


@dataclass
class NotificationChannels:
    """Channel adapters, constructed once at process start"""
    sms: Any
    email: Any
    voice: Any
    external: Any

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationChannels":
        timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        return cls(
            sms=SMSNotificationService(settings, timeout),
            email=EmailNotificationService(settings, timeout),
            voice=VoiceCallService(settings, timeout),
            external=EmergencyServiceWebhook(settings.EMERGENCY_SERVICE_WEBHOOK_URL, timeout),
        )


# --- Dispatch ---

@dataclass
class PlannedAttempt:
    channel: NotificationChannel
    recipient: str
    contact_id: Optional[int]
    send: Callable[[], str]


class NotificationLog:
    """Appends notification attempts to the alert's audit trail"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, alert_id: str, notice: NoticeKind, outcomes: Sequence[AttemptOutcome]) -> None:
        if not outcomes:
            return
        self.db.add_all([
            AlertNotification(
                alert_id=alert_id,
                contact_id=outcome.contact_id,
                channel=outcome.channel.value,
                recipient=outcome.recipient,
                notice=notice.value,
                status=outcome.status.value,
                error_message=outcome.error,
                provider_reference=outcome.provider_reference,
                sent_at=outcome.sent_at
            )
            for outcome in outcomes
        ])
        await self.db.commit()


class NotificationDispatcher:
    """
    Fans an alert out to contacts and the external emergency service

    - Contacts are planned in ascending priority order.
    - Every attempt is isolated: a failure never stops the others.
    - At most NOTIFICATION_MAX_CONCURRENCY attempts are in flight.
    - Attempts to the same recipient on the same channel never overlap.
    """

    def __init__(
        self,
        channels: NotificationChannels,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None
    ):
        settings = get_settings()
        self.channels = channels
        self.timeout = timeout if timeout is not None else settings.NOTIFICATION_TIMEOUT_SECONDS
        self.max_concurrency = max_concurrency or settings.NOTIFICATION_MAX_CONCURRENCY
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._locks: "WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = WeakValueDictionary()

    async def dispatch(
        self,
        alert: Alert,
        contacts: Iterable[EmergencyContact],
        channels: Iterable[NotificationChannel],
        recorder: Optional[NotificationLog] = None,
        notice: NoticeKind = NoticeKind.ALERT
    ) -> DispatchSummary:
        """
        Attempt delivery on every (contact, channel) pair and record the outcomes

        Args:
            alert: Persisted alert
            contacts: Subject's emergency contacts
            channels: Channels enabled by the response policy
            recorder: Where attempts are recorded (one row per attempt)
            notice: Initial alert or resolution notice

        Returns:
            DispatchSummary with per-channel sent/failed counts
        """
        plan = self.plan(alert, contacts, set(channels), notice)
        if not plan:
            logger.info(f"No notification attempts planned for alert {alert.id}")
            return DispatchSummary(alert_id=alert.id, notice=notice)

        tasks = [asyncio.create_task(self._attempt(item)) for item in plan]
        outcomes = list(await asyncio.gather(*tasks))

        if recorder is not None:
            await recorder.record(alert.id, notice, outcomes)

        summary = self.summarize(alert.id, notice, outcomes)
        logger.info(
            f"Dispatched {notice.value.lower()} for alert {alert.id}: "
            f"{summary.sent} sent, {summary.failed} failed"
        )
        return summary

    def plan(
        self,
        alert: Alert,
        contacts: Iterable[EmergencyContact],
        channels: set,
        notice: NoticeKind = NoticeKind.ALERT
    ) -> List[PlannedAttempt]:
        """Expand contacts into ordered per-channel attempts"""
        plan: List[PlannedAttempt] = []
        ordered = sorted(contacts, key=lambda c: (c.priority, c.id or 0))

        sms_body = compose_sms(alert, notice)
        voice_message = compose_voice(alert, notice)
        subject, body, html_body = compose_email(alert, notice)

        for contact in ordered:
            if contact.phone and NotificationChannel.SMS in channels:
                plan.append(PlannedAttempt(
                    NotificationChannel.SMS, contact.phone, contact.id,
                    lambda to=contact.phone: self.channels.sms.send_sms(to, sms_body)
                ))
            if contact.phone and NotificationChannel.VOICE in channels:
                plan.append(PlannedAttempt(
                    NotificationChannel.VOICE, contact.phone, contact.id,
                    lambda to=contact.phone: self.channels.voice.place_call(to, voice_message)
                ))
            if contact.email and NotificationChannel.EMAIL in channels:
                plan.append(PlannedAttempt(
                    NotificationChannel.EMAIL, contact.email, contact.id,
                    lambda to=contact.email: self.channels.email.send_email(to, subject, body, html_body)
                ))

        if NotificationChannel.EXTERNAL_SERVICE in channels:
            payload = external_payload(alert, notice)
            plan.append(PlannedAttempt(
                NotificationChannel.EXTERNAL_SERVICE, EXTERNAL_SERVICE_RECIPIENT, None,
                lambda: self.channels.external.send_alert(payload)
            ))

        return plan

    async def _attempt(self, item: PlannedAttempt) -> AttemptOutcome:
        key = (item.channel.value, item.recipient)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock

        await lock.acquire()
        try:
            await self._semaphore.acquire()
        except BaseException:
            lock.release()
            raise

        # A timed-out send keeps running in its thread; the lock and the slot
        # stay held until it returns
        future = asyncio.ensure_future(asyncio.to_thread(item.send))
        future.add_done_callback(lambda done: self._release(done, item, lock))

        try:
            reference = await asyncio.wait_for(asyncio.shield(future), timeout=self.timeout)
        except asyncio.TimeoutError:
            return self._failed(item, f"timed out after {self.timeout}s")
        except ProviderUnavailableException as e:
            return self._failed(item, e.reason)
        except Exception as e:
            logger.exception(f"Unexpected {item.channel.value} channel error")
            return self._failed(item, f"{type(e).__name__}: {e}")

        return AttemptOutcome(
            channel=item.channel,
            recipient=item.recipient,
            contact_id=item.contact_id,
            status=AttemptStatus.SENT,
            provider_reference=str(reference) if reference is not None else None,
            sent_at=datetime.utcnow()
        )

    def _release(self, future: asyncio.Future, item: PlannedAttempt, lock: asyncio.Lock) -> None:
        self._semaphore.release()
        lock.release()
        if not future.cancelled() and future.exception() is not None:
            logger.debug(f"{item.channel.value} send to {item.recipient} ended with {future.exception()!r}")

    async def wait_idle(self) -> None:
        """Wait until no send is running, including ones that already timed out"""
        for _ in range(self.max_concurrency):
            await self._semaphore.acquire()
        for _ in range(self.max_concurrency):
            self._semaphore.release()

    @staticmethod
    def _failed(item: PlannedAttempt, reason: str) -> AttemptOutcome:
        logger.warning(f"{item.channel.value} notification to {item.recipient} failed: {reason}")
        return AttemptOutcome(
            channel=item.channel,
            recipient=item.recipient,
            contact_id=item.contact_id,
            status=AttemptStatus.FAILED,
            error=reason,
            sent_at=datetime.utcnow()
        )

    @staticmethod
    def summarize(alert_id: str, notice: NoticeKind, outcomes: Sequence[AttemptOutcome]) -> DispatchSummary:
        by_channel: Dict[NotificationChannel, ChannelCounts] = {}
        for outcome in outcomes:
            counts = by_channel.setdefault(outcome.channel, ChannelCounts())
            if outcome.status == AttemptStatus.SENT:
                counts.sent += 1
            else:
                counts.failed += 1

        sent = sum(c.sent for c in by_channel.values())
        return DispatchSummary(
            alert_id=alert_id,
            notice=notice,
            attempted=len(outcomes),
            sent=sent,
            failed=len(outcomes) - sent,
            by_channel=by_channel,
            attempts=list(outcomes)
        )
