"""NotificationDispatcher: alarm fan-out to e-mail, SMS and voice.

The evaluator calls submit(), which only enqueues (bounded queue, drop with
a warning when full). NOTIFY_WORKERS workers drain the queue and call
dispatch(). Inside dispatch() each step is isolated:

  recipients  -> site responsibles (users linked through site_users)
  snapshots   -> camera attachments, failures ignored
  e-mail      -> HTML body to every address
  SMS         -> all numbers, comma-joined
  voice       -> same numbers, capped at VOICE_MAX_RECIPIENTS

dispatch() never raises; the outcome of each channel is in DispatchReport.
"""
from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from core.health import HealthCounters
from models.alarm_record import AlarmRecord, AlarmSeverity
from models.site import Site
from models.user import SiteUser, User
from services.camera import CameraSnapshotClient
from services.email_sender import EmailAttachment, SmtpEmailSender
from services.sms_gateway import SmsGatewayClient

logger = logging.getLogger("pumproom.notifier")

SEVERITY_LABEL = {
    AlarmSeverity.critical: "Critical",
    AlarmSeverity.high: "High",
    AlarmSeverity.medium: "Medium",
    AlarmSeverity.low: "Low",
}

SEVERITY_CSS = {
    AlarmSeverity.critical: "critical",
    AlarmSeverity.high: "critical",
    AlarmSeverity.medium: "warning",
    AlarmSeverity.low: "info",
}

VOICE_DESCRIPTION_MAX = 50


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------
@dataclass
class Recipients:
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)


def distinct_clean(values: Iterable[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value and value.strip():
            seen.setdefault(value.strip(), None)
    return list(seen)


class SiteRecipientDirectory:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, site_id: int) -> Recipients:
        async with self.session_factory() as session:
            stmt = (
                select(User.email, User.phone)
                .join(SiteUser, SiteUser.user_id == User.id)
                .where(SiteUser.site_id == site_id, User.is_active == True)  # noqa: E712
                .order_by(User.id)
            )
            rows = (await session.execute(stmt)).all()
        return Recipients(
            emails=distinct_clean(r.email for r in rows),
            phones=distinct_clean(r.phone for r in rows),
        )


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------
def _severity(record: AlarmRecord) -> AlarmSeverity:
    return AlarmSeverity(record.severity)


def build_subject(site: Site, record: AlarmRecord) -> str:
    return f"[Alarm] {site.name} - {record.alarm_name}"


def build_email_html(site: Site, record: AlarmRecord, attachment_count: int = 0) -> str:
    sev = _severity(record)
    esc = html.escape
    rows = [
        ("Site", site.name),
        ("Alarm", record.alarm_name),
        ("Severity", SEVERITY_LABEL[sev]),
        ("Start time", f"{record.start_time:%Y-%m-%d %H:%M:%S}"),
    ]
    if record.alarm_description:
        rows.append(("Description", record.alarm_description))
    if record.current_value:
        rows.append(("Current value", f"{record.current_value} {record.unit or ''}".strip()))

    table = "\n".join(
        f"      <tr><th>{esc(label)}</th><td>{esc(str(value))}</td></tr>" for label, value in rows
    )
    footer = (
        f"<p class=\"attachments\">{attachment_count} camera snapshot(s) attached.</p>"
        if attachment_count else ""
    )
    return f"""<html>
  <head>
    <style>
      .alarm {{ font-family: Arial, sans-serif; }}
      .critical {{ color: #b00020; }}
      .warning {{ color: #c77700; }}
      .info {{ color: #0b5394; }}
      th {{ text-align: left; padding-right: 12px; }}
    </style>
  </head>
  <body class="alarm">
    <h2 class="{SEVERITY_CSS[sev]}">Alarm notification</h2>
    <table>
{table}
    </table>
    {footer}
    <p>This message was generated automatically by the pump room monitoring system.</p>
  </body>
</html>"""


def build_sms_text(site: Site, record: AlarmRecord) -> str:
    parts = [
        f"[Alarm] Site: {site.name}",
        f"Alarm: {record.alarm_name}",
        f"Severity: {SEVERITY_LABEL[_severity(record)]}",
        f"Time: {record.start_time:%Y-%m-%d %H:%M:%S}",
    ]
    if record.alarm_description:
        parts.append(f"Description: {record.alarm_description}")
    if record.current_value:
        parts.append(f"Current value: {record.current_value} {record.unit or ''}".rstrip())
    return ", ".join(parts)


def build_voice_text(site: Site, record: AlarmRecord) -> str:
    parts = [
        "Alarm notification.",
        f"Site: {site.name}.",
        f"Alarm: {record.alarm_name}.",
        f"Severity: {SEVERITY_LABEL[_severity(record)]}.",
        f"Time: {record.start_time:%H:%M on %d %B %Y}.",
    ]
    description = record.alarm_description or ""
    if description and len(description) <= VOICE_DESCRIPTION_MAX:
        parts.append(f"Description: {description}.")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------
@dataclass
class DispatchReport:
    record_id: int
    email: bool | None = None
    sms: bool | None = None
    voice: bool | None = None
    attachments: int = 0

    def as_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "email": self.email,
            "sms": self.sms,
            "voice": self.voice,
            "attachments": self.attachments,
        }


class NotificationDispatcher:

    def __init__(
        self,
        recipients: SiteRecipientDirectory,
        email_sender: SmtpEmailSender,
        sms_client: SmsGatewayClient,
        camera_client: CameraSnapshotClient | None = None,
        *,
        workers: int | None = None,
        queue_size: int | None = None,
        health: HealthCounters | None = None,
    ):
        self.recipients = recipients
        self.email_sender = email_sender
        self.sms_client = sms_client
        self.camera_client = camera_client
        self.workers = settings.NOTIFY_WORKERS if workers is None else workers
        self.health = health or HealthCounters()
        self._queue: asyncio.Queue[tuple[AlarmRecord, Site]] = asyncio.Queue(
            maxsize=settings.NOTIFY_QUEUE_SIZE if queue_size is None else queue_size,
        )
        self._stop = asyncio.Event()
        self.dropped = 0
        self.completed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        self._stop.clear()
        logger.info(
            "NotificationDispatcher started (workers=%d, queue=%d)",
            self.workers, self._queue.maxsize,
        )
        await asyncio.gather(*(self._worker(i) for i in range(self.workers)))

    async def stop(self) -> None:
        self._stop.set()
        logger.info(
            "NotificationDispatcher stopped (pending=%d, dropped=%d)",
            self.pending, self.dropped,
        )

    def submit(self, record: AlarmRecord, site: Site) -> bool:
        """Queue a notification; never blocks the caller."""
        try:
            self._queue.put_nowait((record, site))
        except asyncio.QueueFull:
            self.dropped += 1
            self.health.failure("notifier:queue")
            logger.warning(
                "Notification queue full (%d), alarm record %d dropped",
                self._queue.maxsize, record.id,
            )
            return False
        return True

    async def _worker(self, n: int) -> None:
        while not self._stop.is_set():
            try:
                record, site = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self.dispatch(record, site)
            except Exception as exc:
                logger.error(
                    "Notifier worker %d: alarm record %s failed: %s", n, record.id, exc, exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    # ------------------------------------------------------------------
    async def dispatch(self, record: AlarmRecord, site: Site) -> DispatchReport:
        report = DispatchReport(record_id=record.id)
        try:
            recipients = await self.recipients.get(site.id)
        except Exception as exc:
            logger.error("Recipient lookup for site %s failed: %s", site.code, exc, exc_info=True)
            self.health.failure("notifier:recipients")
            return report

        if recipients.emails:
            attachments = await self._attachments(site)
            report.attachments = len(attachments)
            report.email = await self._channel("email", lambda: self.email_sender.send(
                recipients.emails,
                build_subject(site, record),
                build_email_html(site, record, len(attachments)),
                attachments,
            ))
        else:
            logger.info("Site %s has no e-mail recipients, e-mail skipped", site.code)

        if recipients.phones:
            report.sms = await self._channel(
                "sms", lambda: self.sms_client.send_sms(recipients.phones, build_sms_text(site, record)),
            )
            report.voice = await self._channel(
                "voice", lambda: self.sms_client.send_voice(recipients.phones, build_voice_text(site, record)),
            )
        else:
            logger.info("Site %s has no phone recipients, SMS and voice skipped", site.code)

        self.completed += 1
        logger.info(
            "Alarm %d notified: email=%s sms=%s voice=%s attachments=%d",
            record.id, report.email, report.sms, report.voice, report.attachments,
        )
        return report

    async def _channel(self, name: str, send: Callable[[], Awaitable[bool]]) -> bool:
        try:
            ok = bool(await send())
        except Exception as exc:
            logger.error("Notification channel %s failed: %s", name, exc, exc_info=True)
            ok = False
        if ok:
            self.health.success(f"notifier:{name}")
        else:
            self.health.failure(f"notifier:{name}")
        return ok

    async def _attachments(self, site: Site) -> list[EmailAttachment]:
        if self.camera_client is None or not site.has_camera:
            return []
        try:
            result = await self.camera_client.get_site_snapshots(site)
        except Exception as exc:
            logger.warning("Camera snapshots for site %s failed: %s", site.code, exc)
            return []
        return [EmailAttachment(s.filename, s.image_data) for s in result.images]
