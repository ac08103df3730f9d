"""Tests for notification fan-out."""
import asyncio
from datetime import datetime

import httpx
import pytest

from models import AlarmRecord, AlarmSeverity, AlarmStatus, Site
from services.camera import CameraSnapshot, SiteSnapshotResult
from services.notifier import (
    NotificationDispatcher,
    Recipients,
    SiteRecipientDirectory,
    build_email_html,
    build_sms_text,
    build_subject,
    build_voice_text,
    distinct_clean,
)
from services.sms_gateway import SmsGatewayClient


class FakeEmailSender:

    def __init__(self, result=True, exc=None):
        self.result = result
        self.exc = exc
        self.sent = []

    async def send(self, to_emails, subject, html_body, attachments=None):
        self.sent.append((to_emails, subject, html_body, attachments or []))
        if self.exc:
            raise self.exc
        return self.result


class StaticRecipients:

    def __init__(self, emails=(), phones=()):
        self.recipients = Recipients(list(emails), list(phones))

    async def get(self, site_id):
        return self.recipients


class FailingRecipients:

    async def get(self, site_id):
        raise RuntimeError("database unavailable")


class FakeCamera:

    async def get_site_snapshots(self, site):
        return SiteSnapshotResult(site.id, [
            CameraSnapshot("internal", "10.0.0.11", True, b"jpeg",
                           taken_at=datetime(2024, 1, 1, 12, 0, 1)),
            CameraSnapshot("global", "10.0.0.12", False, error="timeout"),
        ])


def timing_out_sms():
    def handler(request):
        raise httpx.ReadTimeout("gateway timeout", request=request)
    return SmsGatewayClient(
        "http://sms.example.com", "A1", "S1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


def accepting_sms(requests):
    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"code": "1", "msg": "ok"})
    return SmsGatewayClient(
        "http://sms.example.com", "A1", "S1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def alarm_site():
    return Site(id=1, code="PS01", name="North <Pump> Room", internal_camera_ip="10.0.0.11")


@pytest.fixture
def record():
    return AlarmRecord(
        id=42, site_id=1, alarm_name="High water level",
        alarm_description="Upstream level above 10 m", node_id="level", node_name="High water level",
        severity=AlarmSeverity.high, status=AlarmStatus.active,
        current_value="10.4", unit="m", start_time=datetime(2024, 1, 1, 12, 0, 0),
    )


class TestDispatch:

    async def test_email_ok_sms_timeout(self, alarm_site, record):
        """Email succeeds, SMS gateway times out: no exception, independent results."""
        mailer = FakeEmailSender()
        dispatcher = NotificationDispatcher(
            StaticRecipients(["ops@example.com"], ["13800000000"]), mailer, timing_out_sms(),
        )

        report = await dispatcher.dispatch(record, alarm_site)

        assert report.email is True
        assert report.sms is False
        assert report.voice is False
        assert dispatcher.health.consecutive("notifier:sms") == 1
        assert dispatcher.health.consecutive("notifier:email") == 0

    async def test_camera_attachments(self, alarm_site, record):
        mailer = FakeEmailSender()
        requests = []
        dispatcher = NotificationDispatcher(
            StaticRecipients(["ops@example.com"], ["13800000000"]), mailer,
            accepting_sms(requests), FakeCamera(),
        )

        report = await dispatcher.dispatch(record, alarm_site)

        assert report.as_dict() == {"record_id": 42, "email": True, "sms": True, "voice": True,
                                    "attachments": 1}
        (_, subject, _, attachments) = mailer.sent[0]
        assert subject == "[Alarm] North <Pump> Room - High water level"
        assert attachments[0].filename == "internal_camera_10.0.0.11_20240101_120001.jpg"
        assert attachments[0].content_type == "image/jpeg"
        assert [r.url.path for r in requests] == ["/sdk/send", "/sdk/voiceSend"]

    async def test_email_exception_does_not_stop_sms(self, alarm_site, record):
        requests = []
        dispatcher = NotificationDispatcher(
            StaticRecipients(["ops@example.com"], ["13800000000"]),
            FakeEmailSender(exc=OSError("connection refused")), accepting_sms(requests),
        )

        report = await dispatcher.dispatch(record, alarm_site)

        assert report.email is False
        assert report.sms is True

    async def test_no_recipients_skips_channels(self, alarm_site, record):
        mailer = FakeEmailSender()
        requests = []
        dispatcher = NotificationDispatcher(StaticRecipients(), mailer, accepting_sms(requests))

        report = await dispatcher.dispatch(record, alarm_site)

        assert (report.email, report.sms, report.voice) == (None, None, None)
        assert mailer.sent == []
        assert requests == []

    async def test_recipient_lookup_failure(self, alarm_site, record):
        dispatcher = NotificationDispatcher(FailingRecipients(), FakeEmailSender(), timing_out_sms())

        report = await dispatcher.dispatch(record, alarm_site)

        assert report.email is None

    async def test_submit_drops_when_queue_full(self, alarm_site, record):
        dispatcher = NotificationDispatcher(
            StaticRecipients(), FakeEmailSender(), timing_out_sms(), queue_size=1,
        )

        assert dispatcher.submit(record, alarm_site)
        assert not dispatcher.submit(record, alarm_site)
        assert dispatcher.dropped == 1
        assert dispatcher.pending == 1

    async def test_workers_drain_queue(self, alarm_site, record):
        mailer = FakeEmailSender()
        dispatcher = NotificationDispatcher(
            StaticRecipients(["ops@example.com"]), mailer, timing_out_sms(), workers=2,
        )
        task = asyncio.create_task(dispatcher.start())

        dispatcher.submit(record, alarm_site)
        dispatcher.submit(record, alarm_site)
        await asyncio.wait_for(dispatcher.join(), timeout=2)
        await dispatcher.stop()
        await asyncio.wait_for(task, timeout=3)

        assert len(mailer.sent) == 2
        assert dispatcher.completed == 2

    async def test_message_build_error_fails_only_that_channel(self, alarm_site, record, monkeypatch):
        def broken(site, record):
            raise KeyError("template")
        monkeypatch.setattr("services.notifier.build_sms_text", broken)
        requests = []
        dispatcher = NotificationDispatcher(
            StaticRecipients(["ops@example.com"], ["13800000000"]), FakeEmailSender(), accepting_sms(requests),
        )

        report = await dispatcher.dispatch(record, alarm_site)

        assert (report.email, report.sms, report.voice) == (True, False, True)
        assert [r.url.path for r in requests] == ["/sdk/voiceSend"]

    async def test_worker_survives_dispatch_error(self, alarm_site, record, monkeypatch):
        mailer = FakeEmailSender()
        dispatcher = NotificationDispatcher(
            StaticRecipients(["ops@example.com"]), mailer, timing_out_sms(), workers=1,
        )
        calls = []

        async def flaky(rec, site):
            calls.append(rec.id)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return await NotificationDispatcher.dispatch(dispatcher, rec, site)

        monkeypatch.setattr(dispatcher, "dispatch", flaky)
        task = asyncio.create_task(dispatcher.start())

        dispatcher.submit(record, alarm_site)
        dispatcher.submit(record, alarm_site)
        await asyncio.wait_for(dispatcher.join(), timeout=2)
        await dispatcher.stop()
        await asyncio.wait_for(task, timeout=3)

        assert calls == [42, 42]
        assert len(mailer.sent) == 1


class TestRecipientDirectory:

    async def test_strip_dedup_and_active_only(self, session_factory, site, responsibles):
        recipients = await SiteRecipientDirectory(session_factory).get(site.id)

        assert recipients.emails == ["alice@example.com"]
        assert recipients.phones == ["13800000001"]

    async def test_site_without_users(self, session_factory, second_site):
        recipients = await SiteRecipientDirectory(session_factory).get(second_site.id)
        assert recipients == Recipients()

    def test_distinct_clean(self):
        assert distinct_clean([" a ", "b", None, "", "a", "  "]) == ["a", "b"]


class TestMessageContent:

    def test_subject(self, alarm_site, record):
        assert build_subject(alarm_site, record) == "[Alarm] North <Pump> Room - High water level"

    def test_html_escaped(self, alarm_site, record):
        body = build_email_html(alarm_site, record, attachment_count=2)
        assert "North &lt;Pump&gt; Room" in body
        assert 'class="critical"' in body
        assert "10.4 m" in body
        assert "2 camera snapshot(s) attached." in body

    def test_sms_text(self, alarm_site, record):
        text = build_sms_text(alarm_site, record)
        assert text.startswith("[Alarm] Site: North <Pump> Room, Alarm: High water level")
        assert "Severity: High" in text
        assert "Time: 2024-01-01 12:00:00" in text
        assert text.endswith("Current value: 10.4 m")

    def test_voice_description_limit(self, alarm_site, record):
        assert "Description: Upstream level above 10 m." in build_voice_text(alarm_site, record)
        record.alarm_description = "x" * 51
        assert "Description" not in build_voice_text(alarm_site, record)
