"""
Tests for the bulk dispatch engine
"""

import asyncio
import json

import pytest

from sigbatch.db import SessionLocal
from sigbatch.models import MailLog
from sigbatch.errors import TransientSendFailure
from sigbatch.services.audit import AuditLogger
from sigbatch.services.dispatch import DispatchEngine, sse_format
from sigbatch.services.mailer import Mailer


class RecordingTransport:
    name = "recording"

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []
        self.closed = False

    def send(self, message):
        if message.recipient in self.fail_for:
            raise TransientSendFailure("timeout")
        self.sent.append(message)

    def close(self):
        self.closed = True


async def never_disconnected():
    return False


def _engine(transport, sleeps=None, **kwargs):
    async def fake_sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    params = dict(item_delay=0, batch_every=10, batch_pause=0)
    params.update(kwargs)
    return DispatchEngine(
        mailer_factory=lambda: Mailer(transport, retries=1, sleep=lambda s: None),
        sleep=fake_sleep,
        **params,
    )


def _collect(engine, item_ids, is_disconnected=never_disconnected, requester_id=1):
    async def run():
        return [event async for event in engine.run(requester_id, item_ids, is_disconnected)]

    return asyncio.run(run())


def _mail_logs():
    with SessionLocal() as db:
        return db.query(MailLog).order_by(MailLog.id).all()


class TestDispatchEngine:

    def test_invalid_recipient_in_the_middle(self, seed):
        first = seed.signature(2, name="Ann", email="ann@example.com")
        second = seed.signature(2, name="Bad", email="not-an-email")
        third = seed.signature(2, name="Cid", email="cid@example.com")
        transport = RecordingTransport()

        events = _collect(_engine(transport), [first, second, third])

        assert [e["status"] for e in events] == ["success", "error", "success", "finished"]
        assert [e["progress"] for e in events[:3]] == [
            {"current": 1, "total": 3},
            {"current": 2, "total": 3},
            {"current": 3, "total": 3},
        ]
        assert events[1]["message"] == f"ID {second}: Invalid Email (not-an-email)"
        assert events[-1]["counts"] == {"total": 3, "success": 2, "failed": 1}
        assert events[-1]["summary"] == "Finished! Success: 2, Failed: 1"
        assert events[-1]["progress"] == {"current": 3, "total": 3}

        logs = _mail_logs()
        assert [(row.signature_id, row.status) for row in logs] == [(first, "success"), (second, "error"), (third, "success")]
        assert len({row.run_id for row in logs}) == 1
        assert [m.recipient for m in transport.sent] == ["ann@example.com", "cid@example.com"]
        assert transport.closed

    def test_sent_message_carries_rendered_attachment(self, seed):
        sig_id = seed.signature(2, name="Jane Doe", email="jane@example.com", role="<CTO>")
        transport = RecordingTransport()
        _collect(_engine(transport), [sig_id])

        (message,) = transport.sent
        assert message.subject == "Your New Email Signature"
        (attachment,) = message.attachments
        assert attachment.filename == "Jane_Doe_signature_default.html"
        assert "&lt;CTO&gt;" in attachment.content
        assert "Hello Jane Doe," in message.html_body

    def test_missing_record_is_not_fatal(self, seed):
        sig_id = seed.signature(2, email="ok@example.com")
        events = _collect(_engine(RecordingTransport()), [999999, sig_id])

        assert [e["status"] for e in events] == ["error", "success", "finished"]
        assert events[0]["message"] == "ID 999999: Signature not found."
        logs = _mail_logs()
        assert (logs[0].signature_id, logs[0].recipient, logs[0].status) == (999999, "", "error")

    def test_missing_template_is_an_item_error(self, seed):
        sig_id = seed.signature(2, email="ok@example.com", template="gone.html")
        events = _collect(_engine(RecordingTransport()), [sig_id])

        assert events[0]["status"] == "error"
        assert "Template missing (gone.html)" in events[0]["message"]
        assert _mail_logs()[0].status == "error"

    def test_send_failure_after_retries(self, seed):
        sig_id = seed.signature(2, email="down@example.com")
        transport = RecordingTransport(fail_for={"down@example.com"})
        events = _collect(_engine(transport), [sig_id])

        assert events[0]["status"] == "error"
        assert events[0]["message"] == "Failed: down@example.com (Mailer Error: timeout)"
        log = _mail_logs()[0]
        assert log.status == "error"
        assert log.message == "Mailer Error: timeout"

    def test_disconnect_stops_before_next_item(self, seed):
        ids = [seed.signature(2, email=f"p{i}@example.com") for i in range(5)]
        checks = {"n": 0}

        async def disconnect_after_two():
            checks["n"] += 1
            return checks["n"] > 2

        transport = RecordingTransport()
        events = _collect(_engine(transport), ids, is_disconnected=disconnect_after_two)

        assert [e["status"] for e in events] == ["success", "success"]
        assert len(_mail_logs()) == 2
        assert len(transport.sent) == 2
        assert transport.closed

    def test_consumer_closing_the_stream_closes_mailer(self, seed):
        ids = [seed.signature(2, email=f"p{i}@example.com") for i in range(3)]
        transport = RecordingTransport()
        engine = _engine(transport)

        async def take_one():
            gen = engine.run(1, ids, never_disconnected)
            first = await gen.__anext__()
            await gen.aclose()
            return first

        first = asyncio.run(take_one())
        assert first["status"] == "success"
        assert transport.closed
        assert len(_mail_logs()) == 1

    def test_pauses(self, seed):
        ids = [seed.signature(2, email=f"p{i}@example.com") for i in range(4)]
        sleeps = []
        _collect(_engine(RecordingTransport(), sleeps=sleeps, item_delay=0.5, batch_every=2, batch_pause=2), ids)
        assert sleeps == [0.5, 0.5, 2, 0.5, 0.5, 2]

    def test_audit_failure_does_not_abort_run(self, seed):
        sig_id = seed.signature(2, email="ok@example.com")

        class BrokenAudit(AuditLogger):
            def record(self, *args, **kwargs):
                return False

        engine = _engine(RecordingTransport())
        engine.audit = BrokenAudit()
        events = _collect(engine, [sig_id])
        assert [e["status"] for e in events] == ["success", "finished"]


def test_sse_format():
    frame = sse_format({"status": "success", "progress": {"current": 1, "total": 2}})
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):])["progress"]["current"] == 1
