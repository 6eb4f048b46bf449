"""
Bulk dispatch engine

Sends one rendered signature per record id and yields a progress event after
each item. The run is a plain async generator; the router frames the events
as server-sent events and stops iterating when the client goes away.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from ..config import (
    DISPATCH_ITEM_DELAY_SEC, DISPATCH_BATCH_EVERY, DISPATCH_BATCH_PAUSE_SEC, MAIL_SUBJECT,
)
from ..db import SessionLocal
from ..errors import TemplateNotFound
from .audit import AuditLogger, audit_logger, ERROR, SUCCESS
from .mailer import Attachment, Mailer, OutgoingMessage, build_email_body, get_mailer
from .prometheus_metrics import prometheus_metrics
from .signatures import get_signature
from .templates import TemplateResolver
from .validation import attachment_filename, check_recipient

logger = logging.getLogger("sigbatch.dispatch")


def sse_format(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


class DispatchEngine:
    """
    Runs one bulk dispatch.

    Usage:
        engine = DispatchEngine()
        async for event in engine.run(caller.user_id, [1, 2, 3], request.is_disconnected):
            yield sse_format(event)
    """

    def __init__(
        self,
        mailer_factory: Callable[[], Mailer] = get_mailer,
        audit: AuditLogger = audit_logger,
        resolver: Optional[TemplateResolver] = None,
        session_factory: sessionmaker = SessionLocal,
        item_delay: float = DISPATCH_ITEM_DELAY_SEC,
        batch_every: int = DISPATCH_BATCH_EVERY,
        batch_pause: float = DISPATCH_BATCH_PAUSE_SEC,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.mailer_factory = mailer_factory
        self.audit = audit
        self.resolver = resolver or TemplateResolver()
        self._session_factory = session_factory
        self.item_delay = item_delay
        self.batch_every = max(1, batch_every)
        self.batch_pause = batch_pause
        self._sleep = sleep

    def _fail(self, item_id: int, recipient: str, message: str, run_id: str, requester_id: int) -> Tuple[str, str]:
        self.audit.record(item_id, recipient, ERROR, message, run_id=run_id, requester_id=requester_id)
        return ERROR, message

    def process_item(self, mailer: Mailer, item_id: int, run_id: str, requester_id: int) -> Tuple[str, str]:
        """Fetch, validate, render and send one record. Blocking; writes exactly one audit row."""
        with self._session_factory() as db:
            sig = get_signature(db, item_id)
            if sig is None:
                return self._fail(item_id, "", f"ID {item_id}: Signature not found.", run_id, requester_id)
            fields = sig.fields()
            name = sig.name or ""
            recipient = (sig.email or "").strip()
            template = sig.template

        ok, _ = check_recipient(recipient)
        if not ok:
            return self._fail(item_id, recipient, f"ID {item_id}: Invalid Email ({recipient})", run_id, requester_id)

        try:
            rendered = self.resolver.render_record(template, fields)
        except TemplateNotFound as e:
            return self._fail(item_id, recipient, f"ID {item_id}: {e.message}", run_id, requester_id)

        attachment_name = attachment_filename(name, template)
        result = mailer.send(OutgoingMessage(
            recipient=recipient,
            subject=MAIL_SUBJECT,
            html_body=build_email_body(name, attachment_name, rendered),
            attachments=[Attachment(filename=attachment_name, content=rendered)],
        ))
        status = SUCCESS if result.success else ERROR
        self.audit.record(item_id, recipient, status, result.message, run_id=run_id, requester_id=requester_id)
        if result.success:
            return SUCCESS, f"Sent to: {recipient}"
        return ERROR, f"Failed: {recipient} ({result.message})"

    async def run(
        self,
        requester_id: int,
        item_ids: List[int],
        is_disconnected: Callable[[], Awaitable[bool]],
        mailer: Optional[Mailer] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield one event per item, then a summary. Closes the mailer when done."""
        run_id = uuid.uuid4().hex
        total = len(item_ids)
        success = failed = 0
        outcome = "cancelled"
        if mailer is None:
            mailer = self.mailer_factory()

        logger.info("Dispatch run started", extra={
            "component": "dispatch",
            "run_id": run_id,
            "requester_id": requester_id,
            "total": total,
        })

        try:
            for current, item_id in enumerate(item_ids, start=1):
                if await is_disconnected():
                    logger.info("Client disconnected, dispatch run aborted", extra={
                        "component": "dispatch",
                        "run_id": run_id,
                        "processed": current - 1,
                        "total": total,
                    })
                    return

                try:
                    status, message = await asyncio.to_thread(
                        self.process_item, mailer, item_id, run_id, requester_id
                    )
                except Exception:
                    logger.exception("Dispatch item crashed", extra={
                        "component": "dispatch", "run_id": run_id, "item_id": item_id,
                    })
                    status, message = await asyncio.to_thread(
                        self._fail, item_id, "", f"ID {item_id}: Internal error", run_id, requester_id
                    )

                if status == SUCCESS:
                    success += 1
                else:
                    failed += 1
                prometheus_metrics.record_dispatch_item(status)

                yield {
                    "status": status,
                    "message": message,
                    "item_id": item_id,
                    "progress": {"current": current, "total": total},
                }

                await self._sleep(self.item_delay)
                if status == SUCCESS and success % self.batch_every == 0:
                    await self._sleep(self.batch_pause)

            outcome = "completed"
            logger.info("Dispatch run finished", extra={
                "component": "dispatch",
                "run_id": run_id,
                "success": success,
                "failed": failed,
            })
            yield {
                "status": "finished",
                "summary": f"Finished! Success: {success}, Failed: {failed}",
                "counts": {"total": total, "success": success, "failed": failed},
                "progress": {"current": total, "total": total},
            }
        finally:
            # Not awaited: a cancelled scope would interrupt an await here
            mailer.close()
            prometheus_metrics.record_dispatch_run(outcome)
