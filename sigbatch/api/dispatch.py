"""
Bulk dispatch endpoint: one long-lived request streaming a progress event per item
"""

import logging
from contextlib import aclosing

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ..auth import Caller, require_admin
from ..schemas.dispatch import DispatchRequest
from ..services.dispatch import DispatchEngine, sse_format

logger = logging.getLogger("sigbatch.api.dispatch")

router = APIRouter(tags=["Dispatch"])


def get_dispatch_engine() -> DispatchEngine:
    return DispatchEngine()


@router.post("/dispatch")
async def dispatch(
    body: DispatchRequest,
    request: Request,
    caller: Caller = Depends(require_admin),
    engine: DispatchEngine = Depends(get_dispatch_engine),
):
    """
    Send the rendered signature of every listed record by e-mail.

    The response is a text/event-stream of JSON events, one per item, then a
    "finished" summary. Closing the connection stops the run before the next item.
    """
    try:
        mailer = engine.mailer_factory()
    except ValueError as e:
        logger.error(f"Mail transport unavailable: {e}", extra={"component": "dispatch"})
        raise HTTPException(status_code=503, detail=f"Mail transport unavailable: {e}")

    async def generate():
        async with aclosing(engine.run(caller.user_id, body.item_ids, request.is_disconnected, mailer=mailer)) as events:
            async for event in events:
                yield sse_format(event)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
        # Backstop for a stream that is never iterated
        background=BackgroundTask(mailer.close),
    )
