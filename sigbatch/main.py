import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import admin, dispatch, exports, health, signatures
from .config import (
    API_PREFIX, API_VERSION, APP_NAME, CORS_ORIGINS,
    EXPORT_RESUME_ON_STARTUP, EXPORT_SWEEP_INTERVAL_SEC,
)
from .db import init_db
from .errors import SigBatchError
from .logging_config import setup_logging
from .middleware import TracingMiddleware
from .services import retention
from .services.export_queue import export_queue

# Configure logging at import time
setup_logging()

logger = logging.getLogger("sigbatch")


async def retention_sweeper():
    while True:
        await asyncio.sleep(EXPORT_SWEEP_INTERVAL_SEC)
        try:
            removed = await asyncio.to_thread(retention.sweep)
            if removed:
                logger.info("Retention sweep finished", extra={"component": "retention", "removed": removed})
        except Exception:
            logger.exception("Retention sweep failed", extra={"component": "retention"})


@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info("Signature batch service starting up", extra={"component": "api", "version": API_VERSION})

    init_db()

    # Bind async primitives to the *active* event loop
    export_queue.initialize()
    await export_queue.start_worker()
    if EXPORT_RESUME_ON_STARTUP:
        export_queue.resume_pending()

    application.state.sweeper_task = asyncio.create_task(retention_sweeper())

    logger.info("Signature batch service ready", extra={"component": "api"})
    try:
        yield
    finally:
        application.state.sweeper_task.cancel()
        with suppress(asyncio.CancelledError):
            await application.state.sweeper_task
        await export_queue.stop_worker()
        logger.info("Signature batch service shutting down", extra={"component": "api"})


app = FastAPI(title="Signature Batch Service", version=API_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TracingMiddleware)


@app.exception_handler(SigBatchError)
async def sigbatch_error_handler(request: Request, exc: SigBatchError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(health.router, prefix=API_PREFIX)
app.include_router(exports.router, prefix=API_PREFIX)
app.include_router(dispatch.router, prefix=API_PREFIX)
app.include_router(signatures.router, prefix=API_PREFIX)
app.include_router(admin.router, prefix=API_PREFIX)


@app.get("/")
async def root():
    return {"service": APP_NAME, "version": API_VERSION, "docs": "/docs"}
