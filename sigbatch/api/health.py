"""
Health, version and metrics endpoints - no authentication required
"""

import logging

from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from ..config import API_VERSION, APP_NAME
from ..services.export_queue import export_queue
from ..services.prometheus_metrics import prometheus_metrics

router = APIRouter(tags=["System"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "export_worker": bool(export_queue.worker and not export_queue.worker.done()),
    }


@router.get("/version")
async def version():
    return {"service": APP_NAME, "version": API_VERSION}


@router.get("/metrics/prometheus", summary="Prometheus metrics")
async def get_prometheus_metrics() -> Response:
    """Metrics in Prometheus exposition format"""
    try:
        return PlainTextResponse(
            content=prometheus_metrics.get_metrics(),
            media_type=prometheus_metrics.get_content_type()
        )
    except Exception as e:
        logging.error(f"Failed to get metrics: {e}")
        return PlainTextResponse(
            content="# Metrics temporarily unavailable\n",
            media_type="text/plain"
        )
