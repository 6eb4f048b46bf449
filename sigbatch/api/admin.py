from fastapi import APIRouter, Depends, Query

from ..auth import Caller, require_admin
from ..config import ADMIN_MAIL_LOG_MAX
from ..logging_config import get_memory_handler
from ..services.audit import audit_logger

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/mail-logs")
def mail_logs(
    limit: int = Query(100, ge=1, le=ADMIN_MAIL_LOG_MAX),
    caller: Caller = Depends(require_admin),
):
    """Most recent dispatch outcomes, newest first"""
    return {"items": audit_logger.recent(limit)}


@router.get("/logs")
def service_logs(
    limit: int = Query(200, ge=1, le=5000),
    caller: Caller = Depends(require_admin),
):
    """Tail of the in-memory service log"""
    return {"items": get_memory_handler().get_logs(limit)}
