"""
Dispatch Audit Service

Append-only mail log. Every attempted dispatch item gets exactly one row, and a
failing audit write never aborts the run that produced it.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from ..db import SessionLocal
from ..models.mail_log import MailLog

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"


class AuditLogger:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def record(
        self,
        item_id: int,
        recipient: str,
        status: str,
        message: str,
        run_id: Optional[str] = None,
        requester_id: Optional[int] = None,
    ) -> bool:
        """Write one mail log row in its own transaction. Returns False if the write failed."""
        db = self._session_factory()
        try:
            db.add(MailLog(
                signature_id=item_id,
                recipient=recipient or "",
                status=status,
                message=message,
                run_id=run_id,
                requester_id=requester_id,
            ))
            db.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to write mail log for item {item_id}: {e}")
            db.rollback()
            return False
        finally:
            db.close()

    def recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent mail log rows, newest first"""
        db = self._session_factory()
        try:
            rows = db.query(MailLog)\
                .order_by(MailLog.id.desc())\
                .limit(limit)\
                .all()
            return [
                {
                    "id": row.id,
                    "created_at": row.created_at.isoformat() if row.created_at else None,
                    "signature_id": row.signature_id,
                    "recipient": row.recipient,
                    "status": row.status,
                    "message": row.message,
                    "run_id": row.run_id,
                    "requester_id": row.requester_id,
                }
                for row in rows
            ]
        finally:
            db.close()


# Global instance
audit_logger = AuditLogger()
