"""
Tests for the dispatch audit trail
"""

from sqlalchemy.exc import OperationalError

from sigbatch.services.audit import AuditLogger


class BrokenSession:
    def add(self, row):
        raise OperationalError("INSERT INTO mail_logs", {}, Exception("database is locked"))

    def rollback(self):
        pass

    def close(self):
        pass


def test_record_and_recent():
    audit = AuditLogger()
    assert audit.record(7, "jane@example.com", "success", "Sent successfully", run_id="r1", requester_id=1)
    assert audit.record(8, "", "error", "ID 8: Signature not found.", run_id="r1", requester_id=1)

    rows = audit.recent(10)
    assert [r["signature_id"] for r in rows] == [8, 7]
    assert rows[0]["recipient"] == ""
    assert rows[1]["status"] == "success"
    assert rows[1]["run_id"] == "r1"


def test_recent_respects_limit():
    audit = AuditLogger()
    for i in range(5):
        audit.record(i, f"p{i}@example.com", "success", "ok")
    assert len(audit.recent(3)) == 3


def test_write_failure_is_swallowed():
    audit = AuditLogger(session_factory=BrokenSession)
    assert audit.record(1, "jane@example.com", "success", "ok") is False
