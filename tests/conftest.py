# tests/conftest.py
import os
import shutil
import tempfile
import time
from datetime import datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
_TMP = Path(tempfile.mkdtemp(prefix="sigbatch-tests-"))

# Must be in place before anything under sigbatch is imported
os.environ["DATA_DIR"] = str(_TMP)
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["ARTIFACT_DIR"] = str(_TMP / "exports")
os.environ["TEMPLATES_DIR"] = str(ROOT / "templates")
os.environ["LOGGING_CONFIG"] = str(ROOT / "LOGGING.yaml")
os.environ["MAIL_TRANSPORT"] = "log"
os.environ["EXPORT_CHUNK_SIZE"] = "50"
os.environ["EXPORT_RESUME_ON_STARTUP"] = "false"
os.environ["DISPATCH_ITEM_DELAY_SEC"] = "0"
os.environ["DISPATCH_BATCH_PAUSE_SEC"] = "0"
os.environ["MAIL_RETRY_BACKOFF_SEC"] = "0"
os.environ["ADMIN_KEYS"] = "test-admin-key:1"
os.environ["USER_KEYS"] = "test-user-key:2,test-other-key:3"

from sigbatch.db import SessionLocal, init_db  # noqa: E402
from sigbatch.models import ApiKey, ExportJob, MailLog, Signature, User  # noqa: E402
from sigbatch.services.paths import artifact_root  # noqa: E402

ADMIN_ID, USER_ID, OTHER_ID = 1, 2, 3

init_db()


@pytest.fixture(autouse=True)
def clean_state():
    """Every test starts with empty tables and no artifacts"""
    with SessionLocal() as db:
        for model in (MailLog, ExportJob, ApiKey, Signature, User):
            db.query(model).delete()
        db.commit()
    root = artifact_root()
    for p in root.iterdir():
        if p.is_dir():
            shutil.rmtree(p, ignore_errors=True)
        else:
            p.unlink()
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from sigbatch.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": "Bearer test-admin-key"}


@pytest.fixture
def user_headers():
    return {"Authorization": "Bearer test-user-key"}


@pytest.fixture
def other_headers():
    return {"X-API-Key": "test-other-key"}


class Seeder:
    """Creates users and signature records directly in the test database"""

    def __init__(self):
        self._clock = datetime(2024, 1, 1, 9, 0, 0)

    def user(self, user_id: int, username: str, full_name: str = None) -> int:
        with SessionLocal() as db:
            db.add(User(id=user_id, username=username, full_name=full_name))
            db.commit()
        return user_id

    def signature(self, owner_id: int, name: str = "Jane Doe", email: str = "jane@example.com",
                  role: str = "Engineer", phone: str = "+49 (0) 30 1234", template: str = "signature_default.html") -> int:
        self._clock += timedelta(seconds=1)
        with SessionLocal() as db:
            sig = Signature(user_id=owner_id, name=name, role=role, email=email, phone=phone,
                            template=template, created_at=self._clock)
            db.add(sig)
            db.commit()
            return sig.id

    def signatures(self, owner_id: int, count: int, **overrides) -> list:
        return [
            self.signature(owner_id, name=f"Person {i}", email=f"person{i}@example.com", **overrides)
            for i in range(count)
        ]


@pytest.fixture
def seed():
    seeder = Seeder()
    seeder.user(ADMIN_ID, "admin", "Site Admin")
    seeder.user(USER_ID, "alice", "Alice Example")
    seeder.user(OTHER_ID, "bob", None)
    return seeder


@pytest.fixture
def wait_for_job(client):
    """Poll export status until the job reaches one of `statuses`"""

    def _wait(job_id, headers, statuses=("completed", "failed"), timeout=10.0):
        deadline = time.time() + timeout
        while time.time() < deadline:
            r = client.get("/v1/exports/status", params={"job_id": job_id}, headers=headers)
            assert r.status_code == 200, r.text
            if r.json()["status"] in statuses:
                return r.json()
            time.sleep(0.05)
        raise AssertionError(f"job {job_id} did not reach {statuses}")

    return _wait
