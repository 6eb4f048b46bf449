"""
Tests for the export job state store
"""

import re
from datetime import datetime, timedelta

import pytest

from sigbatch.errors import ConcurrentUpdate, InvalidIdentifier, NotFound
from sigbatch.services.job_store import (
    COMPLETED, FAILED, PENDING, PROCESSING, JobStore,
)


@pytest.fixture
def store():
    return JobStore()


class TestJobStore:

    def test_create_and_load(self, store):
        job_id = store.create(owner_id=2, requester_id=1, total_items=120, chunk_size=50, snapshot_max_id=130)
        assert re.fullmatch(r"[a-f0-9]{32}", job_id)

        job = store.load(job_id)
        assert job.owner_id == 2
        assert job.requester_id == 1
        assert job.chunks_total == 3
        assert job.chunks_done == 0
        assert job.status == PENDING
        assert job.partial_artifacts == []
        assert job.snapshot_max_id == 130

    def test_job_ids_are_unique(self, store):
        ids = {store.create(2, 2, 1, 50) for _ in range(20)}
        assert len(ids) == 20

    def test_load_rejects_malformed_id(self, store):
        with pytest.raises(InvalidIdentifier):
            store.load("../../etc")

    def test_load_unknown(self, store):
        with pytest.raises(NotFound):
            store.load("f" * 32)

    def test_save_advances_progress(self, store):
        job_id = store.create(2, 2, 60, 50)
        job = store.load(job_id)
        job.partial_artifacts.append("part_00000.zip")
        job.chunks_done = 1
        job.items_done = 50
        job.status = PROCESSING
        job.last_created_at, job.last_id = datetime(2024, 1, 1, 9, 0, 50), 50
        store.save(job, expected_chunks_done=0, expected_status=PENDING)

        reloaded = store.load(job_id)
        assert reloaded.chunks_done == 1
        assert reloaded.items_done == 50
        assert reloaded.partial_artifacts == ["part_00000.zip"]
        assert (reloaded.last_created_at, reloaded.last_id) == (datetime(2024, 1, 1, 9, 0, 50), 50)
        assert reloaded.status == PROCESSING

    def test_save_is_compare_and_swap(self, store):
        job_id = store.create(2, 2, 100, 50)
        first = store.load(job_id)
        second = store.load(job_id)

        first.chunks_done = 1
        first.status = PROCESSING
        store.save(first, 0, PENDING)

        second.chunks_done = 1
        second.status = PROCESSING
        with pytest.raises(ConcurrentUpdate):
            store.save(second, 0, PENDING)

    def test_save_deleted_job(self, store):
        job_id = store.create(2, 2, 10, 50)
        job = store.load(job_id)
        store.delete(job_id)
        job.status = COMPLETED
        job.chunks_done = 1
        with pytest.raises(NotFound):
            store.save(job, 0, PENDING)

    @pytest.mark.parametrize("start,target", [
        (COMPLETED, PROCESSING),
        (COMPLETED, FAILED),
        (FAILED, PROCESSING),
        (PROCESSING, PENDING),
    ])
    def test_status_never_moves_backward(self, store, start, target):
        job_id = store.create(2, 2, 10, 50)
        job = store.load(job_id)
        job.status = target
        with pytest.raises(ValueError):
            store.save(job, 0, start)

    def test_chunks_done_never_decreases(self, store):
        job_id = store.create(2, 2, 100, 50)
        job = store.load(job_id)
        job.chunks_done = 1
        job.status = PROCESSING
        store.save(job, 0, PENDING)
        job.chunks_done = 0
        with pytest.raises(ValueError):
            store.save(job, 1, PROCESSING)

    def test_delete(self, store):
        job_id = store.create(2, 2, 10, 50)
        assert store.delete(job_id) is True
        assert store.delete(job_id) is False
        assert not store.exists(job_id)

    def test_list_resumable(self, store):
        pending = store.create(2, 2, 100, 50)
        done = store.create(2, 2, 10, 50)
        job = store.load(done)
        job.chunks_done = 1
        job.status = COMPLETED
        store.save(job, 0, PENDING)

        assert [j.job_id for j in store.list_resumable()] == [pending]

    def test_list_expired(self, store):
        job_id = store.create(2, 2, 10, 50)
        assert store.list_expired(timedelta(minutes=60)) == []
        assert store.list_expired(timedelta(seconds=-5)) == [job_id]

    def test_to_dict_is_json_friendly(self, store):
        job = store.load(store.create(2, 1, 10, 50))
        data = job.to_dict()
        assert data["job_id"] == job.job_id
        assert isinstance(data["created_at"], str)
        assert job.can_access(2, False)
        assert job.can_access(1, False)
        assert not job.can_access(3, False)
        assert job.can_access(3, True)
