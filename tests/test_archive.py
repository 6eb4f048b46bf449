"""
Tests for archive assembly, streaming and cleanup
"""

import asyncio
import json
import zipfile
from datetime import datetime

import pytest

from sigbatch.db import SessionLocal
from sigbatch.errors import AccessDenied, InvalidIdentifier, NotFound, NotReady, StorageFailure
from sigbatch.services import paths
from sigbatch.services.archive import ArchiveAssembler, authorize_job
from sigbatch.services.chunk_processor import ChunkProcessor
from sigbatch.services.job_store import JobStore
from sigbatch.services.signatures import count_for_owner, max_id_for_owner

NOW = datetime(2024, 5, 6, 7, 8, 9)


@pytest.fixture
def store():
    return JobStore()


@pytest.fixture
def assembler(store):
    return ArchiveAssembler(store=store)


def _run_export(store, owner_id, requester_id=None):
    with SessionLocal() as db:
        total = count_for_owner(db, owner_id)
        max_id = max_id_for_owner(db, owner_id)
    job_id = store.create(owner_id, requester_id or owner_id, total, 50, snapshot_max_id=max_id)
    processor = ChunkProcessor(store=store)
    index = 0
    while index is not None:
        index = processor.process_chunk(job_id, index)
    return job_id


async def _drain(stream):
    chunks = []
    async for block in stream.iter_bytes():
        chunks.append(block)
    return b"".join(chunks)


class TestArchiveAssembler:

    def test_full_archive_contents(self, seed, store, assembler):
        ids = seed.signatures(2, 120)
        job_id = _run_export(store, 2)

        stream = assembler.open_archive(job_id, 2, False, now=NOW)
        assert stream.filename == "signatures_alice_example_2024-05-06_07-08.zip"

        with zipfile.ZipFile(stream.path) as zf:
            names = zf.namelist()
            docs = [n for n in names if n.startswith("signatures/")]
            manifest = json.loads(zf.read("manifest.json"))
            readme = zf.read("README.txt").decode("utf-8")

        assert len(docs) == 120
        assert len(set(docs)) == 120
        assert sorted(int(n.rsplit("_", 1)[1][:-5]) for n in docs) == sorted(ids)
        assert sum(n.startswith("signatures/chunk_00002/") for n in docs) == 20
        assert manifest["count"] == manifest["total_items"] == 120
        assert manifest["chunks"] == 3
        assert manifest["user"] == "Alice Example"
        assert manifest["job_id"] == job_id
        assert readme.startswith("EXPORT SUMMARY\nUser: Alice Example\nCount: 120\nDate: 2024-05-06")

    def test_streaming_removes_job_and_artifacts(self, seed, store, assembler):
        seed.signatures(2, 3)
        job_id = _run_export(store, 2)
        stream = assembler.open_archive(job_id, 2, False)
        stream.block_size = 128

        data = asyncio.run(_drain(stream))
        assert data[:2] == b"PK"
        assert len(data) == stream.size
        assert not store.exists(job_id)
        assert not paths.job_dir(job_id).exists()

        # Second cleanup is harmless
        stream.cleanup()

    def test_aborted_stream_still_cleans_up(self, seed, store, assembler):
        seed.signatures(2, 3)
        job_id = _run_export(store, 2)
        stream = assembler.open_archive(job_id, 2, False)
        stream.block_size = 16

        async def read_one_block():
            gen = stream.iter_bytes()
            await gen.__anext__()
            await gen.aclose()

        asyncio.run(read_one_block())
        assert not store.exists(job_id)
        assert not paths.job_dir(job_id).exists()

    def test_not_ready(self, seed, store, assembler):
        seed.signatures(2, 3)
        job_id = store.create(2, 2, 3, 50)
        with pytest.raises(NotReady):
            assembler.open_archive(job_id, 2, False)
        assert store.exists(job_id)

    def test_failed_job_is_not_downloadable(self, seed, store, assembler):
        seed.signatures(2, 3)
        job_id = store.create(2, 2, 3, 50)
        ChunkProcessor(store=store).mark_failed(job_id, "disk full")
        with pytest.raises(NotReady) as exc:
            assembler.open_archive(job_id, 2, False)
        assert "disk full" in exc.value.message

    def test_missing_partial_is_a_storage_failure(self, seed, store, assembler):
        seed.signatures(2, 3)
        job_id = _run_export(store, 2)
        paths.partial_path(job_id, "part_00000.zip").unlink()
        with pytest.raises(StorageFailure):
            assembler.open_archive(job_id, 2, False)
        assert list(paths.job_dir(job_id).glob("final_*.zip")) == []

    def test_second_download_of_a_job_is_rejected(self, seed, store, assembler):
        seed.signatures(2, 3)
        job_id = _run_export(store, 2)
        first = assembler.open_archive(job_id, 2, False)
        assert store.load(job_id).status == "consuming"

        with pytest.raises(NotReady) as exc:
            assembler.open_archive(job_id, 2, False)
        assert "already being downloaded" in exc.value.message
        assert list(paths.job_dir(job_id).glob("final_*.zip")) == [first.path]

        data = asyncio.run(_drain(first))
        assert len(data) == first.size
        assert not store.exists(job_id)

    def test_failed_assembly_releases_the_claim(self, seed, store, assembler):
        seed.signatures(2, 3)
        job_id = _run_export(store, 2)
        partial = paths.partial_path(job_id, "part_00000.zip")
        saved = partial.read_bytes()
        partial.unlink()
        with pytest.raises(StorageFailure):
            assembler.open_archive(job_id, 2, False)
        assert store.load(job_id).status == "completed"

        partial.write_bytes(saved)
        stream = assembler.open_archive(job_id, 2, False)
        assert stream.size > 0

    def test_requester_and_admin_can_download(self, seed, store, assembler):
        seed.signatures(2, 3)
        job_id = _run_export(store, 2, requester_id=1)
        assert authorize_job(store, job_id, 1, False).job_id == job_id
        assert authorize_job(store, job_id, 2, False).job_id == job_id
        assert authorize_job(store, job_id, 99, True).job_id == job_id


class TestAuthorizeJob:

    def test_foreign_job(self, store):
        job_id = store.create(2, 2, 3, 50)
        with pytest.raises(AccessDenied):
            authorize_job(store, job_id, 3, False)

    @pytest.mark.parametrize("job_id", ["f" * 32, "not-a-job", "../../x"])
    def test_non_admin_cannot_probe_ids(self, store, job_id):
        with pytest.raises(AccessDenied):
            authorize_job(store, job_id, 3, False)

    def test_admin_sees_real_errors(self, store):
        with pytest.raises(NotFound):
            authorize_job(store, "f" * 32, 1, True)
        with pytest.raises(InvalidIdentifier):
            authorize_job(store, "nope", 1, True)
