"""
Worker loop tests — claiming uploads, recording failures, converter loading.
"""

import asyncio
import json
import os

import pytest

from codeintel.config import ConfigStore
from codeintel.faults import ConversionFault, ConverterNotFoundFault, NoTipFault, QueryFault
from codeintel.store import UploadState
from codeintel.worker import Worker, failure_summary, load_converter

from tests.conftest import REPO, FakeConverter, sha, write_bundle


@pytest.fixture
def config_store(config):
    return ConfigStore(config)


async def _enqueue(upload_manager, storage_root, commit, name):
    return await upload_manager.enqueue(REPO, commit, "", write_bundle(storage_root, name))


class TestLoadConverter:

    def test_class_is_instantiated(self):
        converter = load_converter("tests.conftest:FakeConverter")
        assert isinstance(converter, FakeConverter)

    @pytest.mark.parametrize("path", [
        "no_colon",
        "codeintel_missing_module:Converter",
        "tests.conftest:Nothing",
        "tests.conftest:REPO",
    ])
    def test_bad_paths(self, path):
        with pytest.raises(ConverterNotFoundFault):
            load_converter(path)


class TestFailureSummary:

    def test_fault_is_structured(self):
        summary = json.loads(failure_summary(NoTipFault(REPO)))
        assert summary["code"] == "NO_TIP_COMMIT"
        assert summary["metadata"]["repository"] == REPO

    def test_plain_exception(self):
        assert failure_summary(ValueError("bad")) == "ValueError: bad"


class TestWorker:

    @pytest.mark.asyncio
    async def test_processes_queue(self, db, storage_root, upload_manager, gitserver, http_client, config_store):
        gitserver.add_chain(REPO, 3)
        first = await _enqueue(upload_manager, storage_root, sha(1), "a.lsif.gz")
        second = await _enqueue(upload_manager, storage_root, sha(2), "b.lsif.gz")
        converter = FakeConverter()
        worker = Worker(db, converter, config_store, http_client=http_client)

        assert await worker.run(once=True) == 2

        assert len(converter.calls) == 2
        for upload in (first, second):
            assert (await upload_manager.get_upload(upload.id)).state == UploadState.COMPLETED
        visible = [d.id for d in await worker.dumps.get_dumps(REPO) if d.visible_at_tip]
        assert visible == [second.id]

    @pytest.mark.asyncio
    async def test_conversion_failure_marks_errored(
        self, db, storage_root, upload_manager, http_client, config_store
    ):
        upload = await _enqueue(upload_manager, storage_root, sha(1), "a.lsif.gz")
        worker = Worker(db, FakeConverter(error=ValueError("malformed")), config_store, http_client=http_client)

        assert await worker.process_next() is False

        stored = await upload_manager.get_upload(upload.id)
        assert stored.state == UploadState.ERRORED
        assert stored.failure_summary == "ValueError: malformed"
        assert not os.path.exists(upload.filename)

    @pytest.mark.asyncio
    async def test_conversion_fault_is_not_retried(
        self, db, storage_root, upload_manager, http_client, config_store
    ):
        upload = await _enqueue(upload_manager, storage_root, sha(1), "a.lsif.gz")
        converter = FakeConverter(error=ConversionFault(upload.filename, "unexpected vertex"))
        worker = Worker(db, converter, config_store, http_client=http_client)

        assert await worker.run(once=True) == 1

        assert len(converter.calls) == 1
        stored = await upload_manager.get_upload(upload.id)
        assert stored.state == UploadState.ERRORED
        assert json.loads(stored.failure_summary)["code"] == "CONVERSION_FAILED"
        assert not os.path.exists(upload.filename)

    @pytest.mark.asyncio
    async def test_retryable_fault_is_requeued_until_attempts_run_out(
        self, db, storage_root, upload_manager, http_client, config_store
    ):
        upload = await _enqueue(upload_manager, storage_root, sha(1), "a.lsif.gz")
        converter = FakeConverter(error=QueryFault("execute", "database is locked"))
        worker = Worker(db, converter, config_store, http_client=http_client)

        assert await worker.process_next() is False
        stored = await upload_manager.get_upload(upload.id)
        assert stored.state == UploadState.QUEUED
        assert json.loads(stored.failure_summary)["code"] == "QUERY_FAILED"
        assert os.path.exists(upload.filename)

        assert await worker.run(once=True) == config_store.fetch().max_attempts - 1

        assert len(converter.calls) == config_store.fetch().max_attempts
        stored = await upload_manager.get_upload(upload.id)
        assert stored.state == UploadState.ERRORED
        assert stored.num_attempts == config_store.fetch().max_attempts
        assert not os.path.exists(upload.filename)

    @pytest.mark.asyncio
    async def test_retry_succeeds(
        self, db, storage_root, upload_manager, gitserver, http_client, config_store
    ):
        gitserver.add_chain(REPO, 2)
        upload = await _enqueue(upload_manager, storage_root, sha(1), "a.lsif.gz")

        class FlakyConverter(FakeConverter):
            async def convert(self, source_path, dest_path, ctx=None):
                self.error = QueryFault("execute", "database is locked") if not self.calls else None
                return await super().convert(source_path, dest_path, ctx)

        converter = FlakyConverter()
        worker = Worker(db, converter, config_store, http_client=http_client)

        assert await worker.run(once=True) == 2

        assert len(converter.calls) == 2
        stored = await upload_manager.get_upload(upload.id)
        assert stored.state == UploadState.COMPLETED
        assert stored.num_attempts == 2
        assert not os.path.exists(upload.filename)

    @pytest.mark.asyncio
    async def test_no_tip_keeps_published_dump(
        self, db, storage_root, upload_manager, gitserver, http_client, config_store
    ):
        gitserver.add_chain(REPO, 2)
        gitserver.repos[REPO]["head"] = None
        upload = await _enqueue(upload_manager, storage_root, sha(1), "a.lsif.gz")
        worker = Worker(db, FakeConverter(), config_store, http_client=http_client)

        assert await worker.process_next() is False

        assert (await upload_manager.get_upload(upload.id)).state == UploadState.COMPLETED
        assert await worker.dumps.get_dump(upload.id) is not None

    @pytest.mark.asyncio
    async def test_empty_queue(self, db, http_client, config_store):
        worker = Worker(db, FakeConverter(), config_store, http_client=http_client)
        assert await worker.process_next() is None
        assert await worker.run(once=True) == 0

    @pytest.mark.asyncio
    async def test_run_stops_on_event(self, db, http_client, config_store):
        worker = Worker(db, FakeConverter(), config_store, http_client=http_client)
        stop = asyncio.Event()
        task = asyncio.create_task(worker.run(stop=stop))
        await asyncio.sleep(0.05)
        stop.set()
        assert await asyncio.wait_for(task, timeout=5) == 0
