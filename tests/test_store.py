"""
Store tests — upload queue, package edges, dumps and tip visibility.
"""

import os

import pytest

from codeintel.store import (
    Dump,
    Package,
    Reference,
    UploadState,
    db_filename,
    normalize_root,
)
from codeintel.store.dumps import ancestor_distances, nearest_dumps_by_root

from tests.conftest import GITSERVER, REPO, insert_dump, sha


class TestPaths:

    def test_db_filename_escapes_repository(self):
        path = db_filename("/srv", 42, "github.com/a/b", "abc")
        assert path == os.path.join("/srv", "dbs", "42-github.com%2Fa%2Fb@abc.lsif.db")

    @pytest.mark.parametrize("raw,expected", [
        ("", ""),
        (None, ""),
        (".", ""),
        ("web", "web/"),
        ("/web/", "web/"),
        ("a/b/", "a/b/"),
    ])
    def test_normalize_root(self, raw, expected):
        assert normalize_root(raw) == expected


class TestUploads:

    @pytest.mark.asyncio
    async def test_enqueue_and_dequeue(self, upload_manager):
        first = await upload_manager.enqueue(REPO, sha(1), "web", "/u/1")
        await upload_manager.enqueue(REPO, sha(2), "", "/u/2")
        assert first.state == UploadState.QUEUED
        assert first.root == "web/"

        claimed = await upload_manager.dequeue()
        assert claimed.id == first.id
        assert claimed.state == UploadState.PROCESSING
        stored = await upload_manager.get_upload(first.id)
        assert stored.state == UploadState.PROCESSING

    @pytest.mark.asyncio
    async def test_dequeue_empty(self, upload_manager):
        assert await upload_manager.dequeue() is None

    @pytest.mark.asyncio
    async def test_each_upload_claimed_once(self, upload_manager):
        for i in range(3):
            await upload_manager.enqueue(REPO, sha(i), "", f"/u/{i}")
        claimed = [await upload_manager.dequeue() for _ in range(4)]
        assert [u.commit for u in claimed[:3]] == [sha(0), sha(1), sha(2)]
        assert claimed[3] is None

    @pytest.mark.asyncio
    async def test_mark_errored(self, upload_manager):
        upload = await upload_manager.enqueue(REPO, sha(1), "", "/u/1")
        assert await upload_manager.mark_errored(upload.id, "boom") is True
        stored = await upload_manager.get_upload(upload.id)
        assert stored.state == UploadState.ERRORED
        assert stored.failure_summary == "boom"
        assert stored.finished_at is not None

    @pytest.mark.asyncio
    async def test_mark_errored_keeps_completed(self, upload_manager):
        upload = await upload_manager.enqueue(REPO, sha(1), "", "/u/1")
        await upload_manager.mark_complete(upload.id)
        assert await upload_manager.mark_errored(upload.id, "late failure") is False
        assert (await upload_manager.get_upload(upload.id)).state == UploadState.COMPLETED

    @pytest.mark.asyncio
    async def test_dequeue_counts_attempts(self, upload_manager):
        upload = await upload_manager.enqueue(REPO, sha(1), "", "/u/1")
        assert upload.num_attempts == 0
        claimed = await upload_manager.dequeue()
        assert claimed.num_attempts == 1

        assert await upload_manager.requeue(upload.id, "database is locked") is True
        stored = await upload_manager.get_upload(upload.id)
        assert stored.state == UploadState.QUEUED
        assert stored.failure_summary == "database is locked"

        again = await upload_manager.dequeue()
        assert again.num_attempts == 2
        assert (await upload_manager.get_upload(upload.id)).num_attempts == 2

    @pytest.mark.asyncio
    async def test_requeue_only_while_processing(self, upload_manager):
        upload = await upload_manager.enqueue(REPO, sha(1), "", "/u/1")
        await upload_manager.mark_complete(upload.id)
        assert await upload_manager.requeue(upload.id, "late failure") is False
        assert (await upload_manager.get_upload(upload.id)).state == UploadState.COMPLETED

    @pytest.mark.asyncio
    async def test_unpublish(self, upload_manager, dependency_manager, dump_manager):
        await upload_manager.enqueue(REPO, sha(1), "", "/u/1")
        upload = await upload_manager.dequeue()
        await dependency_manager.add_packages_and_references(
            upload.id, [Package("npm", "pkg", "1.0.0")], [Reference("npm", "dep", "2.0.0")]
        )
        await upload_manager.mark_complete(upload.id)

        await upload_manager.unpublish(upload.id)

        assert await dump_manager.get_dump(upload.id) is None
        assert await dependency_manager.get_packages(upload.id) == []
        assert await dependency_manager.get_references(upload.id) == []
        stored = await upload_manager.get_upload(upload.id)
        assert stored.state == UploadState.PROCESSING
        assert stored.finished_at is None

    @pytest.mark.asyncio
    async def test_get_uploads_by_state(self, upload_manager):
        a = await upload_manager.enqueue(REPO, sha(1), "", "/u/1")
        await upload_manager.enqueue(REPO, sha(2), "", "/u/2")
        await upload_manager.mark_errored(a.id, "x")
        errored = await upload_manager.get_uploads(UploadState.ERRORED)
        assert [u.id for u in errored] == [a.id]
        assert len(await upload_manager.get_uploads()) == 2


class TestDependencies:

    @pytest.mark.asyncio
    async def test_round_trip_and_dedup(self, db, storage_root, dependency_manager):
        dump_id = await insert_dump(db, storage_root)
        pkg = Package("npm", "left-pad", "1.3.0")
        ref = Reference("npm", "lodash", "4.17.21", b"\x01\x02")
        await dependency_manager.add_packages_and_references(dump_id, [pkg, pkg], [ref])

        assert await dependency_manager.get_packages(dump_id) == [pkg]
        assert await dependency_manager.get_references(dump_id) == [ref]

    @pytest.mark.asyncio
    async def test_rolled_back_with_outer_transaction(self, db, storage_root, dependency_manager):
        dump_id = await insert_dump(db, storage_root)
        with pytest.raises(RuntimeError):
            async with db.transaction():
                await dependency_manager.add_packages_and_references(
                    dump_id, [Package("npm", "a", "1")], []
                )
                raise RuntimeError("publish failed")
        assert await dependency_manager.get_packages(dump_id) == []


class TestDumps:

    @pytest.mark.asyncio
    async def test_delete_overlapping(self, db, storage_root, dump_manager, dependency_manager):
        old = await insert_dump(db, storage_root, commit=sha(1), root="web/", size=10)
        other_root = await insert_dump(db, storage_root, commit=sha(1), root="api/", size=10)
        await dependency_manager.add_packages_and_references(old, [Package("npm", "a", "1")], [])

        assert await dump_manager.delete_overlapping_dumps(REPO, sha(1), "web/") == 1
        assert await dump_manager.get_dump(old) is None
        assert await dump_manager.get_dump(other_root) is not None
        assert not os.path.exists(db_filename(storage_root, old, REPO, sha(1)))
        assert await dependency_manager.get_packages(old) == []

    @pytest.mark.asyncio
    async def test_delete_dump_tolerates_missing_file(self, db, storage_root, dump_manager):
        dump_id = await insert_dump(db, storage_root)
        os.unlink(db_filename(storage_root, dump_id, REPO, sha(0)))
        await dump_manager.delete_dump(await dump_manager.get_dump(dump_id))
        assert await dump_manager.get_dump(dump_id) is None

    @pytest.mark.asyncio
    async def test_oldest_prunable_skips_visible(self, db, storage_root, dump_manager):
        await insert_dump(db, storage_root, commit=sha(1), uploaded_at=1.0, visible_at_tip=True)
        second = await insert_dump(db, storage_root, commit=sha(2), uploaded_at=2.0)
        await insert_dump(db, storage_root, commit=sha(3), uploaded_at=3.0)
        assert (await dump_manager.get_oldest_prunable_dump()).id == second

    @pytest.mark.asyncio
    async def test_oldest_prunable_none(self, db, storage_root, dump_manager):
        await insert_dump(db, storage_root, visible_at_tip=True)
        assert await dump_manager.get_oldest_prunable_dump() is None

    @pytest.mark.asyncio
    async def test_update_commits_idempotent(self, dump_manager, db):
        graph = {sha(1): {sha(0)}, sha(0): set()}
        await dump_manager.update_commits(REPO, graph)
        await dump_manager.update_commits(REPO, graph)
        assert await db.fetch_val("SELECT COUNT(*) FROM lsif_commits") == 2
        assert await dump_manager.get_commit_graph(REPO) == graph

    @pytest.mark.asyncio
    async def test_discover_commits_untracked_repository(self, dump_manager, gitserver):
        gitserver.add_chain(REPO, 3)
        assert await dump_manager.discover_commits(REPO, sha(2), [GITSERVER]) == {}
        assert gitserver.requests == []

    @pytest.mark.asyncio
    async def test_discover_commits_tracked(self, db, storage_root, dump_manager, gitserver):
        gitserver.add_chain(REPO, 3)
        await insert_dump(db, storage_root, commit=sha(2))
        graph = await dump_manager.discover_commits(REPO, sha(2), [GITSERVER])
        assert graph == {sha(2): {sha(1)}, sha(1): {sha(0)}, sha(0): set()}

    @pytest.mark.asyncio
    async def test_discover_tip(self, dump_manager, gitserver):
        gitserver.add_chain(REPO, 3)
        assert await dump_manager.discover_tip(REPO, [GITSERVER]) == sha(2)
        assert await dump_manager.discover_tip("github.com/unknown/repo", [GITSERVER]) is None


class TestVisibility:

    def test_ancestor_distances(self):
        graph = {sha(3): {sha(1), sha(2)}, sha(2): {sha(0)}, sha(1): {sha(0)}, sha(0): set()}
        assert ancestor_distances(graph, sha(3)) == {sha(3): 0, sha(1): 1, sha(2): 1, sha(0): 2}

    def test_nearest_per_root_ties_to_newest(self):
        dumps = [
            Dump(1, REPO, sha(1), ""),
            Dump(2, REPO, sha(2), ""),
            Dump(3, REPO, sha(0), "web/"),
        ]
        distances = {sha(1): 1, sha(2): 1, sha(0): 2}
        assert nearest_dumps_by_root(dumps, distances) == [2, 3]

    @pytest.mark.asyncio
    async def test_update_dumps_visible_from_tip(self, db, storage_root, dump_manager):
        await dump_manager.update_commits(REPO, {
            sha(4): {sha(3)}, sha(3): {sha(2)}, sha(2): {sha(1)}, sha(1): {sha(0)}, sha(0): set(),
        })
        older = await insert_dump(db, storage_root, commit=sha(1), visible_at_tip=True)
        newer = await insert_dump(db, storage_root, commit=sha(3))
        web = await insert_dump(db, storage_root, commit=sha(0), root="web/")
        off_graph = await insert_dump(db, storage_root, commit="f" * 40)

        visible = await dump_manager.update_dumps_visible_from_tip(REPO, sha(4))

        assert visible == sorted([newer, web])
        assert (await dump_manager.get_dump(older)).visible_at_tip is False
        assert (await dump_manager.get_dump(newer)).visible_at_tip is True
        assert (await dump_manager.get_dump(web)).visible_at_tip is True
        assert (await dump_manager.get_dump(off_graph)).visible_at_tip is False

    @pytest.mark.asyncio
    async def test_other_repositories_untouched(self, db, storage_root, dump_manager):
        other = await insert_dump(db, storage_root, repository="github.com/x/y", visible_at_tip=True)
        await dump_manager.update_dumps_visible_from_tip(REPO, sha(0))
        assert (await dump_manager.get_dump(other)).visible_at_tip is True
