"""
Upload conversion pipeline.

For one upload: convert the bundle into a dump, publish its dependency
metadata and file, refresh the repository's commit graph and the
``visible_at_tip`` flags, then evict old dumps while the artifact
directory is over its size budget.

Consistency between the metadata store and the filesystem is ordered,
not transactional: dump metadata may exist briefly before its file is
renamed into place, never the other way around.
"""

from __future__ import annotations

import asyncio
import os
from typing import Callable, Dict, List, Optional, Set

from ..config import WorkerConfig
from ..db import Database
from ..faults import ArtifactExistsFault, NoTipFault
from ..gitserver import CommitGraph
from ..store.dependencies import DependencyManager
from ..store.dumps import DumpManager
from ..store.locks import with_lock
from ..store.models import Dump, Upload
from ..store.paths import DBS_DIR, db_filename, temp_filename
from ..store.uploads import UploadManager
from ..tracing import TracingContext, add_tags
from .converter import Converter

RETENTION_LOCK = "retention"


async def convert_upload(
    db: Database,
    dump_manager: DumpManager,
    dependency_manager: DependencyManager,
    upload_manager: UploadManager,
    converter: Converter,
    fetch_configuration: Callable[[], WorkerConfig],
    upload: Upload,
    ctx: Optional[TracingContext] = None,
) -> None:
    """
    Run the whole pipeline for ``upload``.

    Any failure aborts the call; retention problems other than lock or
    store errors are only logged.
    """
    ctx = add_tags(ctx, {
        "repository": upload.repository,
        "commit": upload.commit,
        "root": upload.root,
    })
    config = fetch_configuration()

    await convert_database(
        db, dump_manager, dependency_manager, upload_manager, converter,
        config.storage_root, upload, ctx,
    )
    await update_commits_and_dumps_visible_from_tip(dump_manager, fetch_configuration, upload, ctx)
    await purge_old_dumps(
        db,
        dump_manager,
        config.storage_root,
        config.dbs_dir_maximum_size_bytes,
        ctx,
        ttl=config.lock_ttl,
        timeout=config.lock_timeout,
        poll_interval=config.lock_poll_interval,
    )


async def convert_database(
    db: Database,
    dump_manager: DumpManager,
    dependency_manager: DependencyManager,
    upload_manager: UploadManager,
    converter: Converter,
    storage_root: str,
    upload: Upload,
    ctx: Optional[TracingContext] = None,
) -> str:
    """
    Convert the upload's bundle and publish the resulting dump.

    The bundle is converted into a temp file, overlapping dumps are
    deleted, packages and references are inserted together with the dump
    row, and finally the temp file is renamed to its permanent location.
    An occupied destination fails the call before anything is published;
    if it only appears by the time of the rename, the publish is undone.
    On failure the temp file is removed and the error re-raised as is; the
    source bundle stays put so the upload can be retried.

    Returns:
        Path of the published dump file.
    """
    log = (ctx or TracingContext()).logger
    temp_file = temp_filename(storage_root, upload.filename)
    final_file = db_filename(storage_root, upload.id, upload.repository, upload.commit)
    os.makedirs(os.path.dirname(temp_file), exist_ok=True)
    os.makedirs(os.path.dirname(final_file), exist_ok=True)

    try:
        result = await converter.convert(upload.filename, temp_file, ctx)
        if os.path.exists(final_file):
            raise ArtifactExistsFault(final_file)

        # Must finish before the insert below, or the unique index on
        # (repository, commit, root) rejects the new dump.
        await dump_manager.delete_overlapping_dumps(upload.repository, upload.commit, upload.root, ctx)

        async with db.transaction():
            await dependency_manager.add_packages_and_references(
                upload.id, result.packages, result.references, ctx
            )
            await upload_manager.mark_complete(upload.id)

        try:
            move_into_place(temp_file, final_file)
        except ArtifactExistsFault:
            # the file at final_file is not ours; take the dump back down
            await upload_manager.unpublish(upload.id)
            raise
        log.info("Created dump", extra={"dump_id": upload.id})
    except BaseException:
        remove_if_exists(temp_file)
        raise

    if not remove_if_exists(upload.filename):
        log.warning("Upload file already removed", extra={"filename": upload.filename})
    return final_file


def move_into_place(source: str, destination: str) -> None:
    """
    Rename ``source`` to ``destination``.

    An occupied destination is an error: the file is left untouched
    rather than replaced with content for a different upload attempt.
    """
    if os.path.exists(destination):
        raise ArtifactExistsFault(destination)
    os.rename(source, destination)


def remove_if_exists(path: str) -> bool:
    """Unlink ``path``; returns False if there was nothing to remove."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    return True


async def update_commits_and_dumps_visible_from_tip(
    dump_manager: DumpManager,
    fetch_configuration: Callable[[], WorkerConfig],
    upload: Upload,
    ctx: Optional[TracingContext] = None,
) -> None:
    """
    Refresh the repository's commit graph and recompute which dumps are
    visible from its tip.

    Commits are discovered from both the processed commit and the tip so
    the path between them is known even when the tip is ahead. Without it
    no dump would be reachable from the tip.

    Raises:
        NoTipFault: The repository has no resolvable tip. Nothing is
            written in that case.
    """
    gitservers = fetch_configuration().gitservers

    tip = await dump_manager.discover_tip(upload.repository, gitservers, ctx)
    if tip is None:
        raise NoTipFault(upload.repository)

    commits = await dump_manager.discover_commits(upload.repository, upload.commit, gitservers, ctx)

    if tip != upload.commit:
        tip_commits = await dump_manager.discover_commits(upload.repository, tip, gitservers, ctx)
        commits = merge_commit_graphs(commits, tip_commits)

    await dump_manager.update_commits(upload.repository, commits, ctx)
    await dump_manager.update_dumps_visible_from_tip(upload.repository, tip, ctx)


def merge_commit_graphs(*graphs: CommitGraph) -> CommitGraph:
    """Union of commit graphs: every commit maps to the union of its parent sets."""
    merged: Dict[str, Set[str]] = {}
    for graph in graphs:
        for commit, parents in graph.items():
            merged.setdefault(commit, set()).update(parents)
    return merged


async def purge_old_dumps(
    db: Database,
    dump_manager: DumpManager,
    storage_root: str,
    maximum_size_bytes: int,
    ctx: Optional[TracingContext] = None,
    **lock_options,
) -> List[Dump]:
    """
    Remove dumps until the dbs directory fits in ``maximum_size_bytes``.

    A negative maximum disables retention. The size check and candidate
    selection run under the fleet-wide ``retention`` lock so concurrent
    workers do not each pick a victim for the same excess.

    The running total subtracts each victim's size as measured just
    before deletion; a file removed concurrently counts as zero, so the
    loop may stop slightly above the budget until the next purge.

    Returns:
        The dumps that were deleted.
    """
    if maximum_size_bytes < 0:
        return []

    log = (ctx or TracingContext()).logger

    async def purge() -> List[Dump]:
        pruned: List[Dump] = []
        current_size_bytes = await dirsize(os.path.join(storage_root, DBS_DIR))

        while current_size_bytes > maximum_size_bytes:
            dump = await dump_manager.get_oldest_prunable_dump()
            if dump is None:
                log.warning(
                    "Unable to reduce disk usage of the DB directory because deleting any "
                    "single dump would drop in-use code intel for a repository.",
                    extra={
                        "current_size_bytes": current_size_bytes,
                        "soft_maximum_size_bytes": maximum_size_bytes,
                    },
                )
                break

            log.info("Pruning dump", extra={
                "dump_id": dump.id,
                "repository": dump.repository,
                "commit": dump.commit,
                "root": dump.root,
            })

            filename = db_filename(storage_root, dump.id, dump.repository, dump.commit)
            current_size_bytes -= await filesize(filename)

            # cascades to the package and reference rows
            await dump_manager.delete_dump(dump)
            pruned.append(dump)

        return pruned

    return await with_lock(db, RETENTION_LOCK, purge, **lock_options)


async def dirsize(directory: str) -> int:
    """Total size of the immediate entries of ``directory``."""

    def _measure() -> int:
        try:
            names = os.listdir(directory)
        except FileNotFoundError:
            return 0
        return sum(_filesize(os.path.join(directory, name)) for name in names)

    return await asyncio.to_thread(_measure)


async def filesize(filename: str) -> int:
    """Size of ``filename``, or zero if it does not exist."""
    return await asyncio.to_thread(_filesize, filename)


def _filesize(filename: str) -> int:
    try:
        return os.stat(filename).st_size
    except FileNotFoundError:
        return 0
