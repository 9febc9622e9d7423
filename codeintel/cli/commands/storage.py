"""
Storage commands — schema setup, enqueueing bundles, manual retention.
"""

from __future__ import annotations

import os
import shutil
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from ...config import WorkerConfig
from ...db import Database
from ...store import (
    UPLOADS_DIR,
    Dump,
    DumpManager,
    Upload,
    UploadManager,
    ensure_schema,
    ensure_storage_dirs,
)
from ...worker.conversion import purge_old_dumps


@asynccontextmanager
async def open_database(config: WorkerConfig) -> AsyncIterator[Database]:
    """Connected database with the schema in place."""
    db = Database(config.database_url)
    await db.connect()
    try:
        await ensure_schema(db)
        yield db
    finally:
        await db.disconnect()


async def init_db(config: WorkerConfig) -> List[str]:
    """Create tables and storage directories. Returns the tables created."""
    ensure_storage_dirs(config.storage_root)
    db = Database(config.database_url)
    await db.connect()
    try:
        return await ensure_schema(db)
    finally:
        await db.disconnect()


async def enqueue(
    config: WorkerConfig,
    repository: str,
    commit: str,
    bundle: str,
    root: str = "",
) -> Upload:
    """Copy ``bundle`` into the uploads area and queue it for conversion."""
    ensure_storage_dirs(config.storage_root)
    target = os.path.join(
        config.storage_root,
        UPLOADS_DIR,
        f"{uuid.uuid4().hex}-{os.path.basename(bundle)}",
    )
    shutil.copyfile(bundle, target)

    async with open_database(config) as db:
        try:
            return await UploadManager(db).enqueue(repository, commit, root, target)
        except BaseException:
            os.unlink(target)
            raise


async def purge(config: WorkerConfig, max_bytes: Optional[int] = None) -> List[Dump]:
    """Run one retention pass outside the worker loop."""
    maximum = config.dbs_dir_maximum_size_bytes if max_bytes is None else max_bytes
    async with open_database(config) as db:
        return await purge_old_dumps(
            db,
            DumpManager(db, config.storage_root),
            config.storage_root,
            maximum,
            ttl=config.lock_ttl,
            timeout=config.lock_timeout,
            poll_interval=config.lock_poll_interval,
        )
