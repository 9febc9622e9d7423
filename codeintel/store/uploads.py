"""
Upload queue backed by ``lsif_uploads``.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from ..db import Database, now
from .models import Upload, UploadState, normalize_root

logger = logging.getLogger("codeintel.store.uploads")

_UPLOAD_COLUMNS = (
    'id, repository, "commit", root, filename, state, failure_summary, num_attempts, uploaded_at, finished_at'
)


class UploadManager:
    """Enqueue, claim and finish uploads."""

    def __init__(self, db: Database):
        self.db = db

    async def enqueue(self, repository: str, commit: str, root: str, filename: str) -> Upload:
        upload_id = await self.db.insert(
            'INSERT INTO lsif_uploads (repository, "commit", root, filename, state, uploaded_at) '
            "VALUES (?, ?, ?, ?, ?, ?)",
            [repository, commit, normalize_root(root), filename, UploadState.QUEUED.value, now()],
        )
        logger.info(f"Enqueued upload {upload_id} for {repository}@{commit}")
        return await self.get_upload(upload_id)

    async def get_upload(self, upload_id: int) -> Optional[Upload]:
        row = await self.db.fetch_one(
            f"SELECT {_UPLOAD_COLUMNS} FROM lsif_uploads WHERE id = ?",
            [upload_id],
        )
        return Upload.from_row(row) if row else None

    async def get_uploads(self, state: Optional[UploadState] = None) -> List[Upload]:
        if state is None:
            rows = await self.db.fetch_all(f"SELECT {_UPLOAD_COLUMNS} FROM lsif_uploads ORDER BY id")
        else:
            rows = await self.db.fetch_all(
                f"SELECT {_UPLOAD_COLUMNS} FROM lsif_uploads WHERE state = ? ORDER BY id",
                [state.value],
            )
        return [Upload.from_row(row) for row in rows]

    async def dequeue(self) -> Optional[Upload]:
        """
        Claim the oldest queued upload, moving it to ``processing`` and
        counting the attempt.

        The state check in the UPDATE makes the claim safe against other
        workers racing for the same row.
        """
        while True:
            row = await self.db.fetch_one(
                f"SELECT {_UPLOAD_COLUMNS} FROM lsif_uploads WHERE state = ? "
                "ORDER BY uploaded_at, id LIMIT 1",
                [UploadState.QUEUED.value],
            )
            if row is None:
                return None

            result = await self.db.execute(
                "UPDATE lsif_uploads SET state = ?, started_at = ?, num_attempts = num_attempts + 1 "
                "WHERE id = ? AND state = ?",
                [UploadState.PROCESSING.value, now(), row["id"], UploadState.QUEUED.value],
            )
            if self.db.rowcount(result) == 1:
                upload = Upload.from_row(row)
                upload.state = UploadState.PROCESSING
                upload.num_attempts += 1
                return upload

    async def mark_complete(self, upload_id: int) -> None:
        """Turn the upload into a dump. Call inside the publishing transaction."""
        await self.db.execute(
            "UPDATE lsif_uploads SET state = ?, finished_at = ?, visible_at_tip = ? WHERE id = ?",
            [UploadState.COMPLETED.value, now(), False, upload_id],
        )

    async def mark_errored(self, upload_id: int, failure_summary: str) -> bool:
        """
        Record a failure. A dump that was already published stays
        completed; returns whether the upload was marked.
        """
        result = await self.db.execute(
            "UPDATE lsif_uploads SET state = ?, finished_at = ?, failure_summary = ? "
            "WHERE id = ? AND state != ?",
            [UploadState.ERRORED.value, now(), failure_summary, upload_id, UploadState.COMPLETED.value],
        )
        return self.db.rowcount(result) > 0

    async def requeue(self, upload_id: int, failure_summary: str) -> bool:
        """
        Put a failed upload back in the queue, keeping the last failure.
        Only uploads still being processed are requeued.
        """
        result = await self.db.execute(
            "UPDATE lsif_uploads SET state = ?, failure_summary = ? WHERE id = ? AND state = ?",
            [UploadState.QUEUED.value, failure_summary, upload_id, UploadState.PROCESSING.value],
        )
        return self.db.rowcount(result) > 0

    async def unpublish(self, upload_id: int) -> None:
        """Undo ``mark_complete`` for a dump whose file never landed."""
        async with self.db.transaction():
            await self.db.execute("DELETE FROM lsif_packages WHERE dump_id = ?", [upload_id])
            await self.db.execute("DELETE FROM lsif_references WHERE dump_id = ?", [upload_id])
            await self.db.execute(
                "UPDATE lsif_uploads SET state = ?, finished_at = NULL WHERE id = ? AND state = ?",
                [UploadState.PROCESSING.value, upload_id, UploadState.COMPLETED.value],
            )
        logger.warning(f"Unpublished dump {upload_id}")
