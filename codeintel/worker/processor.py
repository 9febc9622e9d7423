"""
Worker loop — claims queued uploads and runs the conversion pipeline.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import httpx

from ..config import ConfigStore
from ..db import Database
from ..faults import Fault
from ..store.dependencies import DependencyManager
from ..store.dumps import DumpManager
from ..store.models import Upload
from ..store.uploads import UploadManager
from ..tracing import TracingContext, add_tags
from .conversion import convert_upload, remove_if_exists
from .converter import Converter

logger = logging.getLogger("codeintel.worker")


def failure_summary(exc: BaseException) -> str:
    """Text stored on an errored upload."""
    if isinstance(exc, Fault):
        return json.dumps(exc.to_dict(), default=str)
    return f"{type(exc).__name__}: {exc}"


class Worker:
    """
    Processes uploads one at a time.

    Several workers, in one process or many, may share the same metadata
    store and storage root.
    """

    def __init__(
        self,
        db: Database,
        converter: Converter,
        config_store: ConfigStore,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        config = config_store.fetch()
        self.db = db
        self.converter = converter
        self.config_store = config_store
        self.uploads = UploadManager(db)
        self.dependencies = DependencyManager(db)
        self.dumps = DumpManager(
            db,
            config.storage_root,
            http_client=http_client,
            max_commits_per_update=config.max_commits_per_update,
        )

    async def process_upload(self, upload: Upload) -> bool:
        """
        Run the pipeline for one claimed upload.

        Failures are recorded on the upload instead of stopping the worker.
        Returns whether the pipeline succeeded.
        """
        ctx = add_tags(TracingContext(), {"upload_id": upload.id})
        try:
            await convert_upload(
                self.db,
                self.dumps,
                self.dependencies,
                self.uploads,
                self.converter,
                self.config_store.fetch,
                upload,
                ctx,
            )
        except Exception as exc:
            logger.exception(f"Failed to process upload {upload.id}")
            await self.record_failure(upload, exc)
            return False

        logger.info(f"Processed upload {upload.id}")
        return True

    async def record_failure(self, upload: Upload, exc: BaseException) -> None:
        """
        Requeue the upload if the fault is retryable and attempts remain,
        otherwise mark it errored and drop its bundle. A published dump is
        left alone either way.
        """
        summary = failure_summary(exc)
        max_attempts = self.config_store.fetch().max_attempts

        if isinstance(exc, Fault) and exc.retryable and upload.num_attempts < max_attempts:
            if await self.uploads.requeue(upload.id, summary):
                logger.info(
                    f"Requeued upload {upload.id} after attempt {upload.num_attempts} of {max_attempts}"
                )
                return

        if await self.uploads.mark_errored(upload.id, summary):
            if remove_if_exists(upload.filename):
                logger.info(f"Removed bundle of errored upload {upload.id}")

    async def process_next(self) -> Optional[bool]:
        """Claim and process the next queued upload. ``None`` if the queue is empty."""
        upload = await self.uploads.dequeue()
        if upload is None:
            return None
        return await self.process_upload(upload)

    async def run(self, *, once: bool = False, stop: Optional[asyncio.Event] = None) -> int:
        """
        Process uploads until stopped.

        Args:
            once: Drain the queue and return instead of polling.
            stop: Event that ends the loop when set.

        Returns:
            Number of uploads handled.
        """
        handled = 0
        stop = stop or asyncio.Event()
        while not stop.is_set():
            outcome = await self.process_next()
            if outcome is not None:
                handled += 1
                continue
            if once:
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.config_store.fetch().poll_interval)
            except asyncio.TimeoutError:
                pass
        return handled
