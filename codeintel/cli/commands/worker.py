"""
Worker command — run the conversion loop.
"""

from __future__ import annotations

import httpx

from ...config import ConfigStore
from ...faults import ConfigInvalidFault
from ...store import ensure_storage_dirs
from ...worker import Worker, load_converter
from .storage import open_database


async def process(config_store: ConfigStore, *, once: bool = False) -> int:
    """Process queued uploads. Returns how many were handled."""
    config = config_store.fetch()
    if not config.converter:
        raise ConfigInvalidFault("converter", "no converter configured (set LSIF_CONVERTER=module:attr)")
    converter = load_converter(config.converter)
    ensure_storage_dirs(config.storage_root)

    async with open_database(config) as db, httpx.AsyncClient(timeout=30.0) as http_client:
        worker = Worker(db, converter, config_store, http_client=http_client)
        return await worker.run(once=once)
