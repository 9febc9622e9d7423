"""
DB Backend — SQLite adapter via aiosqlite.

The default backend, used for single-host deployments and the test
suite. Foreign keys are enforced so that deleting a dump cascades to
its package and reference rows.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from .base import DatabaseAdapter, AdapterCapabilities

try:
    import aiosqlite
except ImportError:
    aiosqlite = None  # type: ignore[assignment]

logger = logging.getLogger("codeintel.db.backends.sqlite")

__all__ = ["SQLiteAdapter"]


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter using aiosqlite.

    Features:
    - WAL journal mode so readers in other workers are not blocked
    - Foreign key enforcement (ON DELETE CASCADE for package edges)
    - Busy timeout so concurrent workers wait instead of failing
    """

    capabilities = AdapterCapabilities(
        supports_returning=False,
        name="sqlite",
    )

    def __init__(self):
        self._connection: Any = None
        self._connected = False
        self._lock = asyncio.Lock()
        self._in_transaction = False

    async def connect(self, url: str, **options) -> None:
        if self._connected:
            return
        if aiosqlite is None:
            raise ImportError(
                "aiosqlite is required for SQLite backend. "
                "Install: pip install aiosqlite"
            )
        async with self._lock:
            if self._connected:
                return
            db_path = self._parse_url(url)
            timeout = float(options.pop("busy_timeout", 30.0))
            self._connection = await aiosqlite.connect(db_path, timeout=timeout)
            if db_path != ":memory:":
                await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA foreign_keys=ON")
            self._connection.row_factory = aiosqlite.Row
            self._connected = True
            logger.info(f"SQLite connected: {db_path}")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        async with self._lock:
            if self._connection:
                await self._connection.close()
                self._connection = None
            self._connected = False
            logger.info("SQLite disconnected")

    @property
    def _conn(self) -> Any:
        if not self._connected:
            raise RuntimeError("Not connected")
        return self._connection

    async def _autocommit(self) -> None:
        if not self._in_transaction:
            await self._connection.commit()

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        cursor = await self._conn.execute(sql, list(params or []))
        await self._autocommit()
        return cursor

    async def execute_many(self, sql: str, params_list: Sequence[Sequence[Any]]) -> None:
        await self._conn.executemany(sql, [list(p) for p in params_list])
        await self._autocommit()

    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        async with self._conn.execute(sql, list(params or [])) as cursor:
            return [dict(row) for row in await cursor.fetchall()]

    async def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        async with self._conn.execute(sql, list(params or [])) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def fetch_val(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        async with self._conn.execute(sql, list(params or [])) as cursor:
            row = await cursor.fetchone()
        return row[0] if row is not None else None

    # ── Transactions ─────────────────────────────────────────────────

    async def begin(self) -> None:
        await self._connection.execute("BEGIN IMMEDIATE")
        self._in_transaction = True

    async def commit(self) -> None:
        await self._connection.commit()
        self._in_transaction = False

    async def rollback(self) -> None:
        await self._connection.rollback()
        self._in_transaction = False

    # ── Introspection ────────────────────────────────────────────────

    async def get_tables(self) -> List[str]:
        rows = await self.fetch_all(
            "SELECT name FROM sqlite_master WHERE type='table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [r["name"] for r in rows]

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def dialect(self) -> str:
        return "sqlite"

    @staticmethod
    def _parse_url(url: str) -> str:
        """Extract file path from sqlite URL."""
        for prefix in ("sqlite:///", "sqlite://"):
            if url.startswith(prefix):
                path = url[len(prefix):]
                return path or ":memory:"
        return url.replace("sqlite:", "").lstrip("/") or ":memory:"
