"""
DB Backend — PostgreSQL adapter via asyncpg.

Used when several worker hosts share one metadata store. Statements are
written with ``?`` placeholders and converted to ``$N`` here.

Requires asyncpg:
    pip install asyncpg
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from .base import DatabaseAdapter, AdapterCapabilities

logger = logging.getLogger("codeintel.db.backends.postgres")

__all__ = ["PostgresAdapter"]

try:
    import asyncpg
    _HAS_ASYNCPG = True
except ImportError:
    asyncpg = None  # type: ignore
    _HAS_ASYNCPG = False


class PostgresAdapter(DatabaseAdapter):
    """
    PostgreSQL adapter using asyncpg with connection pooling.

    Features:
    - Connection pool via asyncpg.create_pool
    - Dedicated connection for the lifetime of a transaction
    - ``?`` → ``$N`` placeholder conversion (string-literal safe)
    """

    capabilities = AdapterCapabilities(
        supports_returning=True,
        name="postgresql",
    )

    def __init__(self):
        self._pool: Any = None
        self._txn_conn: Any = None
        self._txn_obj: Any = None
        self._connected = False
        self._in_transaction = False

    async def connect(self, url: str, **options) -> None:
        if self._connected:
            return

        if not _HAS_ASYNCPG:
            raise ImportError(
                "asyncpg is required for PostgreSQL support.\n"
                "Install: pip install asyncpg"
            )

        min_size = options.pop("pool_min_size", 1)
        max_size = options.pop("pool_max_size", 5)
        options.pop("busy_timeout", None)
        self._pool = await asyncpg.create_pool(
            url, min_size=min_size, max_size=max_size, **options
        )
        self._connected = True
        logger.info(f"PostgreSQL connected via asyncpg: {_mask_url(url)}")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        await self.rollback()
        if self._pool:
            await self._pool.close()
            self._pool = None
        self._connected = False
        logger.info("PostgreSQL disconnected")

    def adapt_sql(self, sql: str) -> str:
        """
        Convert ``?`` placeholders to ``$1, $2, ...`` for asyncpg.

        Skips ``?`` inside single-quoted strings.
        """
        result: list[str] = []
        param_idx = 0
        in_string = False
        i = 0
        while i < len(sql):
            ch = sql[i]
            if ch == "'" and not in_string:
                in_string = True
                result.append(ch)
            elif ch == "'" and in_string:
                if i + 1 < len(sql) and sql[i + 1] == "'":
                    result.append("''")
                    i += 2
                    continue
                in_string = False
                result.append(ch)
            elif ch == "?" and not in_string:
                param_idx += 1
                result.append(f"${param_idx}")
            else:
                result.append(ch)
            i += 1
        return "".join(result)

    def rowcount(self, result: Any) -> int:
        # asyncpg returns the command status, e.g. "DELETE 3"
        if isinstance(result, str):
            tail = result.rsplit(" ", 1)[-1]
            return int(tail) if tail.isdigit() else 0
        return 0

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        """The open transaction's connection, or one borrowed from the pool."""
        if not self._connected:
            raise RuntimeError("Not connected to PostgreSQL")
        if self._in_transaction and self._txn_conn is not None:
            yield self._txn_conn
            return
        async with self._pool.acquire() as conn:
            yield conn

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        async with self._connection() as conn:
            return await conn.execute(self.adapt_sql(sql), *(params or []))

    async def execute_many(self, sql: str, params_list: Sequence[Sequence[Any]]) -> None:
        async with self._connection() as conn:
            await conn.executemany(self.adapt_sql(sql), params_list)

    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(self.adapt_sql(sql), *(params or []))
        return [dict(row) for row in rows]

    async def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        async with self._connection() as conn:
            row = await conn.fetchrow(self.adapt_sql(sql), *(params or []))
        return dict(row) if row is not None else None

    async def fetch_val(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        async with self._connection() as conn:
            return await conn.fetchval(self.adapt_sql(sql), *(params or []))

    # ── Transactions ─────────────────────────────────────────────────

    async def begin(self) -> None:
        """Acquire a dedicated connection and start a transaction."""
        if self._in_transaction:
            return
        self._txn_conn = await self._pool.acquire()
        self._txn_obj = self._txn_conn.transaction()
        await self._txn_obj.start()
        self._in_transaction = True

    async def commit(self) -> None:
        await self._finish(commit=True)

    async def rollback(self) -> None:
        await self._finish(commit=False)

    async def _finish(self, *, commit: bool) -> None:
        """End the transaction and hand its connection back to the pool."""
        if not self._in_transaction or self._txn_obj is None:
            return
        try:
            if commit:
                await self._txn_obj.commit()
            else:
                await self._txn_obj.rollback()
        finally:
            self._in_transaction = False
            await self._pool.release(self._txn_conn)
            self._txn_conn = None
            self._txn_obj = None

    # ── Introspection ────────────────────────────────────────────────

    async def get_tables(self) -> List[str]:
        rows = await self.fetch_all(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema='public' ORDER BY table_name"
        )
        return [r["table_name"] for r in rows]

    @property
    def is_connected(self) -> bool:
        return self._connected and self._pool is not None

    @property
    def dialect(self) -> str:
        return "postgresql"


def _mask_url(url: str) -> str:
    """Mask password in URL for logging."""
    if "@" in url:
        pre, host = url.split("@", 1)
        if ":" in pre:
            scheme_user = pre.rsplit(":", 1)[0]
            return f"{scheme_user}:***@{host}"
    return url
