"""
DB Backend — Base Adapter Interface.

The ``Database`` engine delegates to the adapter selected from the
connection URL. The interface hides the differences the worker's stores
care about:
- Parameter placeholder style (?, $1)
- Transaction semantics
- Retrieving generated ids (RETURNING vs. lastrowid)
- Affected-row counts
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

__all__ = [
    "DatabaseAdapter",
    "AdapterCapabilities",
]


@dataclass
class AdapterCapabilities:
    """Describes what a specific backend supports."""

    supports_returning: bool = False
    name: str = "base"


class DatabaseAdapter(ABC):
    """
    Abstract database adapter interface.

    All backends implement query execution, transactions and a small
    amount of introspection used by ``ensure_schema``.
    """

    capabilities: AdapterCapabilities = AdapterCapabilities()

    @abstractmethod
    async def connect(self, url: str, **options) -> None:
        """Open a connection to the database."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the database connection."""
        ...

    @abstractmethod
    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Execute a SQL statement. Returns a backend-specific result."""
        ...

    @abstractmethod
    async def execute_many(self, sql: str, params_list: Sequence[Sequence[Any]]) -> None:
        """Execute a SQL statement with multiple parameter sets."""
        ...

    @abstractmethod
    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Execute and return all rows as dicts."""
        ...

    @abstractmethod
    async def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute and return one row as dict, or None."""
        ...

    @abstractmethod
    async def fetch_val(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Execute and return a scalar value."""
        ...

    # ── Transaction management ───────────────────────────────────────

    @abstractmethod
    async def begin(self) -> None:
        """Start a transaction."""
        ...

    @abstractmethod
    async def commit(self) -> None:
        """Commit the current transaction."""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback the current transaction."""
        ...

    # ── Introspection ────────────────────────────────────────────────

    @abstractmethod
    async def get_tables(self) -> List[str]:
        """List all table names."""
        ...

    # ── Result helpers ───────────────────────────────────────────────

    def adapt_sql(self, sql: str) -> str:
        """
        Adapt SQL placeholders from qmark (?) to the backend's param style.

        Override this in backends that use a different param style.
        """
        return sql

    def last_insert_id(self, result: Any) -> Optional[int]:
        """Extract last inserted ID from an ``execute`` result."""
        return getattr(result, "lastrowid", None)

    def rowcount(self, result: Any) -> int:
        """Extract the number of affected rows from an ``execute`` result."""
        count = getattr(result, "rowcount", None)
        return count if count is not None and count >= 0 else 0

    @property
    def is_connected(self) -> bool:
        return False

    @property
    def dialect(self) -> str:
        return self.capabilities.name
