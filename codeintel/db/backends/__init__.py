"""
DB Backends Package — pluggable database adapters.

- SQLite (default, via aiosqlite)
- PostgreSQL (via asyncpg)
"""

from .base import DatabaseAdapter, AdapterCapabilities
from .sqlite import SQLiteAdapter
from .postgres import PostgresAdapter

__all__ = [
    "DatabaseAdapter",
    "AdapterCapabilities",
    "SQLiteAdapter",
    "PostgresAdapter",
]
