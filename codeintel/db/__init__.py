"""
Database — async access to the worker's metadata store.

Provides:
- Database: connection manager with transaction support
- SQLite driver (default) and PostgreSQL adapter
- Structured faults (DatabaseConnectionFault, QueryFault)
"""

from .engine import Database, now
from .backends import (
    DatabaseAdapter,
    AdapterCapabilities,
    SQLiteAdapter,
    PostgresAdapter,
)
from ..faults.domains import DatabaseConnectionFault, QueryFault

__all__ = [
    "Database",
    "now",
    "DatabaseAdapter",
    "AdapterCapabilities",
    "SQLiteAdapter",
    "PostgresAdapter",
    "DatabaseConnectionFault",
    "QueryFault",
]
