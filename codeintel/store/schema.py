"""
Metadata store schema.

A dump is an upload row in state ``completed``; the partial unique index
allows at most one dump per (repository, commit, root). Package and
reference rows cascade with their dump.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from ..db import Database

logger = logging.getLogger("codeintel.store.schema")

_TYPES: Dict[str, Dict[str, str]] = {
    "sqlite": {
        "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "bool": "INTEGER",
        "false": "0",
        "blob": "BLOB",
        "real": "REAL",
    },
    "postgresql": {
        "pk": "BIGSERIAL PRIMARY KEY",
        "bool": "BOOLEAN",
        "false": "FALSE",
        "blob": "BYTEA",
        "real": "DOUBLE PRECISION",
    },
}

_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS lsif_uploads (
        id {pk},
        repository TEXT NOT NULL,
        "commit" TEXT NOT NULL,
        root TEXT NOT NULL DEFAULT '',
        filename TEXT NOT NULL,
        state TEXT NOT NULL DEFAULT 'queued',
        failure_summary TEXT,
        num_attempts INTEGER NOT NULL DEFAULT 0,
        visible_at_tip {bool} NOT NULL DEFAULT {false},
        uploaded_at {real} NOT NULL,
        started_at {real},
        finished_at {real}
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS lsif_uploads_repository_commit_root
        ON lsif_uploads (repository, "commit", root) WHERE state = 'completed'
    """,
    """
    CREATE INDEX IF NOT EXISTS lsif_uploads_state ON lsif_uploads (state)
    """,
    """
    CREATE TABLE IF NOT EXISTS lsif_packages (
        id {pk},
        scheme TEXT NOT NULL,
        name TEXT NOT NULL,
        version TEXT,
        dump_id INTEGER NOT NULL REFERENCES lsif_uploads (id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lsif_references (
        id {pk},
        scheme TEXT NOT NULL,
        name TEXT NOT NULL,
        version TEXT,
        filter {blob},
        dump_id INTEGER NOT NULL REFERENCES lsif_uploads (id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lsif_commits (
        id {pk},
        repository TEXT NOT NULL,
        "commit" TEXT NOT NULL,
        parent_commit TEXT NOT NULL DEFAULT '',
        UNIQUE (repository, "commit", parent_commit)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lsif_locks (
        name TEXT PRIMARY KEY,
        owner TEXT NOT NULL,
        expires_at {real} NOT NULL
    )
    """,
]

TABLES = ["lsif_uploads", "lsif_packages", "lsif_references", "lsif_commits", "lsif_locks"]


def schema_statements(dialect: str) -> List[str]:
    """DDL for the given dialect, in creation order."""
    types = _TYPES[dialect]
    return [" ".join(stmt.format(**types).split()) for stmt in _STATEMENTS]


async def ensure_schema(db: Database) -> List[str]:
    """Create missing tables and indexes. Returns the tables that were created."""
    existing = set(await db.get_tables())
    for stmt in schema_statements(db.dialect):
        await db.execute(stmt)
    created = [t for t in TABLES if t not in existing]
    if created:
        logger.info(f"Created tables: {', '.join(created)}")
    return created
