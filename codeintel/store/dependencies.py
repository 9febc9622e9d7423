"""
Dependency store — package edges of a dump.

``lsif_packages`` records what a dump exports and ``lsif_references``
what it imports. Rows are written inside the caller's transaction and
removed with their dump by the foreign key cascade.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from ..db import Database
from ..tracing import TracingContext
from .models import Package, Reference

logger = logging.getLogger("codeintel.store.dependencies")


class DependencyManager:
    """Write and read the package edges of dumps."""

    def __init__(self, db: Database):
        self.db = db

    async def add_packages_and_references(
        self,
        dump_id: int,
        packages: Iterable[Package],
        references: Iterable[Reference],
        ctx: Optional[TracingContext] = None,
    ) -> None:
        """
        Insert the dump's exported and referenced packages.

        Joins the caller's transaction when one is open, so the edges
        become visible together with the dump itself.
        """
        package_rows = [
            [p.scheme, p.name, p.version, dump_id]
            for p in dict.fromkeys(packages)
        ]
        reference_rows = [
            [r.scheme, r.name, r.version, r.filter, dump_id]
            for r in dict.fromkeys(references)
        ]

        async with self.db.transaction():
            await self.db.execute_many(
                "INSERT INTO lsif_packages (scheme, name, version, dump_id) VALUES (?, ?, ?, ?)",
                package_rows,
            )
            await self.db.execute_many(
                "INSERT INTO lsif_references (scheme, name, version, filter, dump_id) "
                "VALUES (?, ?, ?, ?, ?)",
                reference_rows,
            )

        (ctx or TracingContext()).logger.debug(
            "Added packages and references",
            extra={"packages": len(package_rows), "references": len(reference_rows)},
        )

    async def get_packages(self, dump_id: int) -> List[Package]:
        rows = await self.db.fetch_all(
            "SELECT scheme, name, version FROM lsif_packages WHERE dump_id = ? ORDER BY id",
            [dump_id],
        )
        return [Package(row["scheme"], row["name"], row["version"]) for row in rows]

    async def get_references(self, dump_id: int) -> List[Reference]:
        rows = await self.db.fetch_all(
            "SELECT scheme, name, version, filter FROM lsif_references WHERE dump_id = ? ORDER BY id",
            [dump_id],
        )
        return [
            Reference(
                row["scheme"],
                row["name"],
                row["version"],
                bytes(row["filter"]) if row["filter"] is not None else None,
            )
            for row in rows
        ]
