"""
Dump store — the catalogue of converted artifacts.

Owns dump rows, their files under ``<storage_root>/dbs``, the per-repository
commit graph, and the ``visible_at_tip`` flag derived from it.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from typing import Dict, List, Optional, Sequence

import httpx

from ..db import Database
from ..gitserver import CommitGraph, GitserverClient, MAX_COMMITS_PER_UPDATE
from ..tracing import TracingContext
from .models import Dump
from .paths import db_filename

logger = logging.getLogger("codeintel.store.dumps")

_DUMP_COLUMNS = 'id, repository, "commit", root, visible_at_tip, uploaded_at'


class DumpManager:
    """
    Access to dumps (completed uploads) and the commit graph.

    Args:
        db: Metadata store.
        storage_root: Root of the artifact directory tree.
        http_client: Optional shared httpx client for gitserver requests.
        max_commits_per_update: How far back a single discovery walks.
    """

    def __init__(
        self,
        db: Database,
        storage_root: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        max_commits_per_update: int = MAX_COMMITS_PER_UPDATE,
    ):
        self.db = db
        self.storage_root = storage_root
        self._http_client = http_client
        self.max_commits_per_update = max_commits_per_update

    def _gitserver(self, gitservers: Sequence[str]) -> GitserverClient:
        return GitserverClient(gitservers, client=self._http_client)

    # ── Lookup ───────────────────────────────────────────────────────

    async def get_dump(self, dump_id: int) -> Optional[Dump]:
        row = await self.db.fetch_one(
            f"SELECT {_DUMP_COLUMNS} FROM lsif_uploads WHERE id = ? AND state = 'completed'",
            [dump_id],
        )
        return Dump.from_row(row) if row else None

    async def get_dumps(self, repository: str) -> List[Dump]:
        rows = await self.db.fetch_all(
            f"SELECT {_DUMP_COLUMNS} FROM lsif_uploads "
            "WHERE repository = ? AND state = 'completed' ORDER BY id",
            [repository],
        )
        return [Dump.from_row(row) for row in rows]

    async def find_overlapping_dumps(self, repository: str, commit: str, root: str) -> List[Dump]:
        rows = await self.db.fetch_all(
            f"SELECT {_DUMP_COLUMNS} FROM lsif_uploads "
            "WHERE repository = ? AND \"commit\" = ? AND root = ? AND state = 'completed'",
            [repository, commit, root],
        )
        return [Dump.from_row(row) for row in rows]

    # ── Overlap & deletion ───────────────────────────────────────────

    async def delete_overlapping_dumps(
        self,
        repository: str,
        commit: str,
        root: str,
        ctx: Optional[TracingContext] = None,
    ) -> int:
        """
        Delete every dump for the same (repository, commit, root) so a new
        dump can take its place without violating the unique index.
        """
        log = (ctx or TracingContext()).logger
        dumps = await self.find_overlapping_dumps(repository, commit, root)
        for dump in dumps:
            log.info("Deleting overlapping dump", extra={"dump_id": dump.id})
            await self.delete_dump(dump)
        return len(dumps)

    async def delete_dump(self, dump: Dump) -> None:
        """
        Delete a dump's metadata, then its file.

        Package and reference rows go with it (ON DELETE CASCADE). A file
        that is already gone is not an error.
        """
        async with self.db.transaction():
            await self.db.execute("DELETE FROM lsif_uploads WHERE id = ?", [dump.id])

        filename = db_filename(self.storage_root, dump.id, dump.repository, dump.commit)
        try:
            os.unlink(filename)
        except FileNotFoundError:
            logger.debug(f"Dump file {filename} already removed")

    async def get_oldest_prunable_dump(self) -> Optional[Dump]:
        """
        The oldest dump not visible at its repository's tip, or ``None``.

        Dumps visible at tip keep code intelligence available and are
        never offered for pruning.
        """
        row = await self.db.fetch_one(
            f"SELECT {_DUMP_COLUMNS} FROM lsif_uploads "
            "WHERE state = 'completed' AND visible_at_tip = ? "
            "ORDER BY uploaded_at, id LIMIT 1",
            [False],
        )
        return Dump.from_row(row) if row else None

    # ── Commit graph ─────────────────────────────────────────────────

    async def discover_tip(
        self,
        repository: str,
        gitservers: Sequence[str],
        ctx: Optional[TracingContext] = None,
    ) -> Optional[str]:
        """Resolve the repository's current tip commit through gitserver."""
        async with self._gitserver(gitservers) as client:
            tip = await client.get_head(repository)
        (ctx or TracingContext()).logger.debug("Resolved tip", extra={"tip": tip})
        return tip

    async def discover_commits(
        self,
        repository: str,
        commit: str,
        gitservers: Sequence[str],
        ctx: Optional[TracingContext] = None,
    ) -> CommitGraph:
        """
        Commits reachable backward from ``commit``, mapped to their parents.

        Repositories without any upload are not tracked and yield an empty
        graph.
        """
        tracked = await self.db.fetch_val(
            "SELECT COUNT(*) FROM lsif_uploads WHERE repository = ?",
            [repository],
        )
        if not tracked:
            return {}

        async with self._gitserver(gitservers) as client:
            commits = await client.get_commits_near(repository, commit, self.max_commits_per_update)
        (ctx or TracingContext()).logger.debug(
            "Discovered commits", extra={"anchor": commit, "count": len(commits)}
        )
        return commits

    async def update_commits(
        self,
        repository: str,
        commits: CommitGraph,
        ctx: Optional[TracingContext] = None,
    ) -> None:
        """Persist a commit-graph fragment. Existing edges are left as they are."""
        rows = []
        for commit, parents in commits.items():
            if not parents:
                rows.append([repository, commit, ""])
            for parent in sorted(parents):
                rows.append([repository, commit, parent])

        async with self.db.transaction():
            await self.db.execute_many(
                'INSERT INTO lsif_commits (repository, "commit", parent_commit) VALUES (?, ?, ?) '
                'ON CONFLICT (repository, "commit", parent_commit) DO NOTHING',
                rows,
            )

    async def get_commit_graph(self, repository: str) -> CommitGraph:
        rows = await self.db.fetch_all(
            'SELECT "commit", parent_commit FROM lsif_commits WHERE repository = ?',
            [repository],
        )
        graph: CommitGraph = {}
        for row in rows:
            parents = graph.setdefault(row["commit"], set())
            if row["parent_commit"]:
                parents.add(row["parent_commit"])
        return graph

    async def update_dumps_visible_from_tip(
        self,
        repository: str,
        tip: str,
        ctx: Optional[TracingContext] = None,
    ) -> List[int]:
        """
        Recompute ``visible_at_tip`` for every dump of the repository.

        A dump is visible when its commit is an ancestor of (or equal to)
        the tip and no other dump with the same root is nearer to the tip.
        Returns the ids of the visible dumps.
        """
        distances = ancestor_distances(await self.get_commit_graph(repository), tip)
        visible = nearest_dumps_by_root(await self.get_dumps(repository), distances)

        async with self.db.transaction():
            await self.db.execute(
                "UPDATE lsif_uploads SET visible_at_tip = ? WHERE repository = ? AND state = 'completed'",
                [False, repository],
            )
            if visible:
                placeholders = ", ".join("?" for _ in visible)
                await self.db.execute(
                    f"UPDATE lsif_uploads SET visible_at_tip = ? WHERE id IN ({placeholders})",
                    [True, *visible],
                )

        (ctx or TracingContext()).logger.info(
            "Updated dumps visible from tip", extra={"tip": tip, "visible": len(visible)}
        )
        return visible


def ancestor_distances(graph: CommitGraph, tip: str) -> Dict[str, int]:
    """Breadth-first distance from ``tip`` to each of its ancestors (tip included)."""
    distances = {tip: 0}
    queue = deque([tip])
    while queue:
        commit = queue.popleft()
        for parent in graph.get(commit, ()):
            if parent not in distances:
                distances[parent] = distances[commit] + 1
                queue.append(parent)
    return distances


def nearest_dumps_by_root(dumps: Sequence[Dump], distances: Dict[str, int]) -> List[int]:
    """Per root, the id of the reachable dump closest to the tip (newest id wins ties)."""
    best: Dict[str, Dump] = {}
    for dump in dumps:
        if dump.commit not in distances:
            continue
        current = best.get(dump.root)
        if current is None:
            best[dump.root] = dump
            continue
        key = (distances[dump.commit], -dump.id)
        if key < (distances[current.commit], -current.id):
            best[dump.root] = dump
    return sorted(d.id for d in best.values())
