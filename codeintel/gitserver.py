"""
Gitserver client — commit-graph and tip lookups over HTTP via httpx.

Each repository lives on exactly one gitserver shard; the shard is picked
deterministically from the repository name so that every worker agrees.
Commands are sent to ``POST {addr}/exec`` and answered with raw stdout.

Usage::

    async with GitserverClient(["gitserver-0:3178", "gitserver-1:3178"]) as client:
        tip = await client.get_head("github.com/sourcegraph/sourcegraph")
        graph = await client.get_commits_near("github.com/sourcegraph/sourcegraph", tip)
"""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, List, Optional, Sequence, Set

import httpx

from .faults import GitserverFault

# commit -> parent commits
CommitGraph = Dict[str, Set[str]]

logger = logging.getLogger("codeintel.gitserver")

MAX_COMMITS_PER_UPDATE = 150


def addr_for(repository: str, gitservers: Sequence[str]) -> str:
    """Pick the gitserver shard responsible for ``repository``."""
    if not gitservers:
        raise GitserverFault(repository, "no gitservers configured")
    digest = hashlib.md5(repository.encode("utf-8")).digest()
    return gitservers[int.from_bytes(digest[:8], "big") % len(gitservers)]


def parse_commit_graph(output: str) -> CommitGraph:
    """Parse ``git log --pretty='%H %P'`` output into commit -> parents."""
    graph: CommitGraph = {}
    for line in output.splitlines():
        parts = line.split()
        if not parts:
            continue
        commit, parents = parts[0], parts[1:]
        graph.setdefault(commit, set()).update(parents)
    return graph


class GitserverClient:
    """
    Async gitserver client.

    Uses a shared httpx.AsyncClient for connection pooling. Transport
    errors are raised as ``GitserverFault`` and never retried here.
    """

    def __init__(
        self,
        gitservers: Sequence[str],
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.gitservers: List[str] = list(gitservers)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "GitserverClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _url(self, repository: str) -> str:
        addr = addr_for(repository, self.gitservers)
        if "://" not in addr:
            addr = f"http://{addr}"
        return f"{addr.rstrip('/')}/exec"

    async def exec(self, repository: str, args: List[str]) -> Optional[str]:
        """
        Run a git command against the repository's gitserver.

        Returns:
            Command stdout, or ``None`` if gitserver does not know the
            repository.

        Raises:
            GitserverFault: On transport errors, unexpected statuses or a
                failed command.
        """
        url = self._url(repository)
        try:
            response = await self._client.post(url, json={"repo": repository, "args": args})
        except httpx.HTTPError as exc:
            raise GitserverFault(repository, str(exc), metadata={"args": args}) from exc

        if response.status_code == 404:
            logger.debug(f"Repository {repository} not found on {url}")
            return None
        if response.status_code >= 400:
            raise GitserverFault(
                repository,
                f"unexpected status {response.status_code}",
                metadata={"args": args, "body": response.text[:200]},
            )

        error = response.headers.get("X-Exec-Error")
        exit_status = response.headers.get("X-Exec-Exit-Status", "0")
        if error or exit_status not in ("", "0"):
            raise GitserverFault(
                repository,
                error or f"git exited with status {exit_status}",
                metadata={"args": args, "exit_status": exit_status},
            )
        return response.text

    async def get_head(self, repository: str) -> Optional[str]:
        """Current tip commit, or ``None`` if the repository has no history."""
        try:
            output = await self.exec(repository, ["rev-parse", "HEAD"])
        except GitserverFault as fault:
            # an empty repository has no HEAD to resolve
            if fault.metadata.get("exit_status") == "128":
                return None
            raise
        if output is None:
            return None
        return output.strip() or None

    async def get_commits_near(
        self,
        repository: str,
        commit: str,
        limit: int = MAX_COMMITS_PER_UPDATE,
    ) -> CommitGraph:
        """Up to ``limit`` commits reachable backward from ``commit``, with parents."""
        output = await self.exec(repository, ["log", "--pretty=%H %P", commit, f"-{limit}"])
        if output is None:
            return {}
        return parse_commit_graph(output)
