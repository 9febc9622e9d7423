"""
Shared test fixtures and helpers for the codeintel test suite.

Provides:
- db: a connected SQLite ``Database`` with the schema applied
- storage_root: a temp storage tree with tmp/, dbs/ and uploads/
- FakeConverter: a converter that writes a fixed payload
- FakeGitserver: an httpx MockTransport speaking the gitserver exec protocol
"""

import json
import os
from collections import deque
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from codeintel.config import WorkerConfig
from codeintel.db import Database, now
from codeintel.store import (
    ConversionResult,
    DependencyManager,
    DumpManager,
    Package,
    Reference,
    UploadManager,
    db_filename,
    ensure_schema,
    ensure_storage_dirs,
)

GITSERVER = "gitserver-0:3178"
REPO = "github.com/sourcegraph/codeintel-test"


def sha(n: int) -> str:
    """Deterministic 40-character commit id."""
    return f"{n:040x}"


# ============================================================================
# Fakes
# ============================================================================


class FakeConverter:
    """Writes ``payload`` to the destination and reports fixed packages."""

    def __init__(
        self,
        payload: bytes = b"\x00" * 128,
        packages: Optional[List[Package]] = None,
        references: Optional[List[Reference]] = None,
        error: Optional[BaseException] = None,
        write_partial: bool = False,
    ):
        self.payload = payload
        self.packages = packages or []
        self.references = references or []
        self.error = error
        self.write_partial = write_partial
        self.calls: List[tuple] = []

    async def convert(self, source_path, dest_path, ctx=None):
        self.calls.append((source_path, dest_path))
        if self.write_partial:
            with open(dest_path, "wb") as f:
                f.write(self.payload[: len(self.payload) // 2])
        if self.error is not None:
            raise self.error
        with open(dest_path, "wb") as f:
            f.write(self.payload)
        return ConversionResult(list(self.packages), list(self.references))


class FakeGitserver:
    """
    In-memory gitserver.

    ``repos`` maps repository -> {"head": commit or None, "parents": {commit: [parents]}}.
    """

    def __init__(self, repos: Optional[Dict[str, dict]] = None):
        self.repos = repos or {}
        self.requests: List[dict] = []

    def add_chain(self, repository: str, length: int, head: Optional[int] = None) -> List[str]:
        """Linear history sha(0) <- sha(1) <- ... ; head defaults to the last commit."""
        commits = [sha(i) for i in range(length)]
        parents = {c: ([commits[i - 1]] if i else []) for i, c in enumerate(commits)}
        self.repos[repository] = {
            "head": commits[head if head is not None else length - 1],
            "parents": parents,
        }
        return commits

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        repo = self.repos.get(body["repo"])
        if repo is None:
            return httpx.Response(404, text="repository not found")

        args = body["args"]
        if args[:2] == ["rev-parse", "HEAD"]:
            if repo["head"] is None:
                return httpx.Response(200, text="", headers={"X-Exec-Exit-Status": "128"})
            return httpx.Response(200, text=repo["head"] + "\n")

        if args[0] == "log":
            start, limit = args[2], int(args[3].lstrip("-"))
            lines, seen, queue = [], set(), deque([start])
            while queue and len(lines) < limit:
                commit = queue.popleft()
                if commit in seen or commit not in repo["parents"]:
                    continue
                seen.add(commit)
                parents = repo["parents"][commit]
                lines.append(" ".join([commit, *parents]))
                queue.extend(parents)
            return httpx.Response(200, text="\n".join(lines) + "\n")

        return httpx.Response(200, text="", headers={"X-Exec-Error": f"unsupported: {args}"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "storage"
    ensure_storage_dirs(str(root))
    return str(root)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'lsif.db'}"


@pytest_asyncio.fixture
async def db(db_url):
    database = Database(db_url)
    await database.connect()
    await ensure_schema(database)
    yield database
    await database.disconnect()


@pytest.fixture
def gitserver():
    return FakeGitserver()


@pytest_asyncio.fixture
async def http_client(gitserver):
    client = gitserver.client()
    yield client
    await client.aclose()


@pytest.fixture
def dump_manager(db, storage_root, http_client):
    return DumpManager(db, storage_root, http_client=http_client)


@pytest.fixture
def dependency_manager(db):
    return DependencyManager(db)


@pytest.fixture
def upload_manager(db):
    return UploadManager(db)


@pytest.fixture
def config(storage_root):
    return WorkerConfig(
        storage_root=storage_root,
        gitservers=[GITSERVER],
        lock_poll_interval=0.01,
        lock_timeout=10.0,
    )


# ============================================================================
# Helpers
# ============================================================================


def write_bundle(storage_root: str, name: str = "bundle.lsif.gz", content: bytes = b"bundle") -> str:
    path = os.path.join(storage_root, "uploads", name)
    with open(path, "wb") as f:
        f.write(content)
    return path


async def insert_dump(
    db: Database,
    storage_root: str,
    *,
    repository: str = REPO,
    commit: str = sha(0),
    root: str = "",
    size: int = 0,
    uploaded_at: Optional[float] = None,
    visible_at_tip: bool = False,
) -> int:
    """Insert a completed upload directly and write its file with ``size`` bytes."""
    dump_id = await db.insert(
        'INSERT INTO lsif_uploads (repository, "commit", root, filename, state, visible_at_tip, uploaded_at) '
        "VALUES (?, ?, ?, ?, 'completed', ?, ?)",
        [repository, commit, root, "unused", visible_at_tip, uploaded_at if uploaded_at is not None else now()],
    )
    with open(db_filename(storage_root, dump_id, repository, commit), "wb") as f:
        f.write(b"\x00" * size)
    return dump_id
