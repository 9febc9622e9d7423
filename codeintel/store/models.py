"""
Store models — rows of the metadata store as plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class UploadState(str, Enum):
    """Lifecycle of an upload row. A ``completed`` upload is a dump."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass
class Upload:
    """An unprocessed request to ingest one bundle."""

    id: int
    repository: str
    commit: str
    root: str
    filename: str
    state: UploadState = UploadState.QUEUED
    failure_summary: Optional[str] = None
    num_attempts: int = 0
    uploaded_at: float = 0.0
    finished_at: Optional[float] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Upload":
        return cls(
            id=row["id"],
            repository=row["repository"],
            commit=row["commit"],
            root=row["root"],
            filename=row["filename"],
            state=UploadState(row["state"]),
            failure_summary=row.get("failure_summary"),
            num_attempts=row.get("num_attempts") or 0,
            uploaded_at=row.get("uploaded_at") or 0.0,
            finished_at=row.get("finished_at"),
        )


@dataclass
class Dump:
    """A converted artifact for one (repository, commit, root)."""

    id: int
    repository: str
    commit: str
    root: str
    visible_at_tip: bool = False
    uploaded_at: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Dump":
        return cls(
            id=row["id"],
            repository=row["repository"],
            commit=row["commit"],
            root=row["root"],
            visible_at_tip=bool(row["visible_at_tip"]),
            uploaded_at=row.get("uploaded_at") or 0.0,
        )


@dataclass(frozen=True)
class Package:
    """A package exported by a dump."""

    scheme: str
    name: str
    version: Optional[str] = None


@dataclass(frozen=True)
class Reference:
    """A package referenced by a dump. ``filter`` is an opaque identifier filter."""

    scheme: str
    name: str
    version: Optional[str] = None
    filter: Optional[bytes] = None


@dataclass
class ConversionResult:
    """What a converter extracted besides the artifact file itself."""

    packages: List[Package] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)


def normalize_root(root: Optional[str]) -> str:
    """
    Normalize a root path prefix: no leading slash, trailing slash unless
    empty, so equal roots compare equal in overlap checks.
    """
    root = (root or "").strip().lstrip("/")
    if root in ("", "."):
        return ""
    return root if root.endswith("/") else root + "/"
