"""
Storage layout shared by every worker.

Any process can recompute where an artifact lives from its metadata
alone, so no path is ever stored in the database.
"""

import os
from urllib.parse import quote

TEMP_DIR = "tmp"
DBS_DIR = "dbs"
UPLOADS_DIR = "uploads"


def db_filename(storage_root: str, dump_id: int, repository: str, commit: str) -> str:
    """Deterministic location of a converted artifact."""
    return os.path.join(
        storage_root,
        DBS_DIR,
        f"{dump_id}-{quote(repository, safe='')}@{commit}.lsif.db",
    )


def temp_filename(storage_root: str, upload_filename: str) -> str:
    """Staging location for a conversion in progress."""
    return os.path.join(storage_root, TEMP_DIR, os.path.basename(upload_filename))


def ensure_storage_dirs(storage_root: str) -> None:
    """Create the temp, artifact and upload directories if missing."""
    for name in (TEMP_DIR, DBS_DIR, UPLOADS_DIR):
        os.makedirs(os.path.join(storage_root, name), exist_ok=True)
