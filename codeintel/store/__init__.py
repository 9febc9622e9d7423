"""
Store — metadata and file layout for uploads and dumps.
"""

from ..gitserver import CommitGraph
from .models import (
    ConversionResult,
    Dump,
    Package,
    Reference,
    Upload,
    UploadState,
    normalize_root,
)
from .paths import DBS_DIR, TEMP_DIR, UPLOADS_DIR, db_filename, temp_filename, ensure_storage_dirs
from .schema import ensure_schema
from .locks import hold_lock, with_lock
from .dumps import DumpManager
from .dependencies import DependencyManager
from .uploads import UploadManager

__all__ = [
    "CommitGraph",
    "ConversionResult",
    "Dump",
    "Package",
    "Reference",
    "Upload",
    "UploadState",
    "normalize_root",
    "DBS_DIR",
    "TEMP_DIR",
    "UPLOADS_DIR",
    "db_filename",
    "temp_filename",
    "ensure_storage_dirs",
    "ensure_schema",
    "hold_lock",
    "with_lock",
    "DumpManager",
    "DependencyManager",
    "UploadManager",
]
