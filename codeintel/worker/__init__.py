"""
Worker — conversion, visibility and retention pipeline for uploads.
"""

from .converter import Converter, ConversionResult, load_converter
from .conversion import (
    RETENTION_LOCK,
    convert_upload,
    convert_database,
    update_commits_and_dumps_visible_from_tip,
    merge_commit_graphs,
    purge_old_dumps,
    dirsize,
    filesize,
)
from .processor import Worker, failure_summary

__all__ = [
    "Converter",
    "ConversionResult",
    "load_converter",
    "RETENTION_LOCK",
    "convert_upload",
    "convert_database",
    "update_commits_and_dumps_visible_from_tip",
    "merge_commit_graphs",
    "purge_old_dumps",
    "dirsize",
    "filesize",
    "Worker",
    "failure_summary",
]
