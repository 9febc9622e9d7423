"""
codeintel - Code-intelligence upload ingestion and retention worker

- Conversion: bundles become queryable dumps, published atomically
  alongside their package metadata
- Visibility: per-repository commit graphs decide which dumps are
  visible from the tip
- Retention: a fleet-wide lock serialises eviction of old dumps when the
  artifact directory exceeds its budget
"""

__version__ = "0.1.0"

from .config import ConfigLoader, ConfigStore, ConfigUpdate, Replace, Unset, WorkerConfig
from .db import Database
from .faults import Fault, FaultDomain, Severity, NoTipFault, ArtifactExistsFault, LockTimeoutFault
from .tracing import TracingContext, add_tags

__all__ = [
    "__version__",
    "ConfigLoader",
    "ConfigStore",
    "ConfigUpdate",
    "Replace",
    "Unset",
    "WorkerConfig",
    "Database",
    "Fault",
    "FaultDomain",
    "Severity",
    "NoTipFault",
    "ArtifactExistsFault",
    "LockTimeoutFault",
    "TracingContext",
    "add_tags",
]
