"""
Faults - structured error taxonomy for the ingestion worker.

Every failure the pipeline raises on purpose is a ``Fault`` carrying a
stable code, a domain and retry semantics, so the worker loop can record
a useful failure summary on the errored upload.
"""

from .core import Fault, FaultDomain, Severity
from .domains import (
    ConfigFault,
    ConfigInvalidFault,
    ConversionFault,
    ConverterNotFoundFault,
    StoreFault,
    DatabaseConnectionFault,
    QueryFault,
    ArtifactExistsFault,
    NoTipFault,
    GitserverFault,
    LockTimeoutFault,
    LockLostFault,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigFault",
    "ConfigInvalidFault",
    "ConversionFault",
    "ConverterNotFoundFault",
    "StoreFault",
    "DatabaseConnectionFault",
    "QueryFault",
    "ArtifactExistsFault",
    "NoTipFault",
    "GitserverFault",
    "LockTimeoutFault",
    "LockLostFault",
]
