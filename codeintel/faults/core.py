"""
Faults - Core types and fault taxonomy for the ingestion worker.

Defines:
- Fault base class (structured fault objects)
- FaultDomain (functional area of the pipeline)
- Severity levels
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.

    Determines the log level used when a fault is recorded.
    """
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the stage of the pipeline where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.CONVERSION = FaultDomain("conversion", "Bundle conversion failures")
FaultDomain.STORE = FaultDomain("store", "Metadata store failures")
FaultDomain.IO = FaultDomain("io", "Filesystem operations")
FaultDomain.VCS = FaultDomain("vcs", "Version control lookups")
FaultDomain.LOCK = FaultDomain("lock", "Named lock coordination")


DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.CONVERSION: {"severity": Severity.ERROR, "retryable": False},
    FaultDomain.STORE: {"severity": Severity.ERROR, "retryable": True},
    FaultDomain.IO: {"severity": Severity.WARN, "retryable": True},
    FaultDomain.VCS: {"severity": Severity.ERROR, "retryable": True},
    FaultDomain.LOCK: {"severity": Severity.WARN, "retryable": True},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.

    Attributes:
        code: Stable machine-readable identifier (e.g., "NO_TIP_COMMIT")
        message: Human-readable summary
        severity: Fault severity (INFO, WARN, ERROR, FATAL)
        domain: Fault domain (CONFIG, STORE, VCS, ...)
        retryable: Whether the failed upload may be retried as-is
        metadata: Additional context data

    Example:
        ```python
        raise Fault(
            code="NO_TIP_COMMIT",
            message="No tip commit available for repository",
            domain=FaultDomain.VCS,
        )
        ```
    """

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        self.code = code if code is not None else getattr(self, "code", None)
        self.message = message if message is not None else getattr(self, "message", None)
        self.domain = domain if domain is not None else getattr(self, "domain", None)

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")

        super().__init__(self.message)

        defaults = DOMAIN_DEFAULTS.get(self.domain, {"severity": Severity.ERROR, "retryable": False})
        self.severity = severity or defaults["severity"]
        self.retryable = retryable if retryable is not None else defaults["retryable"]
        self.metadata = metadata or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"Fault(code={self.code!r}, domain={self.domain.value}, "
            f"severity={self.severity.value})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.

        Returns:
            Dictionary representation suitable for logging and for the
            failure summary recorded on an errored upload.
        """
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "metadata": {k: v for k, v in self.metadata.items() if not k.startswith("_")},
        }
