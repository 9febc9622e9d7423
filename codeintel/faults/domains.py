"""
Faults - Domain-specific fault types.

Provides concrete fault classes for each pipeline domain:
- CONFIG faults
- CONVERSION faults
- STORE faults
- IO faults
- VCS faults
- LOCK faults
"""

from typing import Any, Optional
from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Base class for configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=severity,
            retryable=False,
            metadata=metadata,
        )


class ConfigInvalidFault(ConfigFault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Configuration key '{key}' is invalid: {reason}",
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# CONVERSION Faults
# ============================================================================

class ConversionFault(Fault):
    """The bundle could not be turned into an artifact. Raised by converters."""

    def __init__(self, filename: str, reason: str, **kwargs):
        super().__init__(
            code="CONVERSION_FAILED",
            message=f"Failed to convert '{filename}': {reason}",
            domain=FaultDomain.CONVERSION,
            metadata={"filename": filename, "reason": reason, **kwargs.get("metadata", {})},
        )


class ConverterNotFoundFault(Fault):
    """The configured converter import path does not resolve."""

    def __init__(self, path: str, reason: str, **kwargs):
        super().__init__(
            code="CONVERTER_NOT_FOUND",
            message=f"Cannot load converter '{path}': {reason}",
            domain=FaultDomain.CONFIG,
            metadata={"path": path, **kwargs.get("metadata", {})},
        )


# ============================================================================
# STORE Faults
# ============================================================================

class StoreFault(Fault):
    """Base class for metadata store faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = True,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.STORE,
            severity=severity,
            retryable=retryable,
            metadata=metadata,
        )


class DatabaseConnectionFault(StoreFault):
    """Connecting to the metadata store failed."""

    def __init__(self, url: str, reason: str, **kwargs):
        super().__init__(
            code="DATABASE_CONNECTION_FAILED",
            message=f"Database connection failed ({url}): {reason}",
            metadata={"url": url, "reason": reason, **kwargs.get("metadata", {})},
        )


class QueryFault(StoreFault):
    """A statement against the metadata store failed."""

    def __init__(self, operation: str, reason: str, **kwargs):
        super().__init__(
            code="QUERY_FAILED",
            message=f"Query '{operation}' failed: {reason}",
            metadata={"operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# IO Faults
# ============================================================================

class ArtifactExistsFault(Fault):
    """The final artifact path is already occupied."""

    def __init__(self, path: str, **kwargs):
        super().__init__(
            code="ARTIFACT_EXISTS",
            message=f"Refusing to overwrite existing artifact at '{path}'",
            domain=FaultDomain.IO,
            severity=Severity.ERROR,
            retryable=False,
            metadata={"path": path, **kwargs.get("metadata", {})},
        )


# ============================================================================
# VCS Faults
# ============================================================================

class NoTipFault(Fault):
    """The repository has no resolvable tip commit."""

    def __init__(self, repository: str, **kwargs):
        super().__init__(
            code="NO_TIP_COMMIT",
            message=f"No tip commit available for repository '{repository}'",
            domain=FaultDomain.VCS,
            severity=Severity.FATAL,
            retryable=False,
            metadata={"repository": repository, **kwargs.get("metadata", {})},
        )


class GitserverFault(Fault):
    """A gitserver command failed."""

    def __init__(self, repository: str, reason: str, **kwargs):
        super().__init__(
            code="GITSERVER_FAILED",
            message=f"Gitserver request for '{repository}' failed: {reason}",
            domain=FaultDomain.VCS,
            metadata={"repository": repository, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# LOCK Faults
# ============================================================================

class LockTimeoutFault(Fault):
    """The named lock could not be acquired in time."""

    def __init__(self, name: str, timeout: float, **kwargs):
        super().__init__(
            code="LOCK_TIMEOUT",
            message=f"Timed out after {timeout}s waiting for lock '{name}'",
            domain=FaultDomain.LOCK,
            metadata={"name": name, "timeout": timeout, **kwargs.get("metadata", {})},
        )


class LockLostFault(Fault):
    """The lease on a held lock expired or was taken over mid-section."""

    def __init__(self, name: str, **kwargs):
        super().__init__(
            code="LOCK_LOST",
            message=f"Lost lease on lock '{name}' before the critical section finished",
            domain=FaultDomain.LOCK,
            metadata={"name": name, **kwargs.get("metadata", {})},
        )
