"""Unified exception taxonomy.

Every domain exception inherits from ``GeoBridgeError`` and carries
structured context fields that make engine faults easy to diagnose.

Expected failure modes of the bridge (context or storage allocation
failure, malformed WKT/WKB, failed coercion) are *not* exceptions: those
operations return ``None``.  Exceptions are reserved for misuse.

Taxonomy categories
-------------------
- ``ValidationError``  — bad arguments or configuration.
- ``EngineError``      — use of a finished context or a foreign handle.
- ``HandleError``      — destroyed, borrowed or double-destroyed handle.
- ``RegistryError``    — conflicting class registry installation.

Every exception exposes ``to_error_dict()`` for a stable structured
error payload suitable for logging.
"""

from __future__ import annotations


class GeoBridgeError(Exception):
    """Base exception for all bridge errors.

    Attributes:
        message: Human-readable error description.
        operation: Operation that failed (e.g. ``"destroy"``, ``"parse_wkt"``).
        code: Machine-readable error code (e.g. ``"HANDLE_DESTROYED"``).
    """

    #: Default operation for subclasses (override via class attribute or kwarg).
    default_operation: str = ""
    #: Default code for subclasses (override via class attribute or kwarg).
    default_code: str = ""

    def __init__(
        self,
        message: str = "",
        *,
        operation: str = "",
        code: str = "",
    ) -> None:
        self.message = message
        self.operation = operation or self.default_operation
        self.code = code or self.default_code
        super().__init__(message)

    @property
    def category(self) -> str:
        """Return the error category based on concrete class."""
        if isinstance(self, ValidationError):
            return "validation"
        if isinstance(self, HandleError):
            return "handle"
        if isinstance(self, EngineError):
            return "engine"
        if isinstance(self, RegistryError):
            return "registry"
        return "internal"

    def to_error_dict(self) -> dict[str, object]:
        """Return a structured error payload with stable keys."""
        return {
            "category": self.category,
            "code": self.code,
            "operation": self.operation,
            "message": self.message,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class ValidationError(GeoBridgeError):
    """Invalid argument or configuration value."""

    default_code = "VALIDATION_FAILED"


class EngineError(GeoBridgeError):
    """The engine was used outside its lifecycle rules."""

    default_code = "ENGINE_MISUSE"


class HandleError(EngineError):
    """A native handle was used after destruction or destroyed twice."""

    default_code = "HANDLE_INVALID"


class RegistryError(GeoBridgeError):
    """The process-wide class registry was initialised inconsistently."""

    default_operation = "init_registry"
    default_code = "REGISTRY_CONFLICT"
