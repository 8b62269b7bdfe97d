"""
Structured error types for the run registry.

Every failure the registry surfaces to a caller is a ``RegistryError``
subclass carrying a category, a retry hint, structured context and the
chained cause. Callers decide what to do from the *type*; logs and reports
get the metadata from ``to_dict()``.

Manifesto:
    - **Typed hierarchy:** one class per failure a caller can act on
    - **Indistinguishable misses:** ``UnknownRunError`` is raised both for
      absent runs and for runs the caller may not see
    - **Storage is wrapped:** SQLAlchemy exceptions never cross the store
      boundary; they arrive as ``StorageError`` with the original as cause
    - **Error chaining:** ``cause=`` preserves the root exception

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                       RegistryError                          │
        │  (category, retryable, context, cause)                       │
        ├─────────────────────────────────────────────────────────────┤
        │  UnknownRunError      ConflictError       StorageError       │
        │  (NOT_FOUND)          (CONFLICT)          (STORAGE, retry)   │
        │                                                              │
        │  NoCreateError        PermissionDenied    BadStateChange     │
        │  (POLICY)             (AUTH)              (STATE)            │
        │                                                              │
        │  CredentialError      NoListenerError     NotificationError  │
        │   ├ InvalidCredential (NOT_FOUND)         (NOTIFICATION)     │
        │   └ NoCredential                                             │
        │                                                              │
        │  ConfigError (CONFIG)                                        │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = UnknownRunError("abc")
    >>> error.category
    <ErrorCategory.NOT_FOUND: 'NOT_FOUND'>
    >>> StorageError("commit failed").retryable
    True

Tags:
    error-handling, exception-hierarchy, run-registry

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard categories for classifying registry errors."""

    NOT_FOUND = "NOT_FOUND"          # Unknown run, listener
    CONFLICT = "CONFLICT"            # Identifier collision
    STORAGE = "STORAGE"              # Transaction, read, write failures
    POLICY = "POLICY"                # Creation refused
    AUTH = "AUTH"                    # Principal lacks a permission
    STATE = "STATE"                  # Operation not allowed in current status
    SECURITY = "SECURITY"            # Credentials and trust anchors
    NOTIFICATION = "NOTIFICATION"    # Completion message delivery
    CONFIG = "CONFIG"                # Missing or invalid settings
    INTERNAL = "INTERNAL"            # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging."""

    run_id: str | None = None
    principal: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ("run_id", "principal", "operation"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RegistryError(Exception):
    """
    Base exception for all run registry errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.

    Examples:
        >>> error = RegistryError("boom").with_context(run_id="r1", attempt=2)
        >>> error.context.run_id
        'r1'
        >>> error.to_dict()["context"]
        {'run_id': 'r1', 'attempt': 2}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RegistryError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StorageError("flush failed").with_context(run_id=run.id)
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# RUN LOOKUP AND REGISTRATION
# =============================================================================


class UnknownRunError(RegistryError):
    """The run does not exist or the principal may not see it.

    Both causes carry the same message.
    """

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, run_id: str | None = None, **kwargs: Any):
        super().__init__("unknown run", **kwargs)
        if run_id is not None:
            self.context.run_id = run_id


class ConflictError(RegistryError):
    """A registration collided with a differently-owned run."""

    default_category = ErrorCategory.CONFLICT


class StorageError(RegistryError):
    """A transaction could not read, write or commit."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


# =============================================================================
# POLICY AND STATE
# =============================================================================


class NoCreateError(RegistryError):
    """A new run may not be created."""

    default_category = ErrorCategory.POLICY


class PermissionDeniedError(RegistryError):
    """The principal can see the run but may not perform the operation."""

    default_category = ErrorCategory.AUTH


class BadStateChangeError(RegistryError):
    """The run's status does not allow the requested change."""

    default_category = ErrorCategory.STATE


class CredentialError(RegistryError):
    """Base for credential and trust anchor problems."""

    default_category = ErrorCategory.SECURITY


class InvalidCredentialError(CredentialError):
    """A credential or trust description is malformed."""


class NoCredentialError(CredentialError):
    """No credential or trust with the given id is attached to the run."""

    def __init__(self, item_id: str, **kwargs: Any):
        super().__init__(f"no such credential or trust: {item_id}", **kwargs)
        self.item_id = item_id


class NoListenerError(RegistryError):
    """The run has no listener (or listener property) with that name."""

    default_category = ErrorCategory.NOT_FOUND


class NotificationError(RegistryError):
    """A completion message could not be delivered."""

    default_category = ErrorCategory.NOTIFICATION
    default_retryable = True


class ConfigError(RegistryError):
    """Configuration is missing or invalid."""

    default_category = ErrorCategory.CONFIG


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RegistryError",
    "UnknownRunError",
    "ConflictError",
    "StorageError",
    "NoCreateError",
    "PermissionDeniedError",
    "BadStateChangeError",
    "CredentialError",
    "InvalidCredentialError",
    "NoCredentialError",
    "NoListenerError",
    "NotificationError",
    "ConfigError",
]
