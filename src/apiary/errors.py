"""
Exception hierarchy for apiary.

All apiary exceptions inherit from ApiaryError, so callers can catch every
store, plugin and codec failure with a single except clause.

Exception Categories:
    - RequestError: Lookup or mutation of a stored request failed
    - PluginError: Kind resolution or capability invocation failed
    - CodecError: The backing document could not be decoded
    - StorageError: The backing file could not be read or written

Every error carries a numeric code, a context dict and, where one exists,
a suggestion for the user.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Request errors: 1xxx
ERROR_REQUEST_NOT_FOUND = 1001
ERROR_KIND_MISMATCH = 1002
ERROR_DUPLICATE_RESPONSE = 1003

# Plugin errors: 2xxx
ERROR_UNKNOWN_KIND = 2001
ERROR_NOT_EXECUTABLE = 2002
ERROR_PERFORM_FAILED = 2003
ERROR_PERFORM_CANCELLED = 2004
ERROR_INVALID_PAYLOAD = 2005

# Codec errors: 3xxx
ERROR_UNSUPPORTED_VERSION = 3001
ERROR_INCONSISTENT_DOCUMENT = 3002
ERROR_MALFORMED_DOCUMENT = 3003

# Storage errors: 5xxx
ERROR_STORAGE_READ = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORE_CLOSED = 5003


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class ApiaryError(Exception):
    """
    Base exception for all apiary errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Request Errors
# =============================================================================


@dataclass
class RequestError(ApiaryError):
    """
    Base class for errors about a single stored request.

    Attributes:
        request_id: Id of the request the operation targeted
        operation: Store operation that failed (e.g. "update", "rename")
    """

    request_id: str = ""
    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "request_id": self.request_id,
            "operation": self.operation,
        })


@dataclass
class RequestNotFoundError(RequestError):
    """Raised when no request with the given id exists."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Request not found: {self.request_id}"
        if self.code == 0:
            self.code = ERROR_REQUEST_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Use 'apiary list' to see stored request ids"
        super().__post_init__()


@dataclass
class KindMismatchError(RequestError):
    """Raised when a payload's kind differs from the stored request's kind."""

    expected: str = ""
    actual: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Kind mismatch for {self.request_id or 'payload'}: "
                f"expected {self.expected!r}, got {self.actual!r}"
            )
        if self.code == 0:
            self.code = ERROR_KIND_MISMATCH
        if not self.suggestion:
            self.suggestion = "A request keeps its kind; create a new request instead"
        super().__post_init__()
        self.context.update({
            "expected": self.expected,
            "actual": self.actual,
        })


@dataclass
class DuplicateResponseError(RequestError):
    """Raised when a response with the same sent_at is already recorded."""

    sent_at: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Request {self.request_id} already has a response sent at {self.sent_at}"
            )
        if self.code == 0:
            self.code = ERROR_DUPLICATE_RESPONSE
        super().__post_init__()
        self.context["sent_at"] = self.sent_at


# =============================================================================
# Plugin Errors
# =============================================================================


@dataclass
class PluginError(ApiaryError):
    """
    Base class for kind and capability errors.

    Attributes:
        kind: The kind tag involved
    """

    kind: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["kind"] = self.kind


@dataclass
class UnknownKindError(PluginError):
    """Raised when a kind has no registered plugin."""

    available: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown kind: {self.kind!r}"
        if self.code == 0:
            self.code = ERROR_UNKNOWN_KIND
        if not self.suggestion and self.available:
            self.suggestion = f"Available kinds: {', '.join(sorted(self.available))}"
        super().__post_init__()
        self.context["available"] = self.available


@dataclass
class NotExecutableError(PluginError):
    """Raised when perform is requested for a kind without a capability."""

    request_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Requests of kind {self.kind!r} cannot be performed"
        if self.code == 0:
            self.code = ERROR_NOT_EXECUTABLE
        super().__post_init__()
        self.context["request_id"] = self.request_id


@dataclass
class PerformError(PluginError):
    """
    Raised when a plugin's perform capability fails.

    The adapter's original exception is kept as __cause__; its text is
    copied into underlying_error for serialization.
    """

    request_id: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Perform failed for {self.request_id} ({self.kind}): {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_PERFORM_FAILED
        super().__post_init__()
        self.context.update({
            "request_id": self.request_id,
            "underlying_error": self.underlying_error,
        })


@dataclass
class PerformCancelledError(PluginError):
    """Raised when a perform call was cancelled before its result was recorded."""

    request_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Perform cancelled for {self.request_id}"
        if self.code == 0:
            self.code = ERROR_PERFORM_CANCELLED
        super().__post_init__()
        self.context["request_id"] = self.request_id


@dataclass
class InvalidPayloadError(PluginError):
    """Raised when a payload does not validate against its kind's model."""

    details: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid {self.kind} payload: {self.details}"
        if self.code == 0:
            self.code = ERROR_INVALID_PAYLOAD
        super().__post_init__()
        self.context["details"] = self.details


# =============================================================================
# Codec Errors
# =============================================================================


@dataclass
class CodecError(ApiaryError):
    """Base class for errors decoding the backing document."""


@dataclass
class UnsupportedVersionError(CodecError):
    """Raised when the document's $version is not one this build reads."""

    version: Any = None
    supported: list[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unsupported document version: {self.version!r}"
        if self.code == 0:
            self.code = ERROR_UNSUPPORTED_VERSION
        if not self.suggestion:
            self.suggestion = "The file was written by a different release of apiary"
        self.context.update({
            "version": self.version,
            "supported": self.supported,
        })


@dataclass
class InconsistentDocumentError(CodecError):
    """Raised when the index and the per-kind tables disagree."""

    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Inconsistent document: {self.reason}"
        if self.code == 0:
            self.code = ERROR_INCONSISTENT_DOCUMENT
        self.context["reason"] = self.reason


@dataclass
class MalformedDocumentError(CodecError):
    """Raised when the document is not JSON or has the wrong shape."""

    details: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Malformed document: {self.details}"
        if self.code == 0:
            self.code = ERROR_MALFORMED_DOCUMENT
        self.context["details"] = self.details


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(ApiaryError):
    """
    Base class for backing-file errors.

    Attributes:
        operation: The operation that failed (e.g. "load", "flush")
        path: The backing file
    """

    operation: str = ""
    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "operation": self.operation,
            "path": self.path,
        })


@dataclass
class StorageReadError(StorageError):
    """Raised when the backing file cannot be read."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to read {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageWriteError(StorageError):
    """Raised when the backing file cannot be rewritten."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to write {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        if not self.suggestion:
            self.suggestion = "Check that the directory exists and is writable"
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StoreClosedError(StorageError):
    """Raised when a store is used after close()."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Store is closed: {self.path}"
        if self.code == 0:
            self.code = ERROR_STORE_CLOSED
        super().__post_init__()
