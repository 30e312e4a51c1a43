"""
Error handling framework for Tidemark.

This module provides:
- Hierarchical exception classes
- Error context preservation
- Structured error responses
"""

from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import traceback
from contextlib import contextmanager

from .logging import get_logger


logger = get_logger("tidemark.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    CONFIGURATION = "configuration"
    NETWORK = "network"
    PERSISTENCE = "persistence"
    REMOTE = "remote"
    DATA = "data"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: Optional[str] = None
    operation: Optional[str] = None
    collection: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    stack_trace: Optional[str] = None


@dataclass
class ErrorInfo:
    """Structured error information."""
    code: str
    message: str
    severity: ErrorSeverity
    category: ErrorCategory
    context: ErrorContext
    cause: Optional[Exception] = None
    suggestions: List[str] = field(default_factory=list)
    is_retryable: bool = False


class TidemarkError(Exception):
    """Base exception for all Tidemark errors."""

    code: str = "TIDEMARK_ERROR"
    default_message: str = "An error occurred in Tidemark"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        """Initialize Tidemark error."""
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs

        if not self.context.stack_trace and cause is not None:
            self.context.stack_trace = "".join(
                traceback.format_exception(type(cause), cause, cause.__traceback__)
            )

        super().__init__(self.message)

    def to_info(self) -> ErrorInfo:
        """Convert to structured error info."""
        return ErrorInfo(
            code=self.code,
            message=self.message,
            severity=self.severity,
            category=self.category,
            context=self.context,
            cause=self.cause,
            suggestions=self.get_suggestions(),
            is_retryable=self.is_retryable
        )

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        info = self.to_info()
        return {
            "error": {
                "code": info.code,
                "message": info.message,
                "severity": info.severity.value,
                "category": info.category.value,
                "is_retryable": info.is_retryable,
                "suggestions": info.suggestions,
                "context": {
                    "timestamp": info.context.timestamp.isoformat(),
                    "component": info.context.component,
                    "operation": info.context.operation,
                    "collection": info.context.collection,
                    "metadata": info.context.metadata
                }
            }
        }


# Configuration Errors

class ConfigurationError(TidemarkError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Ensure all required configuration values are set",
        ]


class InvalidCollectionError(ConfigurationError):
    """A collection declaration is missing required fields."""
    code = "INVALID_COLLECTION"
    default_message = "Collection declaration has invalid arguments"

    def __init__(self, missing: List[str], **kwargs):
        self.missing = list(missing)
        message = f"Collection declaration has invalid arguments: missing {', '.join(self.missing)}"
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return [f"Provide a value for '{name}'" for name in self.missing]


class DuplicateCollectionError(ConfigurationError):
    """A collection with the same name was already declared."""
    code = "DUPLICATE_COLLECTION"
    default_message = "Collection already declared"

    def __init__(self, name: str, **kwargs):
        self.name = name
        super().__init__(f"A collection called '{name}' has already been declared", **kwargs)


class CollectionNotFoundError(ConfigurationError):
    """Reference to a collection that was never declared."""
    code = "COLLECTION_NOT_FOUND"
    default_message = "Collection does not exist"
    severity = ErrorSeverity.WARNING

    def __init__(self, name: str, **kwargs):
        self.name = name
        super().__init__(f"Collection '{name}' does not exist", **kwargs)


# Transport Errors

class TransportError(TidemarkError):
    """Transport adapter errors."""
    code = "TRANSPORT_ERROR"
    default_message = "Transport error occurred"
    category = ErrorCategory.NETWORK
    is_retryable = True


# Remote outcomes handed to per-record error callbacks

class RemoteSyncError(TidemarkError):
    """A queued record could not be synchronised with the remote."""
    code = "REMOTE_SYNC_ERROR"
    default_message = "Record could not be synchronised"
    category = ErrorCategory.REMOTE
    severity = ErrorSeverity.WARNING

    def __init__(
        self,
        collection: str,
        primary_key: Any,
        status: int,
        message: Optional[str] = None,
        **kwargs
    ):
        self.collection = collection
        self.primary_key = primary_key
        self.status = status
        context = kwargs.pop("context", None) or ErrorContext(
            component="queue",
            collection=collection,
            metadata={"primary_key": primary_key, "status": status},
        )
        super().__init__(
            message or f"Record {primary_key!r} in '{collection}' failed with status {status}",
            context=context,
            **kwargs
        )


class RecordRejectedError(RemoteSyncError):
    """The remote rejected a record with a replace response code."""
    code = "RECORD_REJECTED"


class RetryExhaustedError(RemoteSyncError):
    """A record used up its retry budget."""
    code = "RETRY_EXHAUSTED"

    def __init__(self, collection: str, primary_key: Any, status: int, attempts: int, **kwargs):
        self.attempts = attempts
        super().__init__(
            collection,
            primary_key,
            status,
            message=(
                f"Record {primary_key!r} in '{collection}' gave up after "
                f"{attempts} attempts (last status {status})"
            ),
            **kwargs
        )


class RecordSupersededError(RemoteSyncError):
    """A pull brought the remote version of a record with a local edit still queued."""
    code = "RECORD_SUPERSEDED"

    def __init__(self, collection: str, primary_key: Any, status: int = 200, **kwargs):
        super().__init__(
            collection,
            primary_key,
            status,
            message=f"Queued edit of {primary_key!r} in '{collection}' was replaced by the remote version",
            **kwargs
        )


# Persistence Errors

class PersistenceError(TidemarkError):
    """Local store errors."""
    code = "PERSISTENCE_ERROR"
    default_message = "Local store is unavailable"
    category = ErrorCategory.PERSISTENCE

    def get_suggestions(self) -> List[str]:
        return [
            "Check that the storage path is writable",
            "The engine keeps running in memory-only mode until restarted",
        ]


@contextmanager
def error_context(
    component: str,
    operation: str,
    error_class: type = TidemarkError,
    **metadata
):
    """
    Context manager that wraps unexpected exceptions into the Tidemark hierarchy.

    Args:
        component: Component name
        operation: Operation name
        error_class: TidemarkError subclass used for wrapping
        **metadata: Additional context metadata
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata
    )

    try:
        yield context
    except TidemarkError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        raise
    except Exception as e:
        wrapped = error_class(
            message=f"{operation} failed: {e}",
            context=context,
            cause=e
        )
        logger.error(
            "unexpected_error_in_context",
            component=component,
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise wrapped from e


__all__ = [
    'TidemarkError',
    'ErrorContext',
    'ErrorInfo',
    'ErrorSeverity',
    'ErrorCategory',
    'ConfigurationError',
    'InvalidCollectionError',
    'DuplicateCollectionError',
    'CollectionNotFoundError',
    'TransportError',
    'RemoteSyncError',
    'RecordRejectedError',
    'RetryExhaustedError',
    'RecordSupersededError',
    'PersistenceError',
    'error_context',
]
