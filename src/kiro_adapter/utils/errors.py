"""
Error handling framework for the BMad Kiro adapter.

This module provides:
- Hierarchical exception classes carrying structured context
- Error context preservation
- A best-effort failure classifier used by the activation monitor
"""

from typing import Optional, Dict, Any, List, Type, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from contextlib import contextmanager
import asyncio
import functools

from .logging import get_logger


logger = get_logger("kiro-adapter.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    DISCOVERY = "discovery"
    PARSING = "parsing"
    TRANSFORMATION = "transformation"
    DEPENDENCY = "dependency"
    REGISTRATION = "registration"
    ACTIVATION = "activation"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class FailureCategory(str, Enum):
    """Coarse failure taxonomy used in activation analytics."""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PERFORMANCE = "performance"
    DEPENDENCY = "dependency"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: Optional[str] = None
    operation: Optional[str] = None
    agent_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class KiroAdapterError(Exception):
    """Base exception for all adapter errors."""

    code: str = "KIRO_ADAPTER_ERROR"
    default_message: str = "An error occurred in the Kiro adapter"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN
    failure_category: Optional[FailureCategory] = None
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs
        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def details(self) -> Dict[str, Any]:
        """Structured fields specific to the error type."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "is_retryable": self.is_retryable,
                "suggestions": self.get_suggestions(),
                "details": self.details(),
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "agent_id": self.context.agent_id,
                    "metadata": self.context.metadata
                }
            }
        }


class DiscoveryError(KiroAdapterError):
    """A configured source root could not be read."""
    code = "DISCOVERY_ERROR"
    default_message = "Agent discovery failed"
    category = ErrorCategory.DISCOVERY
    failure_category = FailureCategory.NOT_FOUND

    def __init__(self, message: Optional[str] = None, path: Optional[Any] = None, **kwargs):
        self.path = str(path) if path is not None else None
        super().__init__(message, **kwargs)

    def details(self) -> Dict[str, Any]:
        return {"path": self.path}

    def get_suggestions(self) -> List[str]:
        return [
            "Check that the BMad root directory exists",
            "Verify read permissions on the agents directory"
        ]


class MetadataExtractionError(KiroAdapterError):
    """A single agent file is malformed."""
    code = "METADATA_EXTRACTION_ERROR"
    default_message = "Failed to extract agent metadata"
    category = ErrorCategory.PARSING
    severity = ErrorSeverity.WARNING

    def __init__(self, message: Optional[str] = None, path: Optional[Any] = None, **kwargs):
        self.path = str(path) if path is not None else None
        super().__init__(message, **kwargs)

    def details(self) -> Dict[str, Any]:
        return {"path": self.path}


class TransformationError(KiroAdapterError):
    """A transformation rule failed for an agent."""
    code = "TRANSFORMATION_ERROR"
    default_message = "Agent transformation failed"
    category = ErrorCategory.TRANSFORMATION

    def __init__(
        self,
        message: Optional[str] = None,
        agent_id: Optional[str] = None,
        rule_name: Optional[str] = None,
        phase: str = "transform",
        **kwargs
    ):
        self.agent_id = agent_id
        self.rule_name = rule_name
        self.phase = phase
        super().__init__(message, **kwargs)
        self.context.agent_id = self.context.agent_id or agent_id

    def details(self) -> Dict[str, Any]:
        return {"agent_id": self.agent_id, "rule_name": self.rule_name, "phase": self.phase}


class DependencyError(KiroAdapterError):
    """A named dependency could not be located."""
    code = "DEPENDENCY_ERROR"
    default_message = "Dependency could not be resolved"
    category = ErrorCategory.DEPENDENCY
    severity = ErrorSeverity.WARNING
    failure_category = FailureCategory.DEPENDENCY

    def __init__(
        self,
        message: Optional[str] = None,
        agent_id: Optional[str] = None,
        dependency: Optional[str] = None,
        dependency_type: Optional[str] = None,
        **kwargs
    ):
        self.agent_id = agent_id
        self.dependency = dependency
        self.dependency_type = dependency_type
        super().__init__(message, **kwargs)
        self.context.agent_id = self.context.agent_id or agent_id

    def details(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "dependency": self.dependency,
            "dependency_type": self.dependency_type,
        }


class RegistrationError(KiroAdapterError):
    """Registration exhausted all retry attempts."""
    code = "REGISTRATION_ERROR"
    default_message = "Agent registration failed"
    category = ErrorCategory.REGISTRATION

    def __init__(
        self,
        message: Optional[str] = None,
        agent_id: Optional[str] = None,
        retry_count: int = 0,
        **kwargs
    ):
        self.agent_id = agent_id
        self.retry_count = retry_count
        super().__init__(message, **kwargs)
        self.context.agent_id = self.context.agent_id or agent_id

    def details(self) -> Dict[str, Any]:
        return {"agent_id": self.agent_id, "retry_count": self.retry_count}

    def get_suggestions(self) -> List[str]:
        return ["Re-run registration once the underlying failure is fixed"]


class ActivationError(KiroAdapterError):
    """Agent activation was rejected or failed."""
    code = "ACTIVATION_ERROR"
    default_message = "Agent activation failed"
    category = ErrorCategory.ACTIVATION

    def __init__(
        self,
        message: Optional[str] = None,
        agent_id: Optional[str] = None,
        activation_context: Optional[Dict[str, Any]] = None,
        reason: Optional[FailureCategory] = None,
        **kwargs
    ):
        self.agent_id = agent_id
        self.activation_context = activation_context or {}
        if reason is not None:
            self.failure_category = reason
        super().__init__(message, **kwargs)
        self.context.agent_id = self.context.agent_id or agent_id

    def details(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "activation_context": self.activation_context,
            "reason": self.failure_category.value if self.failure_category else None,
        }


class ValidationError(KiroAdapterError):
    """Structurally invalid agent or configuration."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)

    def details(self) -> Dict[str, Any]:
        return {"field": self.field, "constraint": self.constraint}

    def get_suggestions(self) -> List[str]:
        return [
            f"Check the value of field '{self.field}'",
            f"Ensure it meets the constraint: {self.constraint}"
        ]


class ConfigurationError(KiroAdapterError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Ensure all required configuration values are set"
        ]


_FAILURE_PATTERNS = (
    (FailureCategory.NOT_FOUND, ("not found", "missing", "not registered")),
    (FailureCategory.CONFLICT, ("conflict", "already active")),
    (FailureCategory.PERFORMANCE, ("timeout", "timed out", "slow")),
    (FailureCategory.DEPENDENCY, ("dependency", "resource")),
    (FailureCategory.PERMISSION, ("permission", "access")),
)


def classify_error(error: Any) -> FailureCategory:
    """
    Categorize a failure for analytics.

    Adapter errors that declare a failure category are trusted. Anything
    else is matched by substring against the message, which is a heuristic:
    ambiguous messages land in UNKNOWN.
    """
    if isinstance(error, KiroAdapterError) and error.failure_category is not None:
        return error.failure_category

    message = str(error).lower()
    for category, needles in _FAILURE_PATTERNS:
        if any(needle in message for needle in needles):
            return category
    return FailureCategory.UNKNOWN


def handle_errors(
    *error_classes: Type[Exception],
    fallback: Optional[Callable] = None,
    reraise: bool = True
):
    """
    Decorator for handling errors in functions.

    Args:
        error_classes: Exception classes to catch
        fallback: Fallback function to call on error
        reraise: Whether to reraise the exception
    """
    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except error_classes as e:
                logger.error(
                    f"error_in_{func.__name__}",
                    error=str(e),
                    error_type=type(e).__name__
                )
                if fallback:
                    if asyncio.iscoroutinefunction(fallback):
                        return await fallback(*args, **kwargs)
                    return fallback(*args, **kwargs)
                if reraise:
                    raise
                return None

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except error_classes as e:
                logger.error(
                    f"error_in_{func.__name__}",
                    error=str(e),
                    error_type=type(e).__name__
                )
                if fallback:
                    return fallback(*args, **kwargs)
                if reraise:
                    raise
                return None

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator


@contextmanager
def error_context(
    component: str,
    operation: str,
    reraise: bool = True,
    **metadata
):
    """
    Context manager that attaches component/operation context to errors.

    Adapter errors get their context filled in; any other exception is
    wrapped in a KiroAdapterError.
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        agent_id=metadata.get("agent_id"),
        metadata=metadata
    )

    try:
        yield context
    except KiroAdapterError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        logger.error("adapter_error_in_context", error=e.to_dict())
        if reraise:
            raise
    except Exception as e:
        wrapped = KiroAdapterError(message=str(e), context=context, cause=e)
        logger.error("unexpected_error_in_context", error=wrapped.to_dict())
        if reraise:
            raise wrapped from e


__all__ = [
    'KiroAdapterError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'FailureCategory',
    'DiscoveryError',
    'MetadataExtractionError',
    'TransformationError',
    'DependencyError',
    'RegistrationError',
    'ActivationError',
    'ValidationError',
    'ConfigurationError',
    'classify_error',
    'handle_errors',
    'error_context',
]
