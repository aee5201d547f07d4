"""
goalstake Domain-Specific Exceptions
====================================

Hierarchy of exceptions shared by the tree repository, the ratio engine,
the settlement engine and the transfer codec.

Exception Hierarchy:
    GoalstakeError (base)
    ├── RecoverableError (transient, retry possible)
    │   ├── StorageConnectionError
    │   ├── StorageTimeoutError
    │   ├── GatewayError
    │   └── AssistantError
    ├── IrrecoverableError (permanent, requires intervention)
    │   ├── ConfigurationError
    │   ├── DataCorruptionError
    │   ├── ValidationError
    │   ├── NotFoundError
    │   │   ├── GoalNotFoundError
    │   │   ├── StepNotFoundError
    │   │   └── TodoNotFoundError
    │   ├── ConflictError
    │   │   ├── GoalLockedError
    │   │   ├── SessionMismatchError
    │   │   └── PaymentIncompleteError
    │   └── TransferError
    └── StorageError (backend unavailable, mixed recoverability)

Every error carries an ``ErrorKind`` so callers can tell a retryable I/O
failure from a terminal business-rule rejection without matching messages:

    try:
        await engine.commit(goal, amount=1000)
    except GoalstakeError as exc:
        if exc.kind is ErrorKind.CONFLICT:
            ...
"""

from typing import Optional, Any
from enum import Enum
import os


class ErrorKind(Enum):
    """Discriminator for the error taxonomy."""
    NOT_FOUND = "NOT_FOUND"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    CONFLICT = "CONFLICT"
    GATEWAY_FAILURE = "GATEWAY_FAILURE"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    CONFIGURATION = "CONFIGURATION"
    INTERNAL = "INTERNAL"


class GoalstakeError(Exception):
    """
    Base exception for all goalstake errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        context: Ids and values involved, enough to retry or report
        recoverable: Whether the error is potentially recoverable
        kind: ErrorKind discriminator
    """

    error_code: str = "GOALSTAKE_ERROR"
    recoverable: bool = True
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        context: Optional[dict] = None,
        error_code: Optional[str] = None,
        recoverable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if error_code is not None:
            self.error_code = error_code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message

    def to_dict(self, include_traceback: bool = False) -> dict:
        """
        Convert exception to dictionary for JSON response.

        Args:
            include_traceback: Whether to include stack trace (only in DEBUG mode)
        """
        result = {
            "error": self.message,
            "code": self.error_code,
            "kind": self.kind.value,
            "recoverable": self.recoverable,
        }

        if include_traceback:
            import traceback
            result["traceback"] = traceback.format_exc()

        if self.context:
            result["context"] = self.context

        return result


# =============================================================================
# Base Categories: Recoverable vs Irrecoverable
# =============================================================================

class RecoverableError(GoalstakeError):
    """
    Base class for recoverable errors.

    These are transient errors that may succeed on retry:
    - Storage connection failures and timeouts
    - Payment gateway failures
    """
    recoverable = True


class IrrecoverableError(GoalstakeError):
    """
    Base class for irrecoverable errors.

    These are permanent errors that require intervention:
    - Invalid configuration or arguments
    - Missing goals, steps or todos
    - Business-rule conflicts (locked goal, foreign payment session)
    """
    recoverable = False


# =============================================================================
# Storage Errors
# =============================================================================

class StorageError(GoalstakeError):
    """Base exception for storage backend failures."""
    error_code = "STORAGE_ERROR"
    kind = ErrorKind.BACKEND_UNAVAILABLE


class StorageConnectionError(RecoverableError, StorageError):
    """Raised when connection to storage backend fails."""
    error_code = "STORAGE_CONNECTION_ERROR"

    def __init__(self, backend: str, message: str = "Connection failed", context: Optional[dict] = None):
        ctx = {"backend": backend}
        if context:
            ctx.update(context)
        super().__init__(f"[{backend}] {message}", ctx)
        self.backend = backend


class StorageTimeoutError(RecoverableError, StorageError):
    """Raised when a storage operation times out."""
    error_code = "STORAGE_TIMEOUT_ERROR"

    def __init__(self, backend: str, operation: str, timeout_ms: Optional[int] = None, context: Optional[dict] = None):
        msg = f"[{backend}] Operation '{operation}' timed out"
        ctx = {"backend": backend, "operation": operation}
        if timeout_ms is not None:
            ctx["timeout_ms"] = timeout_ms
        if context:
            ctx.update(context)
        super().__init__(msg, ctx)
        self.backend = backend
        self.operation = operation


class DataCorruptionError(IrrecoverableError, StorageError):
    """Raised when a stored document cannot be decoded."""
    error_code = "DATA_CORRUPTION_ERROR"

    def __init__(self, resource_id: str, reason: str = "Data corruption detected", context: Optional[dict] = None):
        ctx = {"resource_id": resource_id}
        if context:
            ctx.update(context)
        super().__init__(f"{reason} for resource '{resource_id}'", ctx)
        self.resource_id = resource_id


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(IrrecoverableError):
    """Raised when configuration is invalid or missing."""
    error_code = "CONFIGURATION_ERROR"
    kind = ErrorKind.CONFIGURATION

    def __init__(self, config_key: str, reason: str, context: Optional[dict] = None):
        ctx = {"config_key": config_key}
        if context:
            ctx.update(context)
        super().__init__(f"Configuration error for '{config_key}': {reason}", ctx)
        self.config_key = config_key


# =============================================================================
# Validation Errors
# =============================================================================

class ValidationError(IrrecoverableError):
    """Raised when an argument or document fails validation."""
    error_code = "VALIDATION_ERROR"
    kind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, field: str, reason: str, value: Any = None, context: Optional[dict] = None):
        ctx = {"field": field}
        if value is not None:
            # Truncate large values
            value_str = str(value)
            if len(value_str) > 100:
                value_str = value_str[:100] + "..."
            ctx["value"] = value_str
        if context:
            ctx.update(context)
        super().__init__(f"Validation error for '{field}': {reason}", ctx)
        self.field = field
        self.reason = reason


# =============================================================================
# Not Found Errors
# =============================================================================

class NotFoundError(IrrecoverableError):
    """Raised when a requested resource is not found."""
    error_code = "NOT_FOUND_ERROR"
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource_type: str, resource_id: str, context: Optional[dict] = None):
        ctx = {"resource_type": resource_type, "resource_id": resource_id}
        if context:
            ctx.update(context)
        super().__init__(f"{resource_type} '{resource_id}' not found", ctx)
        self.resource_type = resource_type
        self.resource_id = resource_id


class GoalNotFoundError(NotFoundError):
    """Raised when a goal is not found."""
    error_code = "GOAL_NOT_FOUND_ERROR"

    def __init__(self, goal_id: str, context: Optional[dict] = None):
        super().__init__("Goal", goal_id, context)
        self.goal_id = goal_id


class StepNotFoundError(NotFoundError):
    """Raised when a step is not found."""
    error_code = "STEP_NOT_FOUND_ERROR"

    def __init__(self, step_id: str, context: Optional[dict] = None):
        super().__init__("Step", step_id, context)
        self.step_id = step_id


class TodoNotFoundError(NotFoundError):
    """Raised when a todo is not found."""
    error_code = "TODO_NOT_FOUND_ERROR"

    def __init__(self, todo_id: str, context: Optional[dict] = None):
        super().__init__("Todo", todo_id, context)
        self.todo_id = todo_id


# =============================================================================
# Conflict Errors
# =============================================================================

class ConflictError(IrrecoverableError):
    """Raised when an operation violates a business rule. Nothing is written."""
    error_code = "CONFLICT_ERROR"
    kind = ErrorKind.CONFLICT


class GoalLockedError(ConflictError):
    """Raised on a structural edit or commit against a locked goal."""
    error_code = "GOAL_LOCKED_ERROR"

    def __init__(self, goal_id: str, operation: str, context: Optional[dict] = None):
        ctx = {"goal_id": goal_id, "operation": operation}
        if context:
            ctx.update(context)
        super().__init__(f"Goal '{goal_id}' is locked; '{operation}' rejected", ctx)
        self.goal_id = goal_id
        self.operation = operation


class SessionMismatchError(ConflictError):
    """Raised when a payment session belongs to another user, goal or category."""
    error_code = "SESSION_MISMATCH_ERROR"

    def __init__(self, session_id: str, context: Optional[dict] = None):
        ctx = {"session_id": session_id}
        if context:
            ctx.update(context)
        super().__init__(f"Session '{session_id}' metadata does not match", ctx)
        self.session_id = session_id


class PaymentIncompleteError(ConflictError):
    """Raised when confirming a session whose payment has not been captured."""
    error_code = "PAYMENT_INCOMPLETE_ERROR"

    def __init__(self, session_id: str, context: Optional[dict] = None):
        ctx = {"session_id": session_id}
        if context:
            ctx.update(context)
        super().__init__(f"Payment for session '{session_id}' not completed", ctx)
        self.session_id = session_id


# =============================================================================
# Gateway Errors
# =============================================================================

class GatewayError(RecoverableError):
    """Raised when a payment gateway call fails."""
    error_code = "GATEWAY_ERROR"
    kind = ErrorKind.GATEWAY_FAILURE

    def __init__(self, gateway: str, operation: str, reason: str, context: Optional[dict] = None):
        ctx = {"gateway": gateway, "operation": operation}
        if context:
            ctx.update(context)
        super().__init__(f"[{gateway}] {operation} failed: {reason}", ctx)
        self.gateway = gateway
        self.operation = operation


class AssistantError(RecoverableError):
    """Raised when the tree-generation model call fails or returns unusable output."""
    error_code = "ASSISTANT_ERROR"
    kind = ErrorKind.GATEWAY_FAILURE

    def __init__(self, model: str, reason: str, context: Optional[dict] = None):
        ctx = {"model": model}
        if context:
            ctx.update(context)
        super().__init__(f"[{model}] tree generation failed: {reason}", ctx)
        self.model = model


# =============================================================================
# Transfer Errors
# =============================================================================

class TransferError(IrrecoverableError):
    """
    Raised when an import stops partway.

    ``goal_id`` names the partially created goal (None if nothing was
    written) so the caller can remove it with ``delete_goal``.
    """
    error_code = "TRANSFER_ERROR"
    kind = ErrorKind.INTERNAL

    def __init__(self, reason: str, goal_id: Optional[str] = None, nodes_created: int = 0,
                 context: Optional[dict] = None):
        ctx = {"goal_id": goal_id, "nodes_created": nodes_created}
        if context:
            ctx.update(context)
        super().__init__(f"Import failed: {reason}", ctx)
        self.goal_id = goal_id
        self.nodes_created = nodes_created


# =============================================================================
# Utility Functions
# =============================================================================

def wrap_storage_exception(backend: str, operation: str, exc: Exception) -> StorageError:
    """
    Wrap a generic exception into an appropriate StorageError.

    Args:
        backend: Name of the storage backend (e.g., 'redis', 'memory')
        operation: Name of the operation that failed
        exc: The original exception

    Returns:
        An appropriate StorageError subclass
    """
    exc_name = type(exc).__name__
    exc_msg = str(exc)

    # Timeout detection
    if 'timeout' in exc_msg.lower() or 'Timeout' in exc_name:
        return StorageTimeoutError(backend, operation)

    # Connection error detection
    if any(x in exc_name.lower() for x in ['connection', 'connect', 'network']):
        return StorageConnectionError(backend, exc_msg)

    return StorageError(
        f"[{backend}] {operation} failed: {exc_msg}",
        {"backend": backend, "operation": operation, "original_exception": exc_name}
    )


def wrap_gateway_exception(gateway: str, operation: str, exc: Exception,
                           context: Optional[dict] = None) -> GatewayError:
    """Wrap a client-library exception raised by a payment gateway call."""
    if isinstance(exc, GatewayError):
        return exc
    ctx = {"original_exception": type(exc).__name__}
    if context:
        ctx.update(context)
    return GatewayError(gateway, operation, str(exc) or type(exc).__name__, ctx)


def is_debug_mode() -> bool:
    """Check if debug mode is enabled via environment variable."""
    return os.environ.get("GOALSTAKE_DEBUG", "").lower() in ("true", "1", "yes")


__all__ = [
    "ErrorKind",
    "GoalstakeError",
    "RecoverableError",
    "IrrecoverableError",
    # Storage
    "StorageError",
    "StorageConnectionError",
    "StorageTimeoutError",
    "DataCorruptionError",
    # Config
    "ConfigurationError",
    # Validation
    "ValidationError",
    # Not Found
    "NotFoundError",
    "GoalNotFoundError",
    "StepNotFoundError",
    "TodoNotFoundError",
    # Conflict
    "ConflictError",
    "GoalLockedError",
    "SessionMismatchError",
    "PaymentIncompleteError",
    # Gateway
    "GatewayError",
    "AssistantError",
    # Transfer
    "TransferError",
    # Utilities
    "wrap_storage_exception",
    "wrap_gateway_exception",
    "is_debug_mode",
]
