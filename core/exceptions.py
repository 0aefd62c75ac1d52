"""
Unified Exception Hierarchy for the ChefFlow kitchen bridge.

All exceptions inherit from ChefFlowError, enabling consistent error handling
at the request boundary and in the engine coordination layer.

Usage:
    from core.exceptions import ChefFlowError, TransportError, ValidationError

    try:
        bridge.submit_order(request)
    except ValidationError as e:
        # Rejected before any side effect
        return bad_request(e)
    except TransportError as e:
        # Store unreachable, surfaced to the caller, never auto-retried
        return unavailable(e)
    except ChefFlowError as e:
        log_error(e)

Propagation rules:
    - Store errors (TransportError, WriteError, NotFoundError) reach the
      request boundary.
    - ProtocolDecodeError and ProcessUnavailableError are absorbed inside the
      coordination layer (logged, counted).
    - EngineLaunchError is the only error fatal to the whole system.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================

class ChefFlowError(Exception):
    """
    Base exception for all ChefFlow errors.

    Attributes:
        error_code: Unique identifier for this error type
        is_recoverable: Whether the system keeps running after this error
        context: Additional context about the error
        timestamp: When the error occurred
    """
    error_code: str = "CHEFFLOW_ERROR"
    is_recoverable: bool = True

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)

    def __str__(self) -> str:
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "is_recoverable": self.is_recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# STORE ERRORS (surfaced to the caller)
# =============================================================================

class StoreError(ChefFlowError):
    """Base class for durable store failures."""
    error_code = "STORE_ERROR"


class TransportError(StoreError):
    """
    Raised when the durable store cannot be reached.

    Surfaced to the caller as-is. The coordination layer never retries it.
    """
    error_code = "STORE_UNREACHABLE"


class WriteError(StoreError):
    """Raised when a store write is rejected or fails."""
    error_code = "STORE_WRITE_FAILED"


class DuplicateOrderError(WriteError):
    """Raised when an order id already exists in the store."""
    error_code = "ORDER_DUPLICATE"


class InvalidTransitionError(WriteError):
    """
    Raised when an illegal order status transition is attempted.

    Valid transitions:
    PENDING -> COMPLETED
    PENDING -> CANCELLED
    Re-applying the current terminal status is a no-op, not an error.
    """
    error_code = "INVALID_STATE_TRANSITION"


class StaleSnapshotError(InvalidTransitionError):
    """
    Raised when the queue head in the snapshot was already removed.

    The engine has not yet published a listing reflecting the removal, so
    completing the head again would remove the next order instead.
    """
    error_code = "QUEUE_SNAPSHOT_STALE"


class NotFoundError(StoreError):
    """Raised when an order id is not present in the store."""
    error_code = "ORDER_NOT_FOUND"


# =============================================================================
# VALIDATION ERRORS (rejected before any side effect)
# =============================================================================

class ValidationError(ChefFlowError):
    """
    Raised when a request is missing required fields or carries bad values.

    Always raised before any store write or command send.
    """
    error_code = "VALIDATION_FAILED"


class EmptyQueueError(ChefFlowError):
    """Raised when the head of an empty queue is asked to complete."""
    error_code = "QUEUE_EMPTY"


# =============================================================================
# PROTOCOL ERRORS
# =============================================================================

class ProtocolError(ChefFlowError):
    """Base class for engine wire protocol errors."""
    error_code = "PROTOCOL_ERROR"


class ProtocolDecodeError(ProtocolError):
    """
    Raised when engine output cannot be decoded.

    Recovered locally by the state observer: the previous snapshot is kept.
    """
    error_code = "PROTOCOL_DECODE_FAILED"


class ProtocolEncodeError(ValidationError):
    """
    Raised when a command field cannot be framed on the wire.

    The line codec has no escaping, so a delimiter or line break inside a
    field is rejected up front instead of corrupting engine-side decoding.
    """
    error_code = "PROTOCOL_ENCODE_FAILED"


# =============================================================================
# ENGINE PROCESS ERRORS
# =============================================================================

class EngineError(ChefFlowError):
    """Base class for queue engine process errors."""
    error_code = "ENGINE_ERROR"


class ProcessUnavailableError(EngineError):
    """
    Raised when a command is sent while the engine is not writable.

    The command channel absorbs this (log + drop) unless a strict send
    was requested.
    """
    error_code = "ENGINE_UNAVAILABLE"


class EngineLaunchError(EngineError):
    """
    Raised when the engine process cannot be launched or dies before READY.

    Fatal at startup: the server exits with code 1.
    """
    error_code = "ENGINE_LAUNCH_FAILED"
    is_recoverable = False


class StartupTimeoutError(EngineLaunchError):
    """Raised when the engine never emits its READY sentinel in time."""
    error_code = "ENGINE_STARTUP_TIMEOUT"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(ChefFlowError):
    """Base class for configuration-related errors."""
    error_code = "CONFIG_ERROR"
    is_recoverable = False


class SettingsValidationError(ConfigurationError):
    """
    Raised when settings fail schema validation.

    Uses Pydantic validation under the hood.
    """
    error_code = "SETTINGS_INVALID"

