"""Core exceptions: the error taxonomy surfaced by the engine, CLI and server."""

from typing import Any, Dict, Optional


class DevEnvError(Exception):
    """Base exception for all environment orchestration errors.

    Every subclass carries a stable ``kind`` string so callers can branch on
    the error category independently of the message text.
    """

    kind = "internal"

    def __init__(
        self,
        message: str,
        environment: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.message = message
        self.environment = environment
        self.operation = operation
        super().__init__(self._format())

    def _format(self) -> str:
        if self.environment and self.operation:
            return f"[{self.operation} {self.environment}] {self.message}"
        if self.environment:
            return f"[{self.environment}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Structured error object for the CLI and the control-plane."""
        return {
            "kind": self.kind,
            "message": self.message,
            "environment": self.environment,
            "operation": self.operation,
        }


class NotFoundError(DevEnvError):
    """Raised when an environment or an underlying resource does not exist."""

    kind = "not_found"


class AlreadyExistsError(DevEnvError):
    """Raised when an active environment with the same name already exists."""

    kind = "already_exists"


class ConflictError(DevEnvError):
    """Raised when an operation conflicts with in-flight or newer state."""

    kind = "conflict"


class InvalidTransitionError(ConflictError):
    """Raised when an operation is not valid from the current status."""

    kind = "invalid_transition"


class AdapterUnavailableError(DevEnvError):
    """Raised when git or the container engine cannot be reached."""

    kind = "adapter_unavailable"


class AdapterError(DevEnvError):
    """Raised for opaque failures reported by an adapter."""

    kind = "adapter_error"


class OperationTimeoutError(DevEnvError):
    """Raised when an adapter call exceeds its timeout."""

    kind = "timeout"


class InternalError(DevEnvError):
    """Raised on invariant violations and failed rollbacks."""

    kind = "internal"


class ValidationError(DevEnvError):
    """Raised for invalid names, paths or configuration values."""

    kind = "invalid_argument"


ERROR_KINDS = {
    cls.kind: cls
    for cls in (
        NotFoundError,
        AlreadyExistsError,
        ConflictError,
        InvalidTransitionError,
        AdapterUnavailableError,
        AdapterError,
        OperationTimeoutError,
        InternalError,
        ValidationError,
    )
}
