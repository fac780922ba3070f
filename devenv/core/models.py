"""Core domain model: EnvironmentRecord and status transition logic."""

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional


CREATING = "creating"
READY = "ready"
STARTING = "starting"
RUNNING = "running"
STOPPED = "stopped"
DESTROYING = "destroying"
ERROR = "error"

# Statuses in which the record must carry a container id
CONTAINER_STATUSES = {STARTING, RUNNING, STOPPED}

# Transition map: from_status -> set of valid target statuses
TRANSITIONS = {
    CREATING: {READY, ERROR, DESTROYING},
    READY: {STARTING, DESTROYING, ERROR},
    STARTING: {RUNNING, READY, STOPPED, ERROR, DESTROYING},
    RUNNING: {STOPPED, DESTROYING, ERROR},
    STOPPED: {STARTING, RUNNING, DESTROYING, ERROR},
    ERROR: {DESTROYING, STOPPED, RUNNING},
    DESTROYING: {ERROR},
}


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ErrorDetail:
    """Structured payload of the ``error`` status."""

    kind: str
    message: str
    operation: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorDetail":
        return cls(
            kind=data.get("kind", "internal"),
            message=data.get("message", ""),
            operation=data.get("operation", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EnvironmentRecord:
    """Single source of truth for the environment record schema."""

    id: str
    name: str
    repo_root: str
    worktree_path: str
    branch: str
    base_branch: str
    container_name: str
    status: str  # Validated at write-time
    created_at: str
    updated_at: str
    container_id: Optional[str] = None
    image_ref: str = ""
    error: Optional[ErrorDetail] = None

    VALID_STATUSES = {
        CREATING,
        READY,
        STARTING,
        RUNNING,
        STOPPED,
        DESTROYING,
        ERROR,
    }

    def validate(self) -> None:
        """Validate status value and the container-id invariant at write-time."""
        if self.status not in self.VALID_STATUSES:
            raise ValueError(
                f"Invalid status '{self.status}'. Must be one of: "
                f"{', '.join(sorted(self.VALID_STATUSES))}"
            )
        has_container = bool(self.container_id)
        if has_container != (self.status in CONTAINER_STATUSES):
            raise ValueError(
                f"container_id must be set exactly when status is one of "
                f"{', '.join(sorted(CONTAINER_STATUSES))} "
                f"(status={self.status}, container_id={self.container_id!r})"
            )
        if self.status == ERROR and self.error is None:
            raise ValueError("status 'error' requires an error detail")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnvironmentRecord":
        """Create EnvironmentRecord from dictionary."""
        data = dict(data)
        error = data.get("error")
        if isinstance(error, dict):
            data["error"] = ErrorDetail.from_dict(error)
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert EnvironmentRecord to dictionary."""
        return asdict(self)

    @staticmethod
    def is_valid_transition(from_status: str, to_status: str) -> bool:
        """
        Check if a status transition is legal.

        Status machine:
        - creating -> ready -> starting -> running -> stopped -> destroying
        - any in-progress transition -> error
        - stopped <-> running when reconciliation observes an outside change
        - error -> destroying (manual destroy) or back to a live status

        Args:
            from_status: Current status
            to_status: Target status

        Returns:
            True if transition is valid, False otherwise
        """
        return to_status in TRANSITIONS.get(from_status, set())


@dataclass
class ExecResult:
    """Outcome of one command executed inside a container."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exitCode": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "durationMs": int(self.duration * 1000),
            "cancelled": self.cancelled,
        }


@dataclass
class OutputChunk:
    """Incremental output of a streamed command."""

    stream: str  # "stdout" or "stderr"
    data: str


@dataclass
class StatusChange:
    """Status-change event emitted by the engine after every status write."""

    environment_name: str
    old_status: Optional[str]
    new_status: Optional[str]
    detail: Optional[ErrorDetail] = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environmentName": self.environment_name,
            "oldStatus": self.old_status,
            "newStatus": self.new_status,
            "detail": self.detail.to_dict() if self.detail else None,
            "timestamp": self.timestamp,
        }
