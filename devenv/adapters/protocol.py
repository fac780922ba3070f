"""Adapter protocol and contracts for runtime modules.

Defines the capability interfaces the engine depends on (version control and
container runtime) together with the exception kinds each adapter reports.
Concrete backends live in devenv.adapters.git and devenv.adapters.docker;
tests substitute in-memory doubles implementing the same protocols.
"""

import threading
from dataclasses import dataclass, field
from typing import Protocol, Callable, Dict, List, Optional

from devenv.core.models import ExecResult, OutputChunk


# ============================================================================
# Base Exception Protocols
# ============================================================================


class AdapterException(Exception):
    """Base exception for all adapter errors."""

    pass


class GitAdapterException(AdapterException):
    """Base for git adapter errors."""

    pass


class DockerAdapterException(AdapterException):
    """Base for docker adapter errors."""

    pass


class AdapterTimeoutError(AdapterException):
    """Raised by any adapter when a call exceeds its timeout."""

    pass


# Version control error kinds


class WorktreeExistsError(GitAdapterException):
    """Raised when a worktree or its directory already exists."""

    pass


class GitNotFoundError(GitAdapterException):
    """Raised when a repository, branch or worktree cannot be found."""

    pass


class DirtyWorktreeError(GitAdapterException):
    """Raised when uncommitted changes block worktree removal."""

    pass


class RepositoryUnavailableError(GitAdapterException):
    """Raised when git is missing or the repository is unreadable."""

    pass


class GitTimeoutError(GitAdapterException, AdapterTimeoutError):
    """Raised when a git invocation exceeds its timeout."""

    pass


# Container runtime error kinds


class ContainerNotFoundError(DockerAdapterException):
    """Raised when a container or image cannot be found."""

    pass


class ContainerAlreadyRunningError(DockerAdapterException):
    """Raised when a container with the requested name is already present."""

    pass


class RuntimeUnavailableError(DockerAdapterException):
    """Raised when the container engine is unreachable."""

    pass


class ExecFailedError(DockerAdapterException):
    """Raised when a runtime command fails for a reason other than the above."""

    def __init__(self, message: str, exit_code: int = -1, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class ContainerTimeoutError(DockerAdapterException, AdapterTimeoutError):
    """Raised when a runtime call exceeds its timeout."""

    pass


# ============================================================================
# Value types
# ============================================================================


@dataclass
class WorktreeInfo:
    """Result of provisioning a worktree."""

    path: str
    branch: str
    branch_created: bool = False


@dataclass
class BuildSpec:
    """Opaque container build input: a context directory and a build file."""

    context_path: str
    dockerfile: str
    tag: str
    build_args: Dict[str, str] = field(default_factory=dict)


@dataclass
class Mount:
    """Bind mount from host path into the container."""

    source: str
    target: str
    read_only: bool = False


@dataclass
class RuntimeStatus:
    """Represents the live status of a container."""

    container_id: str
    name: str
    state: str  # e.g., "running", "exited", "created"
    running: bool
    exit_code: int = 0


OutputCallback = Callable[[OutputChunk], None]


# ============================================================================
# Capability interfaces
# ============================================================================


class VersionControlAdapter(Protocol):
    """Capability surface over a repository and its worktrees."""

    def create_worktree(
        self, env_name: str, branch: str, base_branch: str
    ) -> WorktreeInfo: ...

    def remove_worktree(
        self, path: str, force: bool = False, delete_branch: Optional[str] = None
    ) -> None: ...

    def branch_exists(self, name: str) -> bool: ...

    def worktree_exists(self, path: str) -> bool: ...

    def is_dirty(self, path: str) -> bool: ...


class ContainerRuntimeAdapter(Protocol):
    """Capability surface over a container engine."""

    def build_image(self, spec: BuildSpec) -> str: ...

    def remove_image(self, image_ref: str) -> None: ...

    def create_container(self, image_ref: str, mounts: List[Mount], name: str) -> str: ...

    def start(self, container_id: str) -> None: ...

    def stop(self, container_id: str) -> None: ...

    def remove(self, container_id: str) -> None: ...

    def inspect(self, container_id: str) -> RuntimeStatus: ...

    def exec(
        self, container_id: str, command: str, timeout: Optional[float] = None
    ) -> ExecResult: ...

    def exec_stream(
        self,
        container_id: str,
        command: str,
        on_output: OutputCallback,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecResult: ...

    def read_file(self, container_id: str, path: str) -> bytes: ...

    def write_file(self, container_id: str, path: str, content: bytes) -> None: ...
