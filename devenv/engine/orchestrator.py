"""
Environment orchestration engine.

Sequences version-control and container-runtime adapter calls into lifecycle
transitions, owns the status state machine, rolls back partially completed
operations, serializes lifecycle operations per environment name, and
reconciles stored status against the live container on read.
"""

import logging
import threading
import uuid
from pathlib import Path
from typing import Callable, List, Optional

from devenv.adapters.protocol import (
    AdapterException,
    AdapterTimeoutError,
    BuildSpec,
    ContainerAlreadyRunningError,
    ContainerNotFoundError,
    ContainerRuntimeAdapter,
    DirtyWorktreeError,
    GitNotFoundError,
    Mount,
    OutputCallback,
    RepositoryUnavailableError,
    RuntimeUnavailableError,
    VersionControlAdapter,
    WorktreeExistsError,
)
from devenv.core.exceptions import (
    AdapterError,
    AdapterUnavailableError,
    AlreadyExistsError,
    ConflictError,
    DevEnvError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)
from devenv.core.models import (
    CONTAINER_STATUSES,
    CREATING,
    DESTROYING,
    ERROR,
    READY,
    RUNNING,
    STARTING,
    STOPPED,
    EnvironmentRecord,
    ErrorDetail,
    ExecResult,
    StatusChange,
    utc_now,
)
from devenv.core.naming import (
    derive_container_name,
    derive_image_tag,
    validate_branch_name,
    validate_environment_name,
)
from devenv.engine.locks import NameLocks
from devenv.store import EnvironmentRegistry
from devenv.support.config import DevEnvConfig


logger = logging.getLogger(__name__)

StatusListener = Callable[[StatusChange], None]

# Failures the engine converts into the error taxonomy
_HANDLED_ERRORS = (AdapterException, DevEnvError, OSError, ValueError)


def wrap_adapter_error(exc: BaseException, environment: str, operation: str) -> DevEnvError:
    """
    Translate an adapter (or unexpected) exception into the error taxonomy.

    Args:
        exc: The exception raised by an adapter or the registry.
        environment: Environment name the operation targeted.
        operation: Engine operation name (create, start, ...).

    Returns:
        A DevEnvError subclass carrying environment and operation context.
    """
    if isinstance(exc, DevEnvError):
        if exc.environment is None:
            exc.environment = environment
        if exc.operation is None:
            exc.operation = operation
        return exc

    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, AdapterTimeoutError):
        return OperationTimeoutError(message, environment, operation)
    if isinstance(exc, WorktreeExistsError):
        return AlreadyExistsError(message, environment, operation)
    if isinstance(exc, (GitNotFoundError, ContainerNotFoundError)):
        return NotFoundError(message, environment, operation)
    if isinstance(exc, (DirtyWorktreeError, ContainerAlreadyRunningError)):
        return ConflictError(message, environment, operation)
    if isinstance(exc, (RepositoryUnavailableError, RuntimeUnavailableError)):
        return AdapterUnavailableError(message, environment, operation)
    if isinstance(exc, AdapterException):
        return AdapterError(message, environment, operation)
    if isinstance(exc, ValueError):
        return InternalError(f"invariant violation: {message}", environment, operation)
    return AdapterError(message, environment, operation)


class Orchestrator:
    """
    Lifecycle engine for development environments.

    The registry is written only from here. Lifecycle operations on one name
    run inside that name's exclusive section; reads never take it except to
    apply a reconciliation, and then only when it is free.

    Attributes:
        config: Process configuration.
        registry: EnvironmentRegistry (sole source of truth for status).
        vcs: Version control adapter.
        runtime: Container runtime adapter.
        locks: Per-name exclusive sections.
    """

    def __init__(
        self,
        config: DevEnvConfig,
        registry: EnvironmentRegistry,
        vcs: VersionControlAdapter,
        runtime: ContainerRuntimeAdapter,
        locks: Optional[NameLocks] = None,
    ):
        self.config = config
        self.registry = registry
        self.vcs = vcs
        self.runtime = runtime
        self.locks = locks or NameLocks()
        self._listeners: List[StatusListener] = []
        self._listeners_lock = threading.Lock()

    # ========================================================================
    # Status events
    # ========================================================================

    def add_listener(self, listener: StatusListener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(
        self,
        name: str,
        old_status: Optional[str],
        new_status: Optional[str],
        detail: Optional[ErrorDetail] = None,
    ) -> None:
        if old_status == new_status:
            return
        change = StatusChange(
            environment_name=name,
            old_status=old_status,
            new_status=new_status,
            detail=detail,
        )
        logger.info(f"Environment {name}: {old_status} -> {new_status}")
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception as e:
                logger.warning(f"Status listener failed for {name}: {e}")

    def _set_status(
        self,
        record: EnvironmentRecord,
        status: str,
        expected_status: Optional[str] = None,
        **fields,
    ) -> EnvironmentRecord:
        """Persist a status transition (plus fields) and emit the change."""
        updates = {"status": status, **fields}
        if status != ERROR:
            updates["error"] = None
        updated = self.registry.update(
            record.name, updates, expected_status=expected_status
        )
        self._emit(record.name, record.status, status, updated.error)
        return updated

    def _fail(
        self, name: str, error: DevEnvError, operation: str
    ) -> Optional[EnvironmentRecord]:
        """Move a record to the error status; never raises."""
        detail = ErrorDetail(kind=error.kind, message=error.message, operation=operation)
        try:
            current = self.registry.get(name)
            if current is None:
                return None
            updated = self.registry.update(
                name, {"status": ERROR, "error": detail, "container_id": None}
            )
            self._emit(name, current.status, ERROR, detail)
            return updated
        except (DevEnvError, OSError, ValueError) as e:
            logger.error(f"Failed to record error status for {name}: {e}")
            return None

    # ========================================================================
    # Helpers
    # ========================================================================

    def _require(self, name: str, operation: str) -> EnvironmentRecord:
        record = self.registry.get(name)
        if record is None:
            raise NotFoundError(
                f"environment '{name}' not found", environment=name, operation=operation
            )
        return record

    def _require_status(
        self, record: EnvironmentRecord, allowed: tuple, operation: str
    ) -> None:
        if record.status not in allowed:
            raise InvalidTransitionError(
                f"cannot {operation} from status '{record.status}' "
                f"(requires {' or '.join(allowed)})",
                environment=record.name,
                operation=operation,
            )

    def _lock(self, name: str, operation: str):
        return self.locks.hold(name, timeout=self.config.lock_timeout, operation=operation)

    def _resolve_image(self, record: EnvironmentRecord) -> str:
        """Build the environment image from its worktree, or fall back to default_image."""
        dockerfile = Path(record.worktree_path) / self.config.dockerfile
        if dockerfile.is_file():
            spec = BuildSpec(
                context_path=record.worktree_path,
                dockerfile=str(dockerfile),
                tag=derive_image_tag(record.name, record.id),
            )
            return self.runtime.build_image(spec)
        if self.config.default_image:
            logger.info(
                f"No build file at {dockerfile}; using image {self.config.default_image}"
            )
            return self.config.default_image
        raise ValidationError(
            f"no container build file at {self.config.dockerfile} and no default_image configured"
        )

    def _mounts(self, record: EnvironmentRecord) -> List[Mount]:
        return [Mount(source=record.worktree_path, target=self.config.workspace_mount)]

    def _create_container(self, record: EnvironmentRecord) -> str:
        """Create the container, replacing a stale one left under the same name."""
        try:
            return self.runtime.create_container(
                record.image_ref, self._mounts(record), record.container_name
            )
        except ContainerAlreadyRunningError:
            logger.warning(
                f"Removing stale container {record.container_name} for {record.name}"
            )
            self.runtime.remove(record.container_name)
            return self.runtime.create_container(
                record.image_ref, self._mounts(record), record.container_name
            )

    # ========================================================================
    # create
    # ========================================================================

    def create(
        self,
        name: str,
        branch: Optional[str] = None,
        base_branch: Optional[str] = None,
    ) -> EnvironmentRecord:
        """
        Provision a worktree and build the environment image.

        Args:
            name: Unique environment name.
            branch: Branch to check out (default: the environment name).
            base_branch: Branch to create branch from (default: configured base).

        Returns:
            The record in status ready.

        Raises:
            AlreadyExistsError: If an active environment with this name exists.
            DevEnvError: On adapter failure, after rolling back.
        """
        validate_environment_name(name)
        branch = validate_branch_name(branch or name)
        base_branch = validate_branch_name(base_branch or self.config.default_base_branch)

        with self._lock(name, "create"):
            existing = self.registry.get(name)
            if existing is not None:
                if existing.status != ERROR:
                    raise AlreadyExistsError(
                        f"environment '{name}' already exists (status={existing.status})",
                        environment=name,
                        operation="create",
                    )
                logger.info(f"Retrying create of {name}: clearing errored record first")
                self._teardown(existing, force=True, operation="create")

            now = utc_now()
            record = EnvironmentRecord(
                id=uuid.uuid4().hex,
                name=name,
                repo_root=self.config.repo_root,
                worktree_path="",
                branch=branch,
                base_branch=base_branch,
                container_name=derive_container_name(name, now),
                status=CREATING,
                created_at=now,
                updated_at=now,
            )
            self.registry.insert(record)
            self._emit(name, None, CREATING)

            worktree = None
            try:
                worktree = self.vcs.create_worktree(name, branch, base_branch)
                record = self.registry.update(
                    name, {"worktree_path": worktree.path}, expected_status=CREATING
                )
                image_ref = self._resolve_image(record)
                record = self._set_status(record, READY, CREATING, image_ref=image_ref)
                logger.info(f"Environment {name} ready at {record.worktree_path}")
                return record
            except _HANDLED_ERRORS as e:
                error = wrap_adapter_error(e, name, "create")
                logger.error(f"Create of {name} failed: {error.message}")
                raise self._rollback_create(name, worktree, error)

    def _rollback_create(self, name: str, worktree, error: DevEnvError) -> DevEnvError:
        """
        Undo a partial create in reverse order.

        Returns:
            The error to raise to the caller.
        """
        if worktree is None and isinstance(error, OperationTimeoutError):
            # Whether git created anything is unknown; leave it for destroy
            self._fail(name, error, "create")
            return error

        if worktree is not None:
            try:
                self.vcs.remove_worktree(
                    worktree.path,
                    force=True,
                    delete_branch=worktree.branch if worktree.branch_created else None,
                )
            except AdapterException as rollback_error:
                logger.error(f"Rollback of {name} failed: {rollback_error}")
                internal = InternalError(
                    f"{error.message}; rollback failed: {rollback_error}",
                    environment=name,
                    operation="create",
                )
                self._fail(name, internal, "create")
                return internal

        if self.registry.delete(name):
            self._emit(name, CREATING, None)
        logger.info(f"Rolled back create of {name}")
        return error

    # ========================================================================
    # start / stop
    # ========================================================================

    def start(self, name: str) -> EnvironmentRecord:
        """
        Start the environment container, creating it on first start.

        Raises:
            InvalidTransitionError: Unless status is ready or stopped.
            DevEnvError: On adapter failure; the previous status is restored,
                except after a timeout, which leaves the record in error.
        """
        with self._lock(name, "start"):
            record = self._require(name, "start")
            self._require_status(record, (READY, STOPPED), "start")

            previous_status = record.status
            previous_container = record.container_id
            created_here: Optional[str] = None
            container_id = record.container_id
            try:
                if container_id is None:
                    container_id = self._create_container(record)
                    created_here = container_id
                record = self._set_status(
                    record, STARTING, previous_status, container_id=container_id
                )
                self.runtime.start(container_id)
                live = self.runtime.inspect(container_id)
                if not live.running:
                    raise AdapterError(
                        f"container {container_id} is not running after start "
                        f"(state={live.state}, exit code {live.exit_code})"
                    )
                record = self._set_status(record, RUNNING, STARTING)
                return record
            except _HANDLED_ERRORS as e:
                error = wrap_adapter_error(e, name, "start")
                logger.error(f"Start of {name} failed: {error.message}")
                if isinstance(error, OperationTimeoutError):
                    self._fail(name, error, "start")
                    raise error
                self._revert_start(name, previous_status, previous_container, created_here)
                raise error

    def _revert_start(
        self,
        name: str,
        previous_status: str,
        previous_container: Optional[str],
        created_here: Optional[str],
    ) -> None:
        if created_here:
            try:
                self.runtime.remove(created_here)
            except ContainerNotFoundError:
                pass
            except AdapterException as e:
                logger.warning(f"Failed to remove container {created_here}: {e}")

        current = self.registry.get(name)
        if current is None or current.status != STARTING:
            return
        try:
            if previous_status == STOPPED and created_here is None:
                self.runtime.stop(previous_container)
            self._set_status(
                current, previous_status, STARTING, container_id=previous_container
            )
        except _HANDLED_ERRORS as e:
            self._fail(name, wrap_adapter_error(e, name, "start"), "start")

    def stop(self, name: str) -> EnvironmentRecord:
        """
        Stop the running container, keeping container, worktree and record.

        Raises:
            InvalidTransitionError: Unless status is running.
        """
        with self._lock(name, "stop"):
            record = self._require(name, "stop")
            self._require_status(record, (RUNNING,), "stop")

            try:
                self.runtime.stop(record.container_id)
            except _HANDLED_ERRORS as e:
                error = wrap_adapter_error(e, name, "stop")
                logger.error(f"Stop of {name} failed: {error.message}")
                if isinstance(error, (OperationTimeoutError, NotFoundError)):
                    self._fail(name, error, "stop")
                else:
                    self._reconcile(record)
                raise error

            return self._set_status(record, STOPPED, RUNNING)

    # ========================================================================
    # destroy
    # ========================================================================

    def destroy(self, name: str, force: bool = False) -> bool:
        """
        Remove container, worktree and record. Valid from any status.

        Resources already absent count as removed, so destroy can finish an
        interrupted destroy or follow manual cleanup.

        Args:
            name: Environment name.
            force: Discard uncommitted changes in the worktree.

        Returns:
            True if an environment was destroyed, False if none existed.

        Raises:
            ConflictError: If the worktree is dirty and force is False.
            DevEnvError: If teardown fails; the record is left in error.
        """
        validate_environment_name(name)
        with self._lock(name, "destroy"):
            record = self.registry.get(name)
            if record is None:
                logger.info(f"Destroy of {name}: nothing to do")
                return False

            if not force and record.worktree_path:
                try:
                    dirty = self.vcs.is_dirty(record.worktree_path)
                except GitNotFoundError:
                    dirty = False
                except _HANDLED_ERRORS as e:
                    raise wrap_adapter_error(e, name, "destroy")
                if dirty:
                    raise ConflictError(
                        "worktree has uncommitted changes; destroy with force to discard them",
                        environment=name,
                        operation="destroy",
                    )

            self._teardown(record, force=force, operation="destroy")
            return True

    def _teardown(self, record: EnvironmentRecord, force: bool, operation: str) -> None:
        """Tear down every resource of a record and delete it (lock held)."""
        name = record.name
        container_ref = record.container_id or record.container_name
        was_running = record.status in (RUNNING, STARTING)

        if record.status != DESTROYING:
            record = self._set_status(record, DESTROYING, None, container_id=None)

        problems: List[BaseException] = []

        if was_running:
            try:
                self.runtime.stop(container_ref)
            except ContainerNotFoundError:
                pass
            except AdapterException as e:
                logger.warning(f"Stop of {container_ref} failed, removing anyway: {e}")

        try:
            self.runtime.remove(container_ref)
        except ContainerNotFoundError:
            pass
        except AdapterException as e:
            problems.append(e)

        # Configured default images are shared; only the record's own build goes
        if not problems and record.image_ref == derive_image_tag(name, record.id):
            try:
                self.runtime.remove_image(record.image_ref)
            except ContainerNotFoundError:
                pass
            except AdapterException as e:
                problems.append(e)

        if record.worktree_path:
            try:
                self.vcs.remove_worktree(record.worktree_path, force=force)
            except GitNotFoundError:
                pass
            except AdapterException as e:
                problems.append(e)

        if problems:
            error = wrap_adapter_error(problems[0], name, operation)
            if len(problems) > 1:
                error.message = "; ".join(str(p) for p in problems)
            logger.error(f"Teardown of {name} incomplete: {error.message}")
            self._fail(name, error, operation)
            raise error

        self.registry.delete(name)
        self._emit(name, DESTROYING, None)
        logger.info(f"Environment {name} destroyed")

    # ========================================================================
    # status / list (read-through with reconciliation)
    # ========================================================================

    def status(self, name: str, reconcile: bool = True) -> EnvironmentRecord:
        """
        Return the record, optionally corrected against the live container.

        Raises:
            NotFoundError: If no environment has this name (or reconciliation
                found its worktree gone and removed the record).
        """
        record = self._require(name, "status")
        if not reconcile:
            return record

        with self.locks.try_hold(name) as acquired:
            if not acquired:
                # A lifecycle operation is in flight; report what it last wrote
                return record
            record = self._require(name, "status")
            reconciled = self._reconcile(record)
            if reconciled is None:
                raise NotFoundError(
                    f"environment '{name}' no longer exists (worktree removed)",
                    environment=name,
                    operation="status",
                )
            return reconciled

    def list(
        self, status: Optional[str] = None, reconcile: bool = False
    ) -> List[EnvironmentRecord]:
        """List records, optionally reconciling each before filtering by status."""
        if status is not None and status not in EnvironmentRecord.VALID_STATUSES:
            raise ValidationError(f"unknown status filter: {status}")

        records = self.registry.list()
        if reconcile:
            refreshed = []
            for record in records:
                try:
                    refreshed.append(self.status(record.name, reconcile=True))
                except NotFoundError:
                    continue
            records = refreshed

        if status is not None:
            records = [r for r in records if r.status == status]
        return records

    def _reconcile(self, record: EnvironmentRecord) -> Optional[EnvironmentRecord]:
        """
        Correct the stored status from a live inspect (lock held).

        Returns:
            The possibly updated record, or None if it was removed.
        """
        if record.status in (CREATING, DESTROYING):
            return record

        name = record.name
        if record.worktree_path and not self.vcs.worktree_exists(record.worktree_path):
            return self._drop_orphan(record)

        try:
            if record.status in CONTAINER_STATUSES:
                return self._reconcile_container(record)
            if record.status == ERROR:
                return self._reconcile_errored(record)
        except ConflictError:
            # Another writer got there first
            return self.registry.get(name)
        return record

    def _reconcile_container(self, record: EnvironmentRecord) -> EnvironmentRecord:
        name = record.name
        try:
            live = self.runtime.inspect(record.container_id)
        except ContainerNotFoundError:
            logger.warning(f"Container of {name} was removed outside devenv")
            error = NotFoundError(
                f"container {record.container_id} no longer exists", name, "status"
            )
            return self._fail(name, error, "status") or record
        except AdapterException as e:
            error = wrap_adapter_error(e, name, "status")
            if record.status == RUNNING:
                # Running is only reported while an inspect confirms it
                return self._fail(name, error, "status") or record
            logger.warning(f"Could not inspect {name}: {error.message}")
            return record

        if live.running and record.status != RUNNING:
            return self._set_status(record, RUNNING, record.status)
        if not live.running and record.status in (RUNNING, STARTING):
            return self._set_status(record, STOPPED, record.status)
        return record

    def _reconcile_errored(self, record: EnvironmentRecord) -> EnvironmentRecord:
        try:
            live = self.runtime.inspect(record.container_name)
        except AdapterException:
            return record

        new_status = RUNNING if live.running else STOPPED
        logger.info(f"Container of errored {record.name} found {live.state}; recovering")
        return self._set_status(
            record, new_status, ERROR, container_id=live.container_id
        )

    def _drop_orphan(self, record: EnvironmentRecord) -> Optional[EnvironmentRecord]:
        """Remove a record whose worktree vanished, with any leftover container."""
        name = record.name
        logger.warning(f"Worktree of {name} is gone; removing record")
        try:
            self.runtime.remove(record.container_id or record.container_name)
        except ContainerNotFoundError:
            pass
        except AdapterException as e:
            logger.warning(f"Could not remove container of {name}: {e}")
            return record
        if self.registry.delete(name):
            self._emit(name, record.status, None)
        return None

    # ========================================================================
    # In-container operations
    # ========================================================================

    def _container_for(self, name: str, operation: str, allowed: tuple) -> str:
        record = self._require(name, operation)
        self._require_status(record, allowed, operation)
        return record.container_id

    def execute(
        self, name: str, command: str, timeout: Optional[float] = None
    ) -> ExecResult:
        """Run a shell command in a running environment and return its output."""
        if not command or not command.strip():
            raise ValidationError("command cannot be empty", environment=name)
        container_id = self._container_for(name, "execute", (RUNNING,))
        try:
            return self.runtime.exec(
                container_id, command, timeout or self.config.exec_timeout
            )
        except _HANDLED_ERRORS as e:
            raise wrap_adapter_error(e, name, "execute")

    def execute_stream(
        self,
        name: str,
        command: str,
        on_output: OutputCallback,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecResult:
        """Run a shell command, delivering output chunks to on_output as they arrive."""
        if not command or not command.strip():
            raise ValidationError("command cannot be empty", environment=name)
        container_id = self._container_for(name, "execute", (RUNNING,))
        try:
            return self.runtime.exec_stream(
                container_id,
                command,
                on_output,
                timeout=timeout or self.config.exec_timeout,
                cancel_event=cancel_event,
            )
        except _HANDLED_ERRORS as e:
            raise wrap_adapter_error(e, name, "execute")

    def read_file(self, name: str, path: str) -> bytes:
        """Read a file from the environment container."""
        _check_path(path, name)
        container_id = self._container_for(name, "read_file", (RUNNING, STOPPED))
        try:
            return self.runtime.read_file(container_id, path)
        except _HANDLED_ERRORS as e:
            raise wrap_adapter_error(e, name, "read_file")

    def write_file(self, name: str, path: str, content: bytes) -> None:
        """Write a file into the environment container."""
        _check_path(path, name)
        container_id = self._container_for(name, "write_file", (RUNNING, STOPPED))
        try:
            self.runtime.write_file(container_id, path, content)
        except _HANDLED_ERRORS as e:
            raise wrap_adapter_error(e, name, "write_file")


def _check_path(path: str, name: str) -> None:
    if not path or not path.strip():
        raise ValidationError("path cannot be empty", environment=name)
    if "\x00" in path:
        raise ValidationError("path contains a NUL byte", environment=name)
    if path.endswith("/"):
        raise ValidationError(f"path names a directory: {path}", environment=name)
