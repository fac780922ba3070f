"""
Tests for the orchestration engine.

Tests cover:
- Lifecycle scenario: create -> start -> execute -> destroy -> create again
- Rollback of partially completed create and start
- Per-name serialization and concurrent creates
- Reconciliation of stored status against the live container
- Destroy semantics (idempotent, dirty worktrees, interrupted teardown)
"""

import shutil
import threading
from pathlib import Path

import pytest

from devenv.adapters.protocol import (
    ContainerAlreadyRunningError,
    ContainerNotFoundError,
    ContainerTimeoutError,
    ExecFailedError,
    GitAdapterException,
    GitTimeoutError,
    RuntimeUnavailableError,
)
from devenv.core.exceptions import (
    AdapterError,
    AdapterUnavailableError,
    AlreadyExistsError,
    ConflictError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)
from devenv.core.models import ExecResult, OutputChunk
from devenv.engine import NameLocks, Orchestrator, wrap_adapter_error
from devenv.tests.fakes import FakeVcs


def running_env(engine, name="feature-x"):
    engine.create(name)
    return engine.start(name)


class TestLifecycleScenario:
    """End-to-end lifecycle against the in-memory adapters."""

    def test_create_provisions_worktree_and_image(self, engine, config, vcs, runtime):
        """Test create: worktree named after the env, branch from base, status ready."""
        record = engine.create("feature-x", branch="feature-x", base_branch="main")

        assert record.status == "ready"
        assert record.worktree_path == str(Path(config.worktrees_root) / "feature-x")
        assert Path(record.worktree_path).is_dir()
        assert vcs.worktrees[record.worktree_path] == "feature-x"
        assert "feature-x" in vcs.branches
        assert record.image_ref == f"devenv/feature-x:{record.id[:12]}"
        assert record.image_ref in runtime.images
        assert record.container_id is None
        assert record.container_name.startswith("devenv-feature-x-")
        assert engine.registry.get("feature-x").status == "ready"

    def test_branch_and_base_defaults(self, engine, config):
        record = engine.create("feature-y")
        assert record.branch == "feature-y"
        assert record.base_branch == config.default_base_branch

    def test_start_creates_and_runs_container(self, engine, runtime, config):
        """Test start: container created lazily, mounted, running."""
        engine.create("feature-x")
        record = engine.start("feature-x")

        assert record.status == "running"
        container = runtime.lookup(record.container_id)
        assert container["running"] is True
        assert container["name"] == record.container_name
        assert container["mounts"][0].source == record.worktree_path
        assert container["mounts"][0].target == config.workspace_mount

    def test_execute_echo(self, engine):
        running_env(engine)
        result = engine.execute("feature-x", "echo hi")
        assert result.exit_code == 0
        assert result.stdout == "hi\n"

    def test_destroy_removes_everything(self, engine, runtime, vcs):
        """Test destroy: container, worktree and record gone; status is NotFound."""
        record = running_env(engine)

        assert engine.destroy("feature-x") is True

        assert runtime.containers == {}
        assert not Path(record.worktree_path).exists()
        assert engine.registry.get("feature-x") is None
        with pytest.raises(NotFoundError):
            engine.status("feature-x")

    def test_recreate_after_destroy(self, engine):
        """Test create right after destroy yields a fresh record."""
        first = running_env(engine)
        engine.destroy("feature-x")

        second = engine.create("feature-x")
        assert second.status == "ready"
        assert second.id != first.id

    def test_create_destroy_leaves_no_residue(self, engine, runtime, vcs, config):
        """Test create then destroy for several names leaves nothing behind."""
        for name in ["a", "b-1", "C.d", "e_f"]:
            engine.create(name)
            engine.destroy(name)

        assert engine.registry.list() == []
        assert runtime.containers == {}
        assert runtime.images == set()
        assert list(Path(config.worktrees_root).iterdir()) == []

    def test_stop_then_restart_reuses_container(self, engine, runtime):
        record = running_env(engine)
        stopped = engine.stop("feature-x")
        assert stopped.status == "stopped"
        assert stopped.container_id == record.container_id
        assert runtime.lookup(record.container_id)["running"] is False

        restarted = engine.start("feature-x")
        assert restarted.status == "running"
        assert restarted.container_id == record.container_id
        assert len(runtime.containers) == 1

    def test_events_follow_every_transition(self, engine, events):
        """Test listeners see each status write in order."""
        running_env(engine)
        engine.stop("feature-x")
        engine.destroy("feature-x")

        assert [(e.old_status, e.new_status) for e in events] == [
            (None, "creating"),
            ("creating", "ready"),
            ("ready", "starting"),
            ("starting", "running"),
            ("running", "stopped"),
            ("stopped", "destroying"),
            ("destroying", None),
        ]

    def test_failing_listener_does_not_break_engine(self, engine):
        def boom(change):
            raise RuntimeError("listener bug")

        engine.add_listener(boom)
        assert engine.create("feature-x").status == "ready"
        engine.remove_listener(boom)


class TestCreate:
    """Test create validation and uniqueness."""

    def test_invalid_name_touches_nothing(self, engine, vcs):
        with pytest.raises(ValidationError):
            engine.create("../escape")
        assert vcs.calls == []
        assert engine.registry.list() == []

    def test_invalid_branch(self, engine):
        with pytest.raises(ValidationError):
            engine.create("ok", branch="bad..branch")

    def test_duplicate_active_name(self, engine, vcs):
        """Test AlreadyExists leaves the existing record untouched."""
        original = engine.create("feature-x")
        with pytest.raises(AlreadyExistsError):
            engine.create("feature-x", branch="other")
        assert engine.registry.get("feature-x") == original
        assert vcs.calls.count("create_worktree") == 1

    def test_missing_base_branch_rolls_back(self, engine):
        with pytest.raises(NotFoundError):
            engine.create("feature-x", base_branch="nope")
        assert engine.registry.get("feature-x") is None

    def test_uses_default_image_without_build_file(self, config, registry, runtime):
        config.default_image = "ubuntu:24.04"
        vcs = FakeVcs(config.worktrees_root, with_dockerfile=False)
        engine = Orchestrator(config, registry, vcs, runtime)

        record = engine.create("plain")
        assert record.image_ref == "ubuntu:24.04"
        assert runtime.images == set()

    def test_no_build_file_and_no_default_image(self, config, registry, runtime):
        vcs = FakeVcs(config.worktrees_root, with_dockerfile=False)
        engine = Orchestrator(config, registry, vcs, runtime)

        with pytest.raises(ValidationError):
            engine.create("plain")
        assert registry.get("plain") is None
        assert not (Path(config.worktrees_root) / "plain").exists()

    def test_retry_create_after_error(self, engine, vcs):
        """Test that an errored record is cleared and recreated."""
        vcs.fail("create_worktree", GitTimeoutError("git hung"))
        with pytest.raises(OperationTimeoutError):
            engine.create("feature-x")
        assert engine.registry.get("feature-x").status == "error"

        record = engine.create("feature-x")
        assert record.status == "ready"


class TestCreateRollback:
    """Test rollback of partially completed creates."""

    def test_build_failure_removes_worktree_and_branch(self, engine, vcs, runtime, events):
        """Test runtime failure mid-create triggers full rollback."""
        runtime.fail("build_image", ExecFailedError("build broke"))

        with pytest.raises(AdapterError) as exc_info:
            engine.create("feature-x")

        assert exc_info.value.environment == "feature-x"
        assert exc_info.value.operation == "create"
        assert engine.registry.get("feature-x") is None
        assert vcs.worktrees == {}
        assert "feature-x" not in vcs.branches
        assert runtime.containers == {}
        assert events[-1].new_status is None

    def test_existing_branch_survives_rollback(self, engine, vcs, runtime):
        vcs.branches.add("shared")
        runtime.fail("build_image", ExecFailedError("build broke"))
        with pytest.raises(AdapterError):
            engine.create("feature-x", branch="shared")
        assert "shared" in vcs.branches

    def test_runtime_unavailable_during_build(self, engine, runtime):
        runtime.fail("build_image", RuntimeUnavailableError("daemon down"))
        with pytest.raises(AdapterUnavailableError):
            engine.create("feature-x")
        assert engine.registry.get("feature-x") is None

    def test_failed_rollback_leaves_internal_error(self, engine, vcs, runtime):
        """Test a rollback that itself fails leaves an error record."""
        runtime.fail("build_image", ExecFailedError("build broke"))
        vcs.fail("remove_worktree", GitAdapterException("disk full"))

        with pytest.raises(InternalError) as exc_info:
            engine.create("feature-x")

        assert "rollback failed" in exc_info.value.message
        record = engine.registry.get("feature-x")
        assert record.status == "error"
        assert record.error.kind == "internal"
        assert record.error.operation == "create"

    def test_errored_create_can_be_destroyed(self, engine, vcs, runtime):
        runtime.fail("build_image", ExecFailedError("build broke"))
        vcs.fail("remove_worktree", GitAdapterException("disk full"))
        with pytest.raises(InternalError):
            engine.create("feature-x")

        assert engine.destroy("feature-x", force=True) is True
        assert engine.registry.get("feature-x") is None
        assert vcs.worktrees == {}


class TestStartStop:
    """Test start/stop transitions and failure handling."""

    def test_start_requires_ready_or_stopped(self, engine):
        running_env(engine)
        with pytest.raises(InvalidTransitionError):
            engine.start("feature-x")

    def test_start_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.start("ghost")

    def test_start_failure_reverts_to_ready(self, engine, runtime):
        """Test adapter failure restores the previous status and drops the new container."""
        engine.create("feature-x")
        runtime.fail("start", ExecFailedError("port clash"))

        with pytest.raises(AdapterError):
            engine.start("feature-x")

        record = engine.registry.get("feature-x")
        assert record.status == "ready"
        assert record.container_id is None
        assert runtime.containers == {}

    def test_start_failure_from_stopped_keeps_container(self, engine, runtime):
        record = running_env(engine)
        engine.stop("feature-x")
        runtime.fail("start", ExecFailedError("oom"))

        with pytest.raises(AdapterError):
            engine.start("feature-x")

        after = engine.registry.get("feature-x")
        assert after.status == "stopped"
        assert after.container_id == record.container_id
        assert runtime.lookup(record.container_id) is not None

    def test_start_timeout_moves_to_error(self, engine, runtime):
        engine.create("feature-x")
        runtime.fail("start", ContainerTimeoutError("slow"))

        with pytest.raises(OperationTimeoutError):
            engine.start("feature-x")

        record = engine.registry.get("feature-x")
        assert record.status == "error"
        assert record.error.kind == "timeout"
        assert record.container_id is None

    def test_container_exits_immediately(self, engine, runtime):
        """Test start fails when inspect does not confirm running."""
        engine.create("feature-x")
        original_start = runtime.start

        def start_then_die(container_id):
            original_start(container_id)
            runtime.exit_externally(container_id)

        runtime.start = start_then_die
        with pytest.raises(AdapterError, match="not running after start"):
            engine.start("feature-x")
        assert engine.registry.get("feature-x").status == "ready"

    def test_stale_container_name_is_replaced(self, engine, runtime):
        """Test a leftover container with the same name is removed and recreated."""
        record = engine.create("feature-x")
        runtime.create_container("img", [], record.container_name)

        started = engine.start("feature-x")
        assert started.status == "running"
        assert len(runtime.containers) == 1

    def test_stop_requires_running(self, engine):
        engine.create("feature-x")
        with pytest.raises(InvalidTransitionError):
            engine.stop("feature-x")

    def test_stop_timeout_moves_to_error(self, engine, runtime):
        running_env(engine)
        runtime.fail("stop", ContainerTimeoutError("stuck"))
        with pytest.raises(OperationTimeoutError):
            engine.stop("feature-x")
        assert engine.registry.get("feature-x").status == "error"

    def test_stop_container_gone(self, engine, runtime):
        record = running_env(engine)
        runtime.remove_externally(record.container_id)
        with pytest.raises(NotFoundError):
            engine.stop("feature-x")
        assert engine.registry.get("feature-x").error.kind == "not_found"


class TestDestroy:
    """Test destroy semantics."""

    def test_destroy_removes_built_image(self, engine, runtime):
        record = running_env(engine)
        assert record.image_ref in runtime.images

        engine.destroy("feature-x")
        assert record.image_ref not in runtime.images

    def test_destroy_keeps_configured_default_image(self, config, registry, runtime):
        """Test a shared default image is never removed with an environment."""
        config.default_image = "ubuntu:24.04"
        runtime.images.add("ubuntu:24.04")
        vcs = FakeVcs(config.worktrees_root, with_dockerfile=False)
        engine = Orchestrator(config, registry, vcs, runtime)

        engine.create("plain")
        engine.destroy("plain")
        assert runtime.images == {"ubuntu:24.04"}
        assert "remove_image" not in runtime.calls

    def test_destroy_tolerates_missing_image(self, engine, runtime):
        record = engine.create("feature-x")
        runtime.images.discard(record.image_ref)

        assert engine.destroy("feature-x") is True
        assert engine.registry.get("feature-x") is None

    def test_names_differing_in_case_use_their_own_images(self, engine, runtime):
        """Test Foo and foo never share a built image or a container image."""
        upper = engine.create("Foo")
        lower = engine.create("foo")
        assert upper.image_ref != lower.image_ref

        started = engine.start("foo")
        assert runtime.lookup(started.container_id)["image"] == lower.image_ref

        engine.destroy("Foo")
        assert lower.image_ref in runtime.images

    def test_destroy_unknown_is_noop(self, engine, vcs, runtime):
        assert engine.destroy("ghost") is False
        assert vcs.calls == []
        assert runtime.calls == []

    def test_dirty_worktree_refused_without_force(self, engine, vcs):
        """Test Conflict on a dirty worktree leaves the record untouched."""
        record = engine.create("feature-x")
        vcs.dirty.add(record.worktree_path)

        with pytest.raises(ConflictError):
            engine.destroy("feature-x")
        assert engine.registry.get("feature-x") == record

        assert engine.destroy("feature-x", force=True) is True
        assert not Path(record.worktree_path).exists()

    def test_destroy_tolerates_missing_container(self, engine, runtime):
        record = running_env(engine)
        runtime.remove_externally(record.container_id)
        assert engine.destroy("feature-x") is True
        assert engine.registry.get("feature-x") is None

    def test_destroy_tolerates_missing_worktree(self, engine):
        record = engine.create("feature-x")
        shutil.rmtree(record.worktree_path)
        assert engine.destroy("feature-x") is True

    def test_failed_teardown_leaves_error_then_retry(self, engine, runtime):
        """Test interrupted destroy records error and can be finished later."""
        running_env(engine)
        runtime.fail("remove", RuntimeUnavailableError("daemon down"))

        with pytest.raises(AdapterUnavailableError):
            engine.destroy("feature-x")

        record = engine.registry.get("feature-x")
        assert record.status == "error"
        assert record.error.operation == "destroy"
        assert record.container_id is None

        assert engine.destroy("feature-x") is True
        assert runtime.containers == {}


class TestReconciliation:
    """Test status() correcting stale records."""

    def test_external_container_removal_detected(self, engine, runtime, events):
        """Test a removed container is reported as error, never stale running."""
        record = running_env(engine)
        runtime.remove_externally(record.container_id)

        status = engine.status("feature-x")
        assert status.status == "error"
        assert status.error.kind == "not_found"
        assert status.container_id is None
        assert events[-1].new_status == "error"

    def test_exited_container_becomes_stopped(self, engine, runtime):
        record = running_env(engine)
        runtime.exit_externally(record.container_id)
        assert engine.status("feature-x").status == "stopped"

    def test_container_started_outside(self, engine, runtime):
        record = running_env(engine)
        engine.stop("feature-x")
        runtime.lookup(record.container_id)["running"] = True
        assert engine.status("feature-x").status == "running"

    def test_errored_record_recovers_when_container_runs(self, engine, runtime):
        record = running_env(engine)
        runtime.fail("stop", ContainerTimeoutError("stuck"))
        with pytest.raises(OperationTimeoutError):
            engine.stop("feature-x")
        assert engine.registry.get("feature-x").status == "error"

        recovered = engine.status("feature-x")
        assert recovered.status == "running"
        assert recovered.container_id == record.container_id

    def test_runtime_unreachable_while_running(self, engine, runtime):
        running_env(engine)
        runtime.fail("inspect", RuntimeUnavailableError("daemon down"))
        record = engine.status("feature-x")
        assert record.status == "error"
        assert record.error.kind == "adapter_unavailable"

    def test_worktree_gone_removes_record(self, engine, runtime):
        """Test a vanished worktree removes the record and its container."""
        record = running_env(engine)
        shutil.rmtree(record.worktree_path)

        with pytest.raises(NotFoundError):
            engine.status("feature-x")
        assert engine.registry.get("feature-x") is None
        assert runtime.containers == {}

    def test_without_reconcile_returns_stored(self, engine, runtime):
        record = running_env(engine)
        runtime.exit_externally(record.container_id)
        assert engine.status("feature-x", reconcile=False).status == "running"

    def test_skipped_while_operation_in_flight(self, engine, runtime):
        """Test reads never block on, or race with, a held name lock."""
        record = running_env(engine)
        runtime.exit_externally(record.container_id)

        with engine.locks.hold("feature-x"):
            assert engine.status("feature-x").status == "running"
        assert engine.status("feature-x").status == "stopped"

    def test_list_with_reconcile_and_filter(self, engine, runtime):
        a = running_env(engine, "a")
        running_env(engine, "b")
        engine.create("c")
        runtime.exit_externally(a.container_id)

        assert [r.name for r in engine.list(status="running")] == ["a", "b"]
        assert [r.name for r in engine.list(status="running", reconcile=True)] == ["b"]
        assert [r.status for r in engine.list()] == ["stopped", "running", "ready"]

    def test_list_unknown_status(self, engine):
        with pytest.raises(ValidationError):
            engine.list(status="paused")


class TestConcurrency:
    """Test per-name serialization."""

    def test_concurrent_creates_same_name(self, engine, vcs):
        """Test exactly one create wins; the others see AlreadyExists or Conflict."""
        vcs.create_delay = 0.05
        outcomes = []
        barrier = threading.Barrier(4)

        def worker():
            barrier.wait()
            try:
                engine.create("feature-x")
                outcomes.append("ready")
            except (AlreadyExistsError, ConflictError):
                outcomes.append("rejected")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ready") == 1
        assert outcomes.count("rejected") == 3
        assert engine.registry.get("feature-x").status == "ready"
        assert vcs.calls.count("create_worktree") == 1

    def test_distinct_names_run_in_parallel(self, engine, vcs):
        vcs.create_delay = 0.05
        threads = [
            threading.Thread(target=engine.create, args=(f"env-{i}",)) for i in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(engine.registry.list(status="ready")) == 4

    def test_destroy_during_create_waits_then_succeeds(self, engine, runtime, events):
        """Test a destroy issued mid-create queues behind it instead of failing."""
        building = threading.Event()
        release = threading.Event()

        def slow_build(spec):
            building.set()
            release.wait(5)

        runtime.build_hook = slow_build
        created, destroyed = [], []
        creator = threading.Thread(target=lambda: created.append(engine.create("feature-x")))
        creator.start()
        assert building.wait(5)

        destroyer = threading.Thread(
            target=lambda: destroyed.append(engine.destroy("feature-x"))
        )
        destroyer.start()
        destroyer.join(0.2)
        assert destroyer.is_alive()
        assert engine.registry.get("feature-x").status == "creating"

        release.set()
        creator.join(5)
        destroyer.join(5)

        assert created[0].status == "ready"
        assert destroyed == [True]
        assert engine.registry.get("feature-x") is None
        assert [(e.old_status, e.new_status) for e in events] == [
            (None, "creating"),
            ("creating", "ready"),
            ("ready", "destroying"),
            ("destroying", None),
        ]

    def test_configured_lock_timeout_gives_conflict(self, engine, config, runtime):
        """Test an explicit lock_timeout bounds the wait and leaves the create alone."""
        config.lock_timeout = 0.05
        building = threading.Event()
        release = threading.Event()

        def slow_build(spec):
            building.set()
            release.wait(5)

        runtime.build_hook = slow_build
        creator = threading.Thread(target=engine.create, args=("feature-x",))
        creator.start()
        assert building.wait(5)
        try:
            with pytest.raises(ConflictError):
                engine.destroy("feature-x")
        finally:
            release.set()
            creator.join(5)
        assert engine.registry.get("feature-x").status == "ready"

    def test_lock_timeout_is_conflict(self):
        locks = NameLocks()
        with locks.hold("x"):
            acquired = []

            def contender():
                try:
                    with locks.hold("x", timeout=0.05, operation="start"):
                        acquired.append(True)
                except ConflictError:
                    acquired.append(False)

            t = threading.Thread(target=contender)
            t.start()
            t.join()
        assert acquired == [False]
        assert not locks.is_held("x")


class TestInContainerOperations:
    """Test execute, streaming and file access."""

    def test_execute_requires_running(self, engine):
        engine.create("feature-x")
        with pytest.raises(InvalidTransitionError):
            engine.execute("feature-x", "echo hi")

    def test_execute_nonzero_is_not_an_error(self, engine, runtime):
        running_env(engine)
        runtime.exec_handler = lambda command: ExecResult(exit_code=2, stderr="nope\n")
        result = engine.execute("feature-x", "false")
        assert result.exit_code == 2
        assert result.stderr == "nope\n"

    def test_execute_empty_command(self, engine):
        running_env(engine)
        with pytest.raises(ValidationError):
            engine.execute("feature-x", "  ")

    def test_execute_stream_delivers_chunks(self, engine, runtime):
        running_env(engine)
        runtime.stream_chunks = [
            OutputChunk("stdout", "line 1\n"),
            OutputChunk("stderr", "warn\n"),
            OutputChunk("stdout", "line 2\n"),
        ]
        received = []
        result = engine.execute_stream("feature-x", "build", received.append)
        assert [c.data for c in received] == ["line 1\n", "warn\n", "line 2\n"]
        assert result.exit_code == 0

    def test_execute_stream_cancelled(self, engine, runtime):
        running_env(engine)
        runtime.stream_chunks = [OutputChunk("stdout", "x")]
        cancel = threading.Event()
        cancel.set()
        result = engine.execute_stream("feature-x", "build", lambda c: None, cancel_event=cancel)
        assert result.cancelled is True

    def test_execute_timeout_is_wrapped(self, engine, runtime):
        running_env(engine)
        runtime.fail("exec", ContainerTimeoutError("too slow"))
        with pytest.raises(OperationTimeoutError):
            engine.execute("feature-x", "sleep 100")
        assert engine.registry.get("feature-x").status == "running"

    def test_write_then_read_file(self, engine):
        running_env(engine)
        engine.write_file("feature-x", "notes.txt", b"hello")
        assert engine.read_file("feature-x", "notes.txt") == b"hello"

    def test_files_available_while_stopped(self, engine):
        running_env(engine)
        engine.write_file("feature-x", "a.txt", b"1")
        engine.stop("feature-x")
        assert engine.read_file("feature-x", "a.txt") == b"1"

    def test_file_ops_require_container(self, engine):
        engine.create("feature-x")
        with pytest.raises(InvalidTransitionError):
            engine.read_file("feature-x", "a.txt")

    def test_read_missing_file(self, engine):
        running_env(engine)
        with pytest.raises(NotFoundError):
            engine.read_file("feature-x", "missing.txt")

    @pytest.mark.parametrize("path", ["", "dir/", "a\x00b"])
    def test_invalid_paths(self, engine, path):
        running_env(engine)
        with pytest.raises(ValidationError):
            engine.read_file("feature-x", path)


class TestErrorWrapping:
    """Test adapter exceptions mapped into the error taxonomy."""

    @pytest.mark.parametrize(
        "exc, kind",
        [
            (GitTimeoutError("t"), "timeout"),
            (ContainerTimeoutError("t"), "timeout"),
            (ContainerNotFoundError("n"), "not_found"),
            (ContainerAlreadyRunningError("a"), "conflict"),
            (RuntimeUnavailableError("u"), "adapter_unavailable"),
            (ExecFailedError("e"), "adapter_error"),
            (GitAdapterException("g"), "adapter_error"),
            (ValueError("bad record"), "internal"),
        ],
    )
    def test_kinds(self, exc, kind):
        wrapped = wrap_adapter_error(exc, "env", "start")
        assert wrapped.kind == kind
        assert wrapped.environment == "env"
        assert wrapped.operation == "start"

    def test_taxonomy_errors_pass_through(self):
        original = ConflictError("busy")
        assert wrap_adapter_error(original, "env", "stop") is original
        assert original.environment == "env"
