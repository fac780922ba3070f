"""
Docker container lifecycle adapter.

Wraps the docker command line: image builds, container create/start/stop/remove,
inspection, command execution (buffered and streamed) and file copy in/out.
Surfaces stdout/stderr and failures as the adapter exception kinds.
"""

import codecs
import io
import json
import logging
import posixpath
import subprocess
import tarfile
import threading
import time
from typing import List, Optional

from devenv.adapters.protocol import (
    BuildSpec,
    ContainerAlreadyRunningError,
    ContainerNotFoundError,
    ContainerTimeoutError,
    ExecFailedError,
    Mount,
    OutputCallback,
    RuntimeStatus,
    RuntimeUnavailableError,
)
from devenv.core.models import ExecResult, OutputChunk


logger = logging.getLogger(__name__)

_NOT_FOUND_MARKERS = (
    "no such object",
    "no such container",
    "no such image",
    "could not find the file",
    "no container with name or id",
    "container not found",
)
_UNAVAILABLE_MARKERS = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "error during connect",
    "permission denied while trying to connect",
)

STREAM_READ_SIZE = 4096
POLL_INTERVAL = 0.1


def classify_docker_error(stderr: str, action: str, target: str) -> Exception:
    """Map docker CLI stderr to an adapter exception.

    Args:
        stderr: Captured standard error of the failed command.
        action: Short description of what was attempted (e.g. "start").
        target: Container id, name or image involved.

    Returns:
        The exception instance to raise.
    """
    lowered = stderr.lower()
    message = f"docker {action} {target} failed: {stderr.strip()[:500]}"
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return RuntimeUnavailableError(message)
    if "already in use" in lowered:
        return ContainerAlreadyRunningError(message)
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return ContainerNotFoundError(message)
    return ExecFailedError(message, stderr=stderr)


class DockerRuntimeAdapter:
    """Container runtime adapter over the docker command line.

    Attributes:
        docker_host: Optional engine address passed as ``docker -H``.
        timeout: Seconds allowed for short lifecycle calls.
        build_timeout: Seconds allowed for image builds.
        stop_grace: Seconds docker waits before killing on stop.
        container_command: Keep-alive command the dev container runs.
        workspace_mount: Container path where the worktree is mounted.
    """

    def __init__(
        self,
        docker_host: Optional[str] = None,
        timeout: float = 60,
        build_timeout: float = 900,
        stop_grace: int = 10,
        container_command: Optional[List[str]] = None,
        workspace_mount: str = "/workspace",
    ):
        self.docker_host = docker_host
        self.timeout = timeout
        self.build_timeout = build_timeout
        self.stop_grace = stop_grace
        self.container_command = list(container_command or ["sleep", "infinity"])
        self.workspace_mount = workspace_mount

    def _base_cmd(self) -> List[str]:
        cmd = ["docker"]
        if self.docker_host:
            cmd.extend(["-H", self.docker_host])
        return cmd

    def _run(
        self,
        args: List[str],
        timeout: Optional[float] = None,
        input: Optional[bytes] = None,
        binary: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run a docker command with a bounded timeout."""
        cmd = self._base_cmd() + args
        timeout = timeout if timeout is not None else self.timeout
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            if binary:
                return subprocess.run(
                    cmd, capture_output=True, timeout=timeout, input=input
                )
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise ContainerTimeoutError(
                f"Timeout after {timeout}s running docker {' '.join(args[:2])}"
            )
        except FileNotFoundError as e:
            raise RuntimeUnavailableError(f"docker CLI not available: {e}")
        except OSError as e:
            raise RuntimeUnavailableError(f"Cannot run docker: {e}")

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def build_image(self, spec: BuildSpec) -> str:
        """
        Build an image from a build spec.

        Returns:
            The image reference (the BuildSpec tag).

        Raises:
            ExecFailedError: If the build fails.
            ContainerTimeoutError: If the build exceeds build_timeout.
        """
        cmd = ["build", "-t", spec.tag, "-f", spec.dockerfile]
        for key, value in sorted(spec.build_args.items()):
            cmd.extend(["--build-arg", f"{key}={value}"])
        cmd.append(spec.context_path)

        logger.info(f"Building image {spec.tag} from {spec.dockerfile}")
        result = self._run(cmd, timeout=self.build_timeout)
        if result.returncode != 0:
            err = classify_docker_error(result.stderr, "build", spec.tag)
            if isinstance(err, ContainerNotFoundError):
                # A missing base image is a build failure, not a missing container
                err = ExecFailedError(str(err), exit_code=result.returncode, stderr=result.stderr)
            raise err

        logger.info(f"Image {spec.tag} built")
        return spec.tag

    def remove_image(self, image_ref: str) -> None:
        """Remove a built image.

        Raises:
            ContainerNotFoundError: If no such image exists.
        """
        result = self._run(["image", "rm", image_ref])
        if result.returncode != 0:
            raise classify_docker_error(result.stderr, "image rm", image_ref)
        logger.info(f"Image {image_ref} removed")

    # ------------------------------------------------------------------
    # Container lifecycle
    # ------------------------------------------------------------------

    def create_container(self, image_ref: str, mounts: List[Mount], name: str) -> str:
        """
        Create (but do not start) a dev container.

        Returns:
            The container ID (short form).

        Raises:
            ContainerAlreadyRunningError: If the name is already in use.
        """
        cmd = ["create", "--name", name, "--label", "devenv.managed=true"]
        for mount in mounts:
            spec = f"{mount.source}:{mount.target}"
            if mount.read_only:
                spec += ":ro"
            cmd.extend(["-v", spec])
        cmd.extend(["-w", self.workspace_mount])
        cmd.append(image_ref)
        cmd.extend(self.container_command)

        result = self._run(cmd)
        if result.returncode != 0:
            raise classify_docker_error(result.stderr, "create", name)

        container_id = result.stdout.strip()[:12]
        logger.info(f"Container {container_id} ({name}) created from {image_ref}")
        return container_id

    def start(self, container_id: str) -> None:
        """Start a created or stopped container."""
        result = self._run(["start", container_id])
        if result.returncode != 0:
            raise classify_docker_error(result.stderr, "start", container_id)
        logger.info(f"Container {container_id} started")

    def stop(self, container_id: str) -> None:
        """Stop a container gracefully; stopping a stopped container is a no-op."""
        result = self._run(
            ["stop", "-t", str(self.stop_grace), container_id],
            timeout=self.timeout + self.stop_grace,
        )
        if result.returncode != 0:
            raise classify_docker_error(result.stderr, "stop", container_id)
        logger.info(f"Container {container_id} stopped")

    def remove(self, container_id: str) -> None:
        """Force-remove a container."""
        result = self._run(["rm", "-f", container_id])
        if result.returncode != 0:
            raise classify_docker_error(result.stderr, "rm", container_id)
        # docker rm -f exits 0 for some engines even when nothing matched
        if "no such container" in result.stderr.lower():
            raise ContainerNotFoundError(f"Container {container_id} not found")
        logger.info(f"Container {container_id} removed")

    def inspect(self, container_id: str) -> RuntimeStatus:
        """
        Inspect a container and return its status.

        Raises:
            ContainerNotFoundError: If container does not exist.
            ExecFailedError: If the inspect output cannot be parsed.
        """
        result = self._run(
            ["inspect", "--type", "container", "--format", "{{json .}}", container_id]
        )
        if result.returncode != 0:
            raise classify_docker_error(result.stderr, "inspect", container_id)

        try:
            data = json.loads(result.stdout)
            info = data[0] if isinstance(data, list) else data
            state = info["State"]
            return RuntimeStatus(
                container_id=info["Id"][:12],
                name=info["Name"].lstrip("/"),
                state=state["Status"],
                running=bool(state["Running"]),
                exit_code=state.get("ExitCode", 0),
            )
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise ExecFailedError(f"Failed to parse inspect output: {e}")

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def _exec_cmd(self, container_id: str, command: str) -> List[str]:
        return self._base_cmd() + [
            "exec",
            "-w",
            self.workspace_mount,
            container_id,
            "sh",
            "-c",
            command,
        ]

    def exec(
        self, container_id: str, command: str, timeout: Optional[float] = None
    ) -> ExecResult:
        """
        Run a shell command inside a running container and buffer its output.

        A non-zero exit code of the command itself is returned, not raised.

        Raises:
            ContainerNotFoundError: If the container does not exist.
            ContainerTimeoutError: If the command exceeds timeout.
        """
        timeout = timeout if timeout is not None else self.timeout
        started = time.monotonic()
        try:
            result = subprocess.run(
                self._exec_cmd(container_id, command),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise ContainerTimeoutError(
                f"Command timed out after {timeout}s in {container_id}"
            )
        except (FileNotFoundError, OSError) as e:
            raise RuntimeUnavailableError(f"Cannot run docker: {e}")

        duration = time.monotonic() - started
        self._check_exec_launch(result.returncode, result.stderr, container_id)
        return ExecResult(
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=duration,
        )

    def _check_exec_launch(self, returncode: int, stderr: str, container_id: str) -> None:
        """Distinguish docker failing to exec from the command exiting non-zero."""
        # docker exec reserves 125-127 for its own failures
        if returncode not in (125, 126, 127):
            return
        lowered = stderr.lower()
        if "is not running" in lowered:
            raise ExecFailedError(
                f"Container {container_id} is not running", exit_code=returncode, stderr=stderr
            )
        if any(m in lowered for m in _NOT_FOUND_MARKERS + _UNAVAILABLE_MARKERS) and (
            "container" in lowered or "daemon" in lowered
        ):
            raise classify_docker_error(stderr, "exec", container_id)

    def exec_stream(
        self,
        container_id: str,
        command: str,
        on_output: OutputCallback,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecResult:
        """
        Run a shell command and deliver output incrementally.

        Output is handed to on_output as OutputChunk objects in arrival order
        per stream and is not accumulated, so memory stays bounded for long
        running commands. Setting cancel_event kills the exec client.

        Returns:
            ExecResult with exit code and duration (stdout/stderr empty).

        Raises:
            ContainerTimeoutError: If the command exceeds timeout.
        """
        timeout = timeout if timeout is not None else self.timeout
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                self._exec_cmd(container_id, command),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (FileNotFoundError, OSError) as e:
            raise RuntimeUnavailableError(f"Cannot run docker: {e}")

        stderr_head: List[str] = []

        def pump(pipe, stream: str) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                data = pipe.read1(STREAM_READ_SIZE)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    if stream == "stderr" and sum(map(len, stderr_head)) < 2048:
                        stderr_head.append(text)
                    on_output(OutputChunk(stream=stream, data=text))
            tail = decoder.decode(b"", final=True)
            if tail:
                on_output(OutputChunk(stream=stream, data=tail))
            pipe.close()

        readers = [
            threading.Thread(target=pump, args=(proc.stdout, "stdout"), daemon=True),
            threading.Thread(target=pump, args=(proc.stderr, "stderr"), daemon=True),
        ]
        for reader in readers:
            reader.start()

        timed_out = False
        cancelled = False
        deadline = started + timeout
        while proc.poll() is None:
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break
            if time.monotonic() >= deadline:
                timed_out = True
                break
            time.sleep(POLL_INTERVAL)

        if timed_out or cancelled:
            proc.kill()
        exit_code = proc.wait()
        for reader in readers:
            reader.join(timeout=5)

        duration = time.monotonic() - started
        if timed_out:
            raise ContainerTimeoutError(
                f"Command timed out after {timeout}s in {container_id}"
            )
        if cancelled:
            logger.info(f"Command in {container_id} cancelled after {duration:.1f}s")
            return ExecResult(exit_code=-1, duration=duration, cancelled=True)

        self._check_exec_launch(exit_code, "".join(stderr_head), container_id)
        return ExecResult(exit_code=exit_code, duration=duration)

    # ------------------------------------------------------------------
    # File copy
    # ------------------------------------------------------------------

    def _resolve_path(self, path: str) -> str:
        if not posixpath.isabs(path):
            path = posixpath.join(self.workspace_mount, path)
        return posixpath.normpath(path)

    def read_file(self, container_id: str, path: str) -> bytes:
        """
        Copy a single file out of a container.

        Raises:
            ContainerNotFoundError: If the container or the file is missing.
            ExecFailedError: If path is not a regular file.
        """
        path = self._resolve_path(path)
        result = self._run(["cp", f"{container_id}:{path}", "-"], binary=True)
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise classify_docker_error(stderr, "cp", f"{container_id}:{path}")

        try:
            with tarfile.open(fileobj=io.BytesIO(result.stdout), mode="r:") as archive:
                member = archive.next()
                if member is None or not member.isfile():
                    raise ExecFailedError(f"{path} is not a regular file")
                extracted = archive.extractfile(member)
                return extracted.read() if extracted else b""
        except tarfile.TarError as e:
            raise ExecFailedError(f"Failed to unpack {path} from {container_id}: {e}")

    def write_file(self, container_id: str, path: str, content: bytes) -> None:
        """
        Copy content into a container at path, replacing any existing file.

        The parent directory must already exist in the container.

        Raises:
            ContainerNotFoundError: If the container or parent directory is missing.
        """
        path = self._resolve_path(path)
        directory, filename = posixpath.split(path)
        if not filename:
            raise ExecFailedError(f"Invalid file path: {path}")

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:") as archive:
            info = tarfile.TarInfo(name=filename)
            info.size = len(content)
            info.mtime = int(time.time())
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(content))

        result = self._run(
            ["cp", "-", f"{container_id}:{directory or '/'}"],
            input=buffer.getvalue(),
            binary=True,
        )
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise classify_docker_error(stderr, "cp", f"{container_id}:{path}")
        logger.debug(f"Wrote {len(content)} bytes to {container_id}:{path}")
