"""
Control-plane server.

Accepts websocket sessions from remote agents and maps protocol operations
onto the orchestration engine. Each request runs as its own asyncio task.
Quick reads go to a bounded thread pool; lifecycle operations, which may
queue on a per-name lock, and streamed commands each get a thread of their
own, so a slow create or a long command in one session never delays the
replies of other requests or other sessions.
Status changes from the engine are pushed to subscribed sessions.
"""

import asyncio
import concurrent.futures
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Set

from aiohttp import WSMsgType, web

from devenv.constants import MAX_MESSAGE_BYTES, STREAM_QUEUE_CHUNKS, WEBSOCKET_PATH
from devenv.core.exceptions import (
    ConflictError,
    DevEnvError,
    InternalError,
    ValidationError,
)
from devenv.core.models import OutputChunk, StatusChange, utc_now
from devenv.engine import Orchestrator
from devenv.server.protocol import (
    FrameError,
    Request,
    decode_content,
    encode_content,
    environment_view,
    error_frame,
    event_frame,
    output_frame,
    parse_request,
    result_frame,
)
from devenv.server.session import Session
from devenv.support.config import DevEnvConfig


logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 30.0
# How often a blocked output producer checks whether its command was cancelled
BACKPRESSURE_POLL_SECONDS = 0.5


def _optional_str(params: Dict[str, Any], key: str) -> Optional[str]:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"parameter '{key}' must be a string")
    return value


def _optional_bool(params: Dict[str, Any], key: str) -> bool:
    value = params.get(key, False)
    if not isinstance(value, bool):
        raise ValidationError(f"parameter '{key}' must be a boolean")
    return value


def _optional_number(params: Dict[str, Any], key: str) -> Optional[float]:
    value = params.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ValidationError(f"parameter '{key}' must be a positive number")
    return float(value)


def _optional_names(params: Dict[str, Any], key: str) -> Optional[List[str]]:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"parameter '{key}' must be a list of names")
    return value


class ControlPlaneServer:
    """
    aiohttp application wrapping one Orchestrator.

    Attributes:
        config: Process configuration (host, port, worker count).
        engine: The orchestration engine all operations go through.
        sessions: Currently connected sessions.
    """

    def __init__(self, config: DevEnvConfig, engine: Orchestrator):
        self.config = config
        self.engine = engine
        self.sessions: Set[Session] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._handlers: Dict[str, Callable] = {
            "listEnvironments": self._list_environments,
            "getEnvironment": self._get_environment,
            "createEnvironment": self._create_environment,
            "startEnvironment": self._start_environment,
            "stopEnvironment": self._stop_environment,
            "destroyEnvironment": self._destroy_environment,
            "executeCommand": self._execute_command,
            "readFile": self._read_file,
            "writeFile": self._write_file,
            "subscribe": self._subscribe,
            "unsubscribe": self._unsubscribe,
            "cancel": self._cancel,
            "ping": self._ping,
        }

    # ========================================================================
    # Application wiring
    # ========================================================================

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application()

        app.router.add_get("/health", self.handle_health)
        app.router.add_get(WEBSOCKET_PATH, self.handle_websocket)

        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        self._loop = asyncio.get_running_loop()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.server_workers, thread_name_prefix="devenv-op"
        )
        self.engine.add_listener(self._on_status_change)
        logger.info(
            f"Control-plane ready ({self.config.server_workers} workers, "
            f"websocket at {WEBSOCKET_PATH})"
        )

    async def _on_shutdown(self, app: web.Application) -> None:
        for session in list(self.sessions):
            session.close()
            await session.ws.close()

    async def _on_cleanup(self, app: web.Application) -> None:
        self.engine.remove_listener(self._on_status_change)
        if self._executor is not None:
            # Reads already dispatched finish in their threads
            self._executor.shutdown(wait=False)
            self._executor = None
        self._loop = None

    def run(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Serve until interrupted."""
        host = host or self.config.server_host
        port = port or self.config.server_port
        logger.info(f"Starting control-plane server on {host}:{port}")
        web.run_app(self.create_app(), host=host, port=port, print=None)

    # ========================================================================
    # Engine bridge
    # ========================================================================

    async def _call(self, fn: Callable, *args, **kwargs) -> Any:
        """Run a short blocking engine call in the worker pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(fn, *args, **kwargs)
        )

    def _call_on_own_thread(self, fn: Callable, *args, **kwargs) -> asyncio.Future:
        """
        Run a long or lock-waiting engine call on a dedicated thread.

        The thread is not a daemon: an operation already dispatched runs to
        completion even if its session goes away or the server shuts down.

        Returns:
            An asyncio future resolved on the running loop.
        """
        outcome: concurrent.futures.Future = concurrent.futures.Future()
        # Running from the start, so cancelling the awaiting task cannot withdraw it
        outcome.set_running_or_notify_cancel()

        def run() -> None:
            try:
                outcome.set_result(fn(*args, **kwargs))
            except Exception as e:
                outcome.set_exception(e)

        threading.Thread(target=run, name=f"devenv-{fn.__name__}").start()
        return asyncio.wrap_future(outcome)

    def _on_status_change(self, change: StatusChange) -> None:
        """Engine listener; called on whichever thread made the change."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._broadcast, change)

    def _broadcast(self, change: StatusChange) -> None:
        frame = event_frame(change)
        for session in list(self.sessions):
            if not session.closed and session.wants(change.environment_name):
                session.spawn(session.send(frame))

    # ========================================================================
    # HTTP handlers
    # ========================================================================

    async def handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health."""
        return web.json_response(
            {
                "status": "ok",
                "sessions": len(self.sessions),
                "time": utc_now(),
            }
        )

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle GET /ws: one session per connection."""
        ws = web.WebSocketResponse(
            max_msg_size=MAX_MESSAGE_BYTES, heartbeat=HEARTBEAT_SECONDS
        )
        await ws.prepare(request)

        session = Session(ws)
        self.sessions.add(session)
        logger.info(f"Session {session.id} connected from {request.remote}")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._dispatch(session, msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await session.send(
                        error_frame(None, FrameError("binary frames are not supported"))
                    )
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"Session {session.id} error: {ws.exception()}")
        finally:
            self.sessions.discard(session)
            session.close()
            logger.info(f"Session {session.id} disconnected")

        return ws

    # ========================================================================
    # Request dispatch
    # ========================================================================

    def _dispatch(self, session: Session, text: str) -> None:
        try:
            req = parse_request(text)
        except FrameError as e:
            logger.debug(f"Session {session.id}: malformed frame: {e.message}")
            session.spawn(session.send(error_frame(e.request_id, e)))
            return

        if session.is_active(req.id):
            error = ConflictError(
                f"request id {req.id!r} is already in flight", operation=req.op
            )
            session.spawn(session.send(error_frame(req.id, error)))
            return

        cancel_event = threading.Event() if req.op == "executeCommand" else None
        task = asyncio.get_running_loop().create_task(self._run_request(session, req))
        session.track(req.id, task, cancel_event)

    async def _run_request(self, session: Session, req: Request) -> None:
        logger.debug(f"Session {session.id}: {req.op} ({req.id})")
        try:
            result = await self._handlers[req.op](session, req)
            await session.send(result_frame(req.id, result))
        except DevEnvError as e:
            if e.operation is None:
                e.operation = req.op
            await session.send(error_frame(req.id, e))
        except Exception as e:
            logger.exception(f"Session {session.id}: unhandled error in {req.op}")
            await session.send(
                error_frame(req.id, InternalError(str(e), operation=req.op))
            )
        finally:
            session.finish(req.id)

    # ========================================================================
    # Operations
    # ========================================================================

    async def _list_environments(self, session: Session, req: Request) -> Dict[str, Any]:
        records = await self._call(
            self.engine.list,
            status=_optional_str(req.params, "status"),
            reconcile=_optional_bool(req.params, "reconcile"),
        )
        return {"environments": [environment_view(r) for r in records]}

    async def _get_environment(self, session: Session, req: Request) -> Dict[str, Any]:
        record = await self._call(self.engine.status, req.require("name"))
        return {"environment": environment_view(record)}

    async def _create_environment(self, session: Session, req: Request) -> Dict[str, Any]:
        record = await self._call_on_own_thread(
            self.engine.create,
            req.require("name"),
            branch=_optional_str(req.params, "branch"),
            base_branch=_optional_str(req.params, "baseBranch"),
        )
        return {"environment": environment_view(record)}

    async def _start_environment(self, session: Session, req: Request) -> Dict[str, Any]:
        record = await self._call_on_own_thread(
self.engine.start, req.require("name"))
        return {"environment": environment_view(record)}

    async def _stop_environment(self, session: Session, req: Request) -> Dict[str, Any]:
        record = await self._call_on_own_thread(
self.engine.stop, req.require("name"))
        return {"environment": environment_view(record)}

    async def _destroy_environment(self, session: Session, req: Request) -> Dict[str, Any]:
        destroyed = await self._call_on_own_thread(
            self.engine.destroy,
            req.require("name"),
            force=_optional_bool(req.params, "force"),
        )
        return {"destroyed": destroyed}

    async def _execute_command(self, session: Session, req: Request) -> Dict[str, Any]:
        """Stream output frames while the command runs, then return its exit code."""
        name = req.require("environment")
        command = req.require("command")
        timeout = _optional_number(req.params, "timeout")

        loop = asyncio.get_running_loop()
        chunks: asyncio.Queue = asyncio.Queue(maxsize=STREAM_QUEUE_CHUNKS)
        cancel_event = session.cancel_event_for(req.id)

        def on_output(chunk: OutputChunk) -> None:
            """Queue a chunk, blocking the pipe reader while the client lags."""
            try:
                pending = asyncio.run_coroutine_threadsafe(chunks.put(chunk), loop)
            except RuntimeError:
                # Loop already closed; nobody is left to read
                return
            while True:
                try:
                    pending.result(timeout=BACKPRESSURE_POLL_SECONDS)
                    return
                except concurrent.futures.TimeoutError:
                    if cancel_event.is_set():
                        pending.cancel()
                        return
                except concurrent.futures.CancelledError:
                    return

        future = self._call_on_own_thread(
            self.engine.execute_stream,
            name,
            command,
            on_output,
            timeout=timeout,
            cancel_event=cancel_event,
        )

        while not future.done():
            getter = loop.create_task(chunks.get())
            try:
                done, _ = await asyncio.wait(
                    {getter, future}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                if not getter.done():
                    getter.cancel()
            if getter in done:
                await session.send(output_frame(req.id, getter.result()))

        # Readers finish before the command returns, so every chunk is queued by now
        while not chunks.empty():
            await session.send(output_frame(req.id, chunks.get_nowait()))

        result = future.result()
        return {
            "exitCode": result.exit_code,
            "durationMs": int(result.duration * 1000),
            "cancelled": result.cancelled,
        }

    async def _read_file(self, session: Session, req: Request) -> Dict[str, Any]:
        content = await self._call(
            self.engine.read_file, req.require("environment"), req.require("path")
        )
        text, encoding = encode_content(content)
        return {"content": text, "encoding": encoding, "size": len(content)}

    async def _write_file(self, session: Session, req: Request) -> Dict[str, Any]:
        content = decode_content(
            req.params.get("content"), _optional_str(req.params, "encoding")
        )
        await self._call(
            self.engine.write_file,
            req.require("environment"),
            req.require("path"),
            content,
        )
        return {"bytesWritten": len(content)}

    async def _subscribe(self, session: Session, req: Request) -> Dict[str, Any]:
        names = _optional_names(req.params, "environments")
        session.subscribe(names)
        return {"subscribed": "all" if session.subscribe_all else sorted(session.subscriptions)}

    async def _unsubscribe(self, session: Session, req: Request) -> Dict[str, Any]:
        session.unsubscribe(_optional_names(req.params, "environments"))
        return {"subscribed": "all" if session.subscribe_all else sorted(session.subscriptions)}

    async def _cancel(self, session: Session, req: Request) -> Dict[str, Any]:
        target = req.params.get("requestId")
        if isinstance(target, bool) or not isinstance(target, (str, int)):
            raise ValidationError("cancel: 'requestId' must be a string or integer")
        return {"cancelled": session.cancel(target)}

    async def _ping(self, session: Session, req: Request) -> Dict[str, Any]:
        return {"pong": True, "time": utc_now()}
