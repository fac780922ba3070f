"""Per-connection session state for the control-plane server."""

import asyncio
import logging
import threading
import uuid
from typing import Any, Coroutine, Dict, Iterable, Optional, Set

from aiohttp import web

from devenv.server.protocol import RequestId


logger = logging.getLogger(__name__)


class Session:
    """
    One websocket connection.

    Tracks the connection's subscriptions and its in-flight requests. All
    methods run on the event loop thread; only the cancel events are shared
    with executor threads.

    Attributes:
        id: Short random identifier used in log lines.
        ws: The prepared websocket response.
        subscribe_all: Whether events for every environment are pushed.
        subscriptions: Environment names subscribed individually.
    """

    def __init__(self, ws: web.WebSocketResponse):
        self.id = uuid.uuid4().hex[:8]
        self.ws = ws
        self.subscribe_all = False
        self.subscriptions: Set[str] = set()
        self.closed = False
        self._send_lock = asyncio.Lock()
        self._requests: Dict[RequestId, asyncio.Task] = {}
        self._cancel_events: Dict[RequestId, threading.Event] = {}
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Outbound frames
    # ------------------------------------------------------------------

    async def send(self, frame: Dict[str, Any]) -> None:
        """Send one frame; frames from concurrent requests never interleave."""
        if self.closed or self.ws.closed:
            return
        async with self._send_lock:
            try:
                await self.ws.send_json(frame)
            except (ConnectionResetError, RuntimeError) as e:
                logger.debug(f"Session {self.id}: send failed, closing: {e}")
                self.closed = True

    def spawn(self, coro: Coroutine) -> None:
        """Run a fire-and-forget coroutine owned by this session."""
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def wants(self, environment_name: str) -> bool:
        return self.subscribe_all or environment_name in self.subscriptions

    def subscribe(self, names: Optional[Iterable[str]] = None) -> None:
        if names is None:
            self.subscribe_all = True
        else:
            self.subscriptions.update(names)

    def unsubscribe(self, names: Optional[Iterable[str]] = None) -> None:
        if names is None:
            self.subscribe_all = False
            self.subscriptions.clear()
        else:
            self.subscriptions.difference_update(names)

    # ------------------------------------------------------------------
    # In-flight requests
    # ------------------------------------------------------------------

    def is_active(self, request_id: RequestId) -> bool:
        return request_id in self._requests

    def track(
        self,
        request_id: RequestId,
        task: asyncio.Task,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._requests[request_id] = task
        if cancel_event is not None:
            self._cancel_events[request_id] = cancel_event

    def cancel_event_for(self, request_id: RequestId) -> Optional[threading.Event]:
        return self._cancel_events.get(request_id)

    def finish(self, request_id: RequestId) -> None:
        self._requests.pop(request_id, None)
        self._cancel_events.pop(request_id, None)

    def cancel(self, request_id: RequestId) -> bool:
        """
        Cancel a streaming command started by this session.

        Returns:
            True if a running command was signalled. Lifecycle operations
            cannot be cancelled once dispatched.
        """
        event = self._cancel_events.get(request_id)
        if event is None:
            return False
        event.set()
        return True

    def close(self) -> None:
        """Abandon everything in flight: signal commands, cancel waiting tasks."""
        self.closed = True
        for event in self._cancel_events.values():
            event.set()
        for task in list(self._requests.values()) + list(self._background):
            task.cancel()
        if self._requests:
            logger.info(
                f"Session {self.id}: abandoned {len(self._requests)} in-flight request(s)"
            )
        self._requests.clear()
        self._cancel_events.clear()
        self.subscribe_all = False
        self.subscriptions.clear()
