"""Session lifecycle management for the MCP endpoint.

Maps session ids to live StreamableHTTP transports, keeps an idle deadline
per session and releases sessions exactly once, whether the trigger is idle
expiry, an explicit DELETE from the client or the session's server task
ending.
"""

from __future__ import annotations

import contextlib
import heapq
import itertools
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.lowlevel.server import Server as MCPServer
from mcp.server.streamable_http import StreamableHTTPServerTransport
from mcp.server.transport_security import TransportSecuritySettings

logger = logging.getLogger(__name__)

IDLE_TTL_SECONDS = 10 * 60


class SessionState(str, Enum):
    PENDING_INIT = "pending_init"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    id: str
    transport: StreamableHTTPServerTransport
    state: SessionState = SessionState.PENDING_INIT


def default_session_id() -> str:
    return str(uuid4())


class IdleScheduler:
    """One-shot deadlines keyed by session id, driven by a monotonic clock.

    Deadlines live in a heap of (deadline, seq, key) entries. Re-arming a key
    leaves its old heap entry in place; stale entries are skipped when they
    reach the top because they no longer match the key's current (deadline,
    seq) pair.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: list[tuple[float, int, str]] = []
        self._current: dict[str, tuple[float, int]] = {}
        self._seq = itertools.count()
        self._wakeup: anyio.Event | None = None

    def now(self) -> float:
        return self._clock()

    def arm(self, key: str, delay: float) -> float:
        """Replace any pending deadline for `key` with `now + delay`."""
        deadline = self._clock() + delay
        seq = next(self._seq)
        self._current[key] = (deadline, seq)
        heapq.heappush(self._heap, (deadline, seq, key))
        if self._wakeup is not None:
            self._wakeup.set()
        return deadline

    def cancel(self, key: str) -> bool:
        return self._current.pop(key, None) is not None

    def deadline(self, key: str) -> float | None:
        entry = self._current.get(key)
        return entry[0] if entry else None

    def __contains__(self, key: object) -> bool:
        return key in self._current

    def __len__(self) -> int:
        return len(self._current)

    def pop_due(self) -> list[str]:
        """Remove and return every key whose deadline has passed."""
        now = self._clock()
        due: list[str] = []
        while self._heap and self._heap[0][0] <= now:
            deadline, seq, key = heapq.heappop(self._heap)
            if self._current.get(key) == (deadline, seq):
                del self._current[key]
                due.append(key)
        return due

    def next_delay(self) -> float | None:
        """Seconds until the earliest live deadline, or None if nothing is armed."""
        while self._heap:
            deadline, seq, key = self._heap[0]
            if self._current.get(key) == (deadline, seq):
                return max(0.0, deadline - self._clock())
            heapq.heappop(self._heap)
        return None

    async def wait_for_next_deadline(self) -> None:
        """Sleep until the earliest deadline passes or a new deadline is armed."""
        self._wakeup = wakeup = anyio.Event()
        delay = self.next_delay()
        if delay is None:
            await wakeup.wait()
            return
        with anyio.move_on_after(delay):
            await wakeup.wait()

    def clear(self) -> None:
        self._heap.clear()
        self._current.clear()


class SessionManager:
    """
    Owns the id -> Session map for stateful MCP sessions.

    All map mutations go through `create`, `touch` and `release`. None of them
    suspends between reading and writing the map, so no lock is needed on a
    single event loop; `release` detaches the session before it awaits the
    transport's termination, which makes it idempotent even when an idle
    expiry and a client DELETE race.

    Use `run()` in the lifespan of the Starlette app:

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            async with session_manager.run():
                yield

    Args:
        app: The MCP server every session runs
        json_response: Whether the transports answer POSTs with JSON instead of SSE
        id_generator: Produces fresh session ids
        idle_ttl: Seconds of inactivity after which a session is released
        clock: Monotonic clock for idle deadlines
        security_settings: Passed through to each transport
    """

    def __init__(
        self,
        app: MCPServer[Any, Any],
        *,
        json_response: bool = False,
        id_generator: Callable[[], str] = default_session_id,
        idle_ttl: float = IDLE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        security_settings: TransportSecuritySettings | None = None,
    ):
        self.app = app
        self.json_response = json_response
        self.idle_ttl = idle_ttl
        self.security_settings = security_settings
        self._id_generator = id_generator
        self._scheduler = IdleScheduler(clock)
        self._sessions: dict[str, Session] = {}

        self._task_group: TaskGroup | None = None
        self._run_lock = anyio.Lock()
        self._has_started = False

    @property
    def scheduler(self) -> IdleScheduler:
        return self._scheduler

    def __len__(self) -> int:
        return len(self._sessions)

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """
        Run the task group that hosts the session server tasks and the expiry loop.

        Can only be entered once per instance. Every live session is released
        on exit.
        """
        async with self._run_lock:
            if self._has_started:
                raise RuntimeError(
                    "SessionManager .run() can only be called once per instance. "
                    "Create a new instance if you need to run again."
                )
            self._has_started = True

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            tg.start_soon(self._expiry_loop)
            logger.info("MCP session manager started")
            try:
                yield
            finally:
                logger.info("MCP session manager shutting down")
                with anyio.CancelScope(shield=True):
                    for session_id in list(self._sessions):
                        await self.release(session_id)
                tg.cancel_scope.cancel()
                self._task_group = None
                self._scheduler.clear()

    def lookup(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def touch(self, session_id: str | None) -> None:
        """Re-arm the idle deadline of a live session. Unknown or empty ids are ignored."""
        if not session_id or session_id not in self._sessions:
            return
        self._scheduler.arm(session_id, self.idle_ttl)

    async def create(self) -> Session:
        """Allocate an id, build its transport and start the MCP server for it.

        The session is registered in PENDING_INIT state and touched once the
        server task reports that the transport streams are connected. The
        caller must `activate` it after the initialize response is accepted,
        or `release` it.
        """
        if self._task_group is None:
            raise RuntimeError("Task group is not initialized. Make sure to use run().")

        session_id = self._id_generator()
        if session_id in self._sessions:
            raise RuntimeError(f"Session id {session_id!r} is already in use")

        transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=self.json_response,
            event_store=None,
            security_settings=self.security_settings,
        )
        session = Session(id=session_id, transport=transport)
        await self._task_group.start(self._session_server_task, session)
        return session

    def _on_session_connected(self, session: Session) -> None:
        self._sessions[session.id] = session
        self.touch(session.id)

    def activate(self, session_id: str) -> None:
        """Mark a pending session ACTIVE once its initialize handshake succeeded."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.state = SessionState.ACTIVE
        self.touch(session_id)
        logger.info("MCP session initialized: %s", session_id)

    async def release(self, session_id: str | None) -> None:
        """Tear a session down. Releasing an unknown or released id is a no-op.

        Transport termination failures are logged and never raised.
        """
        if not session_id:
            return
        self._scheduler.cancel(session_id)
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.state = SessionState.CLOSED

        if session.transport.is_terminated:
            return
        try:
            await session.transport.terminate()
        except Exception:
            logger.exception("Failed to close transport for session %s", session_id)

    async def expire_due(self) -> list[str]:
        """Release every session whose idle deadline has passed."""
        expired = self._scheduler.pop_due()
        for session_id in expired:
            logger.info("MCP session expired (TTL): %s", session_id)
            await self.release(session_id)
        return expired

    async def _expiry_loop(self) -> None:
        while True:
            await self.expire_due()
            await self._scheduler.wait_for_next_deadline()

    async def _session_server_task(
        self,
        session: Session,
        *,
        task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        """Run the MCP server over the session's transport until it closes."""
        async with session.transport.connect() as streams:
            read_stream, write_stream = streams
            self._on_session_connected(session)
            task_status.started()
            try:
                await self.app.run(
                    read_stream,
                    write_stream,
                    self.app.create_initialization_options(),
                    stateless=False,
                )
            except Exception:
                logger.exception("Session %s crashed", session.id)
            finally:
                if self._sessions.get(session.id) is session:
                    logger.info("Session %s server stopped, releasing", session.id)
                    with anyio.CancelScope(shield=True):
                        await self.release(session.id)
