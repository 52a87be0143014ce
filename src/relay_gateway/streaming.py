"""Server-Sent-Events delivery of completed replies.

A reply is computed in full first and then re-emitted as fixed-size text
chunks: ``start`` → ``chunk``* → ``complete`` (or a single ``error``).
Live connections are tracked in a :class:`ConnectionRegistry` keyed by
session id; an entry exists exactly as long as its event stream is open.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .config import StreamSettings
from .pipeline import ConversationReply
from .sessions import utcnow_iso

LOGGER = logging.getLogger("relay_gateway.streaming")

HEARTBEAT_FRAME = ": keep-alive\n\n"


class StreamState(str, enum.Enum):
    OPEN = "open"
    STREAMING = "streaming"
    CLOSED = "closed"
    ERRORED = "errored"


class StreamTransport(Protocol):
    """Write side of a long-lived HTTP response."""

    async def send(self, frame: str) -> None:
        """Write one already-framed SSE block."""

    async def close(self) -> None:
        """End the response."""


def format_sse(event: str, data: Dict[str, Any]) -> str:
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event}\ndata: {payload}\n\n"


def split_into_chunks(text: str, chunk_size: int) -> List[str]:
    """Partition ``text`` into ``ceil(len / chunk_size)`` slices, or one empty slice."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if not text:
        return [""]
    return [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]


@dataclass(eq=False)
class StreamConnection:
    session_id: str
    transport: StreamTransport
    started_at: float
    state: StreamState = StreamState.OPEN
    closed: bool = False
    heartbeat: Optional["asyncio.Task[None]"] = field(default=None, repr=False)

    async def emit(self, event: str, data: Dict[str, Any]) -> bool:
        """Write one named event; returns False once the connection is gone."""
        return await self.write(format_sse(event, data))

    async def write(self, frame: str) -> bool:
        if self.closed:
            return False
        try:
            await self.transport.send(frame)
        except (ConnectionError, OSError) as exc:
            LOGGER.info("Stream for session %s lost while writing: %s", self.session_id, exc)
            self.mark_disconnected()
            return False
        return True

    def stop_heartbeat(self) -> None:
        if self.heartbeat is not None and not self.heartbeat.done():
            self.heartbeat.cancel()

    def mark_disconnected(self) -> None:
        self.closed = True
        if self.state in (StreamState.OPEN, StreamState.STREAMING):
            self.state = StreamState.CLOSED
        self.stop_heartbeat()

    async def close(self) -> None:
        if self.closed:
            return
        self.mark_disconnected()
        try:
            await self.transport.close()
        except (ConnectionError, OSError):
            LOGGER.debug("Transport for session %s already closed", self.session_id, exc_info=True)


class ConnectionRegistry:
    """Live stream connections keyed by session id.

    Removal is idempotent so the completion path and the idle sweep can both
    remove the same entry safely.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._connections: Dict[str, StreamConnection] = {}
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    async def open(self, connection: StreamConnection) -> None:
        previous = self._connections.get(connection.session_id)
        if previous is not None and previous is not connection:
            LOGGER.info("Replacing live stream for session %s", connection.session_id)
            await previous.close()
        self._connections[connection.session_id] = connection

    def remove(self, session_id: str, connection: Optional[StreamConnection] = None) -> Optional[StreamConnection]:
        current = self._connections.get(session_id)
        if current is None or (connection is not None and current is not connection):
            return None
        return self._connections.pop(session_id)

    def get(self, session_id: str) -> Optional[StreamConnection]:
        return self._connections.get(session_id)

    def session_ids(self) -> List[str]:
        return list(self._connections)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    async def close(self, session_id: str) -> bool:
        connection = self.remove(session_id)
        if connection is None:
            return False
        await connection.close()
        return True

    async def sweep(self, max_age: float) -> List[str]:
        """Close and drop connections open for longer than ``max_age`` seconds."""
        now = self.now()
        expired = [
            session_id
            for session_id, connection in self._connections.items()
            if now - connection.started_at > max_age
        ]
        for session_id in expired:
            LOGGER.info("Cleaning up inactive stream for session: %s", session_id)
            await self.close(session_id)
        return expired

    async def close_all(self) -> None:
        for session_id in self.session_ids():
            await self.close(session_id)


class ConnectionSweeper:
    """Background task that periodically sweeps idle connections."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        interval: float,
        max_age: float,
    ) -> None:
        self._registry = registry
        self._interval = interval
        self._max_age = max_age
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._registry.sweep(self._max_age)
            except Exception:
                LOGGER.exception("Stream sweep failed")


ReplyFactory = Callable[[], Awaitable[ConversationReply]]


class StreamResponder:
    """Deliver one conversation reply as an SSE event stream."""

    def __init__(
        self,
        registry: Optional[ConnectionRegistry] = None,
        *,
        chunk_size: int = 20,
        chunk_delay: float = 0.05,
        heartbeat_interval: float = 15.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.heartbeat_interval = heartbeat_interval
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: StreamSettings,
        registry: Optional[ConnectionRegistry] = None,
    ) -> "StreamResponder":
        return cls(
            registry,
            chunk_size=settings.chunk_size,
            chunk_delay=settings.chunk_delay,
            heartbeat_interval=settings.heartbeat_interval,
        )

    def disconnect(self, session_id: str) -> None:
        """Called by the transport when the remote side goes away."""
        connection = self.registry.remove(session_id)
        if connection is not None:
            LOGGER.info("Client disconnected from stream for session %s", session_id)
            connection.mark_disconnected()

    async def stream(
        self,
        session_id: str,
        transport: StreamTransport,
        produce_reply: ReplyFactory,
    ) -> StreamState:
        connection = StreamConnection(session_id=session_id, transport=transport, started_at=self.registry.now())
        await self.registry.open(connection)
        try:
            await connection.emit(
                "start",
                {
                    "sessionId": session_id,
                    "timestamp": utcnow_iso(),
                    "message": "Processing your message...",
                },
            )
            connection.heartbeat = asyncio.create_task(self._heartbeat(connection))

            # A provider call in flight is never cancelled; its result is
            # dropped if the client is gone by the time it arrives.
            reply = await produce_reply()
            if connection.closed:
                LOGGER.info("Discarding reply for disconnected session %s", session_id)
                return connection.state

            connection.state = StreamState.STREAMING
            await self._emit_reply(connection, reply)
        except Exception as exc:
            LOGGER.error("Streaming failed for session %s: %s", session_id, exc)
            if not connection.closed:
                await connection.emit(
                    "error",
                    {"sessionId": session_id, "error": str(exc), "timestamp": utcnow_iso()},
                )
                connection.state = StreamState.ERRORED
        finally:
            await self._stop_heartbeat(connection)
            self.registry.remove(session_id, connection)
            await connection.close()
        return connection.state

    async def _emit_reply(self, connection: StreamConnection, reply: ConversationReply) -> None:
        processing_time = round((self.registry.now() - connection.started_at) * 1000)
        chunks = split_into_chunks(reply.content, self.chunk_size)
        last = len(chunks) - 1
        for index, chunk in enumerate(chunks):
            sent = await connection.emit(
                "chunk",
                {
                    "sessionId": connection.session_id,
                    "chunkIndex": index,
                    "content": chunk,
                    "isLast": index == last,
                },
            )
            if not sent:
                return
            if index < last and self.chunk_delay > 0:
                await self._sleep(self.chunk_delay)

        sent = await connection.emit(
            "complete",
            {
                "sessionId": connection.session_id,
                "messageId": reply.message_id,
                "processingTime": processing_time,
                "provider": reply.provider,
                "messageCount": reply.message_count,
                "toolCalls": [record.to_dict() for record in reply.tool_calls],
            },
        )
        if sent:
            connection.state = StreamState.CLOSED

    async def _heartbeat(self, connection: StreamConnection) -> None:
        while not connection.closed:
            await asyncio.sleep(self.heartbeat_interval)
            if not await connection.write(HEARTBEAT_FRAME):
                return

    async def _stop_heartbeat(self, connection: StreamConnection) -> None:
        task = connection.heartbeat
        connection.stop_heartbeat()
        connection.heartbeat = None
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
