"""Push channels that subscription events are written to.

Frames are Server-Sent Events encoded by ``sse_starlette``. A sink only
enqueues bytes; the transport that drains it (an HTTP streaming response, a
websocket bridge, a test) lives outside the core.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from typing import Any

from sse_starlette import ServerSentEvent

logger = logging.getLogger(__name__)

SSE_LINE_SEPARATOR = "\n"


def encode_event(
    data: Any,
    event: str | None = None,
    event_id: str | None = None,
) -> bytes:
    """Encode one SSE frame whose ``data:`` line is the JSON form of ``data``."""
    return ServerSentEvent(
        data=json.dumps(data, default=str),
        event=event,
        id=event_id,
        sep=SSE_LINE_SEPARATOR,
    ).encode()


def encode_comment(text: str) -> bytes:
    """Encode an SSE comment line (ignored by clients)."""
    return ServerSentEvent(comment=text, sep=SSE_LINE_SEPARATOR).encode()


class SinkClosedError(Exception):
    """Raised when writing to a sink that has already ended."""


class SubscriptionSink(ABC):
    """An open push channel for one subscriber.

    Subclasses implement :meth:`_write`. Once :meth:`end` has run, or the
    transport reports the peer went away via :meth:`mark_closed`, the sink is
    ended and further writes raise :class:`SinkClosedError`.
    """

    def __init__(self) -> None:
        self._ended = False
        self._close_callbacks: list[Callable[[], None]] = []

    @property
    def ended(self) -> bool:
        return self._ended

    def write(self, frame: bytes) -> None:
        """Enqueue an encoded frame."""
        if self._ended:
            raise SinkClosedError("sink has ended")
        self._write(frame)

    @abstractmethod
    def _write(self, frame: bytes) -> None: ...

    def end(self) -> None:
        """Finish the stream from the server side."""
        if self._ended:
            return
        self._ended = True
        self._on_end()

    def _on_end(self) -> None:  # noqa: B027
        """Hook for subclasses to release transport resources."""

    def on_close(self, callback: Callable[[], None]) -> None:
        """Register a callback fired when the peer disconnects."""
        self._close_callbacks.append(callback)

    def mark_closed(self) -> None:
        """Report that the peer disconnected (called by the transport)."""
        was_ended = self._ended
        self._ended = True
        if not was_ended:
            self._on_end()
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("Sink close callback failed: %s", e)


_END = object()


class QueueSink(SubscriptionSink):
    """Sink backed by an :class:`asyncio.Queue`.

    The transport iterates :meth:`stream` and forwards each frame to the
    client; iteration stops after the sink ends. When the client goes away
    the transport should call :meth:`mark_closed`.

    Args:
        max_queue: Maximum buffered frames; a full queue makes writes fail,
            which drops the subscription (0 means unbounded)
    """

    def __init__(self, max_queue: int = 0) -> None:
        super().__init__()
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_queue)

    def _write(self, frame: bytes) -> None:
        self._queue.put_nowait(frame)

    def _on_end(self) -> None:
        try:
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            # Reader is gone or stalled; drop the backlog so the sentinel fits
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_END)

    @property
    def pending(self) -> int:
        """Frames written but not yet consumed."""
        return self._queue.qsize()

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield frames until the sink ends."""
        while True:
            frame = await self._queue.get()
            if frame is _END:
                return
            yield frame

    def drain(self) -> list[bytes]:
        """Return every frame currently buffered without waiting."""
        frames = []
        saw_end = False
        while not self._queue.empty():
            frame = self._queue.get_nowait()
            if frame is _END:
                saw_end = True
            else:
                frames.append(frame)
        if saw_end:
            self._queue.put_nowait(_END)
        return frames
