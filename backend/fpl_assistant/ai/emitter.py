import asyncio
from collections.abc import AsyncIterator

from fpl_assistant.ai.events import StreamEvent, encode_sse, is_terminal


class EmitterClosedError(Exception):
    """Raised when an event is emitted after the stream has ended."""


class EventEmitter:
    """Single-request SSE event channel.

    The orchestrator pushes events with ``emit()``; the HTTP response drains
    encoded frames from ``frames()``. A terminal event seals the emitter and
    ``close()`` releases the consumer exactly once.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._terminated = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminated(self) -> bool:
        return self._terminated

    async def emit(self, event: StreamEvent) -> None:
        if self._closed or self._terminated:
            raise EmitterClosedError(f"cannot emit {event.type}: stream already ended")
        if is_terminal(event):
            self._terminated = True
        await self._queue.put(encode_sse(event))

    def close(self) -> bool:
        """Release the consumer. Returns True only on the first call."""
        if self._closed:
            return False
        self._closed = True
        self._queue.put_nowait(None)
        return True

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
