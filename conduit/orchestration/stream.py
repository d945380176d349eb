"""Execution stream handlers for real-time event delivery.

This module provides the stream abstraction and implementations for
delivering run events to consumers (SSE, tests).
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from conduit.orchestration.events import StreamEvent

logger = logging.getLogger(__name__)


class ExecutionStream(ABC):
    """Abstract base class for run event streams.

    Implementations handle how events are delivered to consumers.
    The stream is created before the run begins and closed when the
    run ends (successfully or with error).
    """

    @abstractmethod
    async def emit(self, event: StreamEvent) -> None:
        """Emit an event to the stream.

        Args:
            event: The event to emit.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the stream.

        Called when the run completes. Implementations should
        signal to consumers that no more events will be sent.
        """
        pass

    @property
    def is_cancelled(self) -> bool:
        """Whether the consumer has gone away."""
        return False

    async def __aenter__(self) -> "ExecutionStream":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - ensures stream is closed."""
        await self.close()


class NoOpStream(ExecutionStream):
    """Stream for runs nobody is watching."""

    async def emit(self, event: StreamEvent) -> None:
        return None

    async def close(self) -> None:
        return None


class AsyncQueueStream(ExecutionStream):
    """Bounded channel between a run and its consumer.

    ``emit`` blocks while the queue is full, so a slow transport pauses
    the run instead of dropping events. ``cancel`` is called when the
    consumer disconnects: pending events are discarded, blocked producers
    are released, and every later ``emit`` becomes a no-op.

    Example:
        stream = AsyncQueueStream(maxsize=64)

        async def event_generator():
            async for event in stream:
                yield serialize_event_for_sse(event)

        # In another coroutine:
        await stream.emit(ContentEvent(run_id=run_id, text="Hello"))
        await stream.close()
    """

    def __init__(self, maxsize: int = 64) -> None:
        """Initialize the queue stream.

        Args:
            maxsize: Maximum number of undelivered events (0 = unlimited).
        """
        self.queue: asyncio.Queue[Optional[StreamEvent]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._cancelled = False
        self._cancel_event = asyncio.Event()

    async def emit(self, event: StreamEvent) -> None:
        """Put an event on the queue, waiting for room if necessary.

        Args:
            event: The event to emit.
        """
        if self._cancelled:
            return
        if self._closed:
            logger.warning(f"Attempted to emit to closed stream: {event.event_type}")
            return
        await self._put(event)

    async def close(self) -> None:
        """Close the stream by putting a sentinel value."""
        if self._closed:
            return
        self._closed = True
        if not self._cancelled:
            await self._put(None)

    def cancel(self) -> None:
        """Mark the consumer as gone and discard undelivered events."""
        if self._cancelled:
            return
        self._cancelled = True
        self._cancel_event.set()
        dropped = 0
        while True:
            try:
                self.queue.get_nowait()
                dropped += 1
            except asyncio.QueueEmpty:
                break
        if dropped:
            logger.debug(f"Stream cancelled, dropped {dropped} undelivered events")

    @property
    def is_closed(self) -> bool:
        """Check if the stream is closed."""
        return self._closed

    @property
    def is_cancelled(self) -> bool:
        """Check if the consumer cancelled the stream."""
        return self._cancelled

    async def _put(self, item: Optional[StreamEvent]) -> None:
        try:
            self.queue.put_nowait(item)
            return
        except asyncio.QueueFull:
            pass

        # Full: wait for room or for the consumer to go away.
        put_task = asyncio.ensure_future(self.queue.put(item))
        cancel_task = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait(
                {put_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (put_task, cancel_task):
                if not task.done():
                    task.cancel()

    async def get(self, timeout: Optional[float] = None) -> Optional[StreamEvent]:
        """Get the next event from the queue.

        Args:
            timeout: Optional timeout in seconds.

        Returns:
            The next event, or None if stream is closed or timed out.
        """
        try:
            if timeout:
                return await asyncio.wait_for(self.queue.get(), timeout=timeout)
            return await self.queue.get()
        except asyncio.TimeoutError:
            return None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        """Iterate over events until stream closes."""
        return self

    async def __anext__(self) -> StreamEvent:
        """Get next event or raise StopAsyncIteration."""
        if self._cancelled:
            raise StopAsyncIteration
        event = await self.queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


def serialize_event_for_sse(event: StreamEvent) -> Dict[str, str]:
    """Serialize a stream event for SSE transmission.

    Args:
        event: The event to serialize.

    Returns:
        Dict with 'event' and 'data' keys for SSE.
    """
    return {
        "event": event.event_type,
        "data": event.model_dump_json(),
    }

