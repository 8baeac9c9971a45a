"""
Event Bus
=========
Ordered delivery of one task's lifecycle events from the executor to the
protocol server. The stream ends after the first final status update, so
a task can never deliver two terminal events.
"""

import asyncio
import logging

from .task_store import Task, TaskStatusUpdateEvent

logger = logging.getLogger("workflow_agent")

_CLOSED = object()


class EventBus:
    """Single-subscriber FIFO of Task / TaskStatusUpdateEvent objects."""

    def __init__(self, task_id: str | None = None):
        self.task_id = task_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: Task | TaskStatusUpdateEvent):
        if self._closed:
            logger.warning(f"[EventBus] Dropping event for closed task {self.task_id}")
            return
        self._queue.put_nowait(event)
        if isinstance(event, TaskStatusUpdateEvent) and event.final:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def close(self):
        """End the stream without a terminal event."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def events(self):
        """Yield events in publish order until the stream ends."""
        while True:
            event = await self._queue.get()
            if event is _CLOSED:
                return
            yield event
