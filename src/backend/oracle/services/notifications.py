"""
Lifecycle event bus.

Publishers never wait on subscribers: sync callbacks run inline, async ones are
scheduled as tasks, and any subscriber failure is logged and dropped.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set, Union

from oracle.models.schemas import LifecycleEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[LifecycleEvent], Union[None, Awaitable[None]]]


class EventBus:
    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: LifecycleEvent) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
            except Exception:
                logger.exception("Event subscriber failed on %s", event.event_type.value)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async event subscriber failed: %s", task.exception())

    @asynccontextmanager
    async def stream(
        self, subject_id: Optional[str] = None, maxsize: int = 100
    ) -> AsyncIterator["asyncio.Queue[LifecycleEvent]"]:
        """
        Queue-backed subscription, optionally filtered to one market.

        Events are dropped when the queue is full.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

        def enqueue(event: LifecycleEvent) -> None:
            if subject_id is not None and event.subject_id != subject_id:
                return
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event stream for %s is full; dropping %s", subject_id, event.event_type.value)

        self.subscribe(enqueue)
        try:
            yield queue
        finally:
            self.unsubscribe(enqueue)
