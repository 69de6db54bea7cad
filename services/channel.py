"""Typed publish/subscribe channel.

Producers and consumers agree on a message type instead of an event name.
``publish`` delivers synchronously (observer style); ``post`` delivers on a
later loop iteration, which is how the service worker and the app instances
talk to each other.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Generic, List, Optional, Set, TypeVar, Union


T = TypeVar("T")

Handler = Callable[[T], Union[None, Awaitable[None]]]

logger = logging.getLogger("hive.channel")


class Channel(Generic[T]):
    def __init__(self, name: str = "channel") -> None:
        self.name = name
        self._handlers: List[Handler] = []
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def __len__(self) -> int:
        return len(self._handlers)

    def publish(self, message: T) -> None:
        for handler in list(self._handlers):
            self._call(handler, message)

    def post(self, message: T, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        target = loop or asyncio.get_running_loop()
        target.call_soon(self.publish, message)

    def _call(self, handler: Handler, message: T) -> None:
        try:
            result = handler(message)
        except Exception:
            logger.exception("%s handler failed for %r", self.name, message)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s async handler failed: %s", self.name, exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for async handlers started by earlier deliveries."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["Channel", "Handler"]
