from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List

from .queues import BoundedQueue, OverflowPolicy

logger = logging.getLogger(__name__)


HandlerFn = Callable[[object], Awaitable[None]]


@dataclass
class HandlerConfig:
    name: str
    queue_max: int = 1000
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    concurrency: int = 1


@dataclass
class HandlerRuntime:
    config: HandlerConfig
    handler: HandlerFn
    queue: BoundedQueue[object]
    tasks: List[asyncio.Task]


class EventBus:
    """Fan-out event bus with independent per-handler queues.

    A handler registered with ``concurrency=1`` sees events strictly in
    publish order, one at a time.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: Dict[str, HandlerRuntime] = {}
        self._lock = asyncio.Lock()

    async def register_handler(self, config: HandlerConfig, handler: HandlerFn) -> None:
        async with self._lock:
            if config.name in self._handlers:
                raise ValueError(f"Handler {config.name} already registered on bus {self.name}")
            queue: BoundedQueue[object] = BoundedQueue(config.queue_max, config.overflow_policy)
            runtime = HandlerRuntime(config=config, handler=handler, queue=queue, tasks=[])
            runtime.tasks = [
                asyncio.create_task(self._worker(runtime), name=f"{config.name}-worker-{i}")
                for i in range(config.concurrency)
            ]
            self._handlers[config.name] = runtime
            logger.debug("Registered handler %s on bus %s with concurrency %s", config.name, self.name, config.concurrency)

    async def publish(self, event: object) -> None:
        async with self._lock:
            runtimes = list(self._handlers.values())
        for runtime in runtimes:
            enqueued = await runtime.queue.put(event)
            if not enqueued:
                logger.warning(
                    "Handler queue overflow on %s; policy=%s depth=%s",
                    runtime.config.name,
                    runtime.config.overflow_policy,
                    len(runtime.queue),
                )

    async def drain(self) -> None:
        """Wait until every handler has processed everything published so far."""
        async with self._lock:
            runtimes = list(self._handlers.values())
        await asyncio.gather(*(runtime.queue.join() for runtime in runtimes))

    async def clear(self) -> int:
        """Discard queued events on every handler; running handlers finish normally."""
        async with self._lock:
            runtimes = list(self._handlers.values())
        removed = 0
        for runtime in runtimes:
            removed += await runtime.queue.clear()
        if removed:
            logger.debug("Cleared %s pending event(s) from bus %s", removed, self.name)
        return removed

    async def _worker(self, runtime: HandlerRuntime) -> None:
        while True:
            try:
                event = await runtime.queue.get()
            except asyncio.CancelledError:
                logger.debug("Worker for %s cancelled", runtime.config.name)
                break
            try:
                await runtime.handler(event)
            except asyncio.CancelledError:
                runtime.queue.task_done()
                logger.debug("Worker for %s cancelled", runtime.config.name)
                break
            except Exception:
                logger.exception("Handler %s failed while processing event", runtime.config.name)
            runtime.queue.task_done()

    async def shutdown(self) -> None:
        async with self._lock:
            runtimes = list(self._handlers.values())
            self._handlers.clear()
        current = asyncio.current_task()
        for runtime in runtimes:
            await runtime.queue.clear()
            pending = [task for task in runtime.tasks if task is not current]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        logger.debug("Event bus %s shutdown complete", self.name)
