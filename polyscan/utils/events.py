"""
In-process event bus.
Consumers subscribe to a topic and receive an unsubscribe callable.
"""

import asyncio
from collections import defaultdict
from typing import Any, Callable

from .logger import get_logger

logger = get_logger("events")

Handler = Callable[[Any], Any]


class EventBus:
    """
    Observer registry keyed by topic.

    Topics used by the scanner core:
    - "log": log records forwarded by BusLogHandler
    - "alert": realtime PairAlert objects
    - "task": finished DispatchTask objects
    - "scan": ScanResult objects
    - "monitor.state": MonitorState transitions
    - "monitor.exhausted": ReconnectExhausted errors

    Handlers run synchronously in publish order. A handler returning a
    coroutine is scheduled on the running loop. A failing handler is logged
    and never affects the publisher or other handlers.
    """

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """
        Register a handler for a topic.

        Returns:
            Callable that removes the handler; safe to call more than once
        """
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> None:
        """Deliver payload to every handler of topic."""
        for handler in list(self._handlers.get(topic, ())):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(
                        lambda t, topic=topic: self._on_handler_done(topic, t)
                    )
            except Exception as e:
                # Logging here must not recurse through the bus
                if topic != "log":
                    logger.error(f"Event handler for '{topic}' failed: {e}")

    def _on_handler_done(self, topic: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and topic != "log":
            logger.error(f"Async event handler for '{topic}' failed: {error}")

    def handler_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, ()))
