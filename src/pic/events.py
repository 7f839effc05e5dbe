"""Progress event channel between the encoding engine and the orchestrator.

The engine emits ITEM_DONE once per finished item and, optionally, one
TOTAL_KNOWN with the item count. Handlers run synchronously on the emitting
thread, which for every engine in this package is the event loop thread.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping

from loguru import logger


ITEM_DONE = "progress"
TOTAL_KNOWN = "total"

Handler = Callable[..., None]


class ProgressChannel:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns the function that removes it."""
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            handler(*args)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    @contextmanager
    def listening(self, handlers: Mapping[str, Handler]) -> Iterator[None]:
        """Keep `handlers` registered for the duration of the block.

        Deregistration happens on every exit path, including exceptions and
        cancellation of an awaiting coroutine.
        """
        removers = [self.subscribe(event, h) for event, h in handlers.items()]
        try:
            yield
        finally:
            for remove in removers:
                remove()
            logger.trace("progress listeners removed: {}", list(handlers))
