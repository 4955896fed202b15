"""Async lifecycle event emitter.

Listeners are awaited in registration order. A failing listener is logged
and does not stop the others (the emitting device operation already
succeeded by the time an event is published).
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Union

logger = logging.getLogger(__name__)

APP_READY = "appReady"

EventPayload = Dict[str, Any]
EventListener = Callable[[EventPayload], Union[Awaitable[None], None]]


class AsyncEmitter:
    def __init__(self) -> None:
        self._listeners: Dict[str, List[EventListener]] = defaultdict(list)

    def on(self, event: str, listener: EventListener) -> None:
        if listener not in self._listeners[event]:
            self._listeners[event].append(listener)

    def off(self, event: str, listener: EventListener) -> None:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    async def emit(self, event: str, payload: EventPayload) -> None:
        listeners = list(self._listeners.get(event, []))
        if not listeners:
            logger.debug("no listeners for event %s", event)
            return

        for listener in listeners:
            name = getattr(listener, "__name__", repr(listener))
            try:
                result = listener(dict(payload))
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("listener %s failed for event %s", name, event)
