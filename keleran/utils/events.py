"""
Keleran Events
==============

Minimal async event emitter.

Used by the database interface for query completion records
("exec_finish") and by connection pools for out-of-band connection
faults ("error").
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union


logger = logging.getLogger(__name__)

EventCallback = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass
class EventHandler:
    """
    Registered event handler.

    Attributes:
        callback: Handler function, sync or async
        once: Execute only once
    """

    callback: EventCallback
    once: bool = False
    _executed: bool = field(default=False, repr=False)

    @property
    def is_async(self) -> bool:
        """Check if callback is async."""
        return asyncio.iscoroutinefunction(self.callback)

    async def execute(self, *args: Any, **kwargs: Any) -> Any:
        """Execute the handler."""
        if self.once and self._executed:
            return None

        self._executed = True

        if self.is_async:
            return await self.callback(*args, **kwargs)
        return self.callback(*args, **kwargs)


class EventEmitter:
    """
    Event emitter for pub/sub pattern.

    Listener failures never reach the emitter: they are logged and
    returned in the results list, so an observer cannot break the
    operation it observes.

    Example:
        emitter = EventEmitter()

        @emitter.on("exec_finish")
        async def record(record):
            print(record.statement)

        await emitter.emit("exec_finish", record)
    """

    def __init__(self):
        """Initialize emitter."""
        self._listeners: Dict[str, List[EventHandler]] = {}

    def on(
        self,
        event: str,
        callback: Optional[EventCallback] = None,
    ) -> Union[EventCallback, Callable[[EventCallback], EventCallback]]:
        """
        Add event listener.

        Can be used as decorator or method.
        """
        def add_listener(func: EventCallback) -> EventCallback:
            self._listeners.setdefault(event, []).append(EventHandler(callback=func))
            return func

        if callback:
            return add_listener(callback)

        return add_listener

    def once(self, event: str, callback: EventCallback) -> EventCallback:
        """Add one-time event listener."""
        self._listeners.setdefault(event, []).append(
            EventHandler(callback=callback, once=True)
        )
        return callback

    def off(self, event: str, callback: Optional[EventCallback] = None) -> None:
        """
        Remove event listener(s).

        Args:
            event: Event name
            callback: Specific callback to remove (or all if None)
        """
        if event not in self._listeners:
            return

        if callback:
            self._listeners[event] = [
                h for h in self._listeners[event]
                if h.callback != callback
            ]
        else:
            self._listeners[event] = []

    async def emit(self, event: str, *args: Any, **kwargs: Any) -> List[Any]:
        """
        Emit event to all listeners.

        Returns:
            List of handler results (exceptions included)
        """
        listeners = list(self._listeners.get(event, []))
        results = []

        for handler in listeners:
            try:
                results.append(await handler.execute(*args, **kwargs))
            except Exception as e:
                logger.warning("Listener for %r failed: %r", event, e)
                results.append(e)

        if event in self._listeners:
            self._listeners[event] = [
                h for h in self._listeners[event]
                if not (h.once and h._executed)
            ]

        return results

    def listener_count(self, event: str) -> int:
        """Get listener count for event."""
        return len(self._listeners.get(event, []))
