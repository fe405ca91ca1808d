"""Named event publishing shared by discovery, registry and activation."""

import asyncio
from typing import Any, Callable, Dict, List

from .logging import get_logger


class EventEmitter:
    """
    Publish/subscribe helper keyed by event name.

    Handlers are called as ``handler(event, data)`` and may be plain
    functions or coroutines. A failing handler is logged and never
    propagates into the emitting component.
    """

    def __init__(self, logger_name: str = "kiro-adapter.events"):
        self._event_handlers: Dict[str, List[Callable]] = {}
        self._events_logger = get_logger(logger_name)

    def register_event_handler(self, event: str, handler: Callable) -> None:
        """Register an event handler."""
        self._event_handlers.setdefault(event, []).append(handler)
        self._events_logger.debug("event_handler_registered", event_type=event)

    def unregister_event_handler(self, event: str, handler: Callable) -> None:
        """Unregister an event handler."""
        handlers = self._event_handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            self._events_logger.debug("event_handler_unregistered", event_type=event)

    async def _notify_event(self, event: str, data: Dict[str, Any]) -> None:
        """Notify all handlers of an event."""
        for handler in list(self._event_handlers.get(event, [])):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event, data)
                else:
                    handler(event, data)
            except Exception as e:
                self._events_logger.error(
                    "event_handler_error",
                    event_type=event,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e)
                )

    async def _notify_observers(self, observers: List[Any], callback: str, *args: Any) -> None:
        """Call ``callback`` on every observer; a failing observer is logged and skipped."""
        for observer in list(observers):
            try:
                await getattr(observer, callback)(*args)
            except Exception as e:
                self._events_logger.error(
                    "observer_error",
                    callback=callback,
                    observer=type(observer).__name__,
                    error=str(e),
                    error_type=type(e).__name__
                )


__all__ = ['EventEmitter']
