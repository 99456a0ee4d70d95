"""Broadcast primitive: plain, unscoped listeners keyed by event type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from scoped_bus.core.errors import ListenerError
from scoped_bus.events import GlobalOptions, ScopedEvent, ScopedEventCallback


class BroadcastTarget(Protocol):
    """Generic add/remove/dispatch primitive the scoped bus delegates global delivery to."""

    def register(self, type: str, callback: ScopedEventCallback, options: GlobalOptions | None = None) -> None:
        """Add a plain listener for ``type``."""
        ...

    def unregister(self, type: str, callback: ScopedEventCallback, options: GlobalOptions | None = None) -> None:
        """Remove a plain listener for ``type``."""
        ...

    def broadcast(self, event: ScopedEvent) -> bool:
        """Deliver to plain listeners; False if a cancelable event was default-prevented."""
        ...


def call_listener(callback: ScopedEventCallback, event: ScopedEvent) -> Exception | None:
    """Invoke one listener, logging and returning its failure instead of raising."""
    try:
        callback(event)
    except Exception as exc:
        logger.exception("Listener {} failed on event {}: {}", callback, event.type, exc)
        return exc
    return None


def raise_first(failures: list[Exception], event: ScopedEvent) -> None:
    """Re-raise the first collected listener failure as ListenerError."""
    if failures:
        raise ListenerError(
            f"{len(failures)} listener(s) failed on event {event.type!r}",
            code="listener_failed",
            details={"event": event.type, "failures": len(failures), "errors": list(failures)},
            original_error=failures[0],
        ) from failures[0]


@dataclass(eq=False)
class _PlainListener:
    callback: ScopedEventCallback
    once: bool = False


class EventTarget:
    """Minimal event target: ordered listeners per type, no duplicate callbacks."""

    def __init__(self, *, propagate_errors: bool = False) -> None:
        self._listeners: dict[str, list[_PlainListener]] = {}
        self.propagate_errors = propagate_errors

    def register(self, type: str, callback: ScopedEventCallback, options: GlobalOptions | None = None) -> None:
        """Add a listener. Non-callables and duplicates are ignored."""
        if not callable(callback):
            return
        listeners = self._listeners.setdefault(type, [])
        if any(entry.callback == callback for entry in listeners):
            return
        listeners.append(_PlainListener(callback, once=bool(options and options.once)))

    def unregister(self, type: str, callback: ScopedEventCallback, options: GlobalOptions | None = None) -> None:
        """Remove a listener; unknown listeners are ignored."""
        listeners = self._listeners.get(type)
        if not listeners:
            return
        for entry in listeners:
            if entry.callback == callback:
                self._discard(type, entry)
                return

    def has_listeners(self, type: str) -> bool:
        return type in self._listeners

    def broadcast(self, event: ScopedEvent) -> bool:
        """Deliver ``event`` to every listener of its type, in registration order."""
        failures: list[Exception] = []
        for entry in tuple(self._listeners.get(event.type, ())):
            live = self._listeners.get(event.type, ())
            if not any(current is entry for current in live):
                continue
            if entry.once:
                self._discard(event.type, entry)
            exc = call_listener(entry.callback, event)
            if exc is not None:
                failures.append(exc)
        if self.propagate_errors:
            raise_first(failures, event)
        return not event.default_prevented

    def _discard(self, type: str, entry: _PlainListener) -> None:
        listeners = self._listeners[type]
        listeners.remove(entry)
        if not listeners:
            del self._listeners[type]
