"""Scoped event bus: scoped, phased and pattern listeners over a broadcast target."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from loguru import logger

from scoped_bus.core.constants import EventTypes, Phase, as_phase
from scoped_bus.core.errors import ListenerError
from scoped_bus.events import (
    EventHooks,
    EventName,
    EventPattern,
    EventSpec,
    GlobalOptions,
    ListenerOptions,
    ListenerRecord,
    PatternEntry,
    ScopedEvent,
    ScopedEventCallback,
    ScopedOptions,
    Unsubscriber,
    as_selectors,
    event_name,
)
from scoped_bus.target import BroadcastTarget, EventTarget, call_listener, raise_first

if TYPE_CHECKING:
    from scoped_bus.config import Config

__all__ = ["ScopedEventBus"]


class ScopedEventBus:
    """Publish/subscribe dispatcher with scopes, subscribers and before/after phases.

    Scoped delivery is an extra channel on top of the target's global broadcast:
    every dispatch still reaches the target's plain listeners unless a ``before``
    listener cancels the event.

    Listeners are kept in two registries, both guarded by one lock:

    * ``_listeners``: event name -> records, in registration order.
    * ``_patterns``: scope -> pattern entries, in registration order.

    Listener callbacks always run outside the lock, so they may register or
    remove listeners while an event is being delivered.
    """

    def __init__(
        self,
        target: BroadcastTarget | None = None,
        *,
        propagate_errors: bool = False,
        debug_callback: ScopedEventCallback | None = None,
        log_events: bool = False,
    ) -> None:
        self._target: BroadcastTarget = target if target is not None else EventTarget(propagate_errors=propagate_errors)
        self._listeners: dict[str, list[ListenerRecord]] = {}
        self._patterns: dict[str, list[PatternEntry]] = {}
        self._lock = threading.RLock()
        self.propagate_errors = propagate_errors
        self.debug_callback = debug_callback
        self.log_events = log_events

    @classmethod
    def from_config(cls, config: Config, target: BroadcastTarget | None = None) -> ScopedEventBus:
        """Build a bus with the error and logging policy from ``config``."""
        return cls(
            target,
            propagate_errors=config.propagate_listener_errors,
            log_events=config.log_events,
        )

    @property
    def target(self) -> BroadcastTarget:
        """Underlying broadcast target used for global delivery."""
        return self._target

    # -- registration --------------------------------------------------------

    def register(
        self,
        events: EventSpec | Iterable[EventSpec],
        callback: ScopedEventCallback,
        subscriber: str,
        scope: str | None = None,
        phase: Phase | str = Phase.AFTER,
    ) -> Unsubscriber:
        """Add ``callback`` for one or more event names or patterns.

        Omitting ``scope`` listens to every scope. Pattern listeners need a scope
        and are dropped without one. A non-callable ``callback`` is ignored.

        Returns a function that removes the listener(s) again.
        """
        selectors = as_selectors(events)
        phase = as_phase(phase)

        if callable(callback):
            with self._lock:
                for selector in selectors:
                    if isinstance(selector, EventName):
                        self._add_listener(selector.name, callback, subscriber, scope, phase)
                    else:
                        self._add_pattern(selector, callback, subscriber, scope, phase)
        else:
            logger.debug("Ignoring non-callable listener {!r} from {}", callback, subscriber)

        # Pattern selectors dropped for lack of a scope have nothing to undo.
        registered = [s for s in selectors if isinstance(s, EventName) or scope is not None]

        def unsubscribe() -> None:
            if registered:
                self.unregister(registered, callback, subscriber, scope, phase)

        return unsubscribe

    def _add_listener(
        self,
        event: str,
        callback: ScopedEventCallback,
        subscriber: str,
        scope: str | None,
        phase: Phase,
    ) -> None:
        bucket = self._listeners.setdefault(event, [])
        for record in tuple(bucket):
            if not record.same_listener(callback, subscriber, phase):
                continue
            if record.scope is None or record.scope == scope:
                return
            if scope is None:
                # Global subscription supersedes the narrower ones of the same listener.
                bucket.remove(record)
        bucket.append(ListenerRecord(callback, phase, subscriber, scope))

    def _add_pattern(
        self,
        selector: EventPattern,
        callback: ScopedEventCallback,
        subscriber: str,
        scope: str | None,
        phase: Phase,
    ) -> None:
        if scope is None:
            logger.debug("Dropping pattern listener {} from {}: no scope", selector.regex.pattern, subscriber)
            return
        bucket = self._patterns.setdefault(scope, [])
        for entry in bucket:
            if entry.pattern.same_as(selector.regex) and entry.listener.same_listener(callback, subscriber, phase):
                return
        bucket.append(PatternEntry(selector, ListenerRecord(callback, phase, subscriber, scope)))

    # -- removal -------------------------------------------------------------

    def unregister(
        self,
        events: EventSpec | Iterable[EventSpec],
        callback: ScopedEventCallback,
        subscriber: str,
        scope: str | None = None,
        phase: Phase | str | None = None,
    ) -> None:
        """Remove the first listener matching each event; omitted scope or phase match any."""
        if not callable(callback):
            return
        wanted = as_phase(phase) if phase is not None else None

        with self._lock:
            for selector in as_selectors(events):
                if isinstance(selector, EventName):
                    for record in self._listeners.get(selector.name, ()):
                        if record.matches(callback, subscriber, scope, wanted):
                            self._drop_listener(selector.name, record)
                            break
                else:
                    found = self._find_pattern(selector, callback, subscriber, scope, wanted)
                    if found is not None:
                        self._drop_pattern(*found)

    def _find_pattern(
        self,
        selector: EventPattern,
        callback: ScopedEventCallback,
        subscriber: str,
        scope: str | None,
        phase: Phase | None,
    ) -> tuple[str, PatternEntry] | None:
        scopes = [scope] if scope is not None else list(self._patterns)
        for key in scopes:
            for entry in self._patterns.get(key, ()):
                if selector.same_as(entry.pattern.regex) and entry.listener.matches(callback, subscriber, None, phase):
                    return key, entry
        return None

    def unregister_all(self, subscriber: str, scope: str | None = None) -> None:
        """Remove every listener of ``subscriber``, optionally only within ``scope``."""
        with self._lock:
            removed = self._purge_listeners(
                lambda record: record.subscriber == subscriber and (scope is None or record.scope == scope)
            )
            scopes = [scope] if scope is not None else list(self._patterns)
            for key in scopes:
                removed += self._purge_patterns(key, lambda entry: entry.listener.subscriber == subscriber)
        logger.debug("Removed {} listener(s) of subscriber {} (scope={})", removed, subscriber, scope)

    def evict_scope(self, scope: str) -> None:
        """Remove every listener bound to ``scope``, whoever registered it."""
        with self._lock:
            removed = self._purge_listeners(lambda record: record.scope == scope)
            removed += len(self._patterns.pop(scope, ()))
        logger.debug("Evicted scope {}: {} listener(s) removed", scope, removed)

    def _drop_listener(self, event: str, record: ListenerRecord) -> None:
        bucket = self._listeners[event]
        bucket.remove(record)
        if not bucket:
            del self._listeners[event]

    def _drop_pattern(self, scope: str, entry: PatternEntry) -> None:
        bucket = self._patterns[scope]
        bucket.remove(entry)
        if not bucket:
            del self._patterns[scope]

    def _purge_listeners(self, doomed: Callable[[ListenerRecord], bool]) -> int:
        removed = 0
        for event, bucket in list(self._listeners.items()):
            kept = [record for record in bucket if not doomed(record)]
            removed += len(bucket) - len(kept)
            if kept:
                self._listeners[event] = kept
            else:
                del self._listeners[event]
        return removed

    def _purge_patterns(self, scope: str, doomed: Callable[[PatternEntry], bool]) -> int:
        bucket = self._patterns.get(scope)
        if bucket is None:
            return 0
        kept = [entry for entry in bucket if not doomed(entry)]
        if kept:
            self._patterns[scope] = kept
        else:
            del self._patterns[scope]
        return len(bucket) - len(kept)

    # -- dispatch ------------------------------------------------------------

    def dispatch(
        self,
        event: str,
        scope: str | None = None,
        phase: Phase | str = Phase.AFTER,
        detail: dict[str, Any] | None = None,
        *,
        cancelable: bool | None = None,
    ) -> bool:
        """Deliver ``event`` to scoped listeners, then broadcast it globally.

        ``before`` events are cancelable unless ``cancelable`` says otherwise; when
        a listener cancels one, the global broadcast is skipped.

        Listeners registered without a scope hear the event in every scope, not
        only in scopeless dispatches. Failures raised by the target's own
        listeners join the scoped ones under ``propagate_errors``.

        Returns False if the broadcast was skipped or reports cancellation.
        """
        event = event_name(event)
        phase = as_phase(phase)
        if cancelable is None:
            cancelable = phase is Phase.BEFORE
        payload = ScopedEvent(
            type=event,
            detail={"phase": phase, "scope": scope, **(detail or {})},
            cancelable=cancelable,
        )

        if self.log_events:
            logger.debug("Dispatching {} (scope={}, phase={})", event, scope, phase.value)
        if self.debug_callback is not None:
            call_listener(self.debug_callback, payload)

        with self._lock:
            records = tuple(record for record in self._listeners.get(event, ()) if record.accepts(scope, phase))
            entries: tuple[PatternEntry, ...] = ()
            if scope is not None:
                entries = tuple(
                    entry
                    for entry in self._patterns.get(scope, ())
                    if entry.listener.phase is phase and entry.pattern.matches(event)
                )

        failures: list[Exception] = []
        for record in records:
            if self._listener_alive(event, record):
                self._deliver(record.callback, payload, failures)
        for entry in entries:
            if self._pattern_alive(scope, entry):
                self._deliver(entry.listener.callback, payload, failures)

        if phase is Phase.BEFORE and payload.cancelable and payload.default_prevented:
            logger.debug("Global broadcast of {} cancelled by a before listener (scope={})", event, scope)
            delivered = False
        else:
            try:
                delivered = self._target.broadcast(payload)
            except ListenerError as exc:
                failures.extend(exc.details.get("errors") or [exc])
                delivered = not payload.default_prevented

        if self.propagate_errors:
            raise_first(failures, payload)
        return delivered

    def _deliver(self, callback: ScopedEventCallback, payload: ScopedEvent, failures: list[Exception]) -> None:
        exc = call_listener(callback, payload)
        if exc is not None:
            failures.append(exc)

    def _listener_alive(self, event: str, record: ListenerRecord) -> bool:
        with self._lock:
            return record in self._listeners.get(event, ())

    def _pattern_alive(self, scope: str | None, entry: PatternEntry) -> bool:
        with self._lock:
            return entry in self._patterns.get(scope, ())

    def announce_ready(self) -> bool:
        """Broadcast ``EventTypes.EVENTBUS_READY``."""
        return self.dispatch(EventTypes.EVENTBUS_READY)

    # -- convenience ---------------------------------------------------------

    def get_hooks(self, event: str, subscriber: str, scope: str | None = None) -> EventHooks:
        """Return before/after helpers for ``event`` plus an unsubscribe for either phase."""
        event = event_name(event)

        def before(callback: ScopedEventCallback) -> Unsubscriber:
            return self.register(event, callback, subscriber, scope, Phase.BEFORE)

        def after(callback: ScopedEventCallback) -> Unsubscriber:
            return self.register(event, callback, subscriber, scope, Phase.AFTER)

        def unsubscribe(phase: Phase | str | None = None) -> None:
            wanted = as_phase(phase) if phase is not None else None
            with self._lock:
                matching = [
                    record
                    for record in self._listeners.get(event, ())
                    if record.subscriber == subscriber
                    and record.scope == scope
                    and (wanted is None or record.phase is wanted)
                ]
                for record in matching:
                    self._drop_listener(event, record)

        return EventHooks(before=before, after=after, unsubscribe=unsubscribe)

    def add_event_listener(
        self,
        type: str,
        callback: ScopedEventCallback,
        options: ListenerOptions | None = None,
    ) -> None:
        """Event-target style registration.

        ``ScopedOptions`` with a scope route into :meth:`register`, taking
        ``after`` when no phase is given; everything else becomes a plain
        listener on the target.
        """
        if not callable(callback):
            return
        if isinstance(options, ScopedOptions) and options.scope is not None:
            self.register(type, callback, options.subscriber, options.scope, options.phase or Phase.AFTER)
        else:
            plain = options if isinstance(options, GlobalOptions) else None
            self._target.register(event_name(type), callback, plain)

    def remove_event_listener(
        self,
        type: str,
        callback: ScopedEventCallback,
        options: ListenerOptions | None = None,
    ) -> None:
        """Counterpart of :meth:`add_event_listener`; ``ScopedOptions`` route into :meth:`unregister`."""
        if not callable(callback):
            return
        if isinstance(options, ScopedOptions):
            self.unregister(type, callback, options.subscriber, options.scope, options.phase)
        else:
            plain = options if isinstance(options, GlobalOptions) else None
            self._target.unregister(event_name(type), callback, plain)

    # -- introspection -------------------------------------------------------

    def listener_count(self, event: str | None = None) -> int:
        """Number of exact-name listeners, for one event or in total."""
        with self._lock:
            if event is not None:
                return len(self._listeners.get(event_name(event), ()))
            return sum(len(bucket) for bucket in self._listeners.values())

    def pattern_count(self, scope: str | None = None) -> int:
        """Number of pattern listeners, for one scope or in total."""
        with self._lock:
            if scope is not None:
                return len(self._patterns.get(scope, ()))
            return sum(len(bucket) for bucket in self._patterns.values())

    def scopes(self) -> set[str]:
        """Scopes that currently have at least one listener."""
        with self._lock:
            scoped = {record.scope for bucket in self._listeners.values() for record in bucket if record.scope is not None}
            return scoped | set(self._patterns)

    subscribe = register
    unsubscribe = unregister
    unsubscribe_all = unregister_all
    publish = dispatch
