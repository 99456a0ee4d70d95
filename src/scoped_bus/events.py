"""Scoped event payload, event selectors, listener options and registry records."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from scoped_bus.core.constants import Phase


@dataclass
class ScopedEvent:
    """Event payload handed to every listener, scoped or global.

    ``detail`` always carries ``phase`` and ``scope`` next to caller-supplied fields.
    """

    type: str
    detail: dict[str, Any] = field(default_factory=dict)
    cancelable: bool = False
    default_prevented: bool = False

    @property
    def phase(self) -> Phase:
        return self.detail.get("phase", Phase.AFTER)

    @property
    def scope(self) -> str | None:
        return self.detail.get("scope")

    def prevent_default(self) -> None:
        """Cancel the event. No effect unless the event is cancelable."""
        if self.cancelable:
            self.default_prevented = True


ScopedEventCallback = Callable[[ScopedEvent], Any]
Unsubscriber = Callable[[], None]


def event_name(name: str) -> str:
    """Plain string value of an event name, unwrapping str enums such as EventTypes."""
    return name.value if isinstance(name, Enum) else name


@dataclass(frozen=True)
class EventName:
    """Exact event name selector."""

    name: str


@dataclass(frozen=True)
class EventPattern:
    """Regular expression selector, matched against the full event name."""

    regex: re.Pattern[str]

    def matches(self, event: str) -> bool:
        return self.regex.fullmatch(event) is not None

    def same_as(self, other: re.Pattern[str]) -> bool:
        return self.regex.pattern == other.pattern and self.regex.flags == other.flags


EventSelector = Union[EventName, EventPattern]
EventSpec = Union[str, re.Pattern[str], EventName, EventPattern]


def as_selectors(events: EventSpec | Iterable[EventSpec]) -> list[EventSelector]:
    """Normalize a name, a compiled pattern or a list mixing both into selectors."""
    if isinstance(events, (str, re.Pattern, EventName, EventPattern)):
        events = [events]
    selectors: list[EventSelector] = []
    for entry in events:
        if isinstance(entry, (EventName, EventPattern)):
            selectors.append(entry)
        elif isinstance(entry, str):
            selectors.append(EventName(event_name(entry)))
        elif isinstance(entry, re.Pattern):
            selectors.append(EventPattern(entry))
        else:
            raise TypeError(f"Event must be a string or compiled pattern, not {type(entry).__name__}")
    return selectors


@dataclass(frozen=True)
class GlobalOptions:
    """Options for a plain listener on the broadcast target."""

    once: bool = False


@dataclass(frozen=True)
class ScopedOptions:
    """Options that route a listener into the scoped registry."""

    subscriber: str
    scope: str | None = None
    phase: Phase | None = None


ListenerOptions = Union[GlobalOptions, ScopedOptions]


@dataclass(frozen=True, eq=False)
class ListenerRecord:
    """One scoped registration.

    Records compare by identity. Callbacks compare with ``==`` so bound methods match.
    """

    callback: ScopedEventCallback
    phase: Phase
    subscriber: str
    scope: str | None = None

    def same_listener(self, callback: ScopedEventCallback, subscriber: str, phase: Phase) -> bool:
        return self.callback == callback and self.subscriber == subscriber and self.phase is phase

    def matches(
        self,
        callback: ScopedEventCallback,
        subscriber: str,
        scope: str | None = None,
        phase: Phase | None = None,
    ) -> bool:
        """Removal lookup: omitted scope or phase matches any value."""
        return (
            self.callback == callback
            and self.subscriber == subscriber
            and (phase is None or self.phase is phase)
            and (scope is None or self.scope == scope)
        )

    def accepts(self, scope: str | None, phase: Phase) -> bool:
        """Dispatch filter: unscoped records listen to every scope."""
        return self.phase is phase and (self.scope is None or self.scope == scope)


@dataclass(frozen=True, eq=False)
class PatternEntry:
    """Pattern registration, stored under the scope it is bound to."""

    pattern: EventPattern
    listener: ListenerRecord


@dataclass(frozen=True)
class EventHooks:
    """Before/after registration helpers for one (event, subscriber, scope)."""

    before: Callable[[ScopedEventCallback], Unsubscriber]
    after: Callable[[ScopedEventCallback], Unsubscriber]
    unsubscribe: Callable[..., None]
