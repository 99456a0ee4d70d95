"""Scoped publish/subscribe event bus with before/after phases and pattern listeners."""

from scoped_bus.bus import ScopedEventBus
from scoped_bus.core.constants import EventTypes, Phase
from scoped_bus.core.errors import ListenerError, ScopedBusConfigurationError, ScopedBusError
from scoped_bus.events import (
    EventHooks,
    EventName,
    EventPattern,
    GlobalOptions,
    ListenerRecord,
    PatternEntry,
    ScopedEvent,
    ScopedOptions,
)
from scoped_bus.target import BroadcastTarget, EventTarget

__version__ = "0.1.0"

__all__ = [
    "BroadcastTarget",
    "EventHooks",
    "EventName",
    "EventPattern",
    "EventTarget",
    "EventTypes",
    "GlobalOptions",
    "ListenerError",
    "ListenerRecord",
    "PatternEntry",
    "Phase",
    "ScopedBusConfigurationError",
    "ScopedBusError",
    "ScopedEvent",
    "ScopedEventBus",
    "ScopedOptions",
    "__version__",
]
