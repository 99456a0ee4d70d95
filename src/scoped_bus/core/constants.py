"""Event phases and built-in event types."""

from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """Delivery point of a scoped event relative to the action it announces."""

    BEFORE = "before"
    AFTER = "after"


def as_phase(value: Phase | str) -> Phase:
    """Coerce 'before'/'after' strings to Phase; raises ValueError on anything else."""
    return value if isinstance(value, Phase) else Phase(value)


class EventTypes(str, Enum):
    """Built-in event names.

    Applications list their own names in a separate enum and dispatch either::

        class ShopEvents(str, Enum):
            ITEM_ADDED = "item-added"
    """

    EVENTBUS_READY = "eventbus-ready"
