"""Re-export from core.errors."""

from scoped_bus.core.errors import ListenerError, ScopedBusConfigurationError, ScopedBusError

__all__ = ["ListenerError", "ScopedBusConfigurationError", "ScopedBusError"]
