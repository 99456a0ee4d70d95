"""Scoped bus domain exceptions."""

from __future__ import annotations


class ScopedBusError(Exception):
    """Base for scoped bus errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_error = original_error


class ScopedBusConfigurationError(ScopedBusError):
    """Config validation or load failure."""


class ListenerError(ScopedBusError):
    """A listener raised during dispatch while errors are set to propagate."""
