"""Config schema and accessor."""

from __future__ import annotations

import os
from typing import Any

from loguru import logger

from scoped_bus.core.errors import ScopedBusConfigurationError

# Env keys that override config (loaded once per reload)
_ENV_OVERRIDE_KEYS = (
    "LOG_LEVEL",
    "SCOPED_BUS_LOG_EVENTS",
    "SCOPED_BUS_PROPAGATE_ERRORS",
)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_FLAG_KEYS = ("log_events", "propagate_listener_errors")


def _load_env_overrides() -> dict[str, str]:
    return {k: os.environ.get(k, "") for k in _ENV_OVERRIDE_KEYS}


def _parse_bool_env(val: str) -> bool | None:
    """Parse env string to bool; None if not a recognized bool."""
    v = val.lower()
    if v in ("1", "true", "yes"):
        return True
    if v in ("0", "false", "no"):
        return False
    return None


class Config:
    """Config accessor with attribute-style access for nested keys."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data = data or {}
        self._env: dict[str, str] = _load_env_overrides()

    def reload(self, data: dict[str, Any], *, validate: bool = True) -> None:
        """Replace config data and re-read env overrides."""
        self._data = data or {}
        self._env = _load_env_overrides()
        if validate:
            self._validate()
        logger.debug("Config reloaded: {} keys", len(self._data))

    def _validate(self) -> None:
        """Validate config structure; raise ScopedBusConfigurationError on failure."""
        level = self._data.get("log_level")
        if level is not None and str(level).upper() not in LOG_LEVELS:
            raise ScopedBusConfigurationError(
                f"log_level must be one of {', '.join(LOG_LEVELS)}",
                code="invalid_log_level",
                details={"log_level": level},
            )
        for key in _FLAG_KEYS:
            value = self._data.get(key)
            if value is not None and not isinstance(value, bool):
                raise ScopedBusConfigurationError(
                    f"{key} must be a boolean",
                    code="invalid_flag",
                    details={"key": key, "type": type(value).__name__},
                )

    @property
    def raw(self) -> dict[str, Any]:
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dot-separated path."""
        parts = key.split(".")
        obj: Any = self._data
        for part in parts:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default
        return obj

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    @property
    def log_level(self) -> str:
        env_val = self._env.get("LOG_LEVEL", "").upper()
        if env_val in LOG_LEVELS:
            return env_val
        level = str(self._data.get("log_level", "INFO")).upper()
        return level if level in LOG_LEVELS else "INFO"

    @property
    def log_events(self) -> bool:
        """Log every dispatched event at DEBUG."""
        parsed = _parse_bool_env(self._env.get("SCOPED_BUS_LOG_EVENTS", ""))
        if parsed is not None:
            return parsed
        return bool(self._data.get("log_events", False))

    @property
    def propagate_listener_errors(self) -> bool:
        """Re-raise listener failures after delivery instead of only logging them."""
        parsed = _parse_bool_env(self._env.get("SCOPED_BUS_PROPAGATE_ERRORS", ""))
        if parsed is not None:
            return parsed
        return bool(self._data.get("propagate_listener_errors", False))


# Global config instance
cfg: Config = Config({})
