"""Bootstrap: logging, config and a ready bus in one call."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from scoped_bus.bus import ScopedEventBus
from scoped_bus.config import Config, cfg, load_config_with_env
from scoped_bus.log import setup_logging
from scoped_bus.target import BroadcastTarget


def reload_config(config_path: Path) -> Config:
    """Load config from path and update global cfg."""
    data = load_config_with_env(config_path)
    cfg.reload(data)
    return cfg


def create_bus(
    config_path: str | Path | None = None,
    *,
    verbose: bool = False,
    target: BroadcastTarget | None = None,
) -> ScopedEventBus:
    """Configure logging, load config (when a path is given) and return a bus that announced readiness."""
    config = reload_config(Path(config_path)) if config_path is not None else cfg
    setup_logging(verbose, config.log_level)
    if config_path is not None:
        logger.info("Config loaded from {}", config_path)

    bus = ScopedEventBus.from_config(config, target)
    bus.announce_ready()
    logger.debug(
        "Scoped event bus ready (propagate_errors={}, log_events={})",
        bus.propagate_errors,
        bus.log_events,
    )
    return bus
