"""Logging setup for podward.

The library emits through ``podward.observability.logger`` and installs no
handlers of its own. Applications opt in:

    from podward.observability import LogConfig, setup_logging

    ids = setup_logging(LogConfig(level="DEBUG", console=True))
    ...
    teardown_logging(ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, TypeAlias

from podward.observability.logger import logger

LogLevel: TypeAlias = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum level for the console handler.
        file: Optional log file path. File output always records DEBUG and up.
        console: Whether to log to stderr through rich.
        max_bytes: Rotate the log file once it reaches this size.
        backups: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = ".podward/podward.log"
    console: bool = True
    max_bytes: int = 50 * 1024 * 1024
    backups: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Install handlers described by ``config`` and return their ids."""
    logger.enable()
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(logger.add(sys.stderr, level=config.level))

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                max_bytes=config.max_bytes,
                backups=config.backups,
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
