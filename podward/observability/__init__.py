"""Logging facade and setup helpers."""

from .logger import logger
from .logging import LogConfig, setup_logging, teardown_logging

__all__ = ["LogConfig", "logger", "setup_logging", "teardown_logging"]
