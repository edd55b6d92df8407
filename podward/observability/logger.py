"""Loguru-style logger for podward, backed by stdlib logging + rich.

Usage::

    from podward.observability.logger import logger

    log = logger.bind(component="poller", pod="dev-pod")
    log.info("Pod {pod_id} ready after {elapsed:.1f}s", pod_id="p-1", elapsed=12.0)

Bound context (``pod``, ``pod_id``, ``component``...) is attached to every
record and rendered as a ``[key=value ...]`` suffix by the handlers
installed through :func:`podward.observability.logging.setup_logging`.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from collections.abc import Callable
from typing import TextIO, TypeAlias

from rich.logging import RichHandler

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER_NAME = "podward"

_root = logging.getLogger(ROOT_LOGGER_NAME)

Patcher: TypeAlias = Callable[[logging.LogRecord], None]

CONTEXT_KEYS = ("component", "provider", "pod", "pod_id", "action")


def _caller_frame(depth: int):  # noqa: ANN202
    return sys._getframe(depth + 1)


def _format_message(msg: str, args: tuple[object, ...], kwargs: dict[str, object]) -> str:
    if kwargs:
        return msg.format(**kwargs)
    if args:
        return msg.format(*args)
    return msg


def format_context(extras: dict[str, object]) -> str:
    parts = [f"{k}={extras[k]}" for k in CONTEXT_KEYS if k in extras]
    return f" [{' '.join(parts)}]" if parts else ""


class BoundLogger:
    __slots__ = ("_extras",)

    def __init__(self, extras: dict[str, object] | None = None) -> None:
        self._extras = extras or {}

    @property
    def extras(self) -> dict[str, object]:
        return dict(self._extras)

    def bind(self, **kwargs: object) -> BoundLogger:
        return BoundLogger({**self._extras, **kwargs})

    def _log(self, level: int, message: str, /, *args: object, **kwargs: object) -> None:
        exc_info = kwargs.pop("exc_info", False)
        # _log <- level method <- caller
        frame = _caller_frame(2)
        module = frame.f_globals.get("__name__", ROOT_LOGGER_NAME)
        target = logging.getLogger(module)
        if not target.isEnabledFor(level):
            return
        record = target.makeRecord(
            name=target.name,
            level=level,
            fn=frame.f_code.co_filename,
            lno=frame.f_lineno,
            msg=_format_message(message, args, kwargs),
            args=(),
            exc_info=sys.exc_info() if exc_info else None,
            func=frame.f_code.co_name,
        )
        record.filename = os.path.basename(frame.f_code.co_filename)
        for k, v in self._extras.items():
            setattr(record, k, v)
        record.extras = self._extras  # type: ignore[attr-defined]
        record.ctx = format_context(self._extras)  # type: ignore[attr-defined]
        target.handle(record)

    def trace(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(TRACE, message, *args, **kwargs)

    def debug(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.INFO, message, *args, **kwargs)

    def warning(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.WARNING, message, *args, **kwargs)

    def error(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._log(logging.ERROR, message, *args, **kwargs)

    def exception(self, message: str, /, *args: object, **kwargs: object) -> None:
        kwargs["exc_info"] = True
        self._log(logging.ERROR, message, *args, **kwargs)


_handler_counter = 0
_handlers: dict[int, logging.Handler] = {}


class _ContextFilter(logging.Filter):
    """Guarantees ``record.ctx`` exists for records not produced by BoundLogger."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "ctx"):
            record.ctx = ""  # type: ignore[attr-defined]
        return True


FILE_FORMAT = (
    "%(asctime)s.%(msecs)03d | %(levelname)-8s | "
    "%(name)s:%(funcName)s:%(lineno)d%(ctx)s - %(message)s"
)


def _make_file_handler(path: str, *, level: int, max_bytes: int, backups: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _make_console_handler(level: int, stream: TextIO | None) -> logging.Handler:
    from rich.console import Console

    handler = RichHandler(
        level=level,
        console=Console(file=stream, stderr=stream is None),
        show_time=True,
        show_level=True,
        show_path=True,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s%(ctx)s"))
    return handler


class LoguruCompat:
    def __init__(self) -> None:
        self._bound = BoundLogger()

    def bind(self, **kwargs: object) -> BoundLogger:
        return self._bound.bind(**kwargs)

    def trace(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.trace(message, *args, **kwargs)

    def debug(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.debug(message, *args, **kwargs)

    def info(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.info(message, *args, **kwargs)

    def warning(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.warning(message, *args, **kwargs)

    def error(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.error(message, *args, **kwargs)

    def exception(self, message: str, /, *args: object, **kwargs: object) -> None:
        self._bound.exception(message, *args, **kwargs)

    def remove(self, handler_id: int | None = None) -> None:
        if handler_id is None:
            for h in list(_handlers.values()):
                _root.removeHandler(h)
            _handlers.clear()
            return
        if h := _handlers.pop(handler_id, None):
            _root.removeHandler(h)
            h.close()

    def add(
        self,
        sink: str | TextIO,
        *,
        level: str = "DEBUG",
        max_bytes: int = 50 * 1024 * 1024,
        backups: int = 10,
    ) -> int:
        global _handler_counter
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            numeric_level = logging.DEBUG

        match sink:
            case str() as path:
                handler = _make_file_handler(
                    path, level=numeric_level, max_bytes=max_bytes, backups=backups,
                )
            case stream:
                handler = _make_console_handler(numeric_level, stream)

        handler.addFilter(_ContextFilter())
        _root.addHandler(handler)
        _handler_counter += 1
        _handlers[_handler_counter] = handler
        return _handler_counter

    def enable(self, name: str = ROOT_LOGGER_NAME) -> None:
        target = logging.getLogger(name)
        target.disabled = False
        target.setLevel(TRACE)

    def disable(self, name: str = ROOT_LOGGER_NAME) -> None:
        logging.getLogger(name).disabled = True


logger = LoguruCompat()

_root.setLevel(TRACE)
_root.addHandler(logging.NullHandler())
_root.propagate = False
