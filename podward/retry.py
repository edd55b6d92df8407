"""Retry decorator with exponential backoff for provider calls.

Only the transport layer retries. The orchestration core never retries an
individual call; the readiness poller has its own tolerance for transient
failures.

Example:
    from podward.retry import on_status_code, retry

    @retry(on=on_status_code(429, 503), max_attempts=3, base_delay=1.0)
    async def list_pods():
        ...
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from podward.observability.logger import logger

P = ParamSpec("P")
T = TypeVar("T")

RetryPredicate = Callable[[Exception], bool]

_log = logger.bind(component="retry")


def retry(
    on: type[Exception] | tuple[type[Exception], ...] | RetryPredicate = Exception,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async function with exponential backoff.

    Args:
        on: Exception class, tuple of classes, or predicate deciding whether
            a failure is retryable.
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the first retry, in seconds.
        exponential_base: Backoff multiplier.
        max_delay: Cap for a single delay.
        jitter: Add up to 10% random jitter to each delay.
    """
    if isinstance(on, type) and issubclass(on, Exception):
        should_retry: RetryPredicate = lambda e: isinstance(e, on)
    elif isinstance(on, tuple):
        should_retry = lambda e: isinstance(e, on)
    else:
        should_retry = on

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    attempt += 1
                    if attempt >= max_attempts or not should_retry(e):
                        raise

                    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
                    if jitter:
                        delay += random.uniform(0, delay * 0.1)

                    _log.warning(
                        "{fn}: attempt {n}/{total} failed with {err_type}: {err}. "
                        "Retrying in {delay:.1f}s",
                        fn=getattr(func, "__qualname__", repr(func)), n=attempt, total=max_attempts,
                        err_type=type(e).__name__, err=e, delay=delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper  # type: ignore[return-value]

    return decorator


def on_status_code(*codes: int) -> RetryPredicate:
    """Retry when the exception's ``status`` attribute is one of ``codes``."""

    def predicate(e: Exception) -> bool:
        return getattr(e, "status", None) in codes

    return predicate
