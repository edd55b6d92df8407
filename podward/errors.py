"""Error taxonomy.

Every error raised by podward derives from :class:`PodwardError` and carries
the logical pod name and, when known, the provider pod id. The orchestrator
fills both in before an error leaves ``ensure_ready_pod()``.
"""

from __future__ import annotations


class PodwardError(Exception):
    """Base class for podward errors."""

    def __init__(
        self,
        message: str,
        *,
        pod_name: str | None = None,
        pod_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.pod_name = pod_name
        self.pod_id = pod_id

    def with_context(self, *, pod_name: str | None = None, pod_id: str | None = None) -> PodwardError:
        """Fill in missing context in place and return ``self`` for re-raising."""
        if self.pod_name is None:
            self.pod_name = pod_name
        if self.pod_id is None:
            self.pod_id = pod_id
        return self

    def __str__(self) -> str:
        ctx = [
            f"{k}={v}"
            for k, v in (("pod", self.pod_name), ("pod_id", self.pod_id))
            if v is not None
        ]
        return f"{self.message} ({', '.join(ctx)})" if ctx else self.message


class ConfigError(PodwardError):
    """A required setting is missing or a value is invalid."""


class TransportError(PodwardError):
    """Network failure, client timeout, or a transient HTTP status (408/429/5xx)."""

    def __init__(self, message: str, *, status: int = 0, **kwargs: str | None) -> None:
        super().__init__(message, **kwargs)
        self.status = status


class ProviderError(PodwardError):
    """The provider rejected a request (4xx, GraphQL errors, malformed payload)."""

    def __init__(self, message: str, *, status: int = 0, **kwargs: str | None) -> None:
        super().__init__(message, **kwargs)
        self.status = status


class ProviderTerminalError(ProviderError):
    """The pod was reported terminated or vanished while waiting for it."""


class ReadyTimeoutError(PodwardError, TimeoutError):
    """The pod did not become reachable within the ready timeout."""

    def __init__(self, message: str, *, elapsed: float = 0.0, **kwargs: str | None) -> None:
        super().__init__(message, **kwargs)
        self.elapsed = elapsed


class PollAborted(PodwardError):
    """Readiness polling was aborted by the caller."""


class StorageError(PodwardError):
    """The persisted state could not be read or written."""


class StateCorruptError(StorageError):
    """The persisted state exists but cannot be parsed or validated."""


__all__ = [
    "ConfigError",
    "PodwardError",
    "PollAborted",
    "ProviderError",
    "ProviderTerminalError",
    "ReadyTimeoutError",
    "StateCorruptError",
    "StorageError",
    "TransportError",
]
