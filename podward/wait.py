"""Readiness polling for a single pod.

The poller re-fetches the pod record every ``poll_interval`` seconds until
the provider reports a public address with every expected port mapped::

    PROVISIONING -> HAS_ADDRESS -> READY
         |
         +--> TIMED_OUT | FAILED

Reachability is inferred from the provider's port mappings; no connection is
attempted. Clock and sleep are injectable so tests can drive ticks
deterministically.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TypeAlias

from podward.errors import PollAborted, ProviderTerminalError, ReadyTimeoutError, TransportError
from podward.model import PodRecord, PodStatus, ResolvedPod
from podward.observability.logger import BoundLogger, logger

FetchFn: TypeAlias = Callable[[str], Awaitable[PodRecord | None]]
ClockFn: TypeAlias = Callable[[], float]
SleepFn: TypeAlias = Callable[[float], Awaitable[None]]


class PollState(StrEnum):
    PROVISIONING = "provisioning"
    HAS_ADDRESS = "has_address"
    READY = "ready"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(slots=True)
class PollProgress:
    """Where one wait stands. Each ``wait_until_ready`` call owns its own."""

    pod_id: str
    state: PollState = PollState.PROVISIONING
    ticks: int = 0


class ReadinessPoller:
    """Drive a pod from provisioning to reachable within a bounded time.

    Args:
        fetch: Returns the current record, or None when the pod is gone.
        expected_ports: Internal ports that must be mapped before the pod
            counts as ready.
        ssh_port: Internal SSH port, passed through to the ResolvedPod.
        http_port: Internal HTTP port, passed through to the ResolvedPod.
        clock: Monotonic seconds. Defaults to the running loop's clock.
        sleep: Sleep between ticks. Defaults to a sleep that wakes up early
            when the abort event is set.

    ``progress`` maps each pod id to its most recent wait, so concurrent
    waits for different pods can share one poller.
    """

    def __init__(
        self,
        fetch: FetchFn,
        *,
        expected_ports: frozenset[int] = frozenset({22}),
        ssh_port: int = 22,
        http_port: int | None = 8888,
        clock: ClockFn | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        self._fetch = fetch
        self._expected_ports = frozenset(expected_ports)
        self._ssh_port = ssh_port
        self._http_port = http_port
        self._clock = clock
        self._sleep = sleep
        self.progress: dict[str, PollProgress] = {}

    def classify(self, record: PodRecord) -> PollState:
        if record.status.is_terminal:
            return PollState.FAILED
        if (
            record.status is PodStatus.RUNNING
            and record.public_ip
            and record.has_ports(self._expected_ports)
        ):
            return PollState.HAS_ADDRESS
        return PollState.PROVISIONING

    async def wait_until_ready(
        self,
        pod_id: str,
        ready_timeout: float,
        poll_interval: float,
        *,
        abort: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> ResolvedPod:
        """Poll until the pod is reachable.

        Raises:
            PollAborted: ``abort`` was set.
            ProviderTerminalError: The pod was terminated or disappeared.
            ReadyTimeoutError: ``ready_timeout`` elapsed or ``deadline`` passed.
            ProviderError: The provider rejected a poll request.
        """
        clock = self._clock or asyncio.get_running_loop().time
        log = logger.bind(component="poller", pod_id=pod_id)
        start = clock()
        progress = self.progress[pod_id] = PollProgress(pod_id)

        log.info(
            "Waiting for pod {pod_id} (timeout={timeout:.0f}s, interval={interval:.0f}s)",
            pod_id=pod_id, timeout=ready_timeout, interval=poll_interval,
        )

        while True:
            if abort is not None and abort.is_set():
                log.info("Polling aborted after {n} tick(s)", n=progress.ticks)
                raise PollAborted(f"Polling for pod {pod_id} aborted", pod_id=pod_id)

            record = await self._poll(progress, log)
            progress.ticks += 1

            if record is not None:
                _advance(progress, self.classify(record), log)
                match progress.state:
                    case PollState.FAILED:
                        raise ProviderTerminalError(
                            f"Pod {pod_id} reached terminal status {record.status}",
                            pod_id=pod_id,
                        )
                    case PollState.HAS_ADDRESS:
                        _advance(progress, PollState.READY, log)
                        elapsed = clock() - start
                        log.info(
                            "Pod {pod_id} ready at {ip} after {elapsed:.1f}s",
                            pod_id=pod_id, ip=record.public_ip, elapsed=elapsed,
                        )
                        return ResolvedPod(record, ssh_port=self._ssh_port, http_port=self._http_port)

            now = clock()
            elapsed = now - start
            if elapsed > ready_timeout or (deadline is not None and now >= deadline):
                _advance(progress, PollState.TIMED_OUT, log)
                raise ReadyTimeoutError(
                    f"Pod {pod_id} not ready after {elapsed:.1f}s "
                    f"(timeout {ready_timeout:.1f}s)",
                    elapsed=elapsed,
                    pod_id=pod_id,
                )

            delay = poll_interval
            if deadline is not None:
                delay = min(delay, max(deadline - now, 0.0))
            await self._pause(delay, abort)

    async def _poll(self, progress: PollProgress, log: BoundLogger) -> PodRecord | None:
        pod_id = progress.pod_id
        try:
            record = await self._fetch(pod_id)
        except TransportError as e:
            log.warning("Poll {n} failed, will retry: {err}", n=progress.ticks + 1, err=e)
            return None
        if record is None:
            _advance(progress, PollState.FAILED, log)
            raise ProviderTerminalError(f"Pod {pod_id} no longer exists", status=404, pod_id=pod_id)
        return record

    async def _pause(self, seconds: float, abort: asyncio.Event | None) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
            return
        if abort is None:
            await asyncio.sleep(seconds)
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(abort.wait(), timeout=seconds)


def _advance(progress: PollProgress, new: PollState, log: BoundLogger) -> None:
    if new is not progress.state:
        log.debug("{old} -> {new} (tick {n})", old=progress.state, new=new, n=progress.ticks)
        progress.state = new
