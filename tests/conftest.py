from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any, TypeAlias

import pytest

from podward.config import OrchestratorConfig
from podward.errors import ProviderError
from podward.model import GpuType, PodRecord, PodSpec, PodStatus
from podward.orchestrator import PodOrchestrator
from podward.state import JsonFileStateStore
from podward.wait import ReadinessPoller

Scripted: TypeAlias = PodRecord | Exception | None


class FakeClock:
    """Manual clock; ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # let other flows run, as a real sleep would
        await asyncio.sleep(0)


class FakeTransport:
    """In-memory PodTransport.

    ``script(pod_id, ...)`` queues what successive ``get_pod`` calls return;
    the last entry repeats. Exceptions in the script are raised.
    """

    def __init__(self) -> None:
        self.pods: dict[str, PodRecord] = {}
        self.calls: list[tuple[str, Any]] = []
        self.gpu_types: list[GpuType] = []
        self._scripts: dict[str, list[Scripted]] = {}
        self._next_id = 1

    def add(self, record: PodRecord) -> PodRecord:
        self.pods[record.id] = record
        return record

    def script(self, pod_id: str, *responses: Scripted) -> None:
        self._scripts[pod_id] = list(responses)

    def called(self, method: str) -> list[Any]:
        return [arg for name, arg in self.calls if name == method]

    async def create_pod(self, spec: PodSpec) -> PodRecord:
        self.calls.append(("create_pod", spec.name))
        pod_id = f"p-{self._next_id}"
        self._next_id += 1
        return self.add(PodRecord(id=pod_id, name=spec.name, image=spec.image, status=PodStatus.PROVISIONING))

    async def get_pod(self, pod_id: str) -> PodRecord | None:
        self.calls.append(("get_pod", pod_id))
        script = self._scripts.get(pod_id)
        if not script:
            return self.pods.get(pod_id)
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        if item is not None:
            self.pods[pod_id] = item
        return item

    async def list_pods(self) -> list[PodRecord]:
        self.calls.append(("list_pods", None))
        return list(self.pods.values())

    async def set_desired_status(self, pod_id: str, status: PodStatus) -> PodRecord:
        self.calls.append(("set_desired_status", (pod_id, status)))
        if pod_id not in self.pods:
            raise ProviderError(f"pod {pod_id} not found", status=404)
        # RunPod drops the address while a pod restarts
        if status is PodStatus.RUNNING:
            updated = replace(self.pods[pod_id], status=PodStatus.PROVISIONING, public_ip=None, port_mappings={})
        else:
            updated = replace(self.pods[pod_id], status=status, public_ip=None, port_mappings={})
        return self.add(updated)

    async def terminate_pod(self, pod_id: str) -> None:
        self.calls.append(("terminate_pod", pod_id))
        if pod_id in self.pods:
            self.pods[pod_id] = replace(self.pods[pod_id], status=PodStatus.TERMINATED)

    async def list_gpu_types(self) -> list[GpuType]:
        self.calls.append(("list_gpu_types", None))
        return list(self.gpu_types)


def running(
    pod_id: str,
    name: str = "dev-pod",
    image: str = "runpod/pytorch:2.4",
    *,
    ip: str = "1.2.3.4",
    ports: dict[int, int] | None = None,
) -> PodRecord:
    return PodRecord(
        id=pod_id,
        name=name,
        image=image,
        status=PodStatus.RUNNING,
        public_ip=ip,
        port_mappings={22: 40001} if ports is None else ports,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def store(tmp_path: Path) -> JsonFileStateStore:
    return JsonFileStateStore(tmp_path / "state.json")


@pytest.fixture
def make_config() -> Callable[..., OrchestratorConfig]:
    def _make(**overrides: Any) -> OrchestratorConfig:
        values: dict[str, Any] = {
            "api_key": "test-key",
            "image_name": "runpod/pytorch:2.4",
            "pod_name": "dev-pod",
            "ports": ("22/tcp",),
            "ready_timeout": 60.0,
            "poll_interval": 5.0,
        }
        values.update(overrides)
        return OrchestratorConfig(**values)

    return _make


@pytest.fixture
def make_orchestrator(
    make_config: Callable[..., OrchestratorConfig],
    transport: FakeTransport,
    store: JsonFileStateStore,
    clock: FakeClock,
) -> Callable[..., PodOrchestrator]:
    def _make(**overrides: Any) -> PodOrchestrator:
        config = make_config(**overrides)
        poller = ReadinessPoller(
            transport.get_pod,
            expected_ports=config.pod_spec().internal_ports,
            ssh_port=config.ssh_port,
            http_port=config.http_port,
            clock=clock,
            sleep=clock.sleep,
        )
        return PodOrchestrator(config, transport, store, poller=poller)

    return _make
