from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeAlias

import pytest

from podward.errors import ProviderError, ReadyTimeoutError, StateCorruptError, TransportError
from podward.model import GpuType, PersistedState, PodRecord, PodStatus
from podward.orchestrator import PodOrchestrator
from podward.state import JsonFileStateStore
from tests.conftest import FakeClock, FakeTransport, running

pytestmark = [pytest.mark.unit]

MakeOrchestrator: TypeAlias = Callable[..., PodOrchestrator]

IMAGE = "runpod/pytorch:2.4"


def _provisioning(pod_id: str, name: str = "dev-pod") -> PodRecord:
    return PodRecord(id=pod_id, name=name, image=IMAGE, status=PodStatus.PROVISIONING)


def _seed(store: JsonFileStateStore, *records: PodRecord) -> None:
    state = PersistedState()
    for record in records:
        state.put(record)
    store.save(state)


def _index(transport: FakeTransport, method: str) -> int:
    return [name for name, _ in transport.calls].index(method)


# ─── Create ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dev_pod_scenario(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
    clock: FakeClock,
):
    transport.script("p-1", _provisioning("p-1"), _provisioning("p-1"), running("p-1"))

    pod = await make_orchestrator().ensure_ready_pod()

    assert pod.id == "p-1"
    assert pod.ssh_endpoint() == ("1.2.3.4", 40001)
    assert clock.now == 10.0
    assert transport.called("create_pod") == ["dev-pod"]

    state = store.load()
    assert state.names() == ["dev-pod"]
    record = state.get("dev-pod")
    assert record is not None
    assert (record.id, record.status) == ("p-1", PodStatus.RUNNING)


@pytest.mark.asyncio
async def test_created_pod_is_saved_before_polling(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    orchestrator = make_orchestrator(ready_timeout=12.0)

    with pytest.raises(ReadyTimeoutError) as exc_info:
        await orchestrator.ensure_ready_pod()

    assert exc_info.value.pod_id == "p-1"
    assert exc_info.value.pod_name == "dev-pod"
    record = store.load().get("dev-pod")
    assert record is not None
    assert (record.id, record.status) == ("p-1", PodStatus.PROVISIONING)
    # a pod that failed to become ready is left for the caller
    assert transport.called("terminate_pod") == []


@pytest.mark.asyncio
async def test_ensure_is_idempotent(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    transport.script("p-1", _provisioning("p-1"), running("p-1"))
    orchestrator = make_orchestrator()

    first = await orchestrator.ensure_ready_pod()
    second = await orchestrator.ensure_ready_pod()

    assert first.id == second.id == "p-1"
    assert transport.called("create_pod") == ["dev-pod"]
    assert transport.called("set_desired_status") == []
    assert len(store.load()) == 1


# ─── Start ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [PodStatus.STOPPED, PodStatus.EXITED])
async def test_stopped_pod_is_started(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
    status: PodStatus,
):
    stopped = PodRecord(id="p-7", name="dev-pod", image=IMAGE, status=status)
    _seed(store, stopped)
    transport.add(stopped)
    transport.script("p-7", stopped, _provisioning("p-7"), running("p-7"))

    pod = await make_orchestrator().ensure_ready_pod()

    assert pod.id == "p-7"
    assert transport.called("set_desired_status") == [("p-7", PodStatus.RUNNING)]
    assert transport.called("create_pod") == []
    record = store.load().get("dev-pod")
    assert record is not None and record.status is PodStatus.RUNNING


@pytest.mark.asyncio
async def test_start_failure_carries_pod_id(
    make_orchestrator: MakeOrchestrator,
    store: JsonFileStateStore,
):
    # stored but unknown to the provider's start endpoint
    _seed(store, PodRecord(id="p-7", name="dev-pod", image=IMAGE, status=PodStatus.EXITED))

    with pytest.raises(ProviderError) as exc_info:
        await make_orchestrator(observe_provider=False).ensure_ready_pod()

    assert exc_info.value.pod_id == "p-7"
    assert exc_info.value.pod_name == "dev-pod"
    assert "pod=dev-pod" in str(exc_info.value)


# ─── Recreate ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_recreate_terminates_then_creates(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    old = running("p-old", image="old:1")
    _seed(store, old)
    transport.add(old)
    transport.script("p-1", running("p-1"))

    pod = await make_orchestrator(reconcile_mode="recreate").ensure_ready_pod()

    assert pod.id == "p-1"
    assert transport.called("terminate_pod") == ["p-old"]
    assert _index(transport, "terminate_pod") < _index(transport, "create_pod")
    record = store.load().get("dev-pod")
    assert record is not None
    assert (record.id, record.image) == ("p-1", IMAGE)


@pytest.mark.asyncio
async def test_recreate_keeps_matching_image(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    current = running("p-5")
    _seed(store, current)
    transport.add(current)

    pod = await make_orchestrator(reconcile_mode="recreate").ensure_ready_pod()

    assert pod.id == "p-5"
    assert transport.called("terminate_pod") == []
    assert transport.called("create_pod") == []


@pytest.mark.asyncio
async def test_reuse_ignores_image_drift(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    old = running("p-old", image="old:1")
    _seed(store, old)
    transport.add(old)

    pod = await make_orchestrator().ensure_ready_pod()

    assert pod.id == "p-old"
    assert transport.called("create_pod") == []


@pytest.mark.asyncio
async def test_recreate_stops_when_terminate_fails(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    old = running("p-old", image="old:1")
    _seed(store, old)
    transport.add(old)

    async def refuse(pod_id: str) -> None:
        raise ProviderError("cannot terminate", status=409)

    transport.terminate_pod = refuse  # type: ignore[method-assign]

    with pytest.raises(ProviderError) as exc_info:
        await make_orchestrator(reconcile_mode="recreate").ensure_ready_pod()

    assert exc_info.value.pod_id == "p-old"
    assert transport.called("create_pod") == []


# ─── Provider observation ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_adopts_existing_pod_by_name(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    transport.add(PodRecord(id="p-8", name="dev-pod", image=IMAGE, status=PodStatus.TERMINATED))
    transport.add(running("p-x", name="someone-else"))
    transport.add(running("p-9"))

    pod = await make_orchestrator().ensure_ready_pod()

    assert pod.id == "p-9"
    assert transport.called("create_pod") == []
    record = store.load().get("dev-pod")
    assert record is not None and record.id == "p-9"


@pytest.mark.asyncio
async def test_vanished_pod_is_recreated(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    _seed(store, running("p-gone"))
    transport.script("p-1", running("p-1"))

    pod = await make_orchestrator().ensure_ready_pod()

    assert pod.id == "p-1"
    assert transport.called("get_pod")[0] == "p-gone"
    assert transport.called("create_pod") == ["dev-pod"]


@pytest.mark.asyncio
async def test_transient_observation_failure_keeps_stored_record(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    _seed(store, running("p-5"))
    transport.script("p-5", TransportError("HTTP 503", status=503), running("p-5"))

    pod = await make_orchestrator().ensure_ready_pod()

    assert pod.id == "p-5"
    assert transport.called("create_pod") == []


@pytest.mark.asyncio
async def test_refresh_keeps_stored_creation_time(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    created = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    _seed(store, replace(running("p-5"), created_at=created))
    # payloads without createdAt come back stamped with the current time
    transport.script("p-5", running("p-5"))

    await make_orchestrator().ensure_ready_pod()

    record = store.load().get("dev-pod")
    assert record is not None
    assert record.id == "p-5"
    assert record.created_at == created


@pytest.mark.asyncio
async def test_observation_can_be_disabled(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    stopped = PodRecord(id="p-3", name="dev-pod", image=IMAGE, status=PodStatus.STOPPED)
    _seed(store, stopped)
    transport.add(stopped)
    transport.script("p-3", running("p-3"))

    await make_orchestrator(observe_provider=False).ensure_ready_pod()

    assert transport.calls[0] == ("set_desired_status", ("p-3", PodStatus.RUNNING))
    assert transport.called("list_pods") == []


# ─── Errors ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_failure_has_name_but_no_id(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    async def no_capacity(spec) -> PodRecord:
        raise ProviderError("no GPU capacity", status=400)

    transport.create_pod = no_capacity  # type: ignore[method-assign]

    with pytest.raises(ProviderError) as exc_info:
        await make_orchestrator().ensure_ready_pod()

    assert exc_info.value.pod_name == "dev-pod"
    assert exc_info.value.pod_id is None
    assert len(store.load()) == 0


@pytest.mark.asyncio
async def test_create_failure_does_not_blame_dead_pod(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    _seed(store, PodRecord(id="p-dead", name="dev-pod", image=IMAGE, status=PodStatus.TERMINATED))

    async def no_capacity(spec) -> PodRecord:
        raise ProviderError("no GPU capacity", status=400)

    transport.create_pod = no_capacity  # type: ignore[method-assign]

    with pytest.raises(ProviderError) as exc_info:
        await make_orchestrator().ensure_ready_pod()

    assert exc_info.value.pod_name == "dev-pod"
    assert exc_info.value.pod_id is None


@pytest.mark.asyncio
async def test_corrupt_state_is_surfaced(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    store.path.write_text("{oops")

    with pytest.raises(StateCorruptError) as exc_info:
        await make_orchestrator().ensure_ready_pod()

    assert exc_info.value.pod_name == "dev-pod"
    assert transport.calls == []


# ─── Concurrency ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_different_names_share_a_store(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    transport.script("p-1", _provisioning("p-1", "a"), running("p-1", name="a"))
    transport.script("p-2", _provisioning("p-2", "b"), running("p-2", name="b"))

    a, b = await asyncio.gather(
        make_orchestrator(pod_name="a").ensure_ready_pod(),
        make_orchestrator(pod_name="b").ensure_ready_pod(),
    )

    state = store.load()
    assert state.names() == ["a", "b"]
    assert {state.pods["a"].id, state.pods["b"].id} == {a.id, b.id} == {"p-1", "p-2"}
    assert all(r.status is PodStatus.RUNNING for r in state)


# ─── Other operations ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stop_pod(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    current = running("p-5")
    _seed(store, current)
    transport.add(current)

    stopped = await make_orchestrator().stop_pod()

    assert stopped is not None and stopped.status is PodStatus.STOPPED
    assert transport.called("set_desired_status") == [("p-5", PodStatus.STOPPED)]
    record = store.load().get("dev-pod")
    assert record is not None and record.status is PodStatus.STOPPED


@pytest.mark.asyncio
async def test_stop_without_record(make_orchestrator: MakeOrchestrator, transport: FakeTransport):
    assert await make_orchestrator().stop_pod() is None
    assert transport.calls == []


@pytest.mark.asyncio
async def test_terminate_pod(
    make_orchestrator: MakeOrchestrator,
    transport: FakeTransport,
    store: JsonFileStateStore,
):
    current = running("p-5")
    _seed(store, current)
    transport.add(current)
    orchestrator = make_orchestrator()

    terminated = await orchestrator.terminate_pod()

    assert terminated == replace(current, status=PodStatus.TERMINATED)
    assert transport.called("terminate_pod") == ["p-5"]
    assert store.load().get("dev-pod") == terminated
    assert await orchestrator.terminate_pod() is None


@pytest.mark.asyncio
async def test_list_gpu_types(make_orchestrator: MakeOrchestrator, transport: FakeTransport):
    transport.gpu_types = [GpuType(id="NVIDIA A40", display_name="A40", available_count=3)]

    assert await make_orchestrator().list_gpu_types() == transport.gpu_types


@pytest.mark.asyncio
async def test_open_wires_runpod_client_and_file_store(tmp_path: Path, make_config):
    config = make_config(state_path=str(tmp_path / "s.json"))

    async with PodOrchestrator.open(config) as orchestrator:
        assert orchestrator.name == "dev-pod"
        assert isinstance(orchestrator._store, JsonFileStateStore)
        assert orchestrator._store.path == tmp_path / "s.json"
