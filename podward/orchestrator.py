"""Get a ready-to-use pod for a logical name.

Example:
    import asyncio
    from podward import OrchestratorConfig, PodOrchestrator

    async def main():
        config = OrchestratorConfig.from_env()
        async with PodOrchestrator.open(config) as orchestrator:
            pod = await orchestrator.ensure_ready_pod()
            print(pod.ssh_endpoint(), pod.browser_url())

    asyncio.run(main())
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace

from podward.config import OrchestratorConfig
from podward.errors import PodwardError, TransportError
from podward.model import GpuType, PersistedState, PodRecord, PodStatus, ResolvedPod
from podward.observability.logger import logger
from podward.protocols import PodTransport
from podward.reconciler import Create, DoNothing, PlannedAction, Start, reconcile
from podward.state import JsonFileStateStore, StateStore
from podward.wait import ReadinessPoller


class PodOrchestrator:
    """Reconcile one logical pod name against the provider and wait for it.

    Each ``ensure_ready_pod()`` call is a single sequential flow:
    load state, observe the provider, plan, act, poll, persist. Orchestrators
    for different names can share a store and run concurrently in one
    process. Two flows for the same name may race and create two pods.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        transport: PodTransport,
        store: StateStore,
        *,
        poller: ReadinessPoller | None = None,
    ) -> None:
        self.config = config
        self.spec = config.pod_spec()
        self._transport = transport
        self._store = store
        self._poller = poller or ReadinessPoller(
            transport.get_pod,
            expected_ports=self.spec.internal_ports,
            ssh_port=config.ssh_port,
            http_port=config.http_port,
        )
        self._log = logger.bind(component="orchestrator", pod=config.pod_name)

    @classmethod
    @asynccontextmanager
    async def open(cls, config: OrchestratorConfig) -> AsyncIterator[PodOrchestrator]:
        """Orchestrator wired to RunPod and a JSON state file; closes the client on exit."""
        from podward.providers.runpod import RunPodClient

        client = RunPodClient.from_config(config)
        try:
            yield cls(config, client, JsonFileStateStore(config.state_path))
        finally:
            await client.close()

    @property
    def name(self) -> str:
        return self.config.pod_name

    # =========================================================================
    # Main flow
    # =========================================================================

    async def ensure_ready_pod(
        self,
        *,
        abort: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> ResolvedPod:
        """Reuse, start or create the pod for this name and wait until it is reachable.

        Args:
            abort: Stops polling with ``PollAborted`` once set.
            deadline: Absolute time (on the poller's clock) after which polling
                gives up with ``ReadyTimeoutError``.

        Raises:
            PodwardError: Any failure, annotated with the pod name and, when
                known, the pod id. A pod that never became ready is left
                running for the caller to inspect.
        """
        pod_id: str | None = None
        try:
            state = self._store.load()
            if self.config.observe_provider:
                await self._observe(state)
            pod_id = self._stored_id(state)

            action = reconcile(
                state, self.name, self.config.image_name, mode=self.config.reconcile_mode,
            )
            self._log.info("Planned {action}", action=action)
            if isinstance(action, Create):
                # a failed create belongs to no pod; the stored id may be a dead one
                pod_id = None
            pod_id = await self._execute(action, state)

            resolved = await self._poller.wait_until_ready(
                pod_id,
                self.config.ready_timeout,
                self.config.poll_interval,
                abort=abort,
                deadline=deadline,
            )
            self._save_entry(resolved.record)
        except PodwardError as e:
            e.with_context(pod_name=self.name, pod_id=pod_id)
            self._log.error("ensure_ready_pod failed: {err}", err=e)
            raise

        self._log.info(
            "Pod {pod_id} ready, ssh={ssh}", pod_id=resolved.id, ssh=resolved.ssh_endpoint(),
        )
        return resolved

    async def _execute(self, action: PlannedAction, state: PersistedState) -> str:
        match action:
            case DoNothing(pod_id=pod_id):
                self._log.info("Reusing pod {pod_id}", pod_id=pod_id)
                return pod_id

            case Start(pod_id=pod_id):
                self._log.info("Starting pod {pod_id}", pod_id=pod_id)
                try:
                    await self._transport.set_desired_status(pod_id, PodStatus.RUNNING)
                except PodwardError as e:
                    e.with_context(pod_id=pod_id)
                    raise
                return pod_id

            case Create(replaces=old_id):
                if old_id is not None:
                    await self._replace(old_id, state)
                record = self._own(await self._transport.create_pod(self.spec))
                self._log.info("Created pod {pod_id}", pod_id=record.id)
                state.put(record)
                self._save_entry(record)
                return record.id

    async def _replace(self, old_id: str, state: PersistedState) -> None:
        """Terminate a drifted pod before its replacement is created."""
        old = state.get(self.name)
        self._log.info(
            "Image changed ({old} -> {new}), terminating pod {pod_id}",
            old=old.image if old else "?", new=self.config.image_name, pod_id=old_id,
        )
        try:
            await self._transport.terminate_pod(old_id)
        except PodwardError as e:
            e.with_context(pod_id=old_id)
            raise
        if old is not None:
            terminated = replace(old, status=PodStatus.TERMINATED)
            state.put(terminated)
            self._save_entry(terminated)

    # =========================================================================
    # Provider observation
    # =========================================================================

    async def _observe(self, state: PersistedState) -> None:
        """Refresh the stored record from the provider, or adopt a pod by name."""
        stored = state.get(self.name)

        if stored is not None:
            try:
                current = await self._transport.get_pod(stored.id)
            except TransportError as e:
                self._log.warning(
                    "Could not refresh pod {pod_id}, using stored record: {err}",
                    pod_id=stored.id, err=e,
                )
                return
            if current is None:
                self._log.info("Pod {pod_id} no longer exists on provider", pod_id=stored.id)
                state.put(replace(stored, status=PodStatus.TERMINATED))
            else:
                state.put(_keep_created_at(stored, self._own(current)))
            return

        for pod in await self._transport.list_pods():
            if pod.name == self.name and not pod.status.is_terminal:
                self._log.info(
                    "Adopting existing pod {pod_id} ({status})", pod_id=pod.id, status=pod.status,
                )
                state.put(pod)
                return

    # =========================================================================
    # Other operations
    # =========================================================================

    async def stop_pod(self) -> PodRecord | None:
        """Stop the managed pod. Returns None when nothing is recorded for this name."""
        record = self._store.load().get(self.name)
        if record is None:
            self._log.info("No pod recorded, nothing to stop")
            return None
        try:
            stopped = self._own(
                await self._transport.set_desired_status(record.id, PodStatus.STOPPED)
            )
            self._save_entry(stopped)
        except PodwardError as e:
            e.with_context(pod_name=self.name, pod_id=record.id)
            raise
        self._log.info("Stopped pod {pod_id}", pod_id=record.id)
        return stopped

    async def terminate_pod(self) -> PodRecord | None:
        """Terminate the managed pod and keep its record as ``terminated``."""
        record = self._store.load().get(self.name)
        if record is None or record.status.is_terminal:
            self._log.info("No live pod recorded, nothing to terminate")
            return None
        try:
            await self._transport.terminate_pod(record.id)
            terminated = replace(record, status=PodStatus.TERMINATED)
            self._save_entry(terminated)
        except PodwardError as e:
            e.with_context(pod_name=self.name, pod_id=record.id)
            raise
        self._log.info("Terminated pod {pod_id}", pod_id=record.id)
        return terminated

    async def list_gpu_types(self) -> list[GpuType]:
        return await self._transport.list_gpu_types()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _own(self, record: PodRecord) -> PodRecord:
        if record.name == self.name:
            return record
        return replace(record, name=self.name)

    def _stored_id(self, state: PersistedState) -> str | None:
        record = state.get(self.name)
        return record.id if record else None

    def _save_entry(self, record: PodRecord) -> None:
        # reload so entries written by other names since our load survive
        latest = self._store.load()
        latest.put(_keep_created_at(latest.get(self.name), self._own(record)))
        self._store.save(latest)


def _keep_created_at(previous: PodRecord | None, record: PodRecord) -> PodRecord:
    """Keep the first observed creation time of a pod across refreshes."""
    if previous is None or previous.id != record.id or previous.created_at == record.created_at:
        return record
    return replace(record, created_at=previous.created_at)
