"""Capability surface the orchestration core consumes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from podward.model import GpuType, PodRecord, PodSpec, PodStatus

__all__ = ["PodTransport"]


@runtime_checkable
class PodTransport(Protocol):
    """Provider operations needed to reconcile and wait for a pod.

    Every method may raise ``TransportError`` (network failure, timeout,
    transient status) or ``ProviderError`` (the provider rejected the call).
    """

    async def create_pod(self, spec: PodSpec) -> PodRecord: ...

    async def get_pod(self, pod_id: str) -> PodRecord | None:
        """Current record, or None when the provider no longer knows the pod."""
        ...

    async def list_pods(self) -> list[PodRecord]: ...

    async def set_desired_status(self, pod_id: str, status: PodStatus) -> PodRecord:
        """Start (``running``) or stop (``stopped``) an existing pod."""
        ...

    async def terminate_pod(self, pod_id: str) -> None: ...

    async def list_gpu_types(self) -> list[GpuType]: ...
