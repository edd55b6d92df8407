"""Podward - keep a ready RunPod GPU pod behind a stable name.

Example:

    from podward import OrchestratorConfig, PodOrchestrator

    config = OrchestratorConfig.from_env()

    async with PodOrchestrator.open(config) as orchestrator:
        pod = await orchestrator.ensure_ready_pod()
        host, port = pod.ssh_endpoint()
"""

# Configuration
from podward.config import OrchestratorConfig, load_config

# Errors
from podward.errors import (
    ConfigError,
    PodwardError,
    PollAborted,
    ProviderError,
    ProviderTerminalError,
    ReadyTimeoutError,
    StateCorruptError,
    StorageError,
    TransportError,
)

# Model
from podward.model import (
    GpuType,
    PersistedState,
    PodRecord,
    PodSpec,
    PodStatus,
    PortSpec,
    ResolvedPod,
)

# Logging
from podward.observability import LogConfig, setup_logging, teardown_logging

# Orchestration
from podward.orchestrator import PodOrchestrator
from podward.protocols import PodTransport
from podward.reconciler import Create, DoNothing, PlannedAction, Start, reconcile
from podward.state import JsonFileStateStore, StateStore
from podward.wait import PollProgress, PollState, ReadinessPoller

__all__ = [
    "ConfigError",
    "Create",
    "DoNothing",
    "GpuType",
    "JsonFileStateStore",
    "LogConfig",
    "OrchestratorConfig",
    "PersistedState",
    "PlannedAction",
    "PodOrchestrator",
    "PodRecord",
    "PodSpec",
    "PodStatus",
    "PodTransport",
    "PodwardError",
    "PollAborted",
    "PollProgress",
    "PollState",
    "PortSpec",
    "ProviderError",
    "ProviderTerminalError",
    "ReadinessPoller",
    "ReadyTimeoutError",
    "ResolvedPod",
    "Start",
    "StateCorruptError",
    "StateStore",
    "StorageError",
    "TransportError",
    "load_config",
    "reconcile",
    "setup_logging",
    "teardown_logging",
]
