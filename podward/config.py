"""Orchestrator configuration.

Settings come from three layers, later ones winning:

1. ``~/.podward/defaults.toml`` (global)
2. ``podward.toml`` in the project directory
3. ``RUNPOD_*`` environment variables

Both TOML files put fields under a ``[pod]`` table::

    [pod]
    name = "dev-pod"
    image = "runpod/pytorch:2.4.0-py3.11-cuda12.4.1-devel-ubuntu22.04"
    gpu_type_ids = ["NVIDIA A40", "NVIDIA RTX A6000"]
    ports = ["22/tcp", "8888/http"]
    ready_timeout = 600
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, TypeAlias, TypeVar

from podward.errors import ConfigError
from podward.model import CloudType, PodSpec, PortSpec, ReconcileMode
from podward.state import DEFAULT_STATE_FILE

RawConfig: TypeAlias = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".podward" / "defaults.toml"
PROJECT_CONFIG_NAME = "podward.toml"


# TOML key -> dataclass field, where they differ
_TOML_ALIASES = {"name": "pod_name", "image": "image_name"}


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    """Immutable settings for one managed pod.

    Args:
        api_key: RunPod API key.
        image_name: Container image reference.
        pod_name: Logical name, the reuse key.
        gpu_type_ids: Acceptable GPU types, in preference order.
        gpu_count: GPUs per pod.
        cloud_type: SECURE or COMMUNITY.
        container_disk_gb: Container disk size.
        volume_gb: Persistent volume size; 0 disables the volume.
        volume_mount_path: Where the volume is mounted.
        ports: Exposed ports in RunPod's "port/protocol" form.
        env: Extra environment variables for the container.
        network_volume_id: Optional network volume to attach.
        start_ssh: Start sshd in the pod.
        start_jupyter: Start Jupyter in the pod.
        http_timeout: Per-request timeout in seconds.
        ready_timeout: Seconds to wait for the pod to become reachable.
        poll_interval: Seconds between readiness polls.
        rest_url: RunPod REST base URL.
        graphql_url: RunPod GraphQL endpoint.
        reconcile_mode: ``reuse`` keeps any pod with the same name;
            ``recreate`` replaces it when the image drifted.
        state_path: Location of the persisted state file.
        ssh_port: Internal port used for the SSH endpoint.
        http_port: Internal port used for the browser URL.
        observe_provider: Refresh the stored record from the provider before
            reconciling.
    """

    api_key: str
    image_name: str
    pod_name: str = "podward-pod"
    gpu_type_ids: tuple[str, ...] = ("NVIDIA A40",)
    gpu_count: int = 1
    cloud_type: CloudType = "SECURE"
    container_disk_gb: int = 50
    volume_gb: int = 20
    volume_mount_path: str = "/workspace"
    ports: tuple[str, ...] = ("22/tcp", "8888/http")
    env: Mapping[str, str] = field(default_factory=dict)
    network_volume_id: str | None = None
    start_ssh: bool = True
    start_jupyter: bool = False
    http_timeout: float = 30.0
    ready_timeout: float = 300.0
    poll_interval: float = 5.0
    rest_url: str = "https://rest.runpod.io/v1"
    graphql_url: str = "https://api.runpod.io/graphql"
    reconcile_mode: ReconcileMode = "reuse"
    state_path: str = DEFAULT_STATE_FILE
    ssh_port: int = 22
    http_port: int | None = 8888
    observe_provider: bool = True

    def __post_init__(self) -> None:
        for name in ("api_key", "image_name", "pod_name"):
            if not str(getattr(self, name) or "").strip():
                raise ConfigError(f"Missing required setting: {name}")
        if not self.gpu_type_ids:
            raise ConfigError("gpu_type_ids must list at least one GPU type")
        if self.gpu_count < 1:
            raise ConfigError(f"gpu_count must be >= 1, got {self.gpu_count}")
        for name in ("http_timeout", "ready_timeout", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.reconcile_mode not in ("reuse", "recreate"):
            raise ConfigError(
                f"Unknown reconcile mode {self.reconcile_mode!r}. Valid: reuse, recreate"
            )
        if self.cloud_type not in ("SECURE", "COMMUNITY"):
            raise ConfigError(f"Unknown cloud type {self.cloud_type!r}. Valid: SECURE, COMMUNITY")
        self.port_specs()

    def port_specs(self) -> tuple[PortSpec, ...]:
        return tuple(PortSpec.parse(p) for p in self.ports)

    def pod_spec(self) -> PodSpec:
        return PodSpec(
            name=self.pod_name,
            image=self.image_name,
            gpu_type_ids=self.gpu_type_ids,
            gpu_count=self.gpu_count,
            container_disk_gb=self.container_disk_gb,
            volume_gb=self.volume_gb or None,
            volume_mount_path=self.volume_mount_path if self.volume_gb else None,
            ports=self.port_specs(),
            cloud_type=self.cloud_type,
            env=dict(self.env),
            network_volume_id=self.network_volume_id,
            start_ssh=self.start_ssh,
            start_jupyter=self.start_jupyter,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OrchestratorConfig:
        """Build a config from ``RUNPOD_*`` environment variables alone."""
        return cls.from_mapping(env_overrides(os.environ if environ is None else environ))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> OrchestratorConfig:
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in raw.items():
            key = _TOML_ALIASES.get(key, key)
            if key not in known:
                raise ConfigError(f"Unknown setting {key!r}")
            values[key] = value

        for key in ("gpu_type_ids", "ports"):
            if key in values:
                values[key] = tuple(values[key])
        if "env" in values and not isinstance(values["env"], Mapping):
            raise ConfigError("env must be a table of strings")

        try:
            return cls(**values)
        except TypeError as e:
            raise ConfigError(str(e)) from None


# =============================================================================
# Environment
# =============================================================================

_ENV_STR = {
    "RUNPOD_API_KEY": "api_key",
    "RUNPOD_IMAGE_NAME": "image_name",
    "RUNPOD_POD_NAME": "pod_name",
    "RUNPOD_CLOUD_TYPE": "cloud_type",
    "RUNPOD_VOLUME_MOUNT_PATH": "volume_mount_path",
    "RUNPOD_NETWORK_VOLUME_ID": "network_volume_id",
    "RUNPOD_REST_URL": "rest_url",
    "RUNPOD_GRAPHQL_URL": "graphql_url",
    "RUNPOD_RECONCILE_MODE": "reconcile_mode",
    "RUNPOD_STATE_PATH": "state_path",
}
_ENV_INT = {
    "RUNPOD_GPU_COUNT": "gpu_count",
    "RUNPOD_CONTAINER_DISK_GB": "container_disk_gb",
    "RUNPOD_VOLUME_GB": "volume_gb",
}
_ENV_FLOAT = {
    "RUNPOD_HTTP_TIMEOUT": "http_timeout",
    "RUNPOD_READY_TIMEOUT": "ready_timeout",
    "RUNPOD_POLL_INTERVAL": "poll_interval",
}
_ENV_BOOL = {
    "RUNPOD_START_SSH": "start_ssh",
    "RUNPOD_START_JUPYTER": "start_jupyter",
    "RUNPOD_OBSERVE_PROVIDER": "observe_provider",
}
_ENV_CSV = {
    "RUNPOD_GPU_TYPE_IDS": "gpu_type_ids",
    "RUNPOD_PORTS": "ports",
}


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(s.strip() for s in raw.split(",") if s.strip())


N = TypeVar("N", int, float)


def _parse_number(key: str, raw: str, kind: type[N]) -> N:
    try:
        return kind(raw.strip())
    except ValueError:
        raise ConfigError(f"Invalid {key}={raw!r}: expected {kind.__name__}") from None


def env_overrides(environ: Mapping[str, str]) -> RawConfig:
    """Extract config fields from ``RUNPOD_*`` variables. Empty values are ignored."""
    out: RawConfig = {}
    present = {k: v for k, v in environ.items() if k.startswith("RUNPOD_") and v.strip()}

    for key, name in _ENV_STR.items():
        if key in present:
            out[name] = present[key].strip()
    if "reconcile_mode" in out:
        out["reconcile_mode"] = out["reconcile_mode"].lower()
    if "cloud_type" in out:
        out["cloud_type"] = out["cloud_type"].upper()
    for key, name in _ENV_INT.items():
        if key in present:
            out[name] = _parse_number(key, present[key], int)
    for key, name in _ENV_FLOAT.items():
        if key in present:
            out[name] = _parse_number(key, present[key], float)
    for key, name in _ENV_BOOL.items():
        if key in present:
            out[name] = present[key].strip().lower() in ("1", "true", "yes", "on")
    for key, name in _ENV_CSV.items():
        if key in present:
            out[name] = _split_csv(present[key])

    if "RUNPOD_POD_ENV" in present:
        try:
            pod_env = json.loads(present["RUNPOD_POD_ENV"])
        except json.JSONDecodeError:
            raise ConfigError("Invalid RUNPOD_POD_ENV: expected a JSON object") from None
        if not isinstance(pod_env, dict):
            raise ConfigError("Invalid RUNPOD_POD_ENV: expected a JSON object")
        out["env"] = {str(k): str(v) for k, v in pod_env.items()}

    return out


# =============================================================================
# TOML files
# =============================================================================


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from None


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> OrchestratorConfig:
    """Merge global TOML, project TOML and environment into one config."""
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)
    merged = _deep_merge(global_cfg, project_cfg)

    pod_section = merged.get("pod", {})
    if not isinstance(pod_section, dict):
        raise ConfigError("[pod] must be a table")

    env = env_overrides(os.environ if environ is None else environ)
    return OrchestratorConfig.from_mapping({**pod_section, **env})
