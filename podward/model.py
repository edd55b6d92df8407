"""Domain model: desired pods, observed pods, and persisted state."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal, TypeAlias

from podward.errors import ConfigError

PortProtocol: TypeAlias = Literal["tcp", "http"]
ReconcileMode: TypeAlias = Literal["reuse", "recreate"]
CloudType: TypeAlias = Literal["SECURE", "COMMUNITY"]


class PodStatus(StrEnum):
    """Observed lifecycle status of a pod."""

    PROVISIONING = "provisioning"
    RUNNING = "running"
    STOPPED = "stopped"
    EXITED = "exited"
    TERMINATED = "terminated"

    @classmethod
    def from_provider(cls, desired_status: str | None) -> PodStatus:
        """Map RunPod's ``desiredStatus`` (RUNNING, EXITED, ...) onto PodStatus.

        Anything the provider reports that we do not know (CREATED, missing)
        is still on its way up.
        """
        match (desired_status or "").upper():
            case "RUNNING":
                return cls.RUNNING
            case "EXITED":
                return cls.EXITED
            case "STOPPED":
                return cls.STOPPED
            case "TERMINATED":
                return cls.TERMINATED
            case _:
                return cls.PROVISIONING

    @property
    def is_terminal(self) -> bool:
        return self is PodStatus.TERMINATED


@dataclass(frozen=True, slots=True)
class PortSpec:
    """An exposed container port, rendered by RunPod as ``"22/tcp"``."""

    port: int
    protocol: PortProtocol = "tcp"

    @classmethod
    def parse(cls, raw: str) -> PortSpec:
        port_str, _, proto = raw.strip().partition("/")
        proto = (proto or "tcp").lower()
        if proto not in ("tcp", "http"):
            raise ConfigError(f"Invalid port protocol in {raw!r}: expected tcp or http")
        try:
            port = int(port_str)
        except ValueError:
            raise ConfigError(f"Invalid port in {raw!r}: expected an integer") from None
        if not 0 < port < 65536:
            raise ConfigError(f"Invalid port in {raw!r}: out of range")
        return cls(port=port, protocol=proto)  # type: ignore[arg-type]

    def __str__(self) -> str:
        return f"{self.port}/{self.protocol}"


@dataclass(frozen=True, slots=True)
class PodSpec:
    """Desired state of a pod. ``name`` is the only identity used for reuse."""

    name: str
    image: str
    gpu_type_ids: tuple[str, ...]
    gpu_count: int = 1
    container_disk_gb: int = 50
    volume_gb: int | None = None
    volume_mount_path: str | None = None
    ports: tuple[PortSpec, ...] = (PortSpec(22, "tcp"),)
    cloud_type: CloudType = "SECURE"
    env: Mapping[str, str] = field(default_factory=dict)
    network_volume_id: str | None = None
    start_ssh: bool = True
    start_jupyter: bool = False

    @property
    def internal_ports(self) -> frozenset[int]:
        return frozenset(p.port for p in self.ports)


@dataclass(frozen=True, slots=True)
class PodRecord:
    """A pod as observed on the provider and persisted by the state store."""

    id: str
    name: str
    image: str
    status: PodStatus
    public_ip: str | None = None
    port_mappings: Mapping[int, int] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def endpoint(self, internal_port: int) -> tuple[str, int] | None:
        """Externally reachable ``(host, port)`` for an internal port, if mapped."""
        external = self.port_mappings.get(internal_port)
        if external is None or not self.public_ip:
            return None
        return self.public_ip, external

    def has_ports(self, internal_ports: frozenset[int]) -> bool:
        return internal_ports.issubset(self.port_mappings)


@dataclass(frozen=True, slots=True)
class GpuType:
    """A GPU type offered by the provider. Used for discovery only."""

    id: str
    display_name: str
    available_count: int = 0
    memory_gb: int = 0
    secure_cloud: bool = False
    community_cloud: bool = False


@dataclass(frozen=True, slots=True)
class ResolvedPod:
    """A ready pod plus convenience accessors for its endpoints."""

    record: PodRecord
    ssh_port: int = 22
    http_port: int | None = 8888

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def public_ip(self) -> str | None:
        return self.record.public_ip

    @property
    def status(self) -> PodStatus:
        return self.record.status

    def tcp_endpoint(self, internal_port: int) -> tuple[str, int] | None:
        return self.record.endpoint(internal_port)

    def http_endpoint(self, internal_port: int) -> str | None:
        match self.record.endpoint(internal_port):
            case (host, port):
                return f"http://{host}:{port}"
            case _:
                return None

    def ssh_endpoint(self) -> tuple[str, int] | None:
        return self.tcp_endpoint(self.ssh_port)

    def browser_url(self) -> str | None:
        if self.http_port is None:
            return None
        return self.http_endpoint(self.http_port)


@dataclass(eq=True)
class PersistedState:
    """Mapping of logical name to the last known PodRecord.

    At most one record per name. Records are overwritten, never merged and
    never removed automatically.
    """

    pods: dict[str, PodRecord] = field(default_factory=dict)

    def get(self, name: str) -> PodRecord | None:
        return self.pods.get(name)

    def names(self) -> list[str]:
        return sorted(self.pods)

    def put(self, record: PodRecord) -> PodRecord:
        self.pods[record.name] = record
        return record

    def record_pod(
        self,
        id: str,  # noqa: A002
        name: str,
        image: str,
        *,
        status: PodStatus = PodStatus.PROVISIONING,
        public_ip: str | None = None,
        port_mappings: Mapping[int, int] | None = None,
        created_at: datetime | None = None,
    ) -> PodRecord:
        """Insert or overwrite the entry for ``name`` (last write wins)."""
        record = PodRecord(
            id=id,
            name=name,
            image=image,
            status=status,
            public_ip=public_ip,
            port_mappings=dict(port_mappings or {}),
            created_at=created_at or datetime.now(UTC),
        )
        return self.put(record)

    def __contains__(self, name: object) -> bool:
        return name in self.pods

    def __len__(self) -> int:
        return len(self.pods)

    def __iter__(self) -> Iterator[PodRecord]:
        return iter(self.pods.values())
