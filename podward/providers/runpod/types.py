"""RunPod API payloads and their conversion into podward's model."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, NotRequired, TypedDict

from podward.errors import ProviderError
from podward.model import GpuType, PodRecord, PodSpec, PodStatus

# =============================================================================
# Response Types
# =============================================================================


class PodResponse(TypedDict):
    """Pod from the REST API (``GET /pods/{id}``, ``POST /pods``)."""

    id: str
    name: NotRequired[str]
    desiredStatus: NotRequired[str]  # RUNNING, EXITED, TERMINATED
    imageName: NotRequired[str]
    publicIp: NotRequired[str | None]
    portMappings: NotRequired[dict[str, int] | None]  # {"22": 40001}
    createdAt: NotRequired[str]
    costPerHr: NotRequired[float]
    gpuCount: NotRequired[int]


class PodCreateParams(TypedDict, total=False):
    """Body of ``POST /pods``."""

    name: str
    imageName: str
    cloudType: str
    computeType: str
    gpuTypeIds: list[str]
    gpuCount: int
    containerDiskInGb: int
    volumeInGb: int
    volumeMountPath: str
    ports: list[str]
    env: dict[str, str]
    networkVolumeId: str
    startSsh: bool
    startJupyter: bool


class LowestPrice(TypedDict, total=False):
    minimumBidPrice: float | None
    uninterruptablePrice: float | None
    stockStatus: str | None
    totalCount: int | None
    rentedCount: int | None


class GpuTypeResponse(TypedDict):
    """GPU type from the GraphQL ``gpuTypes`` query."""

    id: str
    displayName: str
    memoryInGb: NotRequired[int]
    secureCloud: NotRequired[bool]
    communityCloud: NotRequired[bool]
    lowestPrice: NotRequired[LowestPrice | None]


# =============================================================================
# Conversions
# =============================================================================


def create_params(spec: PodSpec) -> PodCreateParams:
    params: PodCreateParams = {
        "name": spec.name,
        "imageName": spec.image,
        "cloudType": spec.cloud_type,
        "computeType": "GPU",
        "gpuTypeIds": list(spec.gpu_type_ids),
        "gpuCount": spec.gpu_count,
        "containerDiskInGb": spec.container_disk_gb,
        "ports": [str(p) for p in spec.ports],
        "env": dict(spec.env),
        "startSsh": spec.start_ssh,
        "startJupyter": spec.start_jupyter,
    }
    if spec.volume_gb is not None:
        params["volumeInGb"] = spec.volume_gb
    if spec.volume_mount_path:
        params["volumeMountPath"] = spec.volume_mount_path
    if spec.network_volume_id:
        params["networkVolumeId"] = spec.network_volume_id
    return params


def _parse_port_mappings(raw: Any) -> dict[int, int]:
    if not isinstance(raw, dict):
        return {}
    mappings: dict[int, int] = {}
    for internal, external in raw.items():
        try:
            mappings[int(internal)] = int(external)
        except (TypeError, ValueError):
            continue
    return mappings


def _parse_created_at(raw: str | None) -> datetime:
    if raw:
        # RunPod emits "2024-05-01 12:00:00.000 +0000 UTC" as well as ISO-8601
        cleaned = raw.removesuffix(" UTC").strip()
        for fmt in ("%Y-%m-%d %H:%M:%S.%f %z", "%Y-%m-%d %H:%M:%S %z"):
            try:
                return datetime.strptime(cleaned, fmt).astimezone(UTC)
            except ValueError:
                pass
        try:
            parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
        except ValueError:
            pass
    return datetime.now(UTC)


def to_pod_record(pod: PodResponse | Any, *, fallback: PodSpec | None = None) -> PodRecord:
    """Convert a REST pod payload into a PodRecord.

    RunPod sets ``desiredStatus`` to RUNNING as soon as a pod is accepted, so
    a RUNNING pod without a public IP is reported as still provisioning.
    """
    if not isinstance(pod, dict) or not pod.get("id"):
        raise ProviderError(f"Malformed pod payload: {str(pod)[:200]}")

    public_ip = pod.get("publicIp") or None
    status = PodStatus.from_provider(pod.get("desiredStatus"))
    if status is PodStatus.RUNNING and not public_ip:
        status = PodStatus.PROVISIONING

    return PodRecord(
        id=pod["id"],
        name=pod.get("name") or (fallback.name if fallback else ""),
        image=pod.get("imageName") or (fallback.image if fallback else ""),
        status=status,
        public_ip=public_ip,
        port_mappings=_parse_port_mappings(pod.get("portMappings")),
        created_at=_parse_created_at(pod.get("createdAt")),
    )


def to_gpu_type(raw: GpuTypeResponse) -> GpuType:
    price = raw.get("lowestPrice") or {}
    total = price.get("totalCount") or 0
    rented = price.get("rentedCount") or 0
    return GpuType(
        id=raw["id"],
        display_name=raw.get("displayName") or raw["id"],
        available_count=max(total - rented, 0),
        memory_gb=raw.get("memoryInGb") or 0,
        secure_cloud=bool(raw.get("secureCloud")),
        community_cloud=bool(raw.get("communityCloud")),
    )
