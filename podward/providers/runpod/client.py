"""Async HTTP client for the RunPod REST and GraphQL APIs."""

from __future__ import annotations

import os
import tomllib
from typing import TYPE_CHECKING, Any

from podward.errors import ConfigError, ProviderError, TransportError
from podward.infra.http import BearerAuth, HttpClient, HttpError
from podward.model import GpuType, PodRecord, PodSpec, PodStatus
from podward.observability.logger import logger
from podward.retry import on_status_code, retry

from .types import GpuTypeResponse, PodResponse, create_params, to_gpu_type, to_pod_record

if TYPE_CHECKING:
    from podward.config import OrchestratorConfig

RUNPOD_API_BASE = "https://rest.runpod.io/v1"
RUNPOD_GRAPHQL_URL = "https://api.runpod.io/graphql"

# Statuses worth another attempt; everything else is the provider saying no.
TRANSIENT_STATUSES = frozenset({0, 408, 425, 429, 500, 502, 503, 504})

GPU_TYPES_QUERY = """
query GpuTypes {
  gpuTypes {
    id
    displayName
    memoryInGb
    secureCloud
    communityCloud
    lowestPrice(input: { gpuCount: 1 }) {
      minimumBidPrice
      uninterruptablePrice
      stockStatus
      totalCount
      rentedCount
    }
  }
}
"""


def translate_http_error(e: HttpError, what: str) -> TransportError | ProviderError:
    if e.status in TRANSIENT_STATUSES:
        return TransportError(f"{what} failed: {e}", status=e.status)
    return ProviderError(f"{what} rejected: {e}", status=e.status)


class RunPodClient:
    """RunPod implementation of :class:`podward.protocols.PodTransport`.

    Pods are managed over REST; GPU type discovery only exists on GraphQL.

    Example:
        async with RunPodClient(api_key="...") as client:
            pod = await client.create_pod(spec)
    """

    def __init__(
        self,
        api_key: str,
        *,
        rest_url: str = RUNPOD_API_BASE,
        graphql_url: str = RUNPOD_GRAPHQL_URL,
        timeout: float = 30,
    ) -> None:
        self._log = logger.bind(provider="runpod", component="client")
        headers = {"Content-Type": "application/json"}
        self._rest = HttpClient(rest_url, BearerAuth(api_key), timeout=timeout, default_headers=headers)
        self._graphql_http = HttpClient(
            graphql_url, BearerAuth(api_key), timeout=timeout, default_headers=headers,
        )

    @classmethod
    def from_config(cls, config: OrchestratorConfig) -> RunPodClient:
        return cls(
            get_api_key(config.api_key),
            rest_url=config.rest_url,
            graphql_url=config.graphql_url,
            timeout=config.http_timeout,
        )

    async def __aenter__(self) -> RunPodClient:
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._rest.close()
        await self._graphql_http.close()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            return await self._rest.request(method, path, json=json)
        except HttpError as e:
            self._log.warning(
                "API error {method} {path}: {status}",
                method=method, path=path, status=e.status,
            )
            raise translate_http_error(e, f"{method} {path}") from e

    # =========================================================================
    # Pod Management (REST)
    # =========================================================================

    # Not retried: a POST the gateway dropped may still have created the pod.
    async def create_pod(self, spec: PodSpec) -> PodRecord:
        self._log.info(
            "Creating pod {name} ({image}) on {gpus}",
            name=spec.name, image=spec.image, gpus=", ".join(spec.gpu_type_ids),
        )
        result: PodResponse | None = await self._request(
            "POST", "/pods", json=dict(create_params(spec)),
        )
        if not result:
            raise ProviderError("Failed to create pod: empty response", pod_name=spec.name)
        return to_pod_record(result, fallback=spec)

    @retry(on=on_status_code(429, 503), max_attempts=3, base_delay=1.0)
    async def get_pod(self, pod_id: str) -> PodRecord | None:
        """Get pod details. Returns None if the provider answers 404."""
        try:
            result: PodResponse | None = await self._request("GET", f"/pods/{pod_id}")
        except ProviderError as e:
            if e.status == 404:
                return None
            raise
        if not result:
            return None
        return to_pod_record(result)

    @retry(on=on_status_code(429, 503), max_attempts=3, base_delay=1.0)
    async def list_pods(self) -> list[PodRecord]:
        result: list[PodResponse] | None = await self._request("GET", "/pods")
        return [to_pod_record(p) for p in result or []]

    async def set_desired_status(self, pod_id: str, status: PodStatus) -> PodRecord:
        match status:
            case PodStatus.RUNNING:
                verb = "start"
            case PodStatus.STOPPED | PodStatus.EXITED:
                verb = "stop"
            case _:
                raise ValueError(f"Cannot set desired status {status!r}; use running or stopped")

        self._log.info("Requesting {verb} for pod {pod_id}", verb=verb, pod_id=pod_id)
        result = await self._request("POST", f"/pods/{pod_id}/{verb}")
        if isinstance(result, dict) and result.get("id"):
            return to_pod_record(result)

        pod = await self.get_pod(pod_id)
        if pod is None:
            raise ProviderError(f"Pod {pod_id} not found after {verb}", status=404, pod_id=pod_id)
        return pod

    async def terminate_pod(self, pod_id: str) -> None:
        self._log.info("Terminating pod {pod_id}", pod_id=pod_id)
        await self._request("DELETE", f"/pods/{pod_id}")

    # =========================================================================
    # GraphQL API
    # =========================================================================

    async def _graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        op_name = query.strip().split("(")[0].split("{")[0].strip().split()[-1]
        self._log.debug("Executing GraphQL: {op}", op=op_name)
        try:
            data = await self._graphql_http.request(
                "POST", json={"query": query, "variables": variables or {}},
            )
        except HttpError as e:
            raise translate_http_error(e, f"GraphQL {op_name}") from e

        match data:
            case {"errors": [_, *_] as errors}:
                self._log.warning("GraphQL error in {op}: {errors}", op=op_name, errors=errors)
                messages = "; ".join(str(err.get("message", err)) for err in errors)
                raise ProviderError(f"GraphQL {op_name} failed: {messages}")
            case {"data": dict() as payload}:
                return payload
            case _:
                raise ProviderError(f"GraphQL {op_name} returned no data")

    @retry(on=on_status_code(429, 503), max_attempts=3, base_delay=1.0)
    async def list_gpu_types(self) -> list[GpuType]:
        data = await self._graphql(GPU_TYPES_QUERY)
        gpu_types: list[GpuTypeResponse] = data.get("gpuTypes") or []
        return [to_gpu_type(g) for g in gpu_types]


# =============================================================================
# Utility Functions
# =============================================================================


def _read_config_file() -> str | None:
    """Read API key from ~/.runpod/config.toml (written by ``runpod config``)."""
    config_path = os.path.expanduser("~/.runpod/config.toml")
    if not os.path.exists(config_path):
        return None
    try:
        with open(config_path, "rb") as f:
            config = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.bind(provider="runpod").warning(
            "Ignoring unreadable {path}: {err}", path=config_path, err=e,
        )
        return None
    return config.get("default", {}).get("api_key")


def get_api_key(config_key: str | None = None) -> str:
    """Resolve the RunPod API key.

    Precedence:
        1. ``config_key``
        2. ``RUNPOD_API_KEY`` environment variable
        3. ``~/.runpod/config.toml``

    Raises:
        ConfigError: If no API key is found.
    """
    api_key = config_key or os.environ.get("RUNPOD_API_KEY") or _read_config_file()
    if not api_key:
        raise ConfigError(
            "RunPod API key not found. Set RUNPOD_API_KEY, pass api_key in the "
            "configuration, or run `runpod config`."
        )
    return api_key
