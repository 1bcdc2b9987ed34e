import logging
from typing import NamedTuple, Optional

import httpx

from control_plane.errors import FunctionNotFoundError, ReplicaQueryError

logger = logging.getLogger(__name__)

# --- Configuration ---
# Label set on a function deployment to request more than one replica on scale-up
MIN_REPLICAS_LABEL = "com.openfaas.scale.min"

# --- Type Definitions ---
class ReplicaObservation(NamedTuple):
    """Point-in-time replica counts read from the control plane."""
    available_replicas: int
    min_replicas: int


class ServiceQuery:
    """
    Base interface for reading and changing a function's replica count.
    The gateway only ever talks to the orchestrator through this capability.
    """
    async def get_replicas(self, function_name: str) -> ReplicaObservation:
        """Returns the current observation. Raises ReplicaQueryError on failure."""
        raise NotImplementedError

    async def set_replicas(self, function_name: str, replicas: int) -> None:
        """Requests `replicas` instances. Raises ReplicaQueryError on failure."""
        raise NotImplementedError


def _parse_min_replicas(labels) -> int:
    if labels is None:
        return 0
    if not isinstance(labels, dict):
        logger.warning(f"Ignoring labels that are not a mapping: {labels!r}")
        return 0
    raw = labels.get(MIN_REPLICAS_LABEL)
    if raw is None:
        return 0
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid {MIN_REPLICAS_LABEL} label value: {raw!r}")
        return 0
    return max(value, 0)


class ProviderServiceQuery(ServiceQuery):
    """
    ServiceQuery backed by the FaaS provider's HTTP API.

    GET  /system/function/{name}        -> {"availableReplicas": N, "labels": {...}}
    POST /system/scale-function/{name}  <- {"serviceName": name, "replicas": N}
    """
    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def get_replicas(self, function_name: str) -> ReplicaObservation:
        url = f"{self.base_url}/system/function/{function_name}"
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise ReplicaQueryError(function_name, f"unable to query function [{function_name}]: {e}") from e

        if response.status_code == 404:
            raise FunctionNotFoundError(function_name, f"function [{function_name}] not found")
        if response.status_code >= 400:
            raise ReplicaQueryError(
                function_name,
                f"unable to query function [{function_name}], status: {response.status_code}, body: {response.text}"
            )

        try:
            payload = response.json()
            available = int(payload.get("availableReplicas") or 0)
            min_replicas = _parse_min_replicas(payload.get("labels"))
        except (ValueError, TypeError, AttributeError) as e:
            raise ReplicaQueryError(function_name, f"invalid status for function [{function_name}]: {e}") from e

        return ReplicaObservation(available_replicas=max(available, 0), min_replicas=min_replicas)

    async def set_replicas(self, function_name: str, replicas: int) -> None:
        url = f"{self.base_url}/system/scale-function/{function_name}"
        try:
            response = await self.client.post(url, json={"serviceName": function_name, "replicas": replicas})
        except httpx.HTTPError as e:
            raise ReplicaQueryError(function_name, f"unable to scale function [{function_name}]: {e}") from e

        if response.status_code >= 400:
            raise ReplicaQueryError(
                function_name,
                f"unable to scale function [{function_name}], status: {response.status_code}, body: {response.text}"
            )

    async def close(self):
        """Closes the HTTP client if this query created it."""
        if self._owns_client:
            await self.client.aclose()
