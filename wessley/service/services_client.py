"""HTTP clients for the diagnostics microservice cluster.

One client per service:

- semantic (vector search and documentation)
- ingestion (PDF and schematic processing jobs)
- graph (electrical knowledge graph)
- learning (symptom to cause prediction)
- model3d (3D scene generation)

Every client speaks JSON over ``httpx.AsyncClient``. Non-2xx answers become
``UpstreamServiceError``; timeouts surface as 504 and unreachable hosts as 503
so route handlers can map them without inspecting httpx exceptions.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from wessley.logging import get_logger
from wessley.service.errors import UpstreamServiceError

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
INGESTION_TIMEOUT = 120.0
HEALTH_TIMEOUT = 5.0
MODEL_3D_TIMEOUT = 60.0


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class ServiceClient:
    """Shared request plumbing for the cluster clients."""

    service = "service"
    health_path = "/health"

    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
        )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> httpx.Response:
        try:
            async with self._client(timeout) as client:
                return await client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            logger.warning(
                "upstream_timeout", service=self.service, path=path, timeout=timeout
            )
            raise UpstreamServiceError(
                f"{self.service} service timeout", 504, self.service, "timeout"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "upstream_unreachable",
                service=self.service,
                path=path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise UpstreamServiceError(
                f"{self.service} service unavailable",
                503,
                self.service,
                "service_unavailable",
            ) from exc

    def _raise_for_status(self, response: httpx.Response, default_message: str) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = {"detail": response.reason_phrase}
        if not isinstance(body, dict):
            body = {}
        logger.warning(
            "upstream_error_response",
            service=self.service,
            status_code=response.status_code,
            error_code=body.get("error"),
        )
        raise UpstreamServiceError(
            body.get("detail") or default_message,
            response.status_code,
            self.service,
            body.get("error"),
        )

    async def _request(
        self,
        method: str,
        path: str,
        default_message: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> Any:
        response = await self._send(method, path, json=json, params=params, timeout=timeout)
        self._raise_for_status(response, default_message)
        return response.json()

    async def _probe(self, path: str) -> bool:
        try:
            response = await self._send("GET", path, timeout=HEALTH_TIMEOUT)
        except UpstreamServiceError:
            return False
        return response.is_success

    async def health(self) -> bool:
        return await self._probe(self.health_path)


class SemanticClient(ServiceClient):
    service = "semantic"
    health_path = "/search/health"

    async def search(
        self,
        query: str,
        *,
        vehicle_id: Optional[str] = None,
        collection: Optional[str] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> dict:
        """Universal search across every collection."""
        return await self._request(
            "POST",
            "/search/universal",
            "Semantic search failed",
            json={
                "query": query,
                "vehicle_id": vehicle_id,
                "collection": collection,
                "limit": limit or 5,
                "threshold": threshold or 0.7,
            },
        )

    async def search_components(
        self, query: str, *, component_types: Optional[list] = None, limit: Optional[int] = None
    ) -> dict:
        return await self._request(
            "POST",
            "/search/components",
            "Component search failed",
            json={"query": query, "component_types": component_types, "limit": limit or 5},
        )

    async def search_documentation(
        self,
        query: str,
        *,
        vehicle_id: Optional[str] = None,
        source: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> dict:
        return await self._request(
            "POST",
            "/search/documentation",
            "Documentation search failed",
            json={
                "query": query,
                "vehicle_id": vehicle_id,
                "source": source,
                "limit": limit or 5,
            },
        )

    async def enhance_chat(
        self,
        query: str,
        *,
        vehicle_id: Optional[str] = None,
        conversation_history: Optional[list] = None,
        max_tokens: Optional[int] = None,
    ) -> dict:
        return await self._request(
            "POST",
            "/search/chat/enhance",
            "Chat enhancement failed",
            json={
                "query": query,
                "vehicle_id": vehicle_id,
                "conversation_history": conversation_history,
                "max_tokens": max_tokens or 2000,
            },
        )

    async def get_recommendations(self, component_id: str) -> list:
        return await self._request(
            "GET",
            f"/search/recommendations/{_segment(component_id)}",
            "Failed to get recommendations",
        )


class IngestionClient(ServiceClient):
    service = "ingestion"
    health_path = "/healthz"

    async def create_job(
        self,
        *,
        file_name: str,
        file_type: str,
        file_url: Optional[str] = None,
        file_content: Optional[str] = None,
        vehicle_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        response = await self._send(
            "POST",
            "/v1/ingestions",
            json={
                "file_url": file_url,
                "file_content": file_content,
                "file_name": file_name,
                "file_type": file_type,
                "vehicle_id": vehicle_id,
                "metadata": metadata,
            },
            timeout=INGESTION_TIMEOUT,
        )
        if response.status_code == 413:
            raise UpstreamServiceError(
                "File too large. Maximum size is 50MB.", 413, self.service, "file_too_large"
            )
        if response.status_code == 415:
            raise UpstreamServiceError(
                "Unsupported file type.", 415, self.service, "unsupported_type"
            )
        self._raise_for_status(response, "Failed to create ingestion job")
        return response.json()

    async def get_job(self, job_id: str) -> dict:
        response = await self._send("GET", f"/v1/ingestions/{_segment(job_id)}")
        if response.status_code == 404:
            raise UpstreamServiceError(
                "Ingestion job not found", 404, self.service, "not_found"
            )
        self._raise_for_status(response, "Failed to get ingestion job")
        return response.json()

    async def run_benchmark(self) -> dict:
        return await self._request(
            "POST", "/v1/benchmarks/run", "Benchmark failed", timeout=INGESTION_TIMEOUT
        )

    async def readiness(self) -> bool:
        return await self._probe("/readyz")


class GraphClient(ServiceClient):
    service = "graph"

    async def get_vehicle_systems(self, vehicle_signature: str) -> list:
        return await self._request(
            "GET",
            f"/vehicles/{_segment(vehicle_signature)}/systems",
            "Failed to get vehicle systems",
        )

    async def get_system_components(self, vehicle_signature: str, system_name: str) -> list:
        return await self._request(
            "GET",
            f"/vehicles/{_segment(vehicle_signature)}/systems/{_segment(system_name)}/components",
            "Failed to get system components",
        )

    async def get_related_components(
        self, vehicle_signature: str, component_id: str, depth: Optional[int] = None
    ) -> dict:
        """Return ``{component, related, connections}`` around ``component_id``."""
        return await self._request(
            "GET",
            f"/vehicles/{_segment(vehicle_signature)}/components/{_segment(component_id)}/related",
            "Failed to get related components",
            params={"depth": depth} if depth else None,
        )

    async def find_path(
        self, vehicle_signature: str, from_component: str, to_component: str
    ) -> Optional[dict]:
        response = await self._send(
            "POST",
            f"/vehicles/{_segment(vehicle_signature)}/paths",
            json={"from_component": from_component, "to_component": to_component},
        )
        # 404 means no path between the two components
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "Failed to find path")
        return response.json()


class LearningClient(ServiceClient):
    service = "learning"

    async def predict_causes(
        self, vehicle_id: str, symptom: str, context: Optional[list] = None
    ) -> dict:
        return await self._request(
            "POST",
            "/predict/causes",
            "Prediction failed",
            json={"vehicle_id": vehicle_id, "symptom": symptom, "context": context},
        )


class Model3DClient(ServiceClient):
    service = "3d-model"

    async def generate_model(
        self,
        vehicle_id: str,
        components: list,
        *,
        highlight: Optional[list] = None,
        format: Optional[str] = None,
    ) -> dict:
        return await self._request(
            "POST",
            "/generate",
            "3D model generation failed",
            json={
                "vehicle_id": vehicle_id,
                "components": components,
                "highlight": highlight,
                "format": format or "glb",
            },
            timeout=MODEL_3D_TIMEOUT,
        )

    async def get_model(self, vehicle_id: str) -> Optional[dict]:
        response = await self._send("GET", f"/models/{_segment(vehicle_id)}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "Failed to get model")
        return response.json()


class ServicesClient:
    """Bundle of the cluster clients built from settings."""

    def __init__(self, settings, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.semantic = SemanticClient(settings.semantic_service_url, transport=transport)
        self.ingestion = IngestionClient(settings.ingestion_service_url, transport=transport)
        self.graph = GraphClient(settings.graph_service_url, transport=transport)
        self.learning = LearningClient(settings.learning_service_url, transport=transport)
        self.model3d = Model3DClient(settings.model_3d_service_url, transport=transport)

    def all(self) -> Dict[str, ServiceClient]:
        return {
            "semantic": self.semantic,
            "ingestion": self.ingestion,
            "graph": self.graph,
            "learning": self.learning,
            "model3d": self.model3d,
        }


async def probe_service(client) -> dict:
    """Run one health probe and report ``{status, latency_ms, error?}``."""

    started = time.perf_counter()
    error: Optional[str] = None
    try:
        healthy = await client.health()
    except Exception as exc:
        healthy = False
        error = str(exc)
    entry: Dict[str, Any] = {
        "status": "up" if healthy else "down",
        "latency_ms": int((time.perf_counter() - started) * 1000),
    }
    if not healthy:
        entry["error"] = error or "health check failed"
    return entry


async def check_all_services_health(services: ServicesClient) -> dict:
    clients = services.all()
    results = await asyncio.gather(*(probe_service(c) for c in clients.values()))
    entries = dict(zip(clients.keys(), results))
    return {
        "overall": entries["semantic"]["status"] == "up"
        and entries["ingestion"]["status"] == "up",
        "services": entries,
    }


__all__ = [
    "DEFAULT_TIMEOUT",
    "INGESTION_TIMEOUT",
    "HEALTH_TIMEOUT",
    "MODEL_3D_TIMEOUT",
    "ServiceClient",
    "SemanticClient",
    "IngestionClient",
    "GraphClient",
    "LearningClient",
    "Model3DClient",
    "ServicesClient",
    "probe_service",
    "check_all_services_health",
]
