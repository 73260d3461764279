from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from wessley.logging import get_logger
from wessley.service.errors import NetlistifyError

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30.0
HEALTH_TIMEOUT = 5.0

# Knobs accepted by the synthetic schematic generator
GENERATE_PARAMS = (
    "min_connectors",
    "max_connectors",
    "min_wires",
    "max_wires",
    "allow_fuses",
    "allow_relays",
    "allow_splices",
    "allow_ecus",
    "allow_grounds",
    "allow_sensors",
    "allow_actuators",
    "allow_switches",
    "allow_leds",
    "allow_motors",
    "seed",
    "width",
    "height",
    "template",
)

# analyze endpoint status -> stable error code
_ANALYZE_ERRORS = {
    400: ("not_schematic", "Image does not appear to be a schematic"),
    422: ("low_confidence", "Detection confidence too low"),
    503: ("model_unavailable", "ML model temporarily unavailable"),
}


def _error_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"detail": response.reason_phrase}
    return body if isinstance(body, dict) else {}


class NetlistifyClient:
    """Client for the netlistify schematic generation and detection service."""

    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(timeout),
                transport=self._transport,
            ) as client:
                return await client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("netlistify_timeout", path=path, timeout=timeout)
            raise NetlistifyError("Netlistify service timeout", 504, "timeout") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "netlistify_unreachable",
                path=path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise NetlistifyError(
                "Netlistify service unavailable", 503, "service_unavailable"
            ) from exc

    async def generate_schematic(self, params: Optional[Dict[str, Any]] = None) -> dict:
        """Generate a synthetic schematic; unset knobs use the service defaults."""

        payload = {
            key: value
            for key, value in (params or {}).items()
            if key in GENERATE_PARAMS and value is not None
        }
        response = await self._send("POST", "/api/generate-schematic", json=payload)
        if not response.is_success:
            error = _error_body(response)
            raise NetlistifyError(
                error.get("detail") or "Failed to generate schematic",
                response.status_code,
                error.get("error"),
            )
        return response.json()

    async def get_schematic_svg(
        self,
        *,
        seed: Optional[int] = None,
        template: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> str:
        params: Dict[str, Any] = {}
        if seed is not None:
            params["seed"] = seed
        if template:
            params["template"] = template
        if width:
            params["width"] = width
        if height:
            params["height"] = height
        response = await self._send(
            "GET", "/api/generate-schematic/svg", params=params or None
        )
        if not response.is_success:
            raise NetlistifyError("Failed to generate SVG", response.status_code)
        return response.text

    async def get_templates(self) -> List[dict]:
        response = await self._send("GET", "/api/templates")
        if not response.is_success:
            raise NetlistifyError("Failed to fetch templates", response.status_code)
        return response.json().get("templates", [])

    async def health_check(self) -> bool:
        try:
            response = await self._send("GET", "/health", timeout=HEALTH_TIMEOUT)
        except NetlistifyError:
            return False
        return response.is_success

    async def health(self) -> bool:
        return await self.health_check()

    async def analyze_image(self, image: str) -> dict:
        """Run component detection over a base64 encoded image."""

        response = await self._send("POST", "/api/analyze", json={"image": image})
        if response.is_success:
            return response.json()
        error = _error_body(response)
        if response.status_code in _ANALYZE_ERRORS:
            code, default_message = _ANALYZE_ERRORS[response.status_code]
            raise NetlistifyError(
                error.get("message") or default_message, response.status_code, code
            )
        raise NetlistifyError(
            error.get("detail") or "Analysis failed",
            response.status_code,
            error.get("error"),
        )
