"""Tests for the netlistify client and the /api/netlistify routes."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from wessley.service.errors import NetlistifyError
from wessley.service.netlistify import NetlistifyClient
from wessley.service.runtime import get_runtime
from wessley.storage.models import DEMO_WORKSPACE_ID


def _client(handler):
    return NetlistifyClient("http://netlistify.test", transport=httpx.MockTransport(handler))


class TestNetlistifyClient:
    """Request shaping and error mapping against a mock transport."""

    async def test_generate_strips_unknown_and_none_params(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"schematic": {"id": "s1"}})

        result = await _client(handler).generate_schematic(
            {"seed": 7, "template": None, "max_wires": 12, "bogus": True}
        )

        assert result == {"schematic": {"id": "s1"}}
        assert seen["path"] == "/api/generate-schematic"
        assert seen["body"] == {"seed": 7, "max_wires": 12}

    async def test_generate_error_uses_detail(self):
        def handler(request):
            return httpx.Response(422, json={"detail": "bad template", "error": "invalid_template"})

        with pytest.raises(NetlistifyError) as exc_info:
            await _client(handler).generate_schematic({})
        assert exc_info.value.status_code == 422
        assert exc_info.value.error_code == "invalid_template"
        assert exc_info.value.message == "bad template"

    async def test_svg_passes_query_params(self):
        def handler(request):
            assert request.url.path == "/api/generate-schematic/svg"
            assert dict(request.url.params) == {"seed": "3", "width": "800"}
            return httpx.Response(200, text="<svg/>")

        assert await _client(handler).get_schematic_svg(seed=3, width=800) == "<svg/>"

    async def test_templates(self):
        def handler(request):
            return httpx.Response(200, json={"templates": [{"name": "basic"}]})

        assert await _client(handler).get_templates() == [{"name": "basic"}]

    @pytest.mark.parametrize(
        "status,code",
        [(400, "not_schematic"), (422, "low_confidence"), (503, "model_unavailable")],
    )
    async def test_analyze_error_codes(self, status, code):
        def handler(request):
            return httpx.Response(status, json={})

        with pytest.raises(NetlistifyError) as exc_info:
            await _client(handler).analyze_image("aGVsbG8=")
        assert exc_info.value.status_code == status
        assert exc_info.value.error_code == code

    async def test_unreachable_service(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetlistifyError) as exc_info:
            await _client(handler).get_templates()
        assert exc_info.value.status_code == 503
        assert exc_info.value.error_code == "service_unavailable"

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(NetlistifyError) as exc_info:
            await _client(handler).get_templates()
        assert exc_info.value.status_code == 504
        assert exc_info.value.is_timeout

    async def test_health_check_swallows_connection_errors(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await _client(handler).health_check() is False


class TestNetlistifyPost:
    """POST /api/netlistify."""

    def test_requires_auth(self, client):
        response = client.post("/api/netlistify", json={"action": "templates"})
        assert response.status_code == 401

    def test_requires_subscription(self, client, free_user):
        response = client.post("/api/netlistify", json={"action": "templates"}, headers=free_user)
        assert response.status_code == 402

    def test_demo_workspace_generate(self, client):
        generate = AsyncMock(return_value={"schematic": {"id": "s1"}})
        with patch.object(get_runtime().netlistify, "generate_schematic", generate):
            response = client.post(
                "/api/netlistify",
                json={"action": "generate", "workspaceId": DEMO_WORKSPACE_ID, "seed": 42},
            )
        assert response.status_code == 200
        assert response.json() == {"schematic": {"id": "s1"}}
        generate.assert_awaited_once_with({"seed": 42})

    def test_analyze_requires_image(self, client, subscriber):
        response = client.post("/api/netlistify", json={"action": "analyze"}, headers=subscriber)
        assert response.status_code == 400
        assert response.json()["message"] == "Image required for analysis"

    def test_analyze_error_passes_through(self, client, subscriber):
        error = NetlistifyError("Detection confidence too low", 422, "low_confidence")
        with patch.object(get_runtime().netlistify, "analyze_image", AsyncMock(side_effect=error)):
            response = client.post(
                "/api/netlistify", json={"action": "analyze", "image": "aGk="}, headers=subscriber
            )
        assert response.status_code == 422
        assert response.json()["error"] == "low_confidence"

    def test_error_without_code(self, client, subscriber):
        error = NetlistifyError("Failed to generate schematic", 500)
        with patch.object(get_runtime().netlistify, "generate_schematic", AsyncMock(side_effect=error)):
            response = client.post("/api/netlistify", json={"action": "generate"}, headers=subscriber)
        assert response.status_code == 500
        assert response.json()["error"] == "netlistify_error"

    def test_templates_and_health(self, client, subscriber):
        netlistify = get_runtime().netlistify
        with patch.object(
            netlistify, "get_templates", AsyncMock(return_value=[{"name": "basic"}])
        ), patch.object(netlistify, "health_check", AsyncMock(return_value=True)):
            templates = client.post("/api/netlistify", json={"action": "templates"}, headers=subscriber)
            health = client.post("/api/netlistify", json={"action": "health"}, headers=subscriber)
        assert templates.json() == {"templates": [{"name": "basic"}]}
        assert health.json() == {"healthy": True, "service": "netlistify"}

    def test_invalid_action(self, client, subscriber):
        response = client.post("/api/netlistify", json={"action": "explode"}, headers=subscriber)
        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid action")


class TestNetlistifyGet:
    """GET /api/netlistify."""

    def test_status_is_default(self, client):
        with patch.object(get_runtime().netlistify, "health_check", AsyncMock(return_value=True)):
            response = client.get("/api/netlistify")
        assert response.json() == {"service": "netlistify", "healthy": True, "version": "1.0.0"}

    def test_unknown_action(self, client):
        assert client.get("/api/netlistify", params={"action": "nope"}).status_code == 400

    def test_templates_failure_is_503(self, client):
        error = NetlistifyError("Netlistify service unavailable", 503, "service_unavailable")
        with patch.object(get_runtime().netlistify, "get_templates", AsyncMock(side_effect=error)):
            response = client.get("/api/netlistify", params={"action": "templates"})
        assert response.status_code == 503
        assert response.json()["healthy"] is False
        assert response.json()["service"] == "netlistify"
