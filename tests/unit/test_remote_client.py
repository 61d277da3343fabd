"""
Tests for RemoteClient.

Requests are served by an httpx.MockTransport; no real network calls are made.
"""
import json

import httpx
import pytest

from crmsync.errors import ConfigurationError, RemoteAPIError
from crmsync.remote.client import RemoteClient


def make_client(handler, base_url="https://crm.example.com/api/", token="secret", group="42"):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteClient(base_url, token, group, http=http)


class TestEnsureConfigured:
    def test_complete_config_passes(self):
        RemoteClient("https://crm.example.com", "t", "1").ensure_configured()

    def test_missing_values_listed(self):
        client = RemoteClient("", "", "1")
        with pytest.raises(ConfigurationError) as exc_info:
            client.ensure_configured()
        message = str(exc_info.value)
        assert "REMOTE_BASE_URL" in message
        assert "REMOTE_API_TOKEN" in message
        assert "REMOTE_GROUP_ID" not in message

    def test_from_settings(self, settings):
        client = RemoteClient.from_settings(settings)
        assert client.base_url == "https://crm.example.com/api"
        assert client.api_token == "token"
        assert client.group_id == "42"


class TestRequests:
    @pytest.mark.asyncio
    async def test_auth_params_on_every_request(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"id": 1}])

        async with make_client(handler) as client:
            body = await client.get_funnels()

        assert body == [{"id": 1}]
        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/api/crm"
        assert request.url.params["apitoken"] == "secret"
        assert request.url.params["i"] == "42"

    @pytest.mark.asyncio
    async def test_funnel_columns_query(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"colunas": []})

        async with make_client(handler) as client:
            await client.get_funnel_columns(3)

        assert seen[0].url.path == "/api/crmfastloadv2"
        assert seen[0].url.params["id"] == "3"

    @pytest.mark.asyncio
    async def test_opportunities_page_payload(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": [], "total": 0})

        async with make_client(handler) as client:
            await client.get_opportunities_page(
                3, 11, page=2, limit=100, status_filter=["open", "gain", "lost"]
            )

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/api/crm/opportunities/3"
        payload = json.loads(request.content)
        assert payload["page"] == 2
        assert payload["limit"] == 100
        assert payload["columnId"] == 11
        assert payload["filterByStatus"] == ["open", "gain", "lost"]
        assert payload["onlyArchived"] is False

    @pytest.mark.asyncio
    async def test_users_exclude_blocked(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[])

        async with make_client(handler) as client:
            await client.get_users()

        assert seen[0].url.path == "/api/user"
        assert seen[0].url.params["noblock"] == "1"

    @pytest.mark.asyncio
    async def test_flat_endpoints(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json=[])

        async with make_client(handler) as client:
            await client.get_loss_reasons()
            await client.get_departments()

        assert paths == ["/api/crmlossreason", "/api/departament"]


class TestErrors:
    @pytest.mark.asyncio
    async def test_non_success_status(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        async with make_client(handler) as client:
            with pytest.raises(RemoteAPIError) as exc_info:
                await client.get_funnels()

        assert exc_info.value.status_code == 500
        assert "boom" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(RemoteAPIError) as exc_info:
                await client.get_funnels()

        assert exc_info.value.status_code is None
        assert "ConnectError" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_undecodable_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>maintenance</html>")

        async with make_client(handler) as client:
            with pytest.raises(RemoteAPIError):
                await client.get_loss_reasons()

    @pytest.mark.asyncio
    async def test_token_never_in_error_message(self):
        def handler(request):
            return httpx.Response(403, text="forbidden")

        async with make_client(handler, token="super-secret-token") as client:
            with pytest.raises(RemoteAPIError) as exc_info:
                await client.get_users()

        assert "super-secret-token" not in str(exc_info.value)
