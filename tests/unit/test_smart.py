"""Unit tests for SMART bearer client and auth context construction."""

import httpx
import pytest

from medstock.core.settings import EnvSettings
from medstock.fhir.errors import FHIRRequestError
from medstock.fhir.gateway import ANONYMOUS
from medstock.fhir.smart import BearerTokenClient, build_auth_context


@pytest.fixture
def bearer(transport):
    http = httpx.AsyncClient(base_url="https://smart.test/fhir/", transport=httpx.MockTransport(transport.handle))
    return BearerTokenClient("https://smart.test/fhir", "tok-123", http_client=http)


class TestBearerTokenClient:
    """Tests for BearerTokenClient.request."""

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, bearer, transport):
        transport.responder = lambda request: httpx.Response(200, json={"id": "1"})

        result = await bearer.request("/Device/1")

        assert result == {"id": "1"}
        assert transport.last.headers["Authorization"] == "Bearer tok-123"
        assert transport.last.url.path == "/fhir/Device/1"

    @pytest.mark.asyncio
    async def test_caller_headers_merged(self, bearer, transport):
        await bearer.request("Device", method="POST", headers={"Content-Type": "application/fhir+json"}, body="{}")

        assert transport.last.method == "POST"
        assert transport.last.headers["Content-Type"] == "application/fhir+json"
        assert transport.last.headers["Authorization"] == "Bearer tok-123"

    @pytest.mark.asyncio
    async def test_no_content(self, bearer, transport):
        transport.responder = lambda request: httpx.Response(204)

        assert await bearer.request("Device/1", method="DELETE") is None

    @pytest.mark.asyncio
    async def test_error_status(self, bearer, transport):
        transport.responder = lambda request: httpx.Response(401, text="expired")

        with pytest.raises(FHIRRequestError) as exc_info:
            await bearer.request("Device/1")

        assert exc_info.value.status_code == 401
        assert exc_info.value.operation == "SMART GET"


class TestBuildAuthContext:
    """Tests for build_auth_context."""

    def test_no_token_is_anonymous(self):
        env = EnvSettings(smart_access_token="")

        assert build_auth_context(env) is ANONYMOUS

    @pytest.mark.asyncio
    async def test_token_builds_authenticated_context(self):
        env = EnvSettings(
            smart_access_token="tok",
            smart_server_url="https://smart.test/fhir/",
            smart_patient_id="pat-9",
        )

        auth = build_auth_context(env)
        try:
            assert auth.authenticated
            assert isinstance(auth.client, BearerTokenClient)
            assert auth.patient_id == "pat-9"
            assert auth.server_url == "https://smart.test/fhir/"
            assert auth.client.server_url == "https://smart.test/fhir"
        finally:
            await auth.client.aclose()

    @pytest.mark.asyncio
    async def test_server_defaults_to_store_url(self):
        env = EnvSettings(smart_access_token="tok", smart_server_url="", fhir_base_url="https://store.test/r4")

        auth = build_auth_context(env)
        try:
            assert auth.server_url == "https://store.test/r4"
            assert auth.patient_id is None
        finally:
            await auth.client.aclose()
