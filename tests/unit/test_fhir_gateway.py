"""Unit tests for FHIR gateway module.

Anonymous-route tests drive a real httpx client over MockTransport;
authenticated-route tests assert delegation to the injected client.
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from medstock.fhir.errors import FHIRRequestError
from medstock.fhir.gateway import (
    FHIR_JSON,
    AuthContext,
    FHIRGateway,
    append_query_param,
    normalize_path,
)


# =============================================================================
# Test path helpers
# =============================================================================


class TestPathHelpers:
    """Tests for normalize_path and append_query_param."""

    def test_normalize_strips_leading_slashes(self):
        assert normalize_path("//Device/1") == "Device/1"
        assert normalize_path("Device") == "Device"

    def test_append_without_query(self):
        assert append_query_param("Device", "_ts=1") == "Device?_ts=1"

    def test_append_with_query(self):
        assert append_query_param("Device?_count=5", "_ts=1") == "Device?_count=5&_ts=1"


# =============================================================================
# Test anonymous route
# =============================================================================


class TestAnonymousRoute:
    """Tests for direct HTTP requests."""

    @pytest.mark.asyncio
    async def test_read(self, gateway, transport):
        """Test read GETs the normalized path with a FHIR Accept header."""
        transport.responder = lambda request: httpx.Response(200, json={"resourceType": "Device", "id": "1"})

        result = await gateway.read("/Device/1")

        assert result == {"resourceType": "Device", "id": "1"}
        assert transport.last.method == "GET"
        assert transport.last.url.path == "/baseR4/Device/1"
        assert transport.last.headers["Accept"] == FHIR_JSON

    @pytest.mark.asyncio
    async def test_search_appends_ts_to_existing_query(self, gateway, transport):
        """Test search joins _ts with & and disables caching."""
        with patch("medstock.fhir.gateway.time") as mock_time:
            mock_time.time.return_value = 1700000000.5

            await gateway.search("DeviceUseStatement?_count=5")

        request = transport.last
        assert request.url.path == "/baseR4/DeviceUseStatement"
        assert request.url.params["_count"] == "5"
        assert request.url.params["_ts"] == "1700000000500"
        assert request.headers["Cache-Control"] == "no-cache"

    @pytest.mark.asyncio
    async def test_search_without_query(self, gateway, transport):
        """Test search adds _ts with ? when the path has no query."""
        await gateway.search("Device")

        assert list(transport.last.url.params.keys()) == ["_ts"]

    @pytest.mark.asyncio
    async def test_create_sends_fhir_json(self, gateway, transport):
        """Test create POSTs the serialized resource."""
        transport.responder = lambda request: httpx.Response(201, json={"resourceType": "Device", "id": "42"})
        device = {"resourceType": "Device", "status": "active"}

        result = await gateway.create("Device", device)

        assert result["id"] == "42"
        assert transport.last.method == "POST"
        assert transport.last.headers["Content-Type"] == FHIR_JSON
        assert transport.last_json() == device

    @pytest.mark.asyncio
    async def test_create_empty_body_uses_location(self, gateway, transport):
        """Test an empty 201 yields a stub built from the Location header."""
        transport.responder = lambda request: httpx.Response(
            201, headers={"Location": "https://fhir.test/baseR4/Device/42/_history/1"}
        )

        result = await gateway.create("Device", {"resourceType": "Device"})

        assert result == {"resourceType": "Device", "id": "42"}

    @pytest.mark.asyncio
    async def test_update_puts(self, gateway, transport):
        transport.responder = lambda request: httpx.Response(200, json={"id": "1"})

        await gateway.update("Device/1", {"resourceType": "Device", "id": "1"})

        assert transport.last.method == "PUT"
        assert transport.last.url.path == "/baseR4/Device/1"

    @pytest.mark.asyncio
    async def test_delete_cascades_and_accepts_204(self, gateway, transport):
        """Test delete appends _cascade=delete and succeeds on an empty 204."""
        transport.responder = lambda request: httpx.Response(204)

        result = await gateway.delete("DeviceUseStatement/9")

        assert result is None
        assert transport.last.method == "DELETE"
        assert transport.last.url.params["_cascade"] == "delete"

    @pytest.mark.asyncio
    async def test_transaction_posts_to_root(self, gateway, transport):
        """Test transaction POSTs the Bundle to the base URL itself."""
        bundle = {"resourceType": "Bundle", "type": "transaction", "entry": []}
        transport.responder = lambda request: httpx.Response(
            200, json={"resourceType": "Bundle", "type": "transaction-response"}
        )

        result = await gateway.transaction(bundle)

        assert result["type"] == "transaction-response"
        assert transport.last.method == "POST"
        assert transport.last.url.path == "/baseR4/"
        assert transport.last_json() == bundle

    @pytest.mark.asyncio
    async def test_error_status_raises(self, gateway, transport):
        """Test a non-2xx status raises with status and body."""
        transport.responder = lambda request: httpx.Response(400, text="bad resource")

        with pytest.raises(FHIRRequestError) as exc_info:
            await gateway.create("Device", {})

        assert exc_info.value.status_code == 400
        assert exc_info.value.body == "bad resource"
        assert str(exc_info.value) == "FHIR create failed: 400 - bad resource"

    @pytest.mark.asyncio
    async def test_non_json_success_body(self, gateway, transport):
        """Test a 2xx body that is not JSON comes back as a status dict."""
        transport.responder = lambda request: httpx.Response(200, text="OK")

        result = await gateway.read("Device/1")

        assert result == {"status": "success", "content": "OK", "code": 200}


# =============================================================================
# Test authenticated route
# =============================================================================


class TestAuthenticatedRoute:
    """Tests for delegation to an injected SMART client."""

    @pytest.fixture
    def smart_client(self):
        client = AsyncMock()
        client.request.return_value = {"resourceType": "Bundle"}
        return client

    @pytest.fixture
    def smart_gateway(self, smart_client, transport):
        http = httpx.AsyncClient(base_url="https://fhir.test/baseR4/", transport=httpx.MockTransport(transport.handle))
        return FHIRGateway(
            base_url="https://fhir.test/baseR4",
            auth=AuthContext(client=smart_client, patient_id="pat-1"),
            http_client=http,
        )

    @pytest.mark.asyncio
    async def test_read_delegates(self, smart_gateway, smart_client, transport):
        await smart_gateway.read("/Device/1")

        smart_client.request.assert_awaited_once_with("Device/1")
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_search_delegates_with_ts(self, smart_gateway, smart_client):
        await smart_gateway.search("Device?_count=1")

        path = smart_client.request.await_args.args[0]
        assert path.startswith("Device?_count=1&_ts=")

    @pytest.mark.asyncio
    async def test_update_delegates(self, smart_gateway, smart_client):
        device = {"resourceType": "Device", "id": "1"}

        await smart_gateway.update("Device/1", device)

        smart_client.request.assert_awaited_once_with(
            "Device/1", method="PUT", headers={"Content-Type": FHIR_JSON}, body=json.dumps(device)
        )

    @pytest.mark.asyncio
    async def test_delete_delegates(self, smart_gateway, smart_client):
        await smart_gateway.delete("Device/1")

        smart_client.request.assert_awaited_once_with("Device/1?_cascade=delete", method="DELETE")

    @pytest.mark.asyncio
    async def test_transaction_delegates_to_slash(self, smart_gateway, smart_client):
        bundle = {"resourceType": "Bundle", "type": "transaction", "entry": []}

        await smart_gateway.transaction(bundle)

        smart_client.request.assert_awaited_once_with(
            "/", method="POST", headers={"Content-Type": FHIR_JSON}, body=json.dumps(bundle)
        )

    def test_patient_id_from_context(self, smart_gateway):
        assert smart_gateway.patient_id == "pat-1"
        assert smart_gateway.auth.subject_reference == "Patient/pat-1"


# =============================================================================
# Test auth overrides
# =============================================================================


class TestAuthOverride:
    """Tests for the test-only auth hooks."""

    @pytest.mark.asyncio
    async def test_override_and_reset(self, gateway, transport):
        """Test override routes through the client and reset restores anonymous access."""
        client = AsyncMock()
        client.request.return_value = {"id": "1"}

        gateway.override_auth_for_testing(AuthContext(client=client, patient_id="p"))
        await gateway.read("Device/1")

        assert gateway.patient_id == "p"
        client.request.assert_awaited_once()
        assert transport.requests == []

        gateway.reset_auth_for_testing()
        await gateway.read("Device/1")

        assert gateway.patient_id is None
        assert not gateway.auth.authenticated
        assert len(transport.requests) == 1
