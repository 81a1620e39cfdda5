"""Pytest configuration and shared fixtures.

Adds `src/` to `sys.path` so tests can import the project package
without requiring installation.
"""

import json
import os
import sys
from collections.abc import Callable
from unittest.mock import MagicMock

import httpx
import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_PATH = os.path.join(PROJECT_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from medstock.fhir.gateway import ANONYMOUS, AuthContext, FHIRGateway  # noqa: E402
from medstock.fhir.resources import AppTag  # noqa: E402

BASE_URL = "https://fhir.test/baseR4"


class RecordingTransport:
    """Mock FHIR server: records every request and answers via ``responder``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200, json={"resourceType": "Bundle", "entry": []}
        )

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def last_json(self) -> dict:
        return json.loads(self.last.content)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def gateway(transport: RecordingTransport) -> FHIRGateway:
    """Anonymous gateway wired to the recording transport."""
    client = httpx.AsyncClient(
        base_url=f"{BASE_URL}/",
        transport=httpx.MockTransport(transport.handle),
    )
    return FHIRGateway(base_url=BASE_URL, http_client=client)


@pytest.fixture
def app_tag() -> AppTag:
    return AppTag("urn:demo:app", "demo-medical-stock", "Medical Device Stock")


@pytest.fixture
def mock_gateway() -> MagicMock:
    """Gateway double; MagicMock(spec=...) turns the async operations into AsyncMocks."""
    gw = MagicMock(spec=FHIRGateway)
    gw.auth = ANONYMOUS
    gw.patient_id = None
    gw.search.return_value = {"resourceType": "Bundle", "entry": []}
    return gw


@pytest.fixture
def patient_gateway(mock_gateway: MagicMock) -> MagicMock:
    """Gateway double with a SMART patient in context."""
    mock_gateway.auth = AuthContext(client=MagicMock(), patient_id="pat-1")
    mock_gateway.patient_id = "pat-1"
    return mock_gateway


def bundle_of(*resources: dict) -> dict:
    """Wrap resources in a searchset Bundle."""
    return {"resourceType": "Bundle", "type": "searchset", "entry": [{"resource": r} for r in resources]}


@pytest.fixture
def make_bundle() -> Callable[..., dict]:
    return bundle_of
