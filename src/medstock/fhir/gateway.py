"""
FHIR Resource Access Gateway.

Uniform async read/search/create/update/delete/transaction over a remote FHIR
store. Two routes exist:

- Authenticated: an AuthContext carrying a SMART client is injected at
  construction; every call is delegated to ``client.request(...)``.
- Anonymous: direct httpx requests against the configured base URL.

Normalization is identical on both routes:
- leading slashes are stripped from relative paths
- search appends ``_ts=<epoch ms>`` so intermediaries never serve a stale bundle
- delete appends ``_cascade=delete``
- writes are sent as ``application/fhir+json``

Usage:
    async with FHIRGateway() as gateway:
        device = await gateway.read("Device/123")
        bundle = await gateway.search("Device?_count=5")
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from medstock.core.settings import settings
from medstock.fhir.errors import FHIRRequestError
from medstock.fhir.resources import id_from_location

logger = logging.getLogger(__name__)

FHIR_JSON = "application/fhir+json"


class AuthenticatedClient(Protocol):
    """Request function handed over by a completed SMART authorization."""

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: str | None = None,
    ) -> Any:
        """Send a request relative to the authorized server and return parsed JSON."""
        ...


@dataclass(frozen=True)
class AuthContext:
    """Authentication state shared by all gateway calls.

    Attributes:
        client: Authenticated request client, None for anonymous access
        patient_id: Patient in context after the SMART launch, if any
        server_url: FHIR base URL the client was authorized against
    """

    client: AuthenticatedClient | None = None
    patient_id: str | None = None
    server_url: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.client is not None

    @property
    def subject_reference(self) -> str | None:
        return f"Patient/{self.patient_id}" if self.patient_id else None


ANONYMOUS = AuthContext()


def normalize_path(path: str) -> str:
    """Strip leading slashes from a relative FHIR path."""
    return path.lstrip("/")


def append_query_param(path: str, param: str) -> str:
    """Append ``param`` (``key=value``) with ``&`` or ``?`` as appropriate."""
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{param}"


class FHIRGateway:
    """Async FHIR client with SMART/anonymous routing.

    Attributes:
        base_url: FHIR base URL for anonymous requests
        auth: Injected authentication context
    """

    def __init__(
        self,
        base_url: str | None = None,
        auth: AuthContext | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Initialize FHIRGateway.

        Args:
            base_url: FHIR base URL (default: from settings)
            auth: Authentication context (default: anonymous)
            http_client: Pre-built httpx client, mainly for tests (default: created lazily)
            timeout: Request timeout in seconds (default: from settings)
        """
        self.base_url = (base_url or settings.fhir_base_url).rstrip("/")
        self._auth = auth or ANONYMOUS
        self._production_auth = self._auth
        self._timeout = timeout if timeout is not None else settings.fhir_timeout
        self._client = http_client
        self._owns_client = http_client is None

    # ------------------------------------------
    # Lifecycle
    # ------------------------------------------
    async def __aenter__(self) -> FHIRGateway:
        self._http()
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/",
                timeout=self._timeout,
            )
            self._owns_client = True
        return self._client

    # ------------------------------------------
    # Auth Context
    # ------------------------------------------
    @property
    def auth(self) -> AuthContext:
        return self._auth

    @property
    def patient_id(self) -> str | None:
        return self._auth.patient_id

    def override_auth_for_testing(self, auth: AuthContext) -> None:
        """Swap the auth context. Tests only."""
        self._auth = auth

    def reset_auth_for_testing(self) -> None:
        """Restore the auth context given at construction. Tests only."""
        self._auth = self._production_auth

    # ------------------------------------------
    # Operations
    # ------------------------------------------
    async def read(self, ref: str) -> Any:
        """GET ``<base>/<ref>``."""
        path = normalize_path(ref)
        if self._auth.client is not None:
            return await self._auth.client.request(path)
        return await self._send("read", "GET", path, headers={"Accept": FHIR_JSON})

    async def search(self, query: str) -> Any:
        """GET ``<base>/<query>`` with a cache-defeating ``_ts`` parameter."""
        path = append_query_param(normalize_path(query), f"_ts={int(time.time() * 1000)}")
        if self._auth.client is not None:
            return await self._auth.client.request(path)
        return await self._send(
            "search",
            "GET",
            path,
            headers={"Accept": FHIR_JSON, "Cache-Control": "no-cache"},
        )

    async def create(self, path: str, resource: dict[str, Any]) -> Any:
        """POST a new resource to ``<base>/<path>``."""
        return await self._write("create", "POST", path, resource)

    async def update(self, path: str, resource: dict[str, Any]) -> Any:
        """PUT the whole resource to ``<base>/<path>``."""
        return await self._write("update", "PUT", path, resource)

    async def delete(self, path: str) -> None:
        """DELETE ``<base>/<path>?_cascade=delete``."""
        full_path = append_query_param(normalize_path(path), "_cascade=delete")
        if self._auth.client is not None:
            await self._auth.client.request(full_path, method="DELETE")
            return
        await self._send("delete", "DELETE", full_path, headers={"Cache-Control": "no-cache"})

    async def transaction(self, bundle: dict[str, Any]) -> Any:
        """POST a transaction Bundle to the store root."""
        headers = {"Content-Type": FHIR_JSON}
        body = json.dumps(bundle)
        if self._auth.client is not None:
            return await self._auth.client.request("/", method="POST", headers=headers, body=body)
        return await self._send(
            "transaction",
            "POST",
            "",
            headers={**headers, "Accept": FHIR_JSON, "Cache-Control": "no-cache"},
            content=body,
        )

    # ------------------------------------------
    # Internals
    # ------------------------------------------
    async def _write(self, operation: str, method: str, path: str, resource: dict[str, Any]) -> Any:
        path = normalize_path(path)
        headers = {"Content-Type": FHIR_JSON}
        body = json.dumps(resource)
        if self._auth.client is not None:
            return await self._auth.client.request(path, method=method, headers=headers, body=body)
        return await self._send(
            operation,
            method,
            path,
            headers={**headers, "Accept": FHIR_JSON},
            content=body,
        )

    async def _send(
        self,
        operation: str,
        method: str,
        path: str,
        headers: dict[str, str],
        content: str | None = None,
    ) -> Any:
        response = await self._http().request(method, path, headers=headers, content=content)

        if not response.is_success:
            raise FHIRRequestError(operation, response.status_code, _safe_text(response))

        logger.debug(f"FHIR {operation} {method} {path} -> {response.status_code}")

        if response.status_code == 204 or not response.content:
            return self._minimal_response(response)

        try:
            return response.json()
        except ValueError:
            return {"status": "success", "content": response.text, "code": response.status_code}

    def _minimal_response(self, response: httpx.Response) -> dict[str, Any] | None:
        """Build a stub resource from the Location header when the body is empty."""
        location = response.headers.get("Location") or response.headers.get("Content-Location")
        if not location:
            return None
        if location.startswith(self.base_url):
            location = location[len(self.base_url) :]
        location = normalize_path(location)
        resource_id = id_from_location(location)
        if resource_id is None:
            return None
        return {"resourceType": location.split("/", 1)[0], "id": resource_id}


def _safe_text(response: httpx.Response) -> str:
    try:
        return response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):  # pragma: no cover
        return ""
