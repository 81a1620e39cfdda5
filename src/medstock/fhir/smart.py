"""SMART-on-FHIR bearer client.

The authorization handshake itself happens outside MedStock (an EHR launch
or a sandbox login). Its outcome - server URL, access token and the patient
in context - arrives through settings, and this module turns it into the
AuthContext the gateway is constructed with.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from medstock.core.settings import EnvSettings, settings
from medstock.fhir.errors import FHIRRequestError
from medstock.fhir.gateway import ANONYMOUS, FHIR_JSON, AuthContext, normalize_path

logger = logging.getLogger(__name__)


class BearerTokenClient:
    """Authenticated request function backed by httpx and a bearer token."""

    def __init__(
        self,
        server_url: str,
        access_token: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            base_url=f"{self.server_url}/",
            timeout=timeout,
        )
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": FHIR_JSON,
        }

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: str | None = None,
    ) -> Any:
        """Send a request relative to the authorized server and return parsed JSON."""
        response = await self._client.request(
            method,
            normalize_path(path),
            headers={**self._headers, **(headers or {})},
            content=body,
        )
        if not response.is_success:
            raise FHIRRequestError(f"SMART {method}", response.status_code, response.text)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError:
            return {"status": "success", "content": response.text, "code": response.status_code}

    async def aclose(self) -> None:
        await self._client.aclose()


def build_auth_context(env: EnvSettings | None = None) -> AuthContext:
    """Build the AuthContext for a completed SMART launch, or ANONYMOUS.

    Args:
        env: Settings to read from (default: module settings)
    """
    env = env or settings
    if not env.smart_access_token:
        return ANONYMOUS

    server_url = env.smart_server_url or env.fhir_base_url
    client = BearerTokenClient(server_url, env.smart_access_token, timeout=env.fhir_timeout)
    logger.info(f"SMART session ready: server={server_url} patient={env.smart_patient_id or '-'}")
    return AuthContext(
        client=client,
        patient_id=env.smart_patient_id or None,
        server_url=server_url,
    )
