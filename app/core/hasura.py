# app/core/hasura.py
"""
Hasura GraphQL client

Thin async wrapper around httpx. Every query and mutation issued by the
services goes through HasuraClient.execute().
"""
import httpx
import logging
from typing import Optional, Dict, Any

from app.core.config import settings

logger = logging.getLogger(__name__)


class HasuraError(Exception):
    """Raised when a Hasura request fails at any layer (transport, HTTP, GraphQL)."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.errors = errors or []


class HasuraClient:
    """Client for the Hasura GraphQL endpoint"""

    def __init__(
        self,
        endpoint: str,
        admin_secret: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.admin_secret = admin_secret
        self.timeout = timeout
        # e.g. httpx.MockTransport
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.admin_secret:
            headers["x-hasura-admin-secret"] = self.admin_secret
        return headers

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Runs a query or mutation and returns its `data` object.

        Raises HasuraError on timeouts, connection errors, non-2xx
        responses, non-JSON bodies and GraphQL `errors` payloads.
        """
        payload = {"query": query, "variables": variables or {}}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=self._headers())
        except httpx.TimeoutException:
            logger.error(f"[Hasura] Timeout connecting to {self.endpoint}")
            raise HasuraError("Timeout connecting to Hasura")
        except httpx.RequestError as e:
            logger.error(f"[Hasura] Connection error: {str(e)}")
            raise HasuraError(f"Connection error: {str(e)}")

        try:
            body = response.json()
        except ValueError:
            body_preview = response.text[:500] if response.text else "(empty)"
            logger.error(f"[Hasura] Non-JSON response (HTTP {response.status_code}): {body_preview}")
            raise HasuraError(
                f"Hasura returned an invalid response (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise HasuraError("Hasura returned an unexpected payload", status_code=response.status_code)

        errors = body.get("errors")
        if errors:
            message = errors[0].get("message") if isinstance(errors[0], dict) else str(errors[0])
            logger.error(f"[Hasura] GraphQL error: {message}")
            raise HasuraError(message or "Unknown GraphQL error", status_code=response.status_code, errors=errors)

        if response.status_code >= 400:
            logger.error(f"[Hasura] HTTP {response.status_code}")
            raise HasuraError(f"Hasura responded with HTTP {response.status_code}", status_code=response.status_code)

        data = body.get("data")
        if data is None:
            raise HasuraError("Hasura response has no data", status_code=response.status_code)

        logger.debug(f"[Hasura] Result keys: {list(data.keys())}")
        return data


def get_hasura_client() -> HasuraClient:
    """FastAPI dependency: client configured from settings"""
    return HasuraClient(
        endpoint=settings.HASURA_GRAPHQL_ENDPOINT,
        admin_secret=settings.HASURA_GRAPHQL_ADMIN_SECRET,
        timeout=settings.HASURA_TIMEOUT_SECONDS,
    )
