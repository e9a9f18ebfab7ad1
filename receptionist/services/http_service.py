"""
Shared HTTP plumbing for the collaborator clients.

Each collaborator is reached through its own httpx.AsyncClient (connection pooling,
bearer token, request timeout). A service with no base URL configured is treated
as disabled: calls are logged and skipped so a partially configured deployment
still answers calls.
"""

import logging
from typing import Any, Dict, Optional, Type

import httpx

from receptionist.config.constants import LOGGER_NAME, SERVICE_NAME, SERVICE_VERSION
from receptionist.exceptions import DispatchError, ReceptionistError

logger = logging.getLogger(LOGGER_NAME)


class HttpService:
    """Base class for JSON-over-HTTP collaborator clients."""

    name = "service"
    error_class: Type[ReceptionistError] = DispatchError

    def __init__(self, base_url: Optional[str], token: Optional[str] = None,
                 timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.token = token
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return self.base_url is not None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"User-Agent": f"{SERVICE_NAME}/{SERVICE_VERSION}"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url, headers=headers, timeout=self.timeout
            )
        return self._client

    async def _request(self, method: str, path: str, *,
                       json: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Send a request and return the decoded JSON body (None for empty bodies).

        Raises:
            error_class: on transport errors and non-2xx responses
        """
        try:
            response = await self._get_client().request(method, path, json=json, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self.error_class(
                f"{self.name} returned {e.response.status_code} for {method} {path}"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            raise self.error_class(f"{self.name} request {method} {path} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise self.error_class(f"{self.name} returned invalid JSON for {path}") from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
