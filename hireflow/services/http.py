"""Shared plumbing for the HTTP service clients."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..config import ServiceEndpoint
from ..errors import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)


class HttpServiceClient:
    """Thin JSON-over-HTTP client bound to one remote service."""

    service_name = "service"

    def __init__(
        self,
        endpoint: ServiceEndpoint,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not endpoint.base_url:
            raise ConfigurationError(f"{self.service_name} base_url is not configured")
        if not endpoint.api_key:
            raise ConfigurationError(f"{self.service_name} api_key is not configured")
        self._client = httpx.AsyncClient(
            base_url=endpoint.base_url,
            headers={"Authorization": f"Bearer {endpoint.api_key}"},
            timeout=endpoint.timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceError(self.service_name, f"{method} {path} failed: {e}") from e
        logger.debug(f"{self.service_name} {method} {path} -> {response.status_code}")
        if not response.content:
            return None
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()
