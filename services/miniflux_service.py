# services/miniflux_service.py
"""
MinifluxClient: read-only access to the Miniflux REST API.

- GET /v1/feeds/{id} and GET /v1/icons/{id}, authenticated with X-Auth-Token
- One semaphore gates every upstream call (feeds and icons together)
- Every failure surfaces as UpstreamFetchFailed
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from app.core.errors import UpstreamFetchFailed
from app.core.logging import get_logger
from app.models.miniflux import Feed, Icon

logger = get_logger()

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_MAX_CONCURRENCY = 4
AUTH_HEADER = "X-Auth-Token"
USER_AGENT = "miniflux-discord-relay/1.0"

ModelT = TypeVar("ModelT", bound=BaseModel)


class MinifluxClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            base_url: Miniflux root URL, e.g. https://reader.example.com
            api_key: API key sent as X-Auth-Token
            timeout_s: Per-request timeout in seconds
            max_concurrency: Maximum simultaneous upstream calls
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_concurrency = max(1, max_concurrency)
        self._sem = asyncio.Semaphore(self.max_concurrency)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_s),
            headers={AUTH_HEADER: api_key, "User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "MinifluxClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_model(self, path: str, model: Type[ModelT], resource: str, resource_id: int) -> ModelT:
        # Geen timeout op de semaphore zelf; httpx begrenst elke request.
        async with self._sem:
            logger.debug("miniflux_request_start", resource=resource, resource_id=resource_id)
            try:
                response = await self._client.get(path)
                response.raise_for_status()
                payload: Any = response.json()
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                logger.warning(
                    "miniflux_http_error",
                    resource=resource,
                    resource_id=resource_id,
                    status_code=status_code,
                )
                raise UpstreamFetchFailed(resource, resource_id, f"HTTP {status_code}") from e
            except httpx.TimeoutException as e:
                logger.warning(
                    "miniflux_timeout",
                    resource=resource,
                    resource_id=resource_id,
                    timeout_s=self.timeout_s,
                )
                raise UpstreamFetchFailed(resource, resource_id, e) from e
            except httpx.HTTPError as e:
                logger.warning(
                    "miniflux_network_error",
                    resource=resource,
                    resource_id=resource_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise UpstreamFetchFailed(resource, resource_id, e) from e
            except ValueError as e:
                logger.warning("miniflux_invalid_json", resource=resource, resource_id=resource_id)
                raise UpstreamFetchFailed(resource, resource_id, "response body is not JSON") from e

        try:
            return model.model_validate(payload)
        except PydanticValidationError as e:
            logger.warning(
                "miniflux_unexpected_shape",
                resource=resource,
                resource_id=resource_id,
                errors=e.error_count(),
            )
            raise UpstreamFetchFailed(resource, resource_id, "unexpected response shape") from e

    async def fetch_feed(self, feed_id: int) -> Feed:
        return await self._get_model(f"/v1/feeds/{feed_id}", Feed, "feed", feed_id)

    async def fetch_icon(self, icon_id: int) -> Icon:
        return await self._get_model(f"/v1/icons/{icon_id}", Icon, "icon", icon_id)
