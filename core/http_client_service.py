# core/http_client_service.py
"""Perform HTTP I/O for the coordination layer's fetch collaborators.

The coordination layer only needs awaitable fetch functions. This module provides an
httpx-backed implementation of that boundary: single-resource reads and multi-key reads
suitable for `RequestBatcher`.

Notes:
    - Requests are concurrency-limited via a semaphore.
    - Retries are applied for timeouts, transport errors, 429 and 5xx responses.
    - Once retries are exhausted, the httpx exception propagates unchanged. The
      coordination layer above does not retry again.
"""

import asyncio
from collections.abc import Sequence
from typing import Any

import httpx
import structlog

import config
from utils.json_utils import truncate_for_log

logger = structlog.get_logger(__name__)


class HTTPClientService:
    """Perform concurrency-limited HTTP GET requests with retries."""

    def __init__(
        self,
        base_url: str = config.HTTP_BASE_URL,
        timeout: float = config.HTTPX_TIMEOUT,
        *,
        max_concurrency: int = config.HTTP_MAX_CONCURRENCY,
        retry_attempts: int = config.HTTP_RETRY_ATTEMPTS,
        retry_delay_seconds: float = config.HTTP_RETRY_DELAY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP client.

        Args:
            base_url: Prefix for every request path.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests pass `httpx.MockTransport`).
        """
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self._stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "retry_attempts": 0,
        }

        logger.info(
            "HTTPClientService initialized",
            base_url=base_url,
            timeout=timeout,
            concurrency_limit=max_concurrency,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client and release resources."""
        await self._client.aclose()
        logger.debug("HTTPClientService closed")

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET `path` and return the decoded JSON body.

        Raises:
            httpx.TimeoutException: When all attempts time out.
            httpx.HTTPStatusError: When a non-retryable status occurs or retries are
                exhausted.
            httpx.RequestError: When the request fails and retries are exhausted.
        """
        async with self._semaphore:
            self._stats["total_requests"] += 1
            last_exception: Exception | None = None

            for attempt in range(self.retry_attempts):
                try:
                    logger.debug("HTTP GET", path=path, attempt=attempt + 1, max_attempts=self.retry_attempts)
                    response = await self._client.get(path, params=params)
                    response.raise_for_status()

                    self._stats["successful_requests"] += 1
                    return response.json()

                except httpx.TimeoutException as e:
                    last_exception = e
                    logger.warning("HTTP timeout", path=path, attempt=attempt + 1, error=str(e))

                except httpx.HTTPStatusError as e:
                    last_exception = e
                    status_code = e.response.status_code
                    logger.warning(
                        "HTTP status error",
                        path=path,
                        attempt=attempt + 1,
                        status_code=status_code,
                        body=truncate_for_log(e.response.text, 200),
                    )

                    # Don't retry on client errors (except 429 rate limit)
                    if 400 <= status_code < 500 and status_code != 429:
                        logger.error("Non-retryable client error, aborting", path=path, status_code=status_code)
                        break

                except httpx.RequestError as e:
                    last_exception = e
                    logger.warning("HTTP request error", path=path, attempt=attempt + 1, error=str(e))

                if attempt < self.retry_attempts - 1:
                    delay = self.retry_delay_seconds * (2**attempt)
                    logger.info("Retrying HTTP GET", path=path, delay_s=round(delay, 2), reason=type(last_exception).__name__)
                    await asyncio.sleep(delay)
                    self._stats["retry_attempts"] += 1

            self._stats["failed_requests"] += 1
            logger.error("HTTP GET failed", path=path, attempts=self.retry_attempts, error=str(last_exception))
            raise last_exception

    def get_statistics(self) -> dict[str, Any]:
        """Return HTTP request statistics for monitoring."""
        total = self._stats["total_requests"]
        return {
            **self._stats,
            "success_rate": (self._stats["successful_requests"] / total * 100) if total > 0 else 0,
            "failure_rate": (self._stats["failed_requests"] / total * 100) if total > 0 else 0,
        }


class ResourceHTTPClient:
    """Fetch named resources from a REST backend using a shared HTTP client."""

    def __init__(self, http_client: HTTPClientService, id_field: str = "id"):
        self._http_client = http_client
        self.id_field = id_field

    async def fetch(self, resource: str, params: Any = None) -> Any:
        """GET `/<resource>`.

        Mapping params become query parameters; a scalar is sent as the `id` parameter.
        """
        if params is None:
            query = None
        elif isinstance(params, dict):
            query = params
        else:
            query = {self.id_field: params}
        return await self._http_client.get_json(f"/{resource}", params=query)

    async def fetch_many(self, resource: str, keys: Sequence[str]) -> dict[str, Any]:
        """GET `/<resource>?ids=a,b` and map the returned items by their id.

        Items the backend does not return are simply absent from the mapping.
        """
        body = await self._http_client.get_json(f"/{resource}", params={"ids": ",".join(keys)})
        if isinstance(body, dict):
            return {str(k): v for k, v in body.items()}
        results = {}
        for item in body or []:
            if isinstance(item, dict) and self.id_field in item:
                results[str(item[self.id_field])] = item
        logger.debug("Batch fetch completed", resource=resource, requested=len(keys), returned=len(results))
        return results

    def fetch_fn(self, resource: str):
        """Return a single-item fetch function bound to `resource` for `register_resource`."""

        async def _fetch(params: Any) -> Any:
            return await self.fetch(resource, params)

        return _fetch

    def batch_fetch_fn(self, resource: str):
        """Return a multi-key fetch function bound to `resource` for `register_resource`."""

        async def _fetch_many(keys: list[str]) -> dict[str, Any]:
            return await self.fetch_many(resource, keys)

        return _fetch_many
