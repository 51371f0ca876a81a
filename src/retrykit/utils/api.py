"""
HTTP client that routes every request through a RetryManager.

Transport failures are translated into retrykit's RequestError types so the
classifier can judge them by status or category.
"""

import asyncio
import time
from typing import Any

import aiohttp

from retrykit.core.retry.manager import RetryManager
from retrykit.core.retry.registry import RequestContext
from retrykit.exceptions import HTTPStatusError, NetworkError, RequestTimeoutError
from retrykit.utils.logging import get_logger

logger = get_logger("retrykit.utils.api")


class API:
    """
    Async JSON API client with policy-driven retries.

    The retry policy for each call is resolved from its path and method, so
    a registry entry for ``/orders`` applies to ``api.post("/orders")``.

    Example:
        ```python
        from retrykit import API, RetryManager

        manager = RetryManager()
        api = API(base_url="https://shop.example.com/api", retry_manager=manager)

        async with api:
            products = await api.get("/products/search", params={"q": "lamp"})
            order = await api.post("/orders", data={"sku": "LMP-1"})
        ```
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        max_concurrent: int = 10,
        timeout: float = 120,
        retry_manager: RetryManager | None = None,
    ):
        """
        Initialize API helper.

        Args:
            base_url: Base URL for API (e.g., "https://api.example.com")
            headers: Default headers to include in all requests
            max_concurrent: Maximum concurrent requests (default: 10)
            timeout: Per-attempt timeout in seconds (default: 120)
            retry_manager: Manager deciding retries (default: a new RetryManager)
        """
        self.base_url = base_url.rstrip("/")
        self.default_headers = headers or {}
        self.max_concurrent = max_concurrent
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.retry_manager = retry_manager or RetryManager()

        self.session: aiohttp.ClientSession | None = None
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._session_lock = asyncio.Lock()
        self._session_refcount = 0

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session exists, creating it if needed."""
        async with self._session_lock:
            if self.session is None or self.session.closed:
                self.session = aiohttp.ClientSession(timeout=self.timeout, headers=self.default_headers)
            return self.session

    async def __aenter__(self) -> "API":
        await self._ensure_session()
        async with self._session_lock:
            self._session_refcount += 1
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        async with self._session_lock:
            self._session_refcount -= 1
            # Only close session if no other contexts are using it
            if self._session_refcount == 0 and self.session and not self.session.closed:
                await self.session.close()
                self.session = None

    async def close(self) -> None:
        """Explicitly close the session."""
        async with self._session_lock:
            if self.session and not self.session.closed:
                await self.session.close()
            self.session = None
            self._session_refcount = 0

    def _full_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    async def _send(
        self,
        method: str,
        url: str,
        data: Any = None,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """
        Perform a single attempt.

        Raises:
            HTTPStatusError: Non-2xx response
            RequestTimeoutError: The attempt timed out
            NetworkError: Connection-level failure
        """
        session = await self._ensure_session()
        request_url = self._full_url(url)

        # Boolean params must be strings for yarl
        if params:
            params = {k: str(v).lower() if isinstance(v, bool) else v for k, v in params.items()}

        start_time = time.monotonic()
        try:
            async with session.request(method, request_url, json=data, params=params, headers=headers) as response:
                duration = time.monotonic() - start_time
                log_level = logger.debug if response.status <= 299 else logger.warning
                log_level(f"{method} {request_url} {response.status} {duration:.2f}s")

                if response.status > 299:
                    text = await response.text()
                    raise HTTPStatusError(response.status, text[:200] or None, url=request_url)

                if response.content_type == "application/json":
                    return await response.json()
                return await response.text()
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(f"Request timeout: {method} {request_url}") from e
        except aiohttp.ClientConnectionError as e:
            raise NetworkError(f"Network failure: {method} {request_url}: {e}") from e

    async def request(
        self,
        url: str,
        method: str = "GET",
        data: Any = None,
        params: dict | None = None,
        headers: dict | None = None,
        max_retries: int | None = None,
        request_id: str | None = None,
    ) -> Any:
        """
        Make a request with retries.

        Args:
            url: URL path (relative to base_url) or full URL
            method: HTTP method (GET, POST, PUT, DELETE, etc.)
            data: JSON request body
            params: Query parameters
            headers: Additional headers for this request
            max_retries: Override the resolved policy's retry budget
            request_id: Tracking id (generated when omitted)

        Returns:
            Decoded JSON body, or text for non-JSON responses
        """
        method = method.upper()
        context = RequestContext(url=url, method=method, request_id=request_id)

        async def attempt() -> Any:
            async with self.semaphore:
                return await self._send(method, url, data=data, params=params, headers=headers)

        return await self.retry_manager.execute_with_retry(attempt, context, max_retries=max_retries)

    async def get(self, url: str, params: dict | None = None, **kwargs: Any) -> Any:
        return await self.request(url, method="GET", params=params, **kwargs)

    async def post(self, url: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request(url, method="POST", data=data, **kwargs)

    async def put(self, url: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request(url, method="PUT", data=data, **kwargs)

    async def patch(self, url: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request(url, method="PATCH", data=data, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Any:
        return await self.request(url, method="DELETE", **kwargs)
