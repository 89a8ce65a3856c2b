"""CoinGecko contract lookups with retries."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from feedprobe.errors import LookupFailure

logger = structlog.get_logger()

USER_AGENT = "feedprobe/0.1 (+cross-source data-quality probe)"


def _is_retryable_http_status(status_code: int) -> bool:
    return status_code in {408, 425, 429, 500, 502, 503, 504}


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, httpx.RequestError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return _is_retryable_http_status(exc.response.status_code)
    return False


class RestLookupClient:
    """Looks up token contracts by address on one CoinGecko asset platform.

    ``lookup`` returns the coin record, ``None`` when CoinGecko answers 404, and
    raises ``LookupFailure`` for anything else.
    """

    source_id = "coingecko"

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        platform: str = "binance-smart-chain",
        timeout_seconds: float = 20.0,
        max_attempts: int = 3,
        wait_min_seconds: float = 2.0,
        wait_max_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if api_key:
            headers["x-cg-pro-api-key"] = api_key
        self.platform = platform
        self._max_attempts = max_attempts
        self._wait = wait_exponential(min=wait_min_seconds, max=wait_max_seconds)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> RestLookupClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str) -> httpx.Response:
        response = await self._client.get(path)
        if response.status_code == 404:
            return response
        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code}",
                request=response.request,
                response=response,
            )
        return response

    async def lookup(self, address: str) -> dict[str, Any] | None:
        path = f"/coins/{self.platform}/contract/{address.lower()}"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=self._wait,
                retry=retry_if_exception(_should_retry),
                reraise=True,
            ):
                with attempt:
                    response = await self._get(path)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning("Lookup HTTP error", address=address, status=status_code)
            raise LookupFailure(address, f"HTTP {status_code}") from e
        except httpx.RequestError as e:
            logger.error("Request error", address=address, error=str(e))
            raise LookupFailure(address, str(e)) from e

        if response.status_code == 404:
            return None
        try:
            data = response.json()
        except ValueError as e:
            raise LookupFailure(address, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise LookupFailure(address, "unexpected payload shape")
        return data
