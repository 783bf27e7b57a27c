"""Result archive download through an IPFS HTTP gateway."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from tee_dispatch.config import MarketSettings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GatewayFetchResult:
    """Result of one gateway download."""

    url: str
    status_code: int
    content: bytes
    is_success: bool
    error: str | None = None


class IpfsGateway:
    """Downloads content by IPFS hash with retry and timeout configuration."""

    def __init__(
        self,
        *,
        settings: MarketSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = settings.ipfs_gateway_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            transport=transport or httpx.AsyncHTTPTransport(retries=settings.max_retries),
            follow_redirects=True,
        )

    def url_for(self, ipfs_hash: str) -> str:
        return f"{self._base_url}/ipfs/{ipfs_hash}"

    async def fetch(self, ipfs_hash: str) -> GatewayFetchResult:
        """Fetch content, returning a structured result instead of raising."""

        url = self.url_for(ipfs_hash)
        try:
            response = await self._client.get(url)
        except httpx.TimeoutException:
            logger.warning("Timeout fetching %s", url)
            return GatewayFetchResult(
                url=url,
                status_code=0,
                content=b"",
                is_success=False,
                error="timeout",
            )
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", url, exc)
            return GatewayFetchResult(
                url=url,
                status_code=0,
                content=b"",
                is_success=False,
                error=str(exc),
            )
        return GatewayFetchResult(
            url=url,
            status_code=response.status_code,
            content=response.content,
            is_success=response.is_success,
            error=None if response.is_success else f"HTTP {response.status_code}",
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> IpfsGateway:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()
