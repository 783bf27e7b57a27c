"""Workerpool order book client for the public market REST API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from tee_dispatch.config import MarketSettings
from tee_dispatch.dispatch.errors import OrderbookUnavailableError
from tee_dispatch.dispatch.models import PublishedWorkerpoolOrder, SignedOrder, WorkerpoolOrder
from tee_dispatch.dispatch.ports import OrderbookQuery
from tee_dispatch.dispatch.tags import decode_tag, encode_tag

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "tee-dispatch/0.1"


class MarketApiOrderbook:
    """`OrderBook` implementation over ``GET {base}/workerpoolorders``."""

    def __init__(
        self,
        *,
        settings: MarketSettings,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._chain_id = settings.chain_id
        self._client = httpx.AsyncClient(
            base_url=settings.market_api_url.rstrip("/"),
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport or httpx.AsyncHTTPTransport(retries=settings.max_retries),
            follow_redirects=True,
        )

    async def query(self, query: OrderbookQuery) -> list[PublishedWorkerpoolOrder]:
        params: dict[str, str | int] = {
            "chainId": self._chain_id,
            "category": query.category,
            "minVolume": query.min_volume,
            "minTag": encode_tag(query.min_tag),
            "pageSize": query.page_size,
        }
        try:
            response = await self._client.get("/workerpoolorders", params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as error:
            logger.warning("Timeout querying workerpool orders: %s", error)
            raise OrderbookUnavailableError(f"Order book timeout: {error}") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error querying workerpool orders: %s", error)
            raise OrderbookUnavailableError(f"Order book request failed: {error}") from error
        except ValueError as error:
            raise OrderbookUnavailableError(f"Invalid order book JSON: {error}") from error

        if not isinstance(payload, dict) or not isinstance(payload.get("orders"), list):
            raise OrderbookUnavailableError("Order book response has no orders list")

        orders: list[PublishedWorkerpoolOrder] = []
        for entry in payload["orders"]:
            parsed = _parse_entry(entry)
            if parsed is None:
                logger.debug("Skipping malformed order book entry: %r", entry)
                continue
            if query.max_price is not None and parsed.price > query.max_price:
                continue
            orders.append(parsed)
        logger.info(
            "Order book returned %d usable workerpool orders (category %d)",
            len(orders),
            query.category,
        )
        return orders

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> MarketApiOrderbook:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()


def _parse_entry(entry: Any) -> PublishedWorkerpoolOrder | None:  # noqa: PLR0911
    if not isinstance(entry, dict):
        return None
    order = entry.get("order")
    order_hash = entry.get("orderHash")
    if not isinstance(order, dict) or not isinstance(order_hash, str):
        return None
    workerpool = order.get("workerpool")
    if not isinstance(workerpool, str) or not workerpool.strip():
        return None
    try:
        price = int(order.get("workerpoolprice", 0))
        category = int(order.get("category", 0))
        volume = int(order.get("volume", 1))
        trust = int(order.get("trust", 0))
        remaining = int(entry.get("remaining", volume))
    except (TypeError, ValueError):
        return None
    raw_tag = order.get("tag", "0x0")
    if not isinstance(raw_tag, str):
        return None
    try:
        tag = decode_tag(raw_tag)
    except ValueError:
        return None
    signature = order.get("sign")
    return PublishedWorkerpoolOrder(
        order_hash=order_hash,
        order=SignedOrder(
            order=WorkerpoolOrder(
                workerpool=workerpool,
                workerpool_price=price,
                category=category,
                volume=volume,
                tag=tag,
                trust=trust,
            ),
            signature=signature if isinstance(signature, str) else "",
        ),
        remaining=remaining,
    )
