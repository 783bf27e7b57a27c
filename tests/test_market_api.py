from __future__ import annotations

import asyncio

import allure
import httpx
import pytest

from tee_dispatch.config import MarketSettings
from tee_dispatch.dispatch.errors import OrderbookUnavailableError
from tee_dispatch.dispatch.ports import OrderbookQuery
from tee_dispatch.http.ipfs_gateway import IpfsGateway
from tee_dispatch.http.market_api import MarketApiOrderbook

pytestmark = [
    allure.epic("Marketplace HTTP"),
    allure.feature("Order Book & Gateway"),
]

SETTINGS = MarketSettings(
    market_api_url="https://market.example/",
    ipfs_gateway_url="https://gateway.example",
)
QUERY = OrderbookQuery(
    category=1,
    min_volume=1,
    min_tag=("tee", "scone"),
    max_price=1_000,
    page_size=5,
)


def _entry(order_hash: str, workerpool: str, price: int) -> dict[str, object]:
    return {
        "orderHash": order_hash,
        "remaining": 3,
        "order": {
            "workerpool": workerpool,
            "workerpoolprice": price,
            "volume": 3,
            "tag": "0x" + "0" * 63 + "3",
            "category": 1,
            "trust": 0,
            "sign": "0xsig",
        },
    }


def _query(handler) -> list:
    async def _run():
        async with MarketApiOrderbook(
            settings=SETTINGS,
            transport=httpx.MockTransport(handler),
        ) as orderbook:
            return await orderbook.query(QUERY)

    return asyncio.run(_run())


def test_query_sends_filters_and_parses_orders() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "orders": [
                    _entry("0x01", "0x1111111111111111111111111111111111111111", 100),
                    _entry("0x02", "0x2222222222222222222222222222222222222222", 5_000),
                    {"orderHash": "0x03", "order": "broken"},
                ],
                "count": 3,
            },
        )

    orders = _query(handler)

    params = seen[0].url.params
    assert seen[0].url.path == "/workerpoolorders"
    assert params["chainId"] == "134"
    assert params["category"] == "1"
    assert params["minVolume"] == "1"
    assert params["minTag"] == "0x" + "0" * 63 + "3"
    assert params["pageSize"] == "5"
    assert [order.order_hash for order in orders] == ["0x01"]
    assert orders[0].price == 100
    assert orders[0].remaining == 3
    assert orders[0].workerpool_order.tag == ("tee", "scone")
    assert orders[0].order.signature == "0xsig"


def test_query_maps_http_errors_to_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(503, text="maintenance")

    with pytest.raises(OrderbookUnavailableError, match="request failed"):
        _query(handler)


def test_query_rejects_payload_without_orders() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # noqa: ARG001
        return httpx.Response(200, json={"ok": True})

    with pytest.raises(OrderbookUnavailableError, match="no orders list"):
        _query(handler)


def test_gateway_fetch_returns_structured_results() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/missing"):
            return httpx.Response(404)
        return httpx.Response(200, content=b"zip-bytes")

    async def _run():
        async with IpfsGateway(
            settings=SETTINGS,
            transport=httpx.MockTransport(handler),
        ) as gateway:
            return await gateway.fetch("QmHash"), await gateway.fetch("missing")

    found, missing = asyncio.run(_run())

    assert found.url == "https://gateway.example/ipfs/QmHash"
    assert found.is_success is True
    assert found.content == b"zip-bytes"
    assert missing.is_success is False
    assert missing.status_code == 404
    assert missing.error == "HTTP 404"
