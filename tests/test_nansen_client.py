import json
from datetime import date

import httpx
import pytest

from smartflow.api.nansen import NansenClient
from smartflow.api.rate_limit import RateLimiter


def make_client(handler) -> NansenClient:
    return NansenClient(
        api_key="test-key",
        base_url="https://nansen.test/api/v1",
        rate_limiter=RateLimiter(min_interval=0, backoff_base=0),
        page_interval=0,
        max_retries=2,
        transport=httpx.MockTransport(handler),
    )


def trade_item(tx: str, trader: str = "wallet-a", action: str = "BUY") -> dict:
    return {
        "block_timestamp": "2025-01-05T12:00:00Z",
        "transaction_hash": tx,
        "trader_address": trader,
        "trader_address_label": "Smart Trader",
        "action": action,
        "token_address": "TokenAddr111",
        "token_symbol": "FROG",
        "token_amount": 1000,
        "estimated_swap_price_usd": 0.25,
        "estimated_value_usd": 250,
    }


@pytest.mark.asyncio
async def test_flow_intelligence():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": [{
            "smart_money_net_flow_usd": "125000.5",
            "smart_money_wallet_count": 4,
            "whale_net_flow_usd": -200,
            "whale_wallet_count": None,
        }]})

    async with make_client(handler) as client:
        snapshot = await client.flow_intelligence("solana", "TokenAddr111", "1h")

    assert snapshot.smart_money_net_flow_usd == 125000.5
    assert snapshot.smart_money_wallet_count == 4
    assert snapshot.whale_net_flow_usd == -200
    assert snapshot.whale_wallet_count == 0
    assert snapshot.public_figure_net_flow_usd == 0
    assert snapshot.timeframe == "1h"

    (request,) = seen
    assert request.url.path == "/api/v1/tgm/flow-intelligence"
    assert request.headers["apikey"] == "test-key"
    assert json.loads(request.content) == {"chain": "solana", "token_address": "TokenAddr111", "timeframe": "1h"}


@pytest.mark.asyncio
async def test_flow_intelligence_without_data():
    async with make_client(lambda request: httpx.Response(200, json={"data": []})) as client:
        assert await client.flow_intelligence("solana", "TokenAddr111") is None


@pytest.mark.asyncio
async def test_flow_intelligence_error_is_absent():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "boom"})

    async with make_client(handler) as client:
        assert await client.flow_intelligence("solana", "TokenAddr111") is None
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retries_after_throttling():
    responses = [httpx.Response(429), httpx.Response(200, json={"data": [{"smart_money_wallet_count": 2}]})]

    async with make_client(lambda request: responses.pop(0)) as client:
        snapshot = await client.flow_intelligence("solana", "TokenAddr111")

    assert snapshot.smart_money_wallet_count == 2
    assert responses == []


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404)

    async with make_client(handler) as client:
        trades = await client.all_token_trades("solana", "TokenAddr111", date(2025, 1, 1), date(2025, 1, 7))

    assert trades == []
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transport_errors_are_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"data": []})

    async with make_client(handler) as client:
        assert await client.smart_money_trades("solana") == []
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_all_token_trades_follows_pages():
    pages = []

    def handler(request):
        payload = json.loads(request.content)
        pages.append(payload)
        page = payload["pagination"]["page"]
        return httpx.Response(200, json={
            "data": [trade_item(f"0x{page}a"), trade_item(f"0x{page}b", action="sell")],
            "pagination": {"page": page, "last_page": page == 2},
        })

    async with make_client(handler) as client:
        trades = await client.all_token_trades(
            "solana", "TokenAddr111", date(2025, 1, 1), date(2025, 1, 7), min_value_usd=500
        )

    assert [t.transaction_hash for t in trades] == ["0x1a", "0x1b", "0x2a", "0x2b"]
    assert trades[1].action == "SELL"
    assert trades[0].price_usd == 0.25
    assert trades[0].value_usd == 250
    assert trades[0].trader_label == "Smart Trader"
    assert [p["pagination"]["page"] for p in pages] == [1, 2]
    assert pages[0]["date"] == {"from": "2025-01-01", "to": "2025-01-07"}
    assert pages[0]["filters"] == {"estimated_value_usd": {"min": 500}, "action": "BUY"}
    assert pages[0]["only_smart_money"] is True


@pytest.mark.asyncio
async def test_all_token_trades_stops_at_max_pages():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"data": [], "pagination": {"last_page": False}})

    async with make_client(handler) as client:
        await client.all_token_trades("solana", "TokenAddr111", date(2025, 1, 1), date(2025, 1, 7), max_pages=3)

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_smart_money_trades_parsing():
    payload = {}

    def handler(request):
        payload.update(json.loads(request.content))
        return httpx.Response(200, json={"data": [
            {
                "chain": "solana",
                "block_timestamp": "2025-01-05T12:00:00Z",
                "transaction_hash": "0xabc",
                "trader_address": "wallet-a",
                "trader_address_label": None,
                "token_bought_address": "TokenAddr111",
                "token_bought_symbol": "FROG",
                "token_bought_amount": 4000,
                "token_bought_age_days": 0.3,
                "token_bought_market_cap_usd": 1_500_000,
                "trade_value_usd": 20_000,
            },
            {"transaction_hash": "0xbroken"},
        ]})

    async with make_client(handler) as client:
        trades = await client.smart_money_trades("solana", max_age_days=1, min_value_usd=1_000)

    (trade,) = trades
    assert trade.token_bought_address == "TokenAddr111"
    assert trade.trader_label == "Unknown"
    assert trade.trade_value_usd == 20_000
    assert trade.block_timestamp.year == 2025
    assert payload["chains"] == ["solana"]
    assert payload["filters"] == {
        "token_bought_age_days": {"min": 0, "max": 1},
        "trade_value_usd": {"min": 1_000},
    }


@pytest.mark.asyncio
async def test_token_screener():
    def handler(request):
        return httpx.Response(200, json={"data": [{
            "chain": "base",
            "token_address": "0xfeed",
            "symbol": "SEED",
            "token_age_days": 0.5,
            "market_cap_usd": 900_000,
            "liquidity_usd": 300_000,
            "price_usd": 0.01,
            "net_flow_usd": 40_000,
        }]})

    async with make_client(handler) as client:
        (token,) = await client.token_screener(["base"], max_age_days=1)

    assert token.chain == "base"
    assert token.liquidity_usd == 300_000
    assert token.price_usd == 0.01


def test_client_requires_context_manager():
    client = make_client(lambda request: httpx.Response(200))
    with pytest.raises(RuntimeError):
        client.client


def test_from_config():
    client = NansenClient.from_config(
        {"provider": {"base_url": "https://example.test/", "max_retries": 5, "min_interval_seconds": 1.5}},
        "key",
    )

    assert client.base_url == "https://example.test"
    assert client.max_retries == 5
    assert client.rate_limiter.min_interval == 1.5
