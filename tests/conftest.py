"""Shared fixtures for the SmartFlow tests."""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from smartflow.models import FlowAnalysis, FlowSnapshot, SmartMoneyTrade, Token, TokenTrade, TradeEntry
from smartflow.storage.database import Database

T0 = datetime(2025, 1, 5, 12, 0, tzinfo=timezone.utc)


class FakeNansen:
    """In-memory stand-in for the provider client."""

    def __init__(self, smart_money=None, trades=None, flows=None, screened=None, failing=()):
        self.smart_money = smart_money or {}
        self.trades = trades or {}
        self.flows = flows or {}
        self.screened = screened or []
        self.failing = set(failing)
        self.trade_requests = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def smart_money_trades(self, chain, max_age_days=None, min_value_usd=None, per_page=100):
        if chain in self.failing:
            raise RuntimeError(f"{chain} unavailable")
        return self.smart_money.get(chain, [])

    async def token_screener(self, chains, max_age_days=None, min_liquidity_usd=None, timeframe="24h", per_page=100):
        return [row for row in self.screened if row.chain in chains]

    async def all_token_trades(self, chain, token_address, date_from, date_to, max_pages=20, **kwargs):
        self.trade_requests.append((token_address, kwargs))
        if token_address in self.failing:
            raise RuntimeError(f"{token_address} unavailable")
        return self.trades.get(token_address, [])

    async def flow_intelligence(self, chain, token_address, timeframe="24h"):
        return self.flows.get(token_address)


class ScriptedRandom:
    """Random source that replays fixed draws."""

    def __init__(self, draws):
        self.draws = list(draws)

    def random(self) -> float:
        return self.draws.pop(0)


@pytest.fixture
def scripted_rng():
    return ScriptedRandom


@pytest.fixture
def fake_nansen():
    return FakeNansen


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def make_token():
    def _make(**overrides) -> Token:
        fields = dict(
            chain="solana",
            address="TokenAddr111",
            symbol="FROG",
            discovered_at=T0,
            token_age_days=0.5,
            market_cap_usd=2_000_000,
            liquidity_usd=250_000,
            first_seen_price_usd=0.5,
            id=1,
        )
        fields.update(overrides)
        return Token(**fields)
    return _make


@pytest.fixture
def make_entry():
    counter = {"n": 0}

    def _make(trader: str, minutes: float = 0, price: float = 1.0, value: float = 5_000, **overrides) -> TradeEntry:
        counter["n"] += 1
        fields = dict(
            token_id=1,
            chain="solana",
            token_address="TokenAddr111",
            trader_address=trader,
            trader_label="Smart Trader",
            timestamp=T0 + timedelta(minutes=minutes),
            price_usd=price,
            value_usd=value,
            transaction_hash=f"0xtx{counter['n']}",
        )
        fields.update(overrides)
        return TradeEntry(**fields)
    return _make


@pytest.fixture
def make_trade():
    def _make(tx: str, trader: str, minutes: float = 0, action: str = "BUY", price: float = 1.0, value: float = 5_000):
        return TokenTrade(
            block_timestamp=T0 + timedelta(minutes=minutes),
            transaction_hash=tx,
            trader_address=trader,
            trader_label="Fund",
            action=action,
            token_address="TokenAddr111",
            token_symbol="FROG",
            token_amount=value / price,
            price_usd=price,
            value_usd=value,
        )
    return _make


@pytest.fixture
def make_analysis():
    def _make(score: int = 80, sm_flow: float = 60_000, sm_count: int = 3, whale_flow: float = 1_000, **extra) -> FlowAnalysis:
        snapshot = FlowSnapshot(
            chain="solana",
            token_address="TokenAddr111",
            smart_money_net_flow_usd=sm_flow,
            smart_money_wallet_count=sm_count,
            whale_net_flow_usd=whale_flow,
            **extra,
        )
        return FlowAnalysis(snapshot=snapshot, score=score, token_id=1)
    return _make


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(str(tmp_path / "smartflow.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def make_sm_trade():
    def _make(address: str, value: float = 20_000, amount: float = 40_000, symbol: str = "FROG", tx: str = "0xsm"):
        return SmartMoneyTrade(
            chain="solana",
            block_timestamp=T0,
            transaction_hash=tx,
            trader_address="wallet-a",
            trader_label="Fund",
            token_bought_address=address,
            token_bought_symbol=symbol,
            token_bought_amount=amount,
            token_bought_age_days=0.5,
            token_bought_market_cap_usd=1_000_000,
            trade_value_usd=value,
        )
    return _make
