from datetime import datetime, timedelta, timezone

import pytest

from smartflow.backtest.performance import PerformanceAggregator
from smartflow.backtest.simulator import BacktestConfig
from smartflow.detection.signals import SignalEligibilityEngine
from smartflow.models import BacktestTrade, EntryStatistics, FlowSnapshot


@pytest.fixture
def signal(make_token, make_analysis, make_entry):
    stats = EntryStatistics(
        count=3, total_volume_usd=20_000, average_price_usd=0.5, first_entry=make_entry("wallet-a", price=0.4)
    )
    return SignalEligibilityEngine({}).evaluate(make_token(), make_analysis(), stats).signal


@pytest.mark.asyncio
async def test_upsert_token_is_idempotent(db, make_token):
    first = await db.upsert_token(make_token(id=None))
    second = await db.upsert_token(make_token(id=None, liquidity_usd=1.0, symbol="OTHER"))

    assert first.id is not None
    assert second.id == first.id
    assert second.liquidity_usd == 250_000
    assert second.symbol == "FROG"
    assert len(await db.get_recent_tokens()) == 1


@pytest.mark.asyncio
async def test_token_round_trip(db, make_token, t0):
    stored = await db.upsert_token(make_token(id=None))
    loaded = await db.get_token(stored.id)

    assert loaded == stored
    assert loaded.discovered_at == t0
    assert await db.get_token(999) is None


@pytest.mark.asyncio
async def test_tokens_discovered_between(db, make_token, t0):
    await db.upsert_token(make_token(id=None, address="early", discovered_at=t0 - timedelta(days=10)))
    await db.upsert_token(make_token(id=None, address="inside", discovered_at=t0))
    await db.upsert_token(make_token(id=None, address="other-chain", chain="base", discovered_at=t0))

    tokens = await db.get_tokens_discovered_between("solana", t0 - timedelta(days=1), t0 + timedelta(days=1))

    assert [t.address for t in tokens] == ["inside"]


@pytest.mark.asyncio
async def test_duplicate_entry_is_ignored(db, make_entry):
    entry = make_entry("wallet-a", minutes=10)

    assert await db.insert_entry(entry)
    assert not await db.insert_entry(entry)
    assert len(await db.get_entries(1)) == 1


@pytest.mark.asyncio
async def test_entries_ordered_by_time(db, make_entry):
    entries = [make_entry("b", minutes=20), make_entry("a", minutes=5, is_first_entry=True)]

    assert await db.insert_entries(entries) == 2
    loaded = await db.get_entries(1)

    assert [e.trader_address for e in loaded] == ["a", "b"]
    assert loaded[0].is_first_entry
    assert loaded[0].timestamp == entries[1].timestamp


@pytest.mark.asyncio
async def test_mark_first_entry_flags_only_earliest(db, make_entry):
    await db.insert_entries([make_entry("late", minutes=30, is_first_entry=True)])
    await db.insert_entries([make_entry("early", minutes=0, is_first_entry=True)])

    await db.mark_first_entry(1)
    loaded = await db.get_entries(1)

    assert [(e.trader_address, e.is_first_entry) for e in loaded] == [("early", True), ("late", False)]


@pytest.mark.asyncio
async def test_latest_flow_analysis(db, make_analysis):
    await db.record_flow_analysis(make_analysis(score=40))
    latest = make_analysis(score=75)
    row_id = await db.record_flow_analysis(latest)

    loaded = await db.get_latest_flow_analysis(1)

    assert latest.id == row_id
    assert loaded.id == row_id
    assert loaded.score == 75
    assert isinstance(loaded.snapshot, FlowSnapshot)
    assert loaded.smart_money_net_flow_usd == 60_000
    assert await db.get_latest_flow_analysis(42) is None


@pytest.mark.asyncio
async def test_signal_round_trip(db, signal):
    signal_id = await db.insert_signal(signal)

    (loaded,) = await db.get_active_signals()

    assert loaded.id == signal_id
    assert loaded.to_dict() == signal.to_dict()
    assert loaded.tp2.multiplier == 5.0


@pytest.mark.asyncio
async def test_closing_signal(db, signal):
    signal_id = await db.insert_signal(signal)

    await db.update_signal_status(signal_id, "closed", final_return=42.0)

    assert await db.get_active_signals() == []
    (loaded,) = await db.get_signals()
    assert loaded.status == "closed"
    assert loaded.closed_at is not None
    assert loaded.final_return_percent == 42.0


@pytest.mark.asyncio
async def test_take_profit_status_keeps_signal_open(db, signal):
    signal_id = await db.insert_signal(signal)

    await db.update_signal_status(signal_id, "tp1_hit")
    await db.update_signal_price(signal_id, 1.1)

    (loaded,) = await db.get_signals()
    assert loaded.status == "tp1_hit"
    assert loaded.closed_at is None
    assert loaded.current_price_usd == 1.1


@pytest.mark.asyncio
async def test_unknown_status_rejected(db, signal):
    signal_id = await db.insert_signal(signal)

    with pytest.raises(ValueError):
        await db.update_signal_status(signal_id, "expired")


@pytest.mark.asyncio
async def test_signal_for_token(db, signal):
    assert await db.get_signal_for_token(signal.token_id) is None

    signal_id = await db.insert_signal(signal)
    stored = await db.get_signal_for_token(signal.token_id)

    assert stored.id == signal_id
    assert await db.get_signal_for_token(999) is None


@pytest.mark.asyncio
async def test_backtest_round_trip(db, t0):
    config = BacktestConfig(
        strategy_name="First Smart Money Entry",
        chain="solana",
        start_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
        end_date=datetime(2025, 1, 14, tzinfo=timezone.utc),
    )
    trades = [
        BacktestTrade("addr1", "AAA", t0, 1.0, t0 + timedelta(hours=10), 2.0, 100.0, 10.0, "tp1"),
        BacktestTrade("addr2", "BBB", t0 + timedelta(hours=1), 1.0, t0 + timedelta(hours=5), 0.6, -40.0, 4.0, "stop_loss"),
    ]
    result = PerformanceAggregator().aggregate(config, trades)

    result_id = await db.insert_backtest_result(result)
    for trade in trades:
        await db.insert_backtest_trade(result_id, trade)

    (loaded,) = await db.get_backtest_results()
    assert loaded.id == result_id
    assert loaded.to_dict() == result.to_dict()
    assert await db.get_backtest_trades(result_id) == trades
    assert await db.get_backtest_trades(result_id + 1) == []
