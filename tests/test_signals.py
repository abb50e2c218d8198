import pytest

from smartflow.detection.fibonacci import fibonacci_extensions, nearest_fib_level
from smartflow.detection.signals import SignalEligibilityEngine, take_profit_targets
from smartflow.models import EntryStatistics


@pytest.fixture
def engine():
    return SignalEligibilityEngine({})


@pytest.fixture
def stats(make_entry):
    first = make_entry("wallet-a", minutes=0, price=0.4)
    return EntryStatistics(count=3, total_volume_usd=15_000, average_price_usd=0.45, first_entry=first)


def test_eligible_token_gets_signal(engine, make_token, make_analysis, stats):
    decision = engine.evaluate(make_token(), make_analysis(), stats)

    assert decision.emitted
    assert decision.reason == "All criteria met"
    signal = decision.signal
    assert signal.entry_price_usd == 0.5
    assert signal.current_price_usd == 0.5
    assert signal.status == "active"
    assert signal.signal_type == "BUY"
    assert signal.first_smart_money_entry_price == 0.4
    assert signal.first_smart_money_entry_time == stats.first_entry.timestamp
    assert signal.smart_money_count == 3
    assert signal.flow_score == 80


def test_take_profit_ladder(engine, make_token, make_analysis, stats):
    signal = engine.evaluate(make_token(), make_analysis(), stats).signal

    assert [tp.price for tp in signal.take_profits] == [1.0, 2.5, 5.0]
    assert [tp.percent for tp in signal.take_profits] == [50, 30, 100]
    assert signal.fibonacci.fib_618 == pytest.approx(0.5 * 1.618)


def test_entry_price_falls_back_to_average(engine, make_token, make_analysis, stats):
    signal = engine.evaluate(make_token(first_seen_price_usd=0), make_analysis(), stats).signal

    assert signal.entry_price_usd == 0.45
    assert signal.tp1.price == pytest.approx(0.9)


def test_flow_score_gate(engine, make_token, make_analysis, stats):
    decision = engine.evaluate(make_token(), make_analysis(score=49), stats)

    assert not decision.emitted
    assert decision.reason == "Flow score too low: 49"


def test_flow_must_be_positive(engine, make_token, make_analysis, stats):
    decision = engine.evaluate(make_token(), make_analysis(whale_flow=-10), stats)
    assert decision.reason == "Flow is not positive"


def test_trader_count_gate(engine, make_token, make_analysis, stats):
    stats.count = 1
    decision = engine.evaluate(make_token(), make_analysis(), stats)
    assert decision.reason == "Not enough smart money traders: 1"


def test_volume_gate(engine, make_token, make_analysis, stats):
    stats.total_volume_usd = 5_000
    decision = engine.evaluate(make_token(), make_analysis(), stats)
    assert decision.reason == "Total volume too low: $5,000"


def test_liquidity_gate(engine, make_token, make_analysis, stats):
    decision = engine.evaluate(make_token(liquidity_usd=99_999), make_analysis(), stats)
    assert decision.reason == "Liquidity too low: $99,999"


def test_missing_first_entry(engine, make_token, make_analysis, stats):
    stats.first_entry = None
    decision = engine.evaluate(make_token(), make_analysis(), stats)

    assert not decision.emitted
    assert decision.reason == "No first smart money entry"


def test_thresholds_from_config(make_token, make_analysis, stats):
    engine = SignalEligibilityEngine({"signals": {"min_flow_score": 90}})
    assert engine.evaluate(make_token(), make_analysis(score=85), stats).reason == "Flow score too low: 85"


def test_custom_take_profit_multipliers(make_token, make_analysis, stats):
    engine = SignalEligibilityEngine({"take_profit": {"tp1": {"multiplier": 1.5}}})
    signal = engine.evaluate(make_token(), make_analysis(), stats).signal

    assert signal.tp1.price == 0.75
    assert signal.tp1.percent == 50
    assert signal.tp2.price == 2.5


def test_take_profit_targets_defaults():
    tp1, tp2, tp3 = take_profit_targets({})
    assert (tp1.multiplier, tp2.multiplier, tp3.multiplier) == (2.0, 5.0, 10.0)


def test_evaluate_batch_skips_tokens_without_analysis(engine, make_token, make_analysis, stats):
    tokens = [make_token(id=1), make_token(id=2, address="Other"), make_token(id=None)]

    signals = engine.evaluate_batch(tokens, {1: make_analysis()}, {1: stats, 2: stats})

    assert [s.token_id for s in signals] == [1]


def test_evaluate_batch_without_stats(engine, make_token, make_analysis):
    assert engine.evaluate_batch([make_token()], {1: make_analysis()}, {}) == []


def test_signal_to_dict(engine, make_token, make_analysis, stats):
    data = engine.evaluate(make_token(), make_analysis(), stats).signal.to_dict()

    assert data["tp2_price"] == 2.5
    assert data["tp3_percent"] == 100
    assert data["fib_1618"] == pytest.approx(1.309)
    assert data["closed_at"] is None


def test_fibonacci_extensions():
    levels = fibonacci_extensions(1.0)
    assert levels.as_dict() == {
        "fib_236": 1.236,
        "fib_382": 1.382,
        "fib_500": 1.5,
        "fib_618": 1.618,
        "fib_786": 1.786,
        "fib_1618": 2.618,
    }


def test_nearest_fib_level():
    name, price, distance = nearest_fib_level(1.6, fibonacci_extensions(1.0))

    assert name == "fib_618"
    assert price == 1.618
    assert distance == pytest.approx(0.018)
