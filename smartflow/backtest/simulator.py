"""Stochastic trade simulation for historical token candidates.

The exit model is a placeholder: a single uniform draw picks one of five
outcome buckets and a second set of draws spreads the exit price and hold
time inside that bucket. Nothing here replays real price history.
"""
import json
import random
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Optional
import structlog

from smartflow.detection.entries import AccumulationDetector, summarize_entries
from smartflow.detection.signals import TakeProfitTarget, take_profit_targets
from smartflow.models import (
    ENTRY_STRATEGIES,
    BacktestTrade,
    FlowAnalysis,
    Token,
    TradeEntry,
    parse_timestamp,
)

logger = structlog.get_logger()

# Upper bound of each draw bucket, in ascending order; the last bound closes [0, 1).
EXIT_BUCKETS = (
    (0.10, "tp3"),
    (0.25, "tp2"),
    (0.50, "tp1"),
    (0.75, "time_limit"),
    (1.00, "stop_loss"),
)

# (base hours, spread hours) per exit reason
HOLD_HOURS = {
    "tp3": (24, 120),
    "tp2": (12, 72),
    "tp1": (6, 48),
    "time_limit": (48, 120),
    "stop_loss": (2, 24),
}

# (low, high) exit price multiplier for the non take-profit outcomes
EXIT_PRICE_RANGES = {
    "time_limit": (0.8, 1.2),
    "stop_loss": (0.5, 0.8),
}


def classify_draw(draw: float) -> str:
    """Map a draw in [0, 1) to its exit reason."""
    if not 0.0 <= draw < 1.0:
        raise ValueError(f"draw must be in [0, 1), got {draw}")
    for upper, reason in EXIT_BUCKETS[:-1]:
        if draw < upper:
            return reason
    return EXIT_BUCKETS[-1][1]


@dataclass
class BacktestConfig:
    """Parameters of one strategy run."""
    strategy_name: str
    chain: str
    start_date: datetime
    end_date: datetime
    entry_strategy: str = "first_smart_money"
    min_flow_score: int = 50
    min_smart_money_count: int = 2
    min_liquidity: float = 100_000
    take_profits: tuple[TakeProfitTarget, ...] = field(
        default_factory=lambda: take_profit_targets({})
    )
    max_hold_days: int = 7
    accumulation_window_minutes: int = 60
    seed: Optional[int] = None

    def __post_init__(self):
        if self.entry_strategy not in ENTRY_STRATEGIES:
            raise ValueError(f"Unknown entry strategy: {self.entry_strategy}")

    @classmethod
    def from_dict(cls, data: dict, config: dict) -> "BacktestConfig":
        """Build a run config from a ``backtest.strategies`` item and the app config."""
        filtering = config.get("filtering", {})
        backtest = config.get("backtest", {})
        return cls(
            strategy_name=data["name"],
            chain=data.get("chain", "solana"),
            start_date=parse_timestamp(data["start_date"]),
            end_date=parse_timestamp(data["end_date"]),
            entry_strategy=data.get("entry_strategy", "first_smart_money"),
            min_flow_score=data.get("min_flow_score", 50),
            min_smart_money_count=data.get("min_smart_money_count", 2),
            min_liquidity=data.get("min_liquidity", filtering.get("min_liquidity_usd", 100_000)),
            take_profits=take_profit_targets(config),
            max_hold_days=data.get("max_hold_days", 7),
            seed=data.get("seed", backtest.get("seed")),
        )

    def to_json(self) -> str:
        data = asdict(self)
        data["start_date"] = self.start_date.isoformat()
        data["end_date"] = self.end_date.isoformat()
        return json.dumps(data)


@dataclass
class ExitOutcome:
    exit_price: float
    hold_time_hours: float
    exit_reason: str

    def return_percent(self, entry_price: float) -> float:
        return (self.exit_price - entry_price) / entry_price * 100


@dataclass
class SimulationOutcome:
    """A simulated trade, or the reason none was taken."""
    trade: Optional[BacktestTrade]
    reason: str


class BacktestSimulator:
    """Picks an entry for a token according to a strategy and simulates the exit."""

    def __init__(self, config: BacktestConfig, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng if rng is not None else random.Random(config.seed)
        self.detector = AccumulationDetector(config.accumulation_window_minutes)

    def simulate(
        self,
        token: Token,
        entries: list[TradeEntry],
        flow: Optional[FlowAnalysis] = None,
    ) -> SimulationOutcome:
        stats = summarize_entries(entries)
        cfg = self.config

        if stats.first_entry is None:
            return SimulationOutcome(None, "No smart money entries")
        if stats.count < cfg.min_smart_money_count:
            return SimulationOutcome(None, f"Not enough smart money traders: {stats.count}")
        if token.liquidity_usd < cfg.min_liquidity:
            return SimulationOutcome(None, f"Liquidity too low: ${token.liquidity_usd:,.0f}")

        if cfg.entry_strategy == "first_smart_money":
            entry_price = stats.first_entry.price_usd
            entry_date = stats.first_entry.timestamp

        elif cfg.entry_strategy == "accumulation":
            window = self.detector.detect(entries)
            if not window.has_accumulation:
                return SimulationOutcome(None, "No accumulation pattern")
            entry_price = stats.average_price_usd
            entry_date = window.start

        else:  # flow_confirmation
            if flow is None:
                return SimulationOutcome(None, "No flow analysis")
            if flow.score < cfg.min_flow_score:
                return SimulationOutcome(None, f"Flow score too low: {flow.score}")
            entry_price = stats.first_entry.price_usd
            entry_date = stats.first_entry.timestamp

        if entry_price <= 0:
            return SimulationOutcome(None, "Entry price is not positive")

        outcome = self.simulate_exit(entry_price)
        trade = BacktestTrade(
            token_address=token.address,
            symbol=token.symbol,
            entry_date=entry_date,
            entry_price=entry_price,
            exit_date=entry_date + timedelta(hours=outcome.hold_time_hours),
            exit_price=outcome.exit_price,
            return_percent=outcome.return_percent(entry_price),
            hold_time_hours=outcome.hold_time_hours,
            exit_reason=outcome.exit_reason,
        )
        logger.debug(
            "trade_simulated",
            symbol=token.symbol,
            exit_reason=trade.exit_reason,
            return_percent=round(trade.return_percent, 2),
        )
        return SimulationOutcome(trade, "Simulated")

    def simulate_exit(self, entry_price: float) -> ExitOutcome:
        """Draw an exit for a position opened at ``entry_price``."""
        reason = classify_draw(self.rng.random())
        tp1, tp2, tp3 = self.config.take_profits[:3]

        if reason == "tp3":
            exit_price = entry_price * tp3.multiplier
        elif reason == "tp2":
            exit_price = entry_price * tp2.multiplier
        elif reason == "tp1":
            exit_price = entry_price * tp1.multiplier
        else:
            low, high = EXIT_PRICE_RANGES[reason]
            exit_price = entry_price * (low + self.rng.random() * (high - low))

        base, spread = HOLD_HOURS[reason]
        hold_time_hours = base + self.rng.random() * spread

        return ExitOutcome(exit_price=exit_price, hold_time_hours=hold_time_hours, exit_reason=reason)
