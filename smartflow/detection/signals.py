"""Signal eligibility gates and price ladders."""
from dataclasses import dataclass
from typing import Optional
import structlog

from smartflow.detection.fibonacci import fibonacci_extensions
from smartflow.detection.flow import FlowScorer
from smartflow.models import (
    EntryStatistics,
    FlowAnalysis,
    Signal,
    TakeProfitLevel,
    Token,
    utcnow,
)

logger = structlog.get_logger()

DEFAULT_TAKE_PROFIT = {
    "tp1": {"multiplier": 2.0, "percent": 50.0},
    "tp2": {"multiplier": 5.0, "percent": 30.0},
    "tp3": {"multiplier": 10.0, "percent": 100.0},
}


@dataclass(frozen=True)
class TakeProfitTarget:
    multiplier: float
    percent: float


def take_profit_targets(config: dict) -> tuple[TakeProfitTarget, TakeProfitTarget, TakeProfitTarget]:
    """Read the three take-profit targets from the ``take_profit`` config section."""
    section = config.get("take_profit", {}) or {}
    targets = []
    for name in ("tp1", "tp2", "tp3"):
        level = {**DEFAULT_TAKE_PROFIT[name], **(section.get(name) or {})}
        targets.append(TakeProfitTarget(float(level["multiplier"]), float(level["percent"])))
    return tuple(targets)


@dataclass
class SignalDecision:
    """Outcome of one eligibility evaluation."""
    signal: Optional[Signal]
    reason: str

    @property
    def emitted(self) -> bool:
        return self.signal is not None


class SignalEligibilityEngine:
    """Decides whether a token deserves a BUY signal and builds it."""

    def __init__(self, config: dict, scorer: Optional[FlowScorer] = None):
        signals = config.get("signals", {})
        filtering = config.get("filtering", {})

        self.min_flow_score = signals.get("min_flow_score", 50)
        self.min_smart_money_count = signals.get("min_smart_money_count", 2)
        self.min_smart_money_volume_usd = signals.get("min_smart_money_volume_usd", 10_000)
        self.min_liquidity_usd = filtering.get("min_liquidity_usd", 100_000)

        self.take_profits = take_profit_targets(config)
        self.scorer = scorer or FlowScorer()

    def check(self, token: Token, analysis: FlowAnalysis, stats: EntryStatistics) -> tuple[bool, str]:
        """Run the gates in order and stop at the first failure."""
        if analysis.score < self.min_flow_score:
            return False, f"Flow score too low: {analysis.score}"

        if not self.scorer.is_positive(analysis):
            return False, "Flow is not positive"

        if stats.count < self.min_smart_money_count:
            return False, f"Not enough smart money traders: {stats.count}"

        if stats.total_volume_usd < self.min_smart_money_volume_usd:
            return False, f"Total volume too low: ${stats.total_volume_usd:,.0f}"

        if token.liquidity_usd < self.min_liquidity_usd:
            return False, f"Liquidity too low: ${token.liquidity_usd:,.0f}"

        return True, "All criteria met"

    def evaluate(self, token: Token, analysis: FlowAnalysis, stats: EntryStatistics) -> SignalDecision:
        """Return a decision holding either a populated signal or the rejection reason."""
        eligible, reason = self.check(token, analysis, stats)
        if not eligible:
            logger.debug("signal_rejected", symbol=token.symbol, reason=reason)
            return SignalDecision(signal=None, reason=reason)

        first = stats.first_entry
        if first is None:
            logger.warning("no_first_entry", symbol=token.symbol)
            return SignalDecision(signal=None, reason="No first smart money entry")

        entry_price = token.first_seen_price_usd or stats.average_price_usd

        signal = Signal(
            token_id=token.id,
            chain=token.chain,
            token_address=token.address,
            symbol=token.symbol,
            generated_at=utcnow(),
            entry_price_usd=entry_price,
            current_price_usd=entry_price,
            first_smart_money_entry_price=first.price_usd,
            first_smart_money_entry_time=first.timestamp,
            smart_money_count=stats.count,
            total_smart_money_volume_usd=stats.total_volume_usd,
            flow_score=analysis.score,
            smart_money_flow_usd=analysis.smart_money_net_flow_usd,
            whale_flow_usd=analysis.whale_net_flow_usd,
            public_figure_flow_usd=analysis.public_figure_net_flow_usd,
            take_profits=self.ladder(entry_price),
            fibonacci=fibonacci_extensions(entry_price),
        )

        logger.info(
            "signal_generated",
            symbol=token.symbol,
            chain=token.chain,
            entry_price=entry_price,
            tp1=signal.tp1.price,
            tp2=signal.tp2.price,
            tp3=signal.tp3.price,
        )
        return SignalDecision(signal=signal, reason=reason)

    def ladder(self, entry_price: float) -> list[TakeProfitLevel]:
        return [
            TakeProfitLevel(price=entry_price * t.multiplier, percent=t.percent, multiplier=t.multiplier)
            for t in self.take_profits
        ]

    def evaluate_batch(
        self,
        tokens: list[Token],
        analyses: dict[int, FlowAnalysis],
        stats: dict[int, EntryStatistics],
    ) -> list[Signal]:
        """Evaluate tokens one after another, skipping those without a flow analysis."""
        signals = []
        for token in tokens:
            if token.id is None:
                continue
            analysis = analyses.get(token.id)
            if analysis is None:
                logger.debug("no_flow_analysis", symbol=token.symbol)
                continue
            decision = self.evaluate(token, analysis, stats.get(token.id) or _EMPTY_STATS)
            if decision.emitted:
                signals.append(decision.signal)

        logger.info("signals_evaluated", tokens=len(tokens), signals=len(signals))
        return signals


_EMPTY_STATS = EntryStatistics(count=0, total_volume_usd=0.0, average_price_usd=0.0, first_entry=None)
