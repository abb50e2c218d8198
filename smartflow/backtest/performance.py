"""Performance statistics over simulated trades."""
import statistics
from typing import Optional, Sequence

from smartflow.backtest.simulator import BacktestConfig
from smartflow.models import BacktestResult, BacktestTrade


def cumulative_returns(returns: Sequence[float]) -> list[float]:
    """Running sum of returns, starting from 0 before the first trade."""
    series = [0.0]
    current = 0.0
    for value in returns:
        current += value
        series.append(current)
    return series


def max_drawdown(series: Sequence[float]) -> float:
    """Largest drop from a running peak to a later point of the series."""
    if not series:
        return 0.0
    peak = series[0]
    worst = 0.0
    for value in series:
        if value > peak:
            peak = value
        worst = max(worst, peak - value)
    return worst


def sharpe_ratio(returns: Sequence[float]) -> Optional[float]:
    """Mean over sample standard deviation of per-trade returns."""
    if len(returns) < 2:
        return None
    stdev = statistics.stdev(returns)
    if stdev == 0:
        return None
    return statistics.mean(returns) / stdev


class PerformanceAggregator:
    """Reduces a run's trades, in simulation order, into one result."""

    def aggregate(self, config: BacktestConfig, trades: Sequence[BacktestTrade]) -> BacktestResult:
        returns = [t.return_percent for t in trades]
        total = len(trades)
        winners = sum(1 for r in returns if r > 0)

        if total:
            avg_return = sum(returns) / total
            max_return = max(returns)
            min_return = min(returns)
            avg_hold = sum(t.hold_time_hours for t in trades) / total
            win_rate = winners / total * 100
        else:
            avg_return = max_return = min_return = avg_hold = win_rate = 0.0

        # Equal weight per trade, no compounding.
        total_return = avg_return

        return BacktestResult(
            strategy_name=config.strategy_name,
            chain=config.chain,
            backtest_start_date=config.start_date,
            backtest_end_date=config.end_date,
            total_signals=total,
            winning_trades=winners,
            losing_trades=total - winners,
            win_rate=win_rate,
            avg_return_percent=avg_return,
            max_return_percent=max_return,
            min_return_percent=min_return,
            total_return_percent=total_return,
            max_drawdown_percent=max_drawdown(cumulative_returns(returns)),
            avg_hold_time_hours=avg_hold,
            metadata=config.to_json(),
            sharpe_ratio=sharpe_ratio(returns),
        )
