"""Runs a strategy over stored tokens and persists the outcome."""
import random
from typing import Optional

import structlog

from smartflow.api.nansen import NansenClient
from smartflow.backtest.performance import PerformanceAggregator
from smartflow.backtest.simulator import BacktestConfig, BacktestSimulator
from smartflow.detection.flow import FlowScorer
from smartflow.detection.history import EntryCollector
from smartflow.models import BacktestResult, BacktestTrade, Token
from smartflow.storage.database import Database

logger = structlog.get_logger()


class BacktestEngine:
    """Feeds historical tokens through the simulator and aggregates the trades."""

    def __init__(
        self,
        client: NansenClient,
        db: Database,
        lookback_days: int = 30,
        flow_timeframe: str = "24h",
        max_token_age_days: Optional[float] = None,
    ):
        self.client = client
        self.db = db
        self.collector = EntryCollector(client, db)
        self.scorer = FlowScorer()
        self.aggregator = PerformanceAggregator()
        self.lookback_days = lookback_days
        self.flow_timeframe = flow_timeframe
        self.max_token_age_days = max_token_age_days

    async def run(
        self, config: BacktestConfig, rng: Optional[random.Random] = None
    ) -> tuple[BacktestResult, list[BacktestTrade]]:
        logger.info(
            "backtest_start",
            strategy=config.strategy_name,
            chain=config.chain,
            start=config.start_date.isoformat(),
            end=config.end_date.isoformat(),
        )

        simulator = BacktestSimulator(config, rng=rng)
        tokens = await self.db.get_tokens_discovered_between(config.chain, config.start_date, config.end_date)
        if self.max_token_age_days is not None:
            tokens = [t for t in tokens if t.token_age_days <= self.max_token_age_days]
        logger.info("backtest_tokens", count=len(tokens))

        trades: list[BacktestTrade] = []
        for token in tokens:
            try:
                trade = await self._simulate_token(simulator, token)
            except Exception as e:
                logger.error("trade_simulation_failed", symbol=token.symbol, error=str(e))
                continue
            if trade is not None:
                trades.append(trade)

        result = self.aggregator.aggregate(config, trades)
        result_id = await self.db.insert_backtest_result(result)
        for trade in trades:
            await self.db.insert_backtest_trade(result_id, trade)

        logger.info(
            "backtest_complete",
            strategy=config.strategy_name,
            trades=result.total_signals,
            win_rate=round(result.win_rate, 1),
            avg_return=round(result.avg_return_percent, 2),
            max_drawdown=round(result.max_drawdown_percent, 2),
        )
        return result, trades

    async def _simulate_token(self, simulator: BacktestSimulator, token: Token) -> Optional[BacktestTrade]:
        entries = await self.collector.collect(token, self.lookback_days)

        flow = None
        if simulator.config.entry_strategy == "flow_confirmation":
            snapshot = await self.client.flow_intelligence(token.chain, token.address, self.flow_timeframe)
            if snapshot is not None:
                flow = self.scorer.analyze(snapshot, token_id=token.id)
                await self.db.record_flow_analysis(flow)

        outcome = simulator.simulate(token, entries, flow)
        if outcome.trade is None:
            logger.debug("no_trade", symbol=token.symbol, reason=outcome.reason)
        return outcome.trade
