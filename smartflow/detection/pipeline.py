"""Per-token analysis shared by the live monitor and the dashboard."""
from typing import Iterable, Optional
import structlog

from smartflow.api.nansen import NansenClient
from smartflow.detection.entries import summarize_entries
from smartflow.detection.flow import FlowScorer
from smartflow.detection.history import EntryCollector
from smartflow.detection.signals import SignalEligibilityEngine
from smartflow.models import EntryStatistics, FlowAnalysis, Signal, Token
from smartflow.storage.database import Database

logger = structlog.get_logger()


class TokenAnalyzer:
    """Collects entries, scores flow and stores at most one signal per token."""

    def __init__(
        self,
        config: dict,
        client: NansenClient,
        db: Database,
        scorer: Optional[FlowScorer] = None,
        engine: Optional[SignalEligibilityEngine] = None,
    ):
        monitor = config.get("monitor", {})
        self.lookback_days = monitor.get("entry_lookback_days", 7)
        self.timeframe = monitor.get("flow_timeframe", "24h")

        self.client = client
        self.db = db
        self.scorer = scorer or FlowScorer()
        self.engine = engine or SignalEligibilityEngine(config, scorer=self.scorer)
        self.collector = EntryCollector(client, db)

    async def analyze(self, tokens: Iterable[Token]) -> list[Signal]:
        """Analyze tokens one at a time and return the newly stored signals."""
        pending: list[Token] = []
        for token in tokens:
            if await self.db.get_signal_for_token(token.id) is not None:
                logger.debug("signal_exists", symbol=token.symbol)
                continue
            pending.append(token)

        stats: dict[int, EntryStatistics] = {}
        analyses: dict[int, FlowAnalysis] = {}

        for token in pending:
            try:
                entries = await self.collector.collect(token, self.lookback_days)
                stats[token.id] = summarize_entries(entries)

                snapshot = await self.client.flow_intelligence(token.chain, token.address, self.timeframe)
                if snapshot is None:
                    continue
                analysis = self.scorer.analyze(snapshot, token_id=token.id)
                await self.db.record_flow_analysis(analysis)
                analyses[token.id] = analysis
                logger.info("flow_analyzed", symbol=token.symbol, score=analysis.score)
            except Exception as e:
                logger.error("token_analysis_failed", symbol=token.symbol, error=str(e))

        signals = self.engine.evaluate_batch(pending, analyses, stats)
        for sig in signals:
            await self.db.insert_signal(sig)
        return signals
