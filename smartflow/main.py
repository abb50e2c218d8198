"""Main entry point for the SmartFlow live monitor."""
import asyncio
import signal
import sys
from typing import Optional

import structlog

from smartflow.alerts.telegram import TelegramNotifier
from smartflow.api.nansen import NansenClient
from smartflow.config import ConfigError, configure_logging, load_config, validate_config
from smartflow.detection.discovery import TokenDiscovery
from smartflow.detection.flow import FlowScorer
from smartflow.detection.pipeline import TokenAnalyzer
from smartflow.detection.signals import SignalEligibilityEngine
from smartflow.models import Signal, utcnow
from smartflow.storage.database import DB_PATH, Database

logger = structlog.get_logger()


class SmartMoneyMonitor:
    """Runs discovery, entry collection, flow scoring and signal generation on a loop."""

    def __init__(self, config: dict, db: Optional[Database] = None, notifier: Optional[TelegramNotifier] = None):
        self.config = config
        self.db = db or Database(config.get("database", {}).get("path", DB_PATH))
        self.notifier = notifier or TelegramNotifier()
        self.scorer = FlowScorer()
        self.engine = SignalEligibilityEngine(config, scorer=self.scorer)

        trading = config.get("trading", {})
        self.chains = trading.get("chains", ["solana", "base", "bnb"])

        filtering = config.get("filtering", {})
        self.max_token_age_days = filtering.get("max_token_age_live_days", 1)

        monitor = config.get("monitor", {})
        self.interval = monitor.get("interval_seconds", 300)

        self._stop = asyncio.Event()

        # Stats
        self.start_time = utcnow()
        self.cycles = 0
        self.signals_generated = 0

    def stop(self):
        logger.info("monitor_stopping")
        self._stop.set()

    async def start(self):
        """Start the monitor and loop until stopped."""
        logger.info(
            "monitor_starting",
            chains=self.chains,
            interval=self.interval,
            max_token_age_days=self.max_token_age_days,
            min_liquidity=self.engine.min_liquidity_usd,
        )
        await self.db.connect()
        await self.notifier.send_startup_message(self.chains)

        while not self._stop.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error("analysis_cycle_failed", error=str(e))

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self, client: Optional[NansenClient] = None) -> list[Signal]:
        """Execute one analysis cycle and return the signals it produced."""
        logger.info("cycle_start")
        self.cycles += 1

        if client is None:
            async with NansenClient.from_config(self.config, self.config["provider"]["api_key"]) as client:
                return await self._run_cycle(client)
        return await self._run_cycle(client)

    async def _run_cycle(self, client: NansenClient) -> list[Signal]:
        # 1. Discover tokens
        discovery = TokenDiscovery(self.config, client, self.db)
        tokens = await discovery.discover(self.chains, self.max_token_age_days)
        if not tokens:
            logger.info("no_new_tokens")
            return []

        # 2. Collect entries, score flows and generate signals for tokens without one
        analyzer = TokenAnalyzer(self.config, client, self.db, scorer=self.scorer, engine=self.engine)
        signals = await analyzer.analyze(tokens)

        for sig in signals:
            await self.notifier.send_signal(sig)
            self.signals_generated += 1

        logger.info("cycle_complete", tokens=len(tokens), signals=len(signals), total_signals=self.signals_generated)
        return signals

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("monitor_shutting_down", cycles=self.cycles)
        await self.db.close()


async def main():
    """Main entry point."""
    configure_logging()
    config = load_config()
    try:
        validate_config(config)
    except ConfigError as e:
        logger.error("config_invalid", error=str(e))
        sys.exit(1)

    monitor = SmartMoneyMonitor(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, monitor.stop)
        except NotImplementedError:
            logger.debug("signal_handler_unsupported", signal=sig.name)

    try:
        await monitor.start()
    finally:
        await monitor.shutdown()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
