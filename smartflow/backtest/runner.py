"""Entry point that runs the configured backtests."""
import asyncio
import sys
from datetime import datetime, timezone

import structlog

from smartflow.alerts.telegram import TelegramNotifier
from smartflow.api.nansen import NansenClient
from smartflow.backtest.engine import BacktestEngine
from smartflow.backtest.simulator import BacktestConfig
from smartflow.config import ConfigError, configure_logging, load_config, validate_config
from smartflow.storage.database import DB_PATH, Database

logger = structlog.get_logger()

DEFAULT_STRATEGIES = [
    {"name": "First Smart Money Entry", "entry_strategy": "first_smart_money", "min_smart_money_count": 2},
    {"name": "Accumulation Pattern", "entry_strategy": "accumulation", "min_smart_money_count": 3},
    {"name": "Flow Confirmation", "entry_strategy": "flow_confirmation", "min_flow_score": 60, "min_smart_money_count": 2},
]


def strategy_configs(config: dict) -> list[BacktestConfig]:
    """Build run configs from ``backtest.strategies``, filling period and chain defaults."""
    backtest = config.get("backtest", {})
    defaults = {
        "chain": backtest.get("chain", "solana"),
        "start_date": backtest.get("start_date", datetime(2025, 1, 1, tzinfo=timezone.utc)),
        "end_date": backtest.get("end_date", datetime(2025, 1, 14, tzinfo=timezone.utc)),
        "max_hold_days": backtest.get("max_hold_days", 7),
    }
    return [
        BacktestConfig.from_dict({**defaults, **item}, config)
        for item in backtest.get("strategies") or DEFAULT_STRATEGIES
    ]


async def main():
    configure_logging()
    config = load_config()
    try:
        validate_config(config)
    except ConfigError as e:
        logger.error("config_invalid", error=str(e))
        sys.exit(1)

    db = Database(config.get("database", {}).get("path", DB_PATH))
    notifier = TelegramNotifier()
    lookback_days = config.get("backtest", {}).get("entry_lookback_days", 30)
    max_age = config.get("filtering", {}).get("max_token_age_backtest_days", 7)

    await db.connect()
    try:
        async with NansenClient.from_config(config, config["provider"]["api_key"]) as client:
            engine = BacktestEngine(client, db, lookback_days=lookback_days, max_token_age_days=max_age)
            for bt_config in strategy_configs(config):
                result, _ = await engine.run(bt_config)
                logger.info(
                    "backtest_results",
                    strategy=result.strategy_name,
                    chain=result.chain,
                    total_signals=result.total_signals,
                    winning=result.winning_trades,
                    losing=result.losing_trades,
                    win_rate=f"{result.win_rate:.2f}%",
                    avg_return=f"{result.avg_return_percent:.2f}%",
                    max_return=f"{result.max_return_percent:.2f}%",
                    min_return=f"{result.min_return_percent:.2f}%",
                    total_return=f"{result.total_return_percent:.2f}%",
                    max_drawdown=f"{result.max_drawdown_percent:.2f}%",
                    avg_hold_hours=f"{result.avg_hold_time_hours:.1f}",
                )
                await notifier.send_backtest_summary(result)

        for index, result in enumerate(await db.get_backtest_results(10), start=1):
            logger.info(
                "recent_backtest",
                rank=index,
                strategy=result.strategy_name,
                chain=result.chain,
                win_rate=f"{result.win_rate:.1f}%",
                avg_return=f"{result.avg_return_percent:.2f}%",
            )
    finally:
        await db.close()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
