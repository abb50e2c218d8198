"""Collects smart-money buy history for tokens."""
from datetime import timedelta
import structlog

from smartflow.api.nansen import NansenClient
from smartflow.detection.entries import build_entries
from smartflow.models import Token, TradeEntry, utcnow
from smartflow.storage.database import Database

logger = structlog.get_logger()


class EntryCollector:
    """Fetches a token's smart-money buys, stores them and reads back the full set."""

    def __init__(self, client: NansenClient, db: Database, max_pages: int = 20, min_value_usd: float = 100):
        self.client = client
        self.db = db
        self.max_pages = max_pages
        self.min_value_usd = min_value_usd

    async def collect(self, token: Token, lookback_days: int = 7) -> list[TradeEntry]:
        date_to = utcnow().date()
        date_from = date_to - timedelta(days=lookback_days)

        trades = await self.client.all_token_trades(
            token.chain,
            token.address,
            date_from,
            date_to,
            max_pages=self.max_pages,
            only_smart_money=True,
            action="BUY",
            min_value_usd=self.min_value_usd,
        )
        if not trades:
            logger.info("no_smart_money_buys", symbol=token.symbol)

        entries = build_entries(token, trades)
        if token.id is None:
            return entries

        saved = await self.db.insert_entries(entries)
        await self.db.mark_first_entry(token.id)
        logger.info("entries_saved", symbol=token.symbol, fetched=len(entries), saved=saved)
        return await self.db.get_entries(token.id)
