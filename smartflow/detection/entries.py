"""Smart-money entry ingestion, statistics and accumulation detection."""
from datetime import timedelta
from typing import Iterable
import structlog

from smartflow.models import (
    AccumulationWindow,
    EntryStatistics,
    Token,
    TokenTrade,
    TradeEntry,
)

logger = structlog.get_logger()

MIN_ACCUMULATION_TRADERS = 3


def build_entries(token: Token, trades: Iterable[TokenTrade]) -> list[TradeEntry]:
    """Turn provider trades into entries for a token.

    Only BUY trades are kept. Trades are keyed by transaction hash and the
    first occurrence wins. The chronologically first kept trade is flagged
    as the first entry.
    """
    by_hash: dict[str, TokenTrade] = {}
    for trade in trades:
        if trade.action.upper() != "BUY":
            continue
        if not trade.transaction_hash or trade.transaction_hash in by_hash:
            continue
        by_hash[trade.transaction_hash] = trade

    ordered = sorted(by_hash.values(), key=lambda t: t.block_timestamp)

    entries = []
    for index, trade in enumerate(ordered):
        entries.append(
            TradeEntry(
                token_id=token.id,
                chain=token.chain,
                token_address=token.address,
                trader_address=trade.trader_address,
                trader_label=trade.trader_label or "Unknown",
                timestamp=trade.block_timestamp,
                price_usd=trade.price_usd,
                value_usd=trade.value_usd,
                transaction_hash=trade.transaction_hash,
                is_first_entry=index == 0,
            )
        )
    return entries


def summarize_entries(entries: Iterable[TradeEntry]) -> EntryStatistics:
    """Aggregate entries into distinct-trader count, volume, mean price and first entry."""
    entries = list(entries)
    if not entries:
        return EntryStatistics(count=0, total_volume_usd=0.0, average_price_usd=0.0, first_entry=None)

    traders = {e.trader_address for e in entries}
    total_volume = sum(e.value_usd for e in entries)
    average_price = sum(e.price_usd for e in entries) / len(entries)
    first_entry = min(entries, key=lambda e: e.timestamp)

    return EntryStatistics(
        count=len(traders),
        total_volume_usd=total_volume,
        average_price_usd=average_price,
        first_entry=first_entry,
    )


class AccumulationDetector:
    """Finds a time window in which several distinct smart-money wallets bought."""

    def __init__(self, window_minutes: int = 60):
        self.window = timedelta(minutes=window_minutes)

    def detect(self, entries: Iterable[TradeEntry]) -> AccumulationWindow:
        """Scan every entry as a candidate window start.

        Quadratic in the number of entries, which stays in the tens per token.
        """
        entries = sorted(entries, key=lambda e: e.timestamp)
        if len(entries) < MIN_ACCUMULATION_TRADERS:
            return AccumulationWindow(has_accumulation=False)

        max_traders = 0
        max_volume = 0.0
        start = None

        for candidate in entries:
            window_start = candidate.timestamp
            window_end = window_start + self.window
            in_window = [e for e in entries if window_start <= e.timestamp <= window_end]

            unique_traders = len({e.trader_address for e in in_window})
            if unique_traders >= MIN_ACCUMULATION_TRADERS and unique_traders > max_traders:
                max_traders = unique_traders
                max_volume = sum(e.value_usd for e in in_window)
                start = window_start

        result = AccumulationWindow(
            has_accumulation=max_traders >= MIN_ACCUMULATION_TRADERS,
            trader_count=max_traders,
            total_volume_usd=max_volume,
            start=start,
        )
        if result.has_accumulation:
            logger.debug(
                "accumulation_found",
                traders=result.trader_count,
                volume=result.total_volume_usd,
                start=start.isoformat(),
            )
        return result
