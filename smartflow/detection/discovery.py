"""Discovery of newly active tokens from smart-money trading."""
from dataclasses import dataclass
from typing import Iterable
import structlog

from smartflow.api.nansen import NansenClient
from smartflow.models import SmartMoneyTrade, Token, utcnow
from smartflow.storage.database import Database

logger = structlog.get_logger()

LIQUIDITY_PER_TRADE_VALUE = 10


@dataclass
class TokenAggregate:
    """Per-address aggregate built while scanning the trade feed."""
    token_address: str
    symbol: str
    age_days: float
    market_cap_usd: float
    liquidity_estimate: float
    price_estimate: float
    total_volume: float


def extract_unique_tokens(trades: Iterable[SmartMoneyTrade], min_liquidity_usd: float) -> list[TokenAggregate]:
    """Collapse trades into one aggregate per bought token.

    The first trade seen for an address fixes symbol, age, market cap and
    price estimate. Later trades only add to the volume and can raise the
    liquidity estimate.
    """
    aggregates: dict[str, TokenAggregate] = {}

    for trade in trades:
        address = trade.token_bought_address
        liquidity = trade.trade_value_usd * LIQUIDITY_PER_TRADE_VALUE

        existing = aggregates.get(address)
        if existing is None:
            price = trade.trade_value_usd / trade.token_bought_amount if trade.token_bought_amount else 0.0
            aggregates[address] = TokenAggregate(
                token_address=address,
                symbol=trade.token_bought_symbol,
                age_days=trade.token_bought_age_days,
                market_cap_usd=trade.token_bought_market_cap_usd,
                liquidity_estimate=liquidity,
                price_estimate=price,
                total_volume=trade.trade_value_usd,
            )
        else:
            existing.total_volume += trade.trade_value_usd
            existing.liquidity_estimate = max(existing.liquidity_estimate, liquidity)

    kept = [a for a in aggregates.values() if a.liquidity_estimate >= min_liquidity_usd]
    return sorted(kept, key=lambda a: a.total_volume, reverse=True)


class TokenDiscovery:
    """Finds new tokens per chain and stores them."""

    def __init__(self, config: dict, client: NansenClient, db: Database):
        filtering = config.get("filtering", {})
        discovery = config.get("discovery", {})

        self.min_liquidity_usd = filtering.get("min_liquidity_usd", 100_000)
        self.source = discovery.get("source", "smart_money_trades")
        self.per_page = discovery.get("per_page", 100)
        self.client = client
        self.db = db

    async def discover(self, chains: list[str], max_age_days: float) -> list[Token]:
        """Discover tokens on every chain; a failing chain is logged and skipped."""
        logger.info("discovery_start", chains=chains, max_age_days=max_age_days)

        discovered: list[Token] = []
        for chain in chains:
            try:
                discovered.extend(await self.discover_chain(chain, max_age_days))
            except Exception as e:
                logger.error("discovery_failed", chain=chain, error=str(e))

        logger.info("discovery_complete", tokens=len(discovered))
        return discovered

    async def discover_chain(self, chain: str, max_age_days: float) -> list[Token]:
        if self.source == "screener":
            candidates = await self._from_screener(chain, max_age_days)
        else:
            candidates = await self._from_trades(chain, max_age_days)

        saved = []
        for token in candidates:
            stored = await self.db.upsert_token(token)
            saved.append(stored)
            logger.debug("token_saved", symbol=stored.symbol, address=stored.address, chain=chain)

        logger.info("tokens_found", chain=chain, count=len(saved))
        return saved

    async def _from_trades(self, chain: str, max_age_days: float) -> list[Token]:
        trades = await self.client.smart_money_trades(
            chain,
            max_age_days=max_age_days,
            min_value_usd=self.min_liquidity_usd / 100,
            per_page=self.per_page,
        )
        now = utcnow()
        return [
            Token(
                chain=chain,
                address=a.token_address,
                symbol=a.symbol,
                discovered_at=now,
                token_age_days=a.age_days,
                market_cap_usd=a.market_cap_usd,
                liquidity_usd=a.liquidity_estimate,
                first_seen_price_usd=a.price_estimate,
            )
            for a in extract_unique_tokens(trades, self.min_liquidity_usd)
        ]

    async def _from_screener(self, chain: str, max_age_days: float) -> list[Token]:
        rows = await self.client.token_screener(
            [chain],
            max_age_days=max_age_days,
            min_liquidity_usd=self.min_liquidity_usd,
            per_page=self.per_page,
        )
        now = utcnow()
        return [
            Token(
                chain=row.chain,
                address=row.token_address,
                symbol=row.symbol,
                discovered_at=now,
                token_age_days=row.token_age_days,
                market_cap_usd=row.market_cap_usd,
                liquidity_usd=row.liquidity_usd,
                first_seen_price_usd=row.price_usd,
            )
            for row in rows
            if row.liquidity_usd >= self.min_liquidity_usd
        ]
