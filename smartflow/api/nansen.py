"""Nansen API client for token discovery, trade history and flow intelligence."""
import httpx
from datetime import date
from typing import Optional
import structlog

from smartflow.api.rate_limit import RateLimiter
from smartflow.models import (
    FlowSnapshot,
    ScreenedToken,
    SmartMoneyTrade,
    TokenTrade,
    parse_timestamp,
)

logger = structlog.get_logger()

NANSEN_API_URL = "https://api.nansen.ai/api/v1"

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class NansenClient:
    """Client for interacting with the Nansen API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = NANSEN_API_URL,
        timeout: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 3,
        page_interval: float = 0.2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter()
        self.page_limiter = RateLimiter(min_interval=page_interval)
        self.max_retries = max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, config: dict, api_key: str) -> "NansenClient":
        provider = config.get("provider", {})
        limiter = RateLimiter(
            min_interval=provider.get("min_interval_seconds", 0.3),
            backoff_base=provider.get("backoff_seconds", 1.0),
        )
        return cls(
            api_key=api_key,
            base_url=provider.get("base_url", NANSEN_API_URL),
            timeout=provider.get("timeout_seconds", 30.0),
            rate_limiter=limiter,
            max_retries=provider.get("max_retries", 3),
            page_interval=provider.get("page_interval_seconds", 0.2),
        )

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Content-Type": "application/json", "apikey": self.api_key},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client:
            await self._client.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def _post(self, path: str, payload: dict) -> dict:
        """POST with pacing; retries throttling, server and transport errors."""
        attempt = 0
        while True:
            await self.rate_limiter.wait()
            try:
                response = await self.client.post(path, json=payload)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                if e.response.status_code not in RETRY_STATUS_CODES or attempt >= self.max_retries:
                    raise
                logger.warning("nansen_retry", path=path, status=e.response.status_code, attempt=attempt + 1)
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    raise
                logger.warning("nansen_retry", path=path, error=str(e), attempt=attempt + 1)
            await self.rate_limiter.backoff(attempt)
            attempt += 1

    async def flow_intelligence(
        self, chain: str, token_address: str, timeframe: str = "24h"
    ) -> Optional[FlowSnapshot]:
        """Fetch the flow snapshot for a token, or None when unavailable."""
        try:
            data = await self._post(
                "/tgm/flow-intelligence",
                {"chain": chain, "token_address": token_address, "timeframe": timeframe},
            )
        except httpx.HTTPError as e:
            logger.error("failed_to_fetch_flow", chain=chain, token=token_address, error=str(e))
            return None

        rows = data.get("data") or []
        if not rows:
            logger.warning("no_flow_data", chain=chain, token=token_address)
            return None

        row = rows[0]
        try:
            return FlowSnapshot(
                chain=chain,
                token_address=token_address,
                timeframe=timeframe,
                smart_money_net_flow_usd=float(row.get("smart_money_net_flow_usd") or 0),
                smart_money_wallet_count=int(row.get("smart_money_wallet_count") or 0),
                whale_net_flow_usd=float(row.get("whale_net_flow_usd") or 0),
                whale_wallet_count=int(row.get("whale_wallet_count") or 0),
                public_figure_net_flow_usd=float(row.get("public_figure_net_flow_usd") or 0),
                public_figure_wallet_count=int(row.get("public_figure_wallet_count") or 0),
            )
        except (TypeError, ValueError) as e:
            logger.warning("flow_parse_error", token=token_address, error=str(e))
            return None

    async def token_trades(
        self,
        chain: str,
        token_address: str,
        date_from: date,
        date_to: date,
        only_smart_money: bool = True,
        action: Optional[str] = "BUY",
        min_value_usd: float = 100,
        page: int = 1,
        per_page: int = 100,
    ) -> tuple[list[TokenTrade], bool]:
        """Fetch one page of a token's DEX trades. Returns (trades, is_last_page)."""
        filters: dict = {"estimated_value_usd": {"min": min_value_usd}}
        if action:
            filters["action"] = action

        payload = {
            "chain": chain,
            "token_address": token_address,
            "date": {"from": date_from.isoformat(), "to": date_to.isoformat()},
            "only_smart_money": only_smart_money,
            "filters": filters,
            "order_by": [{"field": "block_timestamp", "direction": "asc"}],
            "pagination": {"page": page, "per_page": per_page},
        }

        data = await self._post("/tgm/dex-trades", payload)

        trades = []
        for item in data.get("data") or []:
            trade = self._parse_token_trade(item)
            if trade:
                trades.append(trade)

        last_page = bool((data.get("pagination") or {}).get("last_page", True))
        return trades, last_page

    async def all_token_trades(
        self,
        chain: str,
        token_address: str,
        date_from: date,
        date_to: date,
        max_pages: int = 20,
        **kwargs,
    ) -> list[TokenTrade]:
        """Follow pagination for a token's trades. Returns [] if the provider fails."""
        all_trades: list[TokenTrade] = []
        page = 1
        try:
            while page <= max_pages:
                if page > 1:
                    await self.page_limiter.wait()
                trades, last_page = await self.token_trades(
                    chain, token_address, date_from, date_to, page=page, **kwargs
                )
                all_trades.extend(trades)
                if last_page:
                    break
                page += 1
        except httpx.HTTPError as e:
            logger.error("failed_to_fetch_token_trades", chain=chain, token=token_address, error=str(e))
            return []

        logger.info("fetched_token_trades", token=token_address, total=len(all_trades), pages=min(page, max_pages))
        return all_trades

    async def smart_money_trades(
        self,
        chain: str,
        max_age_days: Optional[float] = None,
        min_value_usd: Optional[float] = None,
        per_page: int = 100,
    ) -> list[SmartMoneyTrade]:
        """Fetch recent smart-money DEX trades on a chain."""
        filters: dict = {}
        if max_age_days is not None:
            filters["token_bought_age_days"] = {"min": 0, "max": max_age_days}
        if min_value_usd is not None:
            filters["trade_value_usd"] = {"min": min_value_usd}

        payload = {"chains": [chain], "pagination": {"page": 1, "per_page": per_page}}
        if filters:
            payload["filters"] = filters

        try:
            data = await self._post("/smart-money/dex-trades", payload)
        except httpx.HTTPError as e:
            logger.error("failed_to_fetch_smart_money_trades", chain=chain, error=str(e))
            return []

        trades = []
        for item in data.get("data") or []:
            try:
                trades.append(
                    SmartMoneyTrade(
                        chain=item.get("chain", chain),
                        block_timestamp=parse_timestamp(item.get("block_timestamp")),
                        transaction_hash=item.get("transaction_hash", ""),
                        trader_address=item.get("trader_address", ""),
                        trader_label=item.get("trader_address_label") or "Unknown",
                        token_bought_address=item["token_bought_address"],
                        token_bought_symbol=item.get("token_bought_symbol", ""),
                        token_bought_amount=float(item.get("token_bought_amount") or 0),
                        token_bought_age_days=float(item.get("token_bought_age_days") or 0),
                        token_bought_market_cap_usd=float(item.get("token_bought_market_cap_usd") or 0),
                        trade_value_usd=float(item.get("trade_value_usd") or 0),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("smart_money_trade_parse_error", error=str(e))

        logger.info("fetched_smart_money_trades", chain=chain, count=len(trades))
        return trades

    async def token_screener(
        self,
        chains: list[str],
        max_age_days: Optional[float] = None,
        min_liquidity_usd: Optional[float] = None,
        timeframe: str = "24h",
        per_page: int = 100,
    ) -> list[ScreenedToken]:
        """Fetch newly active tokens from the screener."""
        filters: dict = {"only_smart_money": True}
        if max_age_days is not None:
            filters["token_age_days"] = {"min": 0, "max": max_age_days}
        if min_liquidity_usd is not None:
            filters["liquidity_usd"] = {"min": min_liquidity_usd}

        payload = {
            "chains": chains,
            "timeframe": timeframe,
            "filters": filters,
            "pagination": {"page": 1, "per_page": per_page},
        }

        try:
            data = await self._post("/tgm/token-screener", payload)
        except httpx.HTTPError as e:
            logger.error("failed_to_screen_tokens", chains=chains, error=str(e))
            return []

        tokens = []
        for item in data.get("data") or []:
            try:
                tokens.append(
                    ScreenedToken(
                        chain=item["chain"],
                        token_address=item["token_address"],
                        symbol=item.get("symbol", ""),
                        token_age_days=float(item.get("token_age_days") or 0),
                        market_cap_usd=float(item.get("market_cap_usd") or 0),
                        liquidity_usd=float(item.get("liquidity_usd") or 0),
                        price_usd=float(item.get("price_usd") or 0),
                        net_flow_usd=float(item.get("net_flow_usd") or 0),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("screener_parse_error", error=str(e))
        return tokens

    def _parse_token_trade(self, item: dict) -> Optional[TokenTrade]:
        """Parse a trade from a TGM DEX trades response."""
        try:
            return TokenTrade(
                block_timestamp=parse_timestamp(item.get("block_timestamp")),
                transaction_hash=item.get("transaction_hash") or "",
                trader_address=item["trader_address"],
                trader_label=item.get("trader_address_label"),
                action=(item.get("action") or "BUY").upper(),
                token_address=item.get("token_address", ""),
                token_symbol=item.get("token_symbol", ""),
                token_amount=float(item.get("token_amount") or 0),
                price_usd=float(item.get("estimated_swap_price_usd") or 0),
                value_usd=float(item.get("estimated_value_usd") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("trade_parse_error", error=str(e), item=item)
            return None
