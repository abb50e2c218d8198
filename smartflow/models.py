"""Data models for the SmartFlow signal terminal."""
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timezone
from typing import Optional, Union


SIGNAL_STATUSES = ("active", "tp1_hit", "tp2_hit", "tp3_hit", "closed")
EXIT_REASONS = ("tp1", "tp2", "tp3", "stop_loss", "time_limit")
ENTRY_STRATEGIES = ("first_smart_money", "accumulation", "flow_confirmation")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, int, float, date, datetime, None]) -> datetime:
    """Parse provider/storage timestamps into aware UTC datetimes."""
    if value is None or value == "":
        return utcnow()
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Token:
    """A newly discovered token, unique per (chain, address)."""
    chain: str
    address: str
    symbol: str
    discovered_at: datetime
    token_age_days: float
    market_cap_usd: float
    liquidity_usd: float
    first_seen_price_usd: float
    id: Optional[int] = None


@dataclass
class TradeEntry:
    """One observed buy of a token by a smart-money wallet."""
    token_id: Optional[int]
    chain: str
    token_address: str
    trader_address: str
    trader_label: str
    timestamp: datetime
    price_usd: float
    value_usd: float
    transaction_hash: str
    is_first_entry: bool = False
    id: Optional[int] = None


@dataclass(frozen=True)
class FlowSnapshot:
    """Point-in-time net flow per wallet category for one token."""
    chain: str
    token_address: str
    timeframe: str = "24h"
    smart_money_net_flow_usd: float = 0.0
    smart_money_wallet_count: int = 0
    whale_net_flow_usd: float = 0.0
    whale_wallet_count: int = 0
    public_figure_net_flow_usd: float = 0.0
    public_figure_wallet_count: int = 0
    captured_at: datetime = field(default_factory=utcnow)


@dataclass
class FlowAnalysis:
    """A flow snapshot together with the score assigned to it."""
    snapshot: FlowSnapshot
    score: int
    token_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def smart_money_net_flow_usd(self) -> float:
        return self.snapshot.smart_money_net_flow_usd or 0.0

    @property
    def smart_money_wallet_count(self) -> int:
        return self.snapshot.smart_money_wallet_count or 0

    @property
    def whale_net_flow_usd(self) -> float:
        return self.snapshot.whale_net_flow_usd or 0.0

    @property
    def public_figure_net_flow_usd(self) -> float:
        return self.snapshot.public_figure_net_flow_usd or 0.0


@dataclass
class EntryStatistics:
    """Aggregate view over a token's smart-money entries."""
    count: int
    total_volume_usd: float
    average_price_usd: float
    first_entry: Optional[TradeEntry]


@dataclass
class AccumulationWindow:
    """Result of the sliding-window accumulation scan."""
    has_accumulation: bool
    trader_count: int = 0
    total_volume_usd: float = 0.0
    start: Optional[datetime] = None


@dataclass
class TakeProfitLevel:
    price: float
    percent: float
    multiplier: float


@dataclass
class FibonacciLevels:
    fib_236: float
    fib_382: float
    fib_500: float
    fib_618: float
    fib_786: float
    fib_1618: float

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class Signal:
    """A BUY signal emitted for an eligible token."""
    token_id: Optional[int]
    chain: str
    token_address: str
    symbol: str
    generated_at: datetime
    entry_price_usd: float
    first_smart_money_entry_price: float
    first_smart_money_entry_time: datetime
    smart_money_count: int
    total_smart_money_volume_usd: float
    flow_score: int
    smart_money_flow_usd: float
    whale_flow_usd: float
    public_figure_flow_usd: float
    take_profits: list[TakeProfitLevel]
    fibonacci: FibonacciLevels
    signal_type: str = "BUY"
    current_price_usd: Optional[float] = None
    status: str = "active"
    closed_at: Optional[datetime] = None
    final_return_percent: Optional[float] = None
    id: Optional[int] = None

    @property
    def tp1(self) -> TakeProfitLevel:
        return self.take_profits[0]

    @property
    def tp2(self) -> TakeProfitLevel:
        return self.take_profits[1]

    @property
    def tp3(self) -> TakeProfitLevel:
        return self.take_profits[2]

    def to_dict(self) -> dict:
        """Flatten into the plain record shape used by storage and the dashboard."""
        data = {
            "id": self.id,
            "token_id": self.token_id,
            "chain": self.chain,
            "token_address": self.token_address,
            "symbol": self.symbol,
            "signal_type": self.signal_type,
            "generated_at": self.generated_at.isoformat(),
            "entry_price_usd": self.entry_price_usd,
            "current_price_usd": self.current_price_usd,
            "first_smart_money_entry_price": self.first_smart_money_entry_price,
            "first_smart_money_entry_time": self.first_smart_money_entry_time.isoformat(),
            "smart_money_count": self.smart_money_count,
            "total_smart_money_volume_usd": self.total_smart_money_volume_usd,
            "flow_score": self.flow_score,
            "smart_money_flow_usd": self.smart_money_flow_usd,
            "whale_flow_usd": self.whale_flow_usd,
            "public_figure_flow_usd": self.public_figure_flow_usd,
            "status": self.status,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "final_return_percent": self.final_return_percent,
        }
        for index, level in enumerate(self.take_profits, start=1):
            data[f"tp{index}_price"] = level.price
            data[f"tp{index}_percent"] = level.percent
        data.update(self.fibonacci.as_dict())
        return data


@dataclass(frozen=True)
class BacktestTrade:
    """One simulated trade."""
    token_address: str
    symbol: str
    entry_date: datetime
    entry_price: float
    exit_date: datetime
    exit_price: float
    return_percent: float
    hold_time_hours: float
    exit_reason: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["entry_date"] = self.entry_date.isoformat()
        data["exit_date"] = self.exit_date.isoformat()
        return data


@dataclass
class BacktestResult:
    """Aggregate performance of one strategy run."""
    strategy_name: str
    chain: str
    backtest_start_date: datetime
    backtest_end_date: datetime
    total_signals: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    avg_return_percent: float
    max_return_percent: float
    min_return_percent: float
    total_return_percent: float
    max_drawdown_percent: float
    avg_hold_time_hours: float
    metadata: str
    sharpe_ratio: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("backtest_start_date", "backtest_end_date", "created_at"):
            data[key] = getattr(self, key).isoformat()
        return data


# Provider wire records

@dataclass
class SmartMoneyTrade:
    """A trade from the cross-token smart-money DEX feed."""
    chain: str
    block_timestamp: datetime
    transaction_hash: str
    trader_address: str
    trader_label: str
    token_bought_address: str
    token_bought_symbol: str
    token_bought_amount: float
    token_bought_age_days: float
    token_bought_market_cap_usd: float
    trade_value_usd: float


@dataclass
class TokenTrade:
    """A trade from a single token's DEX history."""
    block_timestamp: datetime
    transaction_hash: str
    trader_address: str
    trader_label: Optional[str]
    action: str  # "BUY" or "SELL"
    token_address: str
    token_symbol: str
    token_amount: float
    price_usd: float
    value_usd: float


@dataclass
class ScreenedToken:
    """A row from the token screener."""
    chain: str
    token_address: str
    symbol: str
    token_age_days: float
    market_cap_usd: float
    liquidity_usd: float
    price_usd: float
    net_flow_usd: float
