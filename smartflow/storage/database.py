"""SQLite storage for tokens, smart-money entries, flow analyses, signals and backtests."""
import aiosqlite
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional
import structlog

from smartflow.models import (
    SIGNAL_STATUSES,
    BacktestResult,
    BacktestTrade,
    FibonacciLevels,
    FlowAnalysis,
    FlowSnapshot,
    Signal,
    TakeProfitLevel,
    Token,
    TradeEntry,
    parse_timestamp,
    utcnow,
)

logger = structlog.get_logger()

DB_PATH = "data/smartflow.db"


class Database:
    """Async SQLite database handler."""

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Connect to database and create tables."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._create_tables()
        logger.info("database_connected", path=self.db_path)

    async def close(self):
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    async def _create_tables(self):
        """Create database tables if they don't exist."""
        await self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS tokens (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chain TEXT NOT NULL,
                address TEXT NOT NULL,
                symbol TEXT NOT NULL,
                discovered_at TEXT NOT NULL,
                token_age_days REAL NOT NULL,
                market_cap_usd REAL NOT NULL,
                liquidity_usd REAL NOT NULL,
                first_seen_price_usd REAL NOT NULL,
                UNIQUE(chain, address)
            );

            CREATE TABLE IF NOT EXISTS smart_money_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                token_id INTEGER NOT NULL REFERENCES tokens(id),
                chain TEXT NOT NULL,
                token_address TEXT NOT NULL,
                trader_address TEXT NOT NULL,
                trader_label TEXT NOT NULL,
                entry_timestamp TEXT NOT NULL,
                entry_price_usd REAL NOT NULL,
                trade_value_usd REAL NOT NULL,
                transaction_hash TEXT NOT NULL UNIQUE,
                is_first_entry INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS flow_analysis (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                token_id INTEGER NOT NULL REFERENCES tokens(id),
                chain TEXT NOT NULL,
                token_address TEXT NOT NULL,
                analyzed_at TEXT NOT NULL,
                timeframe TEXT NOT NULL,
                smart_money_net_flow_usd REAL NOT NULL,
                smart_money_wallet_count INTEGER NOT NULL,
                whale_net_flow_usd REAL NOT NULL,
                whale_wallet_count INTEGER NOT NULL,
                public_figure_net_flow_usd REAL NOT NULL,
                public_figure_wallet_count INTEGER NOT NULL,
                flow_score REAL NOT NULL
            );

            CREATE TABLE IF NOT EXISTS signals (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                token_id INTEGER NOT NULL REFERENCES tokens(id),
                chain TEXT NOT NULL,
                token_address TEXT NOT NULL,
                symbol TEXT NOT NULL,
                signal_type TEXT NOT NULL,
                generated_at TEXT NOT NULL,
                entry_price_usd REAL NOT NULL,
                current_price_usd REAL,
                first_smart_money_entry_price REAL NOT NULL,
                first_smart_money_entry_time TEXT NOT NULL,
                smart_money_count INTEGER NOT NULL,
                total_smart_money_volume_usd REAL NOT NULL,
                flow_score REAL NOT NULL,
                smart_money_flow_usd REAL NOT NULL,
                whale_flow_usd REAL NOT NULL,
                public_figure_flow_usd REAL NOT NULL,
                tp1_price REAL NOT NULL,
                tp1_percent REAL NOT NULL,
                tp1_multiplier REAL NOT NULL,
                tp2_price REAL NOT NULL,
                tp2_percent REAL NOT NULL,
                tp2_multiplier REAL NOT NULL,
                tp3_price REAL NOT NULL,
                tp3_percent REAL NOT NULL,
                tp3_multiplier REAL NOT NULL,
                fib_236 REAL,
                fib_382 REAL,
                fib_500 REAL,
                fib_618 REAL,
                fib_786 REAL,
                fib_1618 REAL,
                status TEXT NOT NULL DEFAULT 'active',
                closed_at TEXT,
                final_return_percent REAL
            );

            CREATE TABLE IF NOT EXISTS backtest_results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                strategy_name TEXT NOT NULL,
                chain TEXT NOT NULL,
                backtest_start_date TEXT NOT NULL,
                backtest_end_date TEXT NOT NULL,
                total_signals INTEGER NOT NULL,
                winning_trades INTEGER NOT NULL,
                losing_trades INTEGER NOT NULL,
                win_rate REAL NOT NULL,
                avg_return_percent REAL NOT NULL,
                max_return_percent REAL NOT NULL,
                min_return_percent REAL NOT NULL,
                total_return_percent REAL NOT NULL,
                max_drawdown_percent REAL NOT NULL,
                sharpe_ratio REAL,
                avg_hold_time_hours REAL NOT NULL,
                metadata TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS backtest_trades (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                backtest_result_id INTEGER NOT NULL REFERENCES backtest_results(id),
                token_address TEXT NOT NULL,
                symbol TEXT NOT NULL,
                entry_date TEXT NOT NULL,
                entry_price REAL NOT NULL,
                exit_date TEXT NOT NULL,
                exit_price REAL NOT NULL,
                return_percent REAL NOT NULL,
                hold_time_hours REAL NOT NULL,
                exit_reason TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_tokens_discovered_at ON tokens(discovered_at);
            CREATE INDEX IF NOT EXISTS idx_sm_entries_token_id ON smart_money_entries(token_id);
            CREATE INDEX IF NOT EXISTS idx_sm_entries_timestamp ON smart_money_entries(entry_timestamp);
            CREATE INDEX IF NOT EXISTS idx_flow_token_id ON flow_analysis(token_id);
            CREATE INDEX IF NOT EXISTS idx_signals_status ON signals(status);
            CREATE INDEX IF NOT EXISTS idx_signals_token_id ON signals(token_id);
            CREATE INDEX IF NOT EXISTS idx_signals_generated_at ON signals(generated_at);
            CREATE INDEX IF NOT EXISTS idx_backtest_created_at ON backtest_results(created_at);
            CREATE INDEX IF NOT EXISTS idx_bt_trades_result_id ON backtest_trades(backtest_result_id);
        """)
        await self.conn.commit()

    # Tokens

    async def upsert_token(self, token: Token) -> Token:
        """Return the stored token for (chain, address), inserting it if new."""
        existing = await self.get_token_by_address(token.chain, token.address)
        if existing:
            return existing

        cursor = await self.conn.execute("""
            INSERT OR IGNORE INTO tokens
            (chain, address, symbol, discovered_at, token_age_days, market_cap_usd, liquidity_usd, first_seen_price_usd)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            token.chain,
            token.address,
            token.symbol,
            token.discovered_at.isoformat(),
            token.token_age_days,
            token.market_cap_usd,
            token.liquidity_usd,
            token.first_seen_price_usd,
        ))
        await self.conn.commit()

        if cursor.rowcount == 0:
            # Lost a race with another writer: the first write wins.
            return await self.get_token_by_address(token.chain, token.address)

        return replace(token, id=cursor.lastrowid)

    async def get_token(self, token_id: int) -> Optional[Token]:
        async with self.conn.execute("SELECT * FROM tokens WHERE id = ?", (token_id,)) as cursor:
            row = await cursor.fetchone()
        return self._row_to_token(row) if row else None

    async def get_token_by_address(self, chain: str, address: str) -> Optional[Token]:
        async with self.conn.execute(
            "SELECT * FROM tokens WHERE chain = ? AND address = ?",
            (chain, address),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_token(row) if row else None

    async def get_recent_tokens(self, limit: int = 50) -> list[Token]:
        async with self.conn.execute(
            "SELECT * FROM tokens ORDER BY discovered_at DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_token(row) for row in rows]

    async def get_tokens_discovered_between(self, chain: str, start: datetime, end: datetime) -> list[Token]:
        async with self.conn.execute("""
            SELECT * FROM tokens
            WHERE chain = ? AND discovered_at >= ? AND discovered_at <= ?
            ORDER BY discovered_at ASC
        """, (chain, start.isoformat(), end.isoformat())) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_token(row) for row in rows]

    # Smart-money entries

    async def insert_entry(self, entry: TradeEntry) -> bool:
        """Insert an entry. Returns False if its transaction hash is already stored."""
        cursor = await self.conn.execute("""
            INSERT OR IGNORE INTO smart_money_entries
            (token_id, chain, token_address, trader_address, trader_label, entry_timestamp,
             entry_price_usd, trade_value_usd, transaction_hash, is_first_entry)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.token_id,
            entry.chain,
            entry.token_address,
            entry.trader_address,
            entry.trader_label,
            entry.timestamp.isoformat(),
            entry.price_usd,
            entry.value_usd,
            entry.transaction_hash,
            int(entry.is_first_entry),
        ))
        await self.conn.commit()
        inserted = cursor.rowcount > 0
        if not inserted:
            logger.debug("entry_exists", tx=entry.transaction_hash)
        return inserted

    async def insert_entries(self, entries: list[TradeEntry]) -> int:
        saved = 0
        for entry in entries:
            if await self.insert_entry(entry):
                saved += 1
        return saved

    async def mark_first_entry(self, token_id: int):
        """Flag only the token's earliest stored entry as its first entry."""
        await self.conn.execute("""
            UPDATE smart_money_entries
            SET is_first_entry = (id = (
                SELECT id FROM smart_money_entries
                WHERE token_id = ?
                ORDER BY entry_timestamp ASC, id ASC
                LIMIT 1
            ))
            WHERE token_id = ?
        """, (token_id, token_id))
        await self.conn.commit()

    async def get_entries(self, token_id: int) -> list[TradeEntry]:
        async with self.conn.execute(
            "SELECT * FROM smart_money_entries WHERE token_id = ? ORDER BY entry_timestamp ASC, id ASC",
            (token_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            TradeEntry(
                id=row["id"],
                token_id=row["token_id"],
                chain=row["chain"],
                token_address=row["token_address"],
                trader_address=row["trader_address"],
                trader_label=row["trader_label"],
                timestamp=parse_timestamp(row["entry_timestamp"]),
                price_usd=row["entry_price_usd"],
                value_usd=row["trade_value_usd"],
                transaction_hash=row["transaction_hash"],
                is_first_entry=bool(row["is_first_entry"]),
            )
            for row in rows
        ]

    # Flow analyses

    async def record_flow_analysis(self, analysis: FlowAnalysis) -> int:
        snap = analysis.snapshot
        cursor = await self.conn.execute("""
            INSERT INTO flow_analysis
            (token_id, chain, token_address, analyzed_at, timeframe, smart_money_net_flow_usd,
             smart_money_wallet_count, whale_net_flow_usd, whale_wallet_count,
             public_figure_net_flow_usd, public_figure_wallet_count, flow_score)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            analysis.token_id,
            snap.chain,
            snap.token_address,
            snap.captured_at.isoformat(),
            snap.timeframe,
            snap.smart_money_net_flow_usd,
            snap.smart_money_wallet_count,
            snap.whale_net_flow_usd,
            snap.whale_wallet_count,
            snap.public_figure_net_flow_usd,
            snap.public_figure_wallet_count,
            analysis.score,
        ))
        await self.conn.commit()
        analysis.id = cursor.lastrowid
        return cursor.lastrowid

    async def get_latest_flow_analysis(self, token_id: int) -> Optional[FlowAnalysis]:
        async with self.conn.execute(
            "SELECT * FROM flow_analysis WHERE token_id = ? ORDER BY analyzed_at DESC, id DESC LIMIT 1",
            (token_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        snapshot = FlowSnapshot(
            chain=row["chain"],
            token_address=row["token_address"],
            timeframe=row["timeframe"],
            smart_money_net_flow_usd=row["smart_money_net_flow_usd"],
            smart_money_wallet_count=row["smart_money_wallet_count"],
            whale_net_flow_usd=row["whale_net_flow_usd"],
            whale_wallet_count=row["whale_wallet_count"],
            public_figure_net_flow_usd=row["public_figure_net_flow_usd"],
            public_figure_wallet_count=row["public_figure_wallet_count"],
            captured_at=parse_timestamp(row["analyzed_at"]),
        )
        return FlowAnalysis(snapshot=snapshot, score=int(row["flow_score"]), token_id=row["token_id"], id=row["id"])

    # Signals

    async def insert_signal(self, signal: Signal) -> int:
        data = signal.to_dict()
        data.pop("id")
        for index, level in enumerate(signal.take_profits, start=1):
            data[f"tp{index}_multiplier"] = level.multiplier

        columns = ", ".join(data)
        placeholders = ", ".join(f":{key}" for key in data)
        cursor = await self.conn.execute(
            f"INSERT INTO signals ({columns}) VALUES ({placeholders})",
            data,
        )
        await self.conn.commit()
        signal.id = cursor.lastrowid
        return cursor.lastrowid

    async def get_signal_for_token(self, token_id: int) -> Optional[Signal]:
        """Return the signal already emitted for a token, if any."""
        async with self.conn.execute(
            "SELECT * FROM signals WHERE token_id = ? ORDER BY generated_at ASC, id ASC LIMIT 1",
            (token_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_signal(row) if row else None

    async def get_active_signals(self) -> list[Signal]:
        async with self.conn.execute(
            "SELECT * FROM signals WHERE status = 'active' ORDER BY generated_at DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_signal(row) for row in rows]

    async def get_signals(self, limit: int = 100) -> list[Signal]:
        async with self.conn.execute(
            "SELECT * FROM signals ORDER BY generated_at DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_signal(row) for row in rows]

    async def update_signal_status(self, signal_id: int, status: str, final_return: Optional[float] = None):
        if status not in SIGNAL_STATUSES:
            raise ValueError(f"Unknown signal status: {status}")
        closed_at = utcnow().isoformat() if status == "closed" else None
        await self.conn.execute("""
            UPDATE signals
            SET status = ?, closed_at = COALESCE(?, closed_at),
                final_return_percent = COALESCE(?, final_return_percent)
            WHERE id = ?
        """, (status, closed_at, final_return, signal_id))
        await self.conn.commit()

    async def update_signal_price(self, signal_id: int, current_price: float):
        await self.conn.execute(
            "UPDATE signals SET current_price_usd = ? WHERE id = ?",
            (current_price, signal_id),
        )
        await self.conn.commit()

    # Backtests

    async def insert_backtest_result(self, result: BacktestResult) -> int:
        data = result.to_dict()
        data.pop("id")
        columns = ", ".join(data)
        placeholders = ", ".join(f":{key}" for key in data)
        cursor = await self.conn.execute(
            f"INSERT INTO backtest_results ({columns}) VALUES ({placeholders})",
            data,
        )
        await self.conn.commit()
        result.id = cursor.lastrowid
        return cursor.lastrowid

    async def insert_backtest_trade(self, result_id: int, trade: BacktestTrade) -> int:
        data = trade.to_dict()
        data["backtest_result_id"] = result_id
        columns = ", ".join(data)
        placeholders = ", ".join(f":{key}" for key in data)
        cursor = await self.conn.execute(
            f"INSERT INTO backtest_trades ({columns}) VALUES ({placeholders})",
            data,
        )
        await self.conn.commit()
        return cursor.lastrowid

    async def get_backtest_results(self, limit: int = 10) -> list[BacktestResult]:
        async with self.conn.execute(
            "SELECT * FROM backtest_results ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_backtest_result(row) for row in rows]

    async def get_backtest_trades(self, result_id: int) -> list[BacktestTrade]:
        async with self.conn.execute(
            "SELECT * FROM backtest_trades WHERE backtest_result_id = ? ORDER BY entry_date ASC, id ASC",
            (result_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            BacktestTrade(
                token_address=row["token_address"],
                symbol=row["symbol"],
                entry_date=parse_timestamp(row["entry_date"]),
                entry_price=row["entry_price"],
                exit_date=parse_timestamp(row["exit_date"]),
                exit_price=row["exit_price"],
                return_percent=row["return_percent"],
                hold_time_hours=row["hold_time_hours"],
                exit_reason=row["exit_reason"],
            )
            for row in rows
        ]

    # Row mapping

    @staticmethod
    def _row_to_token(row: aiosqlite.Row) -> Token:
        return Token(
            id=row["id"],
            chain=row["chain"],
            address=row["address"],
            symbol=row["symbol"],
            discovered_at=parse_timestamp(row["discovered_at"]),
            token_age_days=row["token_age_days"],
            market_cap_usd=row["market_cap_usd"],
            liquidity_usd=row["liquidity_usd"],
            first_seen_price_usd=row["first_seen_price_usd"],
        )

    @staticmethod
    def _row_to_signal(row: aiosqlite.Row) -> Signal:
        return Signal(
            id=row["id"],
            token_id=row["token_id"],
            chain=row["chain"],
            token_address=row["token_address"],
            symbol=row["symbol"],
            signal_type=row["signal_type"],
            generated_at=parse_timestamp(row["generated_at"]),
            entry_price_usd=row["entry_price_usd"],
            current_price_usd=row["current_price_usd"],
            first_smart_money_entry_price=row["first_smart_money_entry_price"],
            first_smart_money_entry_time=parse_timestamp(row["first_smart_money_entry_time"]),
            smart_money_count=row["smart_money_count"],
            total_smart_money_volume_usd=row["total_smart_money_volume_usd"],
            flow_score=int(row["flow_score"]),
            smart_money_flow_usd=row["smart_money_flow_usd"],
            whale_flow_usd=row["whale_flow_usd"],
            public_figure_flow_usd=row["public_figure_flow_usd"],
            take_profits=[
                TakeProfitLevel(
                    price=row[f"tp{i}_price"],
                    percent=row[f"tp{i}_percent"],
                    multiplier=row[f"tp{i}_multiplier"],
                )
                for i in (1, 2, 3)
            ],
            fibonacci=FibonacciLevels(
                fib_236=row["fib_236"],
                fib_382=row["fib_382"],
                fib_500=row["fib_500"],
                fib_618=row["fib_618"],
                fib_786=row["fib_786"],
                fib_1618=row["fib_1618"],
            ),
            status=row["status"],
            closed_at=parse_timestamp(row["closed_at"]) if row["closed_at"] else None,
            final_return_percent=row["final_return_percent"],
        )

    @staticmethod
    def _row_to_backtest_result(row: aiosqlite.Row) -> BacktestResult:
        return BacktestResult(
            id=row["id"],
            strategy_name=row["strategy_name"],
            chain=row["chain"],
            backtest_start_date=parse_timestamp(row["backtest_start_date"]),
            backtest_end_date=parse_timestamp(row["backtest_end_date"]),
            total_signals=row["total_signals"],
            winning_trades=row["winning_trades"],
            losing_trades=row["losing_trades"],
            win_rate=row["win_rate"],
            avg_return_percent=row["avg_return_percent"],
            max_return_percent=row["max_return_percent"],
            min_return_percent=row["min_return_percent"],
            total_return_percent=row["total_return_percent"],
            max_drawdown_percent=row["max_drawdown_percent"],
            sharpe_ratio=row["sharpe_ratio"],
            avg_hold_time_hours=row["avg_hold_time_hours"],
            metadata=row["metadata"],
            created_at=parse_timestamp(row["created_at"]),
        )
