"""HTTP dashboard over stored signals, tokens and backtests, with on-demand analysis."""
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from smartflow.api.nansen import NansenClient
from smartflow.config import configure_logging, load_config
from smartflow.detection.discovery import TokenDiscovery
from smartflow.detection.fibonacci import nearest_fib_level
from smartflow.detection.pipeline import TokenAnalyzer
from smartflow.models import Signal, Token, utcnow
from smartflow.storage.database import DB_PATH, Database

logger = structlog.get_logger()


class DiscoverRequest(BaseModel):
    chains: Optional[list[str]] = None
    max_age_days: Optional[float] = None


class AnalyzeRequest(BaseModel):
    token_ids: list[int]


class ConnectionManager:
    """Tracks open dashboard sockets and pushes analysis events to them."""

    def __init__(self):
        self.active: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        self.active.add(websocket)
        await websocket.accept()
        logger.info("dashboard_client_connected", clients=len(self.active))

    def disconnect(self, websocket: WebSocket):
        self.active.discard(websocket)

    async def broadcast(self, message: dict):
        for websocket in list(self.active):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.warning("dashboard_broadcast_failed", error=str(e))
                self.disconnect(websocket)


def _token_record(token: Token) -> dict:
    return {**token.__dict__, "discovered_at": token.discovered_at.isoformat()}


def _signal_record(signal: Signal) -> dict:
    record = signal.to_dict()
    name, price, distance = nearest_fib_level(signal.current_price_usd or signal.entry_price_usd, signal.fibonacci)
    record["nearest_fib"] = {"level": name, "price": price, "distance": distance}
    return record


def summarize_signals(all_signals: list[Signal], active_count: int, now: Optional[datetime] = None) -> dict:
    """Daily statistics shown on the dashboard."""
    now = now or utcnow()
    today = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    signals_today = [s for s in all_signals if s.generated_at >= today]
    returns_today = [s.final_return_percent for s in signals_today if s.final_return_percent is not None]
    closed = [s for s in all_signals if s.final_return_percent is not None]
    best = max(closed, key=lambda s: s.final_return_percent, default=None)

    return {
        "total_signals_today": len(signals_today),
        "active_signals": active_count,
        "avg_return_today": sum(returns_today) / len(returns_today) if returns_today else 0,
        "best_performer": (
            {"symbol": best.symbol, "return_percent": best.final_return_percent} if best else None
        ),
    }


def create_app(
    db: Database,
    config: Optional[dict] = None,
    client_factory: Optional[Callable[[], NansenClient]] = None,
    manage_connection: bool = True,
) -> FastAPI:
    """Build the dashboard app around a database handle."""
    config = config or {}
    if client_factory is None:
        def client_factory() -> NansenClient:
            return NansenClient.from_config(config, config.get("provider", {}).get("api_key", ""))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_connection:
            await db.connect()
        yield
        if manage_connection:
            await db.close()

    app = FastAPI(title="SmartFlow Dashboard", lifespan=lifespan)
    app.state.db = db
    app.state.connections = ConnectionManager()

    def get_db(request: Request) -> Database:
        return request.app.state.db

    @app.get("/api/signals/active")
    async def active_signals(request: Request):
        signals = await get_db(request).get_active_signals()
        return {"success": True, "data": [_signal_record(s) for s in signals]}

    @app.get("/api/signals/all")
    async def all_signals(request: Request, limit: int = Query(50, ge=1, le=1000)):
        signals = await get_db(request).get_signals(limit)
        return {"success": True, "data": [s.to_dict() for s in signals]}

    @app.get("/api/tokens/recent")
    async def recent_tokens(request: Request, limit: int = Query(20, ge=1, le=1000)):
        tokens = await get_db(request).get_recent_tokens(limit)
        return {"success": True, "data": [_token_record(t) for t in tokens]}

    @app.get("/api/backtest/results")
    async def backtest_results(request: Request, limit: int = Query(10, ge=1, le=1000)):
        results = await get_db(request).get_backtest_results(limit)
        return {"success": True, "data": [r.to_dict() for r in results]}

    @app.get("/api/backtest/results/{result_id}/trades")
    async def backtest_trades(request: Request, result_id: int):
        trades = await get_db(request).get_backtest_trades(result_id)
        return {"success": True, "data": [t.to_dict() for t in trades]}

    @app.get("/api/stats")
    async def stats(request: Request):
        database = get_db(request)
        try:
            all_signals = await database.get_signals(1000)
            active = await database.get_active_signals()
        except Exception as e:
            logger.error("stats_failed", error=str(e))
            raise HTTPException(status_code=500, detail="Failed to get stats")
        return {"success": True, "data": summarize_signals(all_signals, len(active))}

    @app.post("/api/analysis/discover")
    async def discover(request: Request, body: Optional[DiscoverRequest] = None):
        body = body or DiscoverRequest()
        chains = body.chains or config.get("trading", {}).get("chains", ["solana", "base", "bnb"])
        max_age_days = body.max_age_days
        if max_age_days is None:
            max_age_days = config.get("filtering", {}).get("max_token_age_live_days", 1)

        try:
            async with client_factory() as client:
                tokens = await TokenDiscovery(config, client, get_db(request)).discover(chains, max_age_days)
        except Exception as e:
            logger.error("dashboard_discovery_failed", error=str(e))
            raise HTTPException(status_code=500, detail="Token discovery failed")

        data = [_token_record(t) for t in tokens]
        await request.app.state.connections.broadcast({"type": "tokens_discovered", "data": data})
        return {"success": True, "data": data}

    @app.post("/api/analysis/analyze")
    async def analyze(request: Request, body: AnalyzeRequest):
        database = get_db(request)
        try:
            tokens = [t for t in [await database.get_token(i) for i in body.token_ids] if t is not None]
            async with client_factory() as client:
                signals = await TokenAnalyzer(config, client, database).analyze(tokens)
        except Exception as e:
            logger.error("dashboard_analysis_failed", error=str(e))
            raise HTTPException(status_code=500, detail="Token analysis failed")

        data = [s.to_dict() for s in signals]
        await request.app.state.connections.broadcast({"type": "signals_generated", "data": data})
        return {"success": True, "data": {"tokens": [_token_record(t) for t in tokens], "signals": data}}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        connections = websocket.app.state.connections
        await connections.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            connections.disconnect(websocket)

    return app


def main():
    """Run the dashboard API server."""
    configure_logging()
    config = load_config()
    dashboard = config.get("dashboard", {})
    host = os.getenv("DASHBOARD_HOST", dashboard.get("host", "0.0.0.0"))
    port = int(os.getenv("PORT", dashboard.get("port", 3000)))

    db = Database(config.get("database", {}).get("path", DB_PATH))
    app = create_app(db, config)

    logger.info("dashboard_starting", host=host, port=port)
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
