import asyncio
import contextlib
import logging
import random
from typing import AsyncIterator, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status

from .config import Settings
from .engine import TradingEngine
from .models import (
    MarketSnapshot,
    PortfolioView,
    StockView,
    TradeRequest,
    TradeResponse,
    TransactionView,
    market_snapshot,
    portfolio_view,
    stock_view,
    transaction_view,
)
from .portfolio import User
from .storage import SnapshotStore
from .ticker import MarketTicker


def build_engine(settings: Settings) -> TradingEngine:
    engine = TradingEngine(store=SnapshotStore(settings.db_path), rng=random.Random(settings.seed))
    if engine.current_user is None:
        engine.set_current_user(User(user_id=settings.user_id, name=settings.user_name, cash_balance=settings.initial_cash))
    return engine


def create_app(settings: Optional[Settings] = None, engine: Optional[TradingEngine] = None) -> FastAPI:
    """Build the HTTP front end around an explicitly owned engine.

    Run with ``python -m tradesim`` or ``uvicorn tradesim.main:create_app --factory``.
    """
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    engine = engine or build_engine(settings)
    ticker = MarketTicker(engine, interval=settings.sleep_interval, tz_name=settings.tz_name)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await ticker.start()
        try:
            yield
        finally:
            await ticker.stop()
            engine.save_snapshot()

    app = FastAPI(title="Stock Trading Simulator", version="0.3.0", lifespan=lifespan)
    app.state.engine = engine
    app.state.ticker = ticker

    def current_portfolio() -> PortfolioView:
        view = portfolio_view(engine)
        if view is None:
            raise HTTPException(status_code=404, detail="No active user")
        return view

    @app.get("/api/stocks", response_model=MarketSnapshot)
    async def list_stocks() -> MarketSnapshot:
        return market_snapshot(engine, settings.tz_name)

    @app.get("/api/stocks/{symbol}", response_model=StockView)
    async def get_stock(symbol: str) -> StockView:
        stock = engine.get_stock(symbol.upper())
        if not stock:
            raise HTTPException(status_code=404, detail=f"Unknown symbol {symbol}")
        return stock_view(stock)

    @app.get("/api/portfolio", response_model=PortfolioView)
    async def get_portfolio() -> PortfolioView:
        return current_portfolio()

    @app.get("/api/transactions", response_model=List[TransactionView])
    async def list_transactions() -> List[TransactionView]:
        user = engine.current_user
        if user is None:
            raise HTTPException(status_code=404, detail="No active user")
        return [transaction_view(tx) for tx in user.transaction_history]

    @app.post("/api/trade", response_model=TradeResponse)
    async def trade(request: TradeRequest) -> TradeResponse:
        symbol = request.symbol.upper()
        if engine.get_stock(symbol) is None:
            raise HTTPException(status_code=404, detail=f"Unknown symbol {symbol}")
        with engine.lock:
            user = engine.current_user
            if user is None:
                raise HTTPException(status_code=404, detail="No active user")
            if request.side == "buy":
                ok = engine.buy_stock(symbol, request.quantity)
                reason = "Insufficient cash for this purchase"
            else:
                ok = engine.sell_stock(symbol, request.quantity)
                reason = "Not enough shares to sell"
            if not ok:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=reason)
            last = user.transaction_history[-1]
            portfolio = current_portfolio()
        return TradeResponse(result="success", trade=transaction_view(last), portfolio=portfolio)

    @app.post("/api/market/tick", response_model=MarketSnapshot)
    async def tick_market() -> MarketSnapshot:
        await ticker.tick()
        return market_snapshot(engine, settings.tz_name)

    @app.websocket("/ws/quotes")
    async def websocket_quotes(websocket: WebSocket) -> None:
        await websocket.accept()
        client_id = str(id(websocket))
        queue = await ticker.register(client_id)
        consumer = asyncio.create_task(_consume(queue, websocket))
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
            await ticker.unregister(client_id)

    return app


async def _consume(queue: asyncio.Queue, websocket: WebSocket) -> None:
    try:
        while True:
            snapshot = await queue.get()
            await websocket.send_json(snapshot)
    except asyncio.CancelledError:
        return
