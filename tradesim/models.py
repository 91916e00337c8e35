from datetime import datetime
from typing import List, Literal, Optional

import pytz
from pydantic import BaseModel, Field

from .engine import TradingEngine
from .market import Stock
from .portfolio import Transaction


def format_volume(volume: int) -> str:
    if volume >= 1_000_000:
        return f"{volume / 1_000_000:.2f}M"
    if volume >= 1_000:
        return f"{volume / 1_000:.2f}K"
    return str(volume)


def format_market_cap(market_cap: float) -> str:
    if market_cap >= 1_000_000_000:
        return f"${market_cap / 1_000_000_000:.2f}B"
    if market_cap >= 1_000_000:
        return f"${market_cap / 1_000_000:.2f}M"
    return f"${market_cap:,.2f}"


class StockView(BaseModel):
    symbol: str
    company_name: str
    price: float
    open: float
    prev_close: float
    change: float
    change_percent: float
    volume: int
    volume_display: str
    market_cap: float
    market_cap_display: str


class MarketSnapshot(BaseModel):
    timestamp: str
    stocks: List[StockView]


class HoldingView(BaseModel):
    symbol: str
    company_name: str
    shares: int
    average_cost: float
    price: float
    market_value: float
    gain_loss: float
    gain_loss_percent: float


class TransactionView(BaseModel):
    transaction_id: str
    timestamp: str
    symbol: str
    type: Literal["BUY", "SELL"]
    shares: int
    price: float
    total_amount: float


class PortfolioView(BaseModel):
    user_id: str
    name: str
    cash: float
    total_value: float
    total_gain_loss: float
    holdings: List[HoldingView]


class TradeRequest(BaseModel):
    symbol: str
    quantity: int = Field(..., gt=0)
    side: Literal["buy", "sell"]


class TradeResponse(BaseModel):
    result: Literal["success"]
    trade: TransactionView
    portfolio: PortfolioView


def stock_view(stock: Stock) -> StockView:
    return StockView(
        symbol=stock.symbol,
        company_name=stock.company_name,
        price=round(stock.current_price, 2),
        open=round(stock.open_price, 2),
        prev_close=round(stock.previous_close, 2),
        change=round(stock.price_change, 2),
        change_percent=round(stock.change_percent * 100, 2),
        volume=stock.volume,
        volume_display=format_volume(stock.volume),
        market_cap=stock.market_cap,
        market_cap_display=format_market_cap(stock.market_cap),
    )


def transaction_view(tx: Transaction) -> TransactionView:
    return TransactionView(
        transaction_id=tx.transaction_id,
        timestamp=tx.timestamp.isoformat(),
        symbol=tx.symbol,
        type=tx.type.value,
        shares=tx.shares,
        price=round(tx.price, 2),
        total_amount=round(tx.total_amount, 2),
    )


def market_snapshot(engine: TradingEngine, tz_name: str = "UTC", now: Optional[datetime] = None) -> MarketSnapshot:
    now = now or datetime.now(pytz.timezone(tz_name))
    return MarketSnapshot(
        timestamp=now.isoformat(),
        stocks=[stock_view(stock) for stock in engine.get_all_stocks()],
    )


def portfolio_view(engine: TradingEngine) -> Optional[PortfolioView]:
    with engine.lock:
        user = engine.current_user
        if user is None:
            return None
        portfolio = user.portfolio
        holdings = []
        for holding in portfolio.holdings:
            price = portfolio.price_for(engine.current_price, holding.symbol)
            holdings.append(
                HoldingView(
                    symbol=holding.symbol,
                    company_name=engine.get_stock(holding.symbol).company_name,
                    shares=holding.shares,
                    average_cost=round(holding.average_cost, 2),
                    price=round(price, 2),
                    market_value=round(holding.market_value(price), 2),
                    gain_loss=round(holding.gain_loss(price), 2),
                    gain_loss_percent=round(holding.gain_loss_percent(price) * 100, 2),
                )
            )
        return PortfolioView(
            user_id=user.user_id,
            name=user.name,
            cash=round(user.cash_balance, 2),
            total_value=round(portfolio.get_total_value(engine.current_price), 2),
            total_gain_loss=round(portfolio.get_total_gain_loss(engine.current_price), 2),
            holdings=holdings,
        )
