import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

import pytz

logger = logging.getLogger("tradesim.portfolio")

PriceLookup = Callable[[str], float]


class MissingPriceError(RuntimeError):
    """Raised when a held symbol has no current price in the market."""


class TransactionType(Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class Transaction:
    symbol: str
    type: TransactionType
    shares: int
    price: float
    total_amount: float
    timestamp: datetime
    transaction_id: str

    @classmethod
    def create(cls, symbol: str, type: TransactionType, shares: int, price: float) -> "Transaction":
        return cls(
            symbol=symbol,
            type=type,
            shares=shares,
            price=price,
            total_amount=shares * price,
            timestamp=datetime.now(pytz.utc),
            transaction_id=uuid.uuid4().hex,
        )


@dataclass
class PortfolioHolding:
    symbol: str
    shares: int
    average_cost: float

    def add_shares(self, shares: int, price: float) -> None:
        if shares <= 0:
            raise ValueError("shares must be positive")
        if price <= 0:
            raise ValueError("price must be positive")
        total_cost = self.shares * self.average_cost + shares * price
        self.shares += shares
        self.average_cost = total_cost / self.shares

    def remove_shares(self, shares: int) -> None:
        if shares <= 0 or shares > self.shares:
            raise ValueError(f"cannot remove {shares} of {self.shares} shares of {self.symbol}")
        self.shares -= shares

    @property
    def cost_basis(self) -> float:
        return self.shares * self.average_cost

    def market_value(self, price: float) -> float:
        return self.shares * price

    def gain_loss(self, price: float) -> float:
        return self.market_value(price) - self.cost_basis

    def gain_loss_percent(self, price: float) -> float:
        if self.average_cost == 0:
            return 0.0
        return (price - self.average_cost) / self.average_cost


class Portfolio:
    """Holdings keyed by symbol. A holding never exists with zero shares."""

    def __init__(self) -> None:
        self._holdings: Dict[str, PortfolioHolding] = {}

    def add_holding(self, symbol: str, shares: int, price: float) -> None:
        holding = self._holdings.get(symbol)
        if holding is not None:
            holding.add_shares(shares, price)
            return
        if shares <= 0:
            raise ValueError("shares must be positive")
        if price <= 0:
            raise ValueError("price must be positive")
        self._holdings[symbol] = PortfolioHolding(symbol=symbol, shares=shares, average_cost=price)

    def remove_holding(self, symbol: str, shares: int) -> bool:
        holding = self._holdings.get(symbol)
        if holding is None or shares <= 0 or holding.shares < shares:
            return False
        holding.remove_shares(shares)
        if holding.shares == 0:
            del self._holdings[symbol]
        return True

    def restore_holding(self, holding: PortfolioHolding) -> None:
        if holding.shares <= 0:
            raise ValueError(f"holding {holding.symbol} has no shares")
        self._holdings[holding.symbol] = holding

    def get_shares(self, symbol: str) -> int:
        holding = self._holdings.get(symbol)
        return holding.shares if holding else 0

    def get_holding(self, symbol: str) -> Optional[PortfolioHolding]:
        return self._holdings.get(symbol)

    @property
    def holdings(self) -> List[PortfolioHolding]:
        return list(self._holdings.values())

    @property
    def symbols(self) -> List[str]:
        return list(self._holdings)

    def price_for(self, price_lookup: PriceLookup, symbol: str) -> float:
        try:
            return price_lookup(symbol)
        except KeyError as exc:
            raise MissingPriceError(f"no current price for held symbol {symbol}") from exc

    def get_total_value(self, price_lookup: PriceLookup) -> float:
        total = 0.0
        for holding in self._holdings.values():
            total += holding.market_value(self.price_for(price_lookup, holding.symbol))
        return total

    def get_total_gain_loss(self, price_lookup: PriceLookup) -> float:
        total = 0.0
        for holding in self._holdings.values():
            total += holding.gain_loss(self.price_for(price_lookup, holding.symbol))
        return total


@dataclass
class User:
    user_id: str
    name: str
    cash_balance: float
    portfolio: Portfolio = field(default_factory=Portfolio)
    transactions: List[Transaction] = field(default_factory=list)

    @property
    def transaction_history(self) -> List[Transaction]:
        return list(self.transactions)

    def buy_stock(self, symbol: str, shares: int, price: float) -> bool:
        if shares <= 0 or price <= 0:
            return False
        total_cost = shares * price
        if self.cash_balance < total_cost:
            logger.debug("Rejected buy of %d %s: cost %.2f exceeds cash %.2f", shares, symbol, total_cost, self.cash_balance)
            return False
        self.cash_balance -= total_cost
        self.portfolio.add_holding(symbol, shares, price)
        self.transactions.append(Transaction.create(symbol, TransactionType.BUY, shares, price))
        return True

    def sell_stock(self, symbol: str, shares: int, price: float) -> bool:
        if shares <= 0 or price <= 0:
            return False
        if self.portfolio.get_shares(symbol) < shares:
            logger.debug("Rejected sell of %d %s: only %d held", shares, symbol, self.portfolio.get_shares(symbol))
            return False
        self.portfolio.remove_holding(symbol, shares)
        self.cash_balance += shares * price
        self.transactions.append(Transaction.create(symbol, TransactionType.SELL, shares, price))
        return True
