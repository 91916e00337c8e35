import contextlib
import logging
import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from .market import PRICE_FLOOR, Stock
from .portfolio import PortfolioHolding, Transaction, TransactionType, User

logger = logging.getLogger("tradesim.storage")

SCHEMA = """
CREATE TABLE IF NOT EXISTS stocks (
    symbol TEXT PRIMARY KEY,
    company_name TEXT NOT NULL,
    current_price REAL NOT NULL,
    open_price REAL NOT NULL,
    previous_close REAL NOT NULL,
    volume INTEGER NOT NULL,
    market_cap REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    cash_balance REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS holdings (
    user_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    shares INTEGER NOT NULL,
    average_cost REAL NOT NULL,
    PRIMARY KEY (user_id, symbol),
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS transactions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    transaction_id TEXT UNIQUE NOT NULL,
    user_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    type TEXT NOT NULL,
    shares INTEGER NOT NULL,
    price REAL NOT NULL,
    total_amount REAL NOT NULL,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
);
"""


class SnapshotError(Exception):
    """Raised when a snapshot file cannot be read or written."""


@dataclass
class Snapshot:
    stocks: Dict[str, Stock]
    user: Optional[User] = None


class SnapshotStore:
    """SQLite file holding the stock universe and the active user."""

    def __init__(self, db_path: Optional[str] = None) -> None:
        default_path = Path(os.getenv("SIMULATOR_DB_PATH", "data/trading_data.db"))
        self.db_path = Path(db_path) if db_path else default_path
        self._lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    def save(self, snapshot: Snapshot) -> None:
        """Replace the stored snapshot in a single transaction."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, contextlib.closing(self._connect()) as conn:
                conn.executescript(SCHEMA)
                with conn:
                    self._write(conn, snapshot)
        except (sqlite3.Error, OSError) as exc:
            raise SnapshotError(f"could not write snapshot to {self.db_path}: {exc}") from exc

    def _write(self, conn: sqlite3.Connection, snapshot: Snapshot) -> None:
        cur = conn.cursor()
        cur.execute("DELETE FROM transactions")
        cur.execute("DELETE FROM holdings")
        cur.execute("DELETE FROM users")
        cur.execute("DELETE FROM stocks")
        cur.executemany(
            """
            INSERT INTO stocks (symbol, company_name, current_price, open_price, previous_close, volume, market_cap)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    stock.symbol,
                    stock.company_name,
                    float(stock.current_price),
                    float(stock.open_price),
                    float(stock.previous_close),
                    int(stock.volume),
                    float(stock.market_cap),
                )
                for stock in snapshot.stocks.values()
            ],
        )
        user = snapshot.user
        if user is None:
            return
        cur.execute(
            "INSERT INTO users (user_id, name, cash_balance) VALUES (?, ?, ?)",
            (user.user_id, user.name, float(user.cash_balance)),
        )
        cur.executemany(
            "INSERT INTO holdings (user_id, symbol, shares, average_cost) VALUES (?, ?, ?, ?)",
            [
                (user.user_id, holding.symbol, int(holding.shares), float(holding.average_cost))
                for holding in user.portfolio.holdings
            ],
        )
        cur.executemany(
            """
            INSERT INTO transactions (transaction_id, user_id, symbol, type, shares, price, total_amount, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    tx.transaction_id,
                    user.user_id,
                    tx.symbol,
                    tx.type.value,
                    int(tx.shares),
                    float(tx.price),
                    float(tx.total_amount),
                    tx.timestamp.isoformat(),
                )
                for tx in user.transactions
            ],
        )

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    def load(self) -> Optional[Snapshot]:
        """Return the stored snapshot, or ``None`` when nothing was saved yet."""
        if not self.db_path.exists():
            return None
        try:
            with self._lock, contextlib.closing(self._connect()) as conn:
                return self._read(conn)
        except (sqlite3.Error, ValueError, KeyError) as exc:
            raise SnapshotError(f"could not read snapshot from {self.db_path}: {exc}") from exc

    def _read(self, conn: sqlite3.Connection) -> Optional[Snapshot]:
        cur = conn.cursor()
        cur.execute("SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'stocks'")
        if cur.fetchone() is None:
            return None
        cur.execute(
            """
            SELECT symbol, company_name, current_price, open_price, previous_close, volume, market_cap
            FROM stocks ORDER BY rowid ASC
            """
        )
        stocks: Dict[str, Stock] = {
            row["symbol"]: Stock(
                symbol=row["symbol"],
                company_name=row["company_name"],
                current_price=float(row["current_price"]),
                open_price=float(row["open_price"]),
                previous_close=float(row["previous_close"]),
                volume=int(row["volume"]),
                market_cap=float(row["market_cap"]),
            )
            for row in cur.fetchall()
        }
        if not stocks:
            return None
        for stock in stocks.values():
            _check_stock(stock)

        cur.execute("SELECT user_id, name, cash_balance FROM users LIMIT 1")
        user_row = cur.fetchone()
        if user_row is None:
            return Snapshot(stocks=stocks)
        user = User(
            user_id=user_row["user_id"],
            name=user_row["name"],
            cash_balance=float(user_row["cash_balance"]),
        )
        if user.cash_balance < 0:
            raise ValueError(f"user {user.user_id} has negative cash {user.cash_balance}")
        cur.execute(
            "SELECT symbol, shares, average_cost FROM holdings WHERE user_id = ? ORDER BY rowid ASC",
            (user.user_id,),
        )
        for row in cur.fetchall():
            holding = PortfolioHolding(
                symbol=row["symbol"],
                shares=int(row["shares"]),
                average_cost=float(row["average_cost"]),
            )
            if holding.average_cost < 0:
                raise ValueError(f"holding {holding.symbol} has negative average cost")
            user.portfolio.restore_holding(holding)
        cur.execute(
            """
            SELECT transaction_id, symbol, type, shares, price, total_amount, timestamp
            FROM transactions WHERE user_id = ? ORDER BY seq ASC
            """,
            (user.user_id,),
        )
        user.transactions = [
            Transaction(
                symbol=row["symbol"],
                type=TransactionType(row["type"]),
                shares=int(row["shares"]),
                price=float(row["price"]),
                total_amount=float(row["total_amount"]),
                timestamp=datetime.fromisoformat(row["timestamp"]),
                transaction_id=row["transaction_id"],
            )
            for row in cur.fetchall()
        ]
        for tx in user.transactions:
            _check_transaction(tx)
        return Snapshot(stocks=stocks, user=user)


def _check_stock(stock: Stock) -> None:
    if stock.current_price < PRICE_FLOOR:
        raise ValueError(f"{stock.symbol} price {stock.current_price} is below the floor")
    if stock.open_price <= 0 or stock.previous_close <= 0:
        raise ValueError(f"{stock.symbol} has a non-positive reference price")
    if stock.volume < 0 or stock.market_cap < 0:
        raise ValueError(f"{stock.symbol} has negative volume or market cap")


def _check_transaction(tx: Transaction) -> None:
    if tx.shares <= 0 or tx.price <= 0:
        raise ValueError(f"transaction {tx.transaction_id} has non-positive shares or price")
