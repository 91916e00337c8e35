from __future__ import annotations

import logging
import random
import sqlite3
from contextlib import closing

import pytest

from tradesim.engine import TradingEngine
from tradesim.market import seed_stocks
from tradesim.portfolio import User
from tradesim.storage import Snapshot, SnapshotError, SnapshotStore


def _holdings(user: User):
    return sorted((h.symbol, h.shares, h.average_cost) for h in user.portfolio.holdings)


def test_load_missing_file_returns_none(store: SnapshotStore) -> None:
    assert store.load() is None


def test_round_trip_engine_and_user(store: SnapshotStore, user: User) -> None:
    engine = TradingEngine(store=store, rng=random.Random(6))
    engine.set_current_user(user)
    engine.buy_stock("AAPL", 10)
    engine.advance_prices()
    engine.buy_stock("AAPL", 3)
    engine.buy_stock("NVDA", 7)
    engine.advance_prices()
    engine.sell_stock("NVDA", 2)
    assert engine.update_market_prices() is True

    restored = TradingEngine(store=store, rng=random.Random(99))
    restored_user = restored.current_user

    assert restored.get_all_stocks() == engine.get_all_stocks()
    assert [s.symbol for s in restored.get_all_stocks()] == [s.symbol for s in engine.get_all_stocks()]
    assert restored_user is not None
    assert restored_user.user_id == user.user_id
    assert restored_user.name == user.name
    assert restored_user.cash_balance == user.cash_balance
    assert _holdings(restored_user) == _holdings(user)
    assert restored_user.transaction_history == user.transaction_history


def test_save_replaces_previous_snapshot(store: SnapshotStore, user: User) -> None:
    stocks = seed_stocks(random.Random(1))
    user.buy_stock("AAPL", 1, 178.50)
    store.save(Snapshot(stocks=stocks, user=user))
    user.sell_stock("AAPL", 1, 180.0)
    store.save(Snapshot(stocks=stocks, user=user))

    snapshot = store.load()

    assert snapshot.user.portfolio.holdings == []
    assert len(snapshot.user.transactions) == 2


def test_snapshot_without_user(store: SnapshotStore) -> None:
    stocks = seed_stocks(random.Random(1))
    store.save(Snapshot(stocks=stocks))

    snapshot = store.load()

    assert snapshot.user is None
    assert snapshot.stocks == stocks


def test_malformed_file_raises_snapshot_error(tmp_path) -> None:
    path = tmp_path / "trading_data.db"
    path.write_bytes(b"this is not a sqlite database" * 10)

    with pytest.raises(SnapshotError):
        SnapshotStore(str(path)).load()


def test_engine_starts_from_defaults_on_malformed_file(tmp_path, caplog) -> None:
    path = tmp_path / "trading_data.db"
    path.write_bytes(b"garbage" * 100)

    with caplog.at_level(logging.ERROR, logger="tradesim.engine"):
        engine = TradingEngine(store=SnapshotStore(str(path)), rng=random.Random(1))

    assert "Error loading market snapshot" in caplog.text
    assert engine.get_stock("AAPL").current_price == 178.50
    assert engine.current_user is None


def test_engine_rejects_snapshot_with_unknown_symbols(store: SnapshotStore, user: User, caplog) -> None:
    stocks = seed_stocks(random.Random(1))
    user.buy_stock("ZZZZ", 1, 10.0)
    store.save(Snapshot(stocks=stocks, user=user))

    with caplog.at_level(logging.ERROR, logger="tradesim.engine"):
        engine = TradingEngine(store=store, rng=random.Random(1))

    assert "unknown symbols" in caplog.text
    assert engine.current_user is None


@pytest.mark.parametrize(
    "statement",
    [
        "UPDATE stocks SET current_price = 0.25 WHERE symbol = 'AAPL'",
        "UPDATE stocks SET previous_close = 0 WHERE symbol = 'AAPL'",
        "UPDATE stocks SET open_price = -1 WHERE symbol = 'MSFT'",
        "UPDATE stocks SET volume = -5 WHERE symbol = 'DIS'",
        "UPDATE users SET cash_balance = -0.01",
        "UPDATE holdings SET average_cost = -3.0",
        "UPDATE holdings SET shares = 0",
        "UPDATE transactions SET shares = 0",
        "UPDATE transactions SET price = -178.5",
    ],
)
def test_rows_breaking_invariants_fall_back_to_defaults(
    store: SnapshotStore, user: User, statement: str, caplog
) -> None:
    user.buy_stock("AAPL", 2, 178.50)
    store.save(Snapshot(stocks=seed_stocks(random.Random(1)), user=user))
    with closing(sqlite3.connect(store.db_path)) as conn, conn:
        conn.execute(statement)

    with pytest.raises(SnapshotError):
        store.load()

    with caplog.at_level(logging.ERROR, logger="tradesim.engine"):
        engine = TradingEngine(store=store, rng=random.Random(1))

    assert "Error loading market snapshot" in caplog.text
    assert engine.current_user is None
    assert all(stock.current_price >= 1.0 for stock in engine.get_all_stocks())
    assert all(stock.previous_close > 0 for stock in engine.get_all_stocks())
    assert engine.get_stock("AAPL").current_price == 178.50
