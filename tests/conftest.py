from __future__ import annotations

import random

import pytest

from tradesim.engine import TradingEngine
from tradesim.portfolio import User
from tradesim.storage import SnapshotStore


class FixedRandom(random.Random):
    """Random source whose ``random()`` always returns the same draw."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def user() -> User:
    return User(user_id="Trader001", name="John Doe", cash_balance=100_000.0)


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(str(tmp_path / "trading_data.db"))


@pytest.fixture
def engine(user: User) -> TradingEngine:
    engine = TradingEngine(rng=random.Random(42))
    engine.set_current_user(user)
    return engine
