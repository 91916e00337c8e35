import logging
import random
import threading
from typing import ContextManager, Dict, List, Optional, Set

from .market import Stock, seed_stocks
from .portfolio import User
from .storage import Snapshot, SnapshotError, SnapshotStore

logger = logging.getLogger("tradesim.engine")


class TradingEngine:
    """Owns the simulated market and executes trades for the active user.

    Every operation takes the engine lock, so a price tick and a trade never
    interleave even when they arrive from different threads.
    """

    def __init__(self, store: Optional[SnapshotStore] = None, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()
        self._store = store
        self._lock = threading.RLock()
        self.stocks: Dict[str, Stock] = seed_stocks(self._rng)
        self._current_user: Optional[User] = None
        if store is not None:
            self.load_snapshot()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    @property
    def lock(self) -> ContextManager[bool]:
        """Hold this to read several values from one consistent market state."""
        return self._lock

    @property
    def current_user(self) -> Optional[User]:
        return self._current_user

    def set_current_user(self, user: Optional[User]) -> None:
        with self._lock:
            self._current_user = user

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------
    def get_stock(self, symbol: str) -> Optional[Stock]:
        with self._lock:
            return self.stocks.get(symbol)

    def get_all_stocks(self) -> List[Stock]:
        with self._lock:
            return list(self.stocks.values())

    def current_price(self, symbol: str) -> float:
        with self._lock:
            return self.stocks[symbol].current_price

    def advance_prices(self) -> None:
        with self._lock:
            for stock in self.stocks.values():
                stock.tick(self._rng)

    def update_market_prices(self) -> bool:
        """Tick the whole market, then persist. Returns whether the save worked."""
        with self._lock:
            self.advance_prices()
            return self.save_snapshot()

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------
    def buy_stock(self, symbol: str, shares: int) -> bool:
        with self._lock:
            stock = self.stocks.get(symbol)
            if stock is None or self._current_user is None:
                return False
            ok = self._current_user.buy_stock(symbol, shares, stock.current_price)
            if ok:
                logger.debug("Bought %d %s at %.2f", shares, symbol, stock.current_price)
            return ok

    def sell_stock(self, symbol: str, shares: int) -> bool:
        with self._lock:
            stock = self.stocks.get(symbol)
            if stock is None or self._current_user is None:
                return False
            ok = self._current_user.sell_stock(symbol, shares, stock.current_price)
            if ok:
                logger.debug("Sold %d %s at %.2f", shares, symbol, stock.current_price)
            return ok

    def portfolio_value(self) -> float:
        with self._lock:
            if self._current_user is None:
                return 0.0
            return self._current_user.portfolio.get_total_value(self.current_price)

    def portfolio_gain_loss(self) -> float:
        with self._lock:
            if self._current_user is None:
                return 0.0
            return self._current_user.portfolio.get_total_gain_loss(self.current_price)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save_snapshot(self) -> bool:
        if self._store is None:
            logger.debug("No snapshot store configured, skipping save")
            return False
        with self._lock:
            snapshot = Snapshot(stocks=self.stocks, user=self._current_user)
            try:
                self._store.save(snapshot)
            except SnapshotError:
                logger.exception("Error saving market snapshot")
                return False
            return True

    def load_snapshot(self) -> bool:
        """Restore market and user from the store, keeping defaults on any problem."""
        if self._store is None:
            return False
        try:
            snapshot = self._store.load()
        except SnapshotError:
            logger.exception("Error loading market snapshot, starting from defaults")
            return False
        if snapshot is None:
            logger.info("No market snapshot at %s, starting from defaults", self._store.db_path)
            return False
        missing = self._unknown_symbols(snapshot)
        if missing:
            logger.error("Snapshot references unknown symbols %s, starting from defaults", sorted(missing))
            return False
        with self._lock:
            self.stocks = snapshot.stocks
            self._current_user = snapshot.user
        logger.info(
            "Restored %d stocks and %s from %s",
            len(snapshot.stocks),
            f"user {snapshot.user.user_id}" if snapshot.user else "no user",
            self._store.db_path,
        )
        return True

    @staticmethod
    def _unknown_symbols(snapshot: Snapshot) -> Set[str]:
        if snapshot.user is None:
            return set()
        referenced = set(snapshot.user.portfolio.symbols)
        referenced.update(tx.symbol for tx in snapshot.user.transactions)
        return referenced - set(snapshot.stocks)
