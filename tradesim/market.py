import random
from dataclasses import dataclass
from typing import Dict, List, Tuple

PRICE_FLOOR = 1.0
MAX_TICK_RATIO = 0.04
MAX_TICK_VOLUME = 100_000

# (symbol, company name, seed price, market cap)
SEED_UNIVERSE: List[Tuple[str, str, float, float]] = [
    ("AAPL", "Apple Inc.", 178.50, 2_800_000_000_000.0),
    ("GOOGL", "Alphabet Inc.", 140.25, 1_750_000_000_000.0),
    ("MSFT", "Microsoft Corp.", 380.75, 2_850_000_000_000.0),
    ("AMZN", "Amazon.com Inc.", 145.80, 1_500_000_000_000.0),
    ("TSLA", "Tesla Inc.", 242.50, 770_000_000_000.0),
    ("META", "Meta Platforms", 325.60, 850_000_000_000.0),
    ("NVDA", "NVIDIA Corp.", 485.20, 1_200_000_000_000.0),
    ("NFLX", "Netflix Inc.", 440.90, 195_000_000_000.0),
    ("DIS", "Walt Disney Co.", 95.40, 175_000_000_000.0),
    ("BA", "Boeing Co.", 210.30, 130_000_000_000.0),
    ("INTC", "Intel Corp.", 45.20, 185_000_000_000.0),
    ("AMD", "AMD Inc.", 120.75, 195_000_000_000.0),
]


@dataclass
class Stock:
    symbol: str
    company_name: str
    current_price: float
    open_price: float
    previous_close: float
    volume: int
    market_cap: float

    @classmethod
    def create(
        cls,
        symbol: str,
        company_name: str,
        initial_price: float,
        market_cap: float,
        rng: random.Random,
    ) -> "Stock":
        return cls(
            symbol=symbol,
            company_name=company_name,
            current_price=initial_price,
            open_price=initial_price,
            previous_close=initial_price,
            volume=int(rng.random() * 10_000_000) + 1_000_000,
            market_cap=market_cap,
        )

    @property
    def price_change(self) -> float:
        return self.current_price - self.previous_close

    @property
    def change_percent(self) -> float:
        """Change against the previous close, as a fraction (0.01 == 1%)."""
        return self.price_change / self.previous_close

    def tick(self, rng: random.Random) -> None:
        """Advance one simulated step: a uniform move within +/-2% of the
        current price, floored at ``PRICE_FLOOR``, plus some traded volume.

        ``open_price`` and ``previous_close`` are session reference values
        and stay fixed.
        """
        change = (rng.random() - 0.5) * MAX_TICK_RATIO * self.current_price
        self.current_price = max(PRICE_FLOOR, self.current_price + change)
        self.volume += rng.randrange(MAX_TICK_VOLUME)


def seed_stocks(rng: random.Random) -> Dict[str, Stock]:
    stocks: Dict[str, Stock] = {}
    for symbol, name, price, market_cap in SEED_UNIVERSE:
        stocks[symbol] = Stock.create(symbol, name, price, market_cap, rng)
    return stocks
