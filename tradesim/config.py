import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    db_path: str = "data/trading_data.db"
    tick_seconds: float = 5.0
    simulation_speed: float = 1.0
    seed: Optional[int] = None
    tz_name: str = "America/New_York"
    user_id: str = "Trader001"
    user_name: str = "John Doe"
    initial_cash: float = 100_000.0
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        seed = os.getenv("SIMULATOR_SEED")
        return cls(
            db_path=os.getenv("SIMULATOR_DB_PATH", "data/trading_data.db"),
            tick_seconds=float(os.getenv("MARKET_TICK_SECONDS", "5.0")),
            simulation_speed=float(os.getenv("SIMULATION_SPEED", "1.0")),
            seed=int(seed) if seed else None,
            tz_name=os.getenv("SIMULATOR_TZ", "America/New_York"),
            user_id=os.getenv("SIMULATOR_USER_ID", "Trader001"),
            user_name=os.getenv("SIMULATOR_USER_NAME", "John Doe"),
            initial_cash=float(os.getenv("SIMULATOR_INITIAL_CASH", "100000.0")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            host=os.getenv("SIMULATOR_HOST", "127.0.0.1"),
            port=int(os.getenv("SIMULATOR_PORT", "8000")),
        )

    @property
    def sleep_interval(self) -> float:
        return max(0.2, self.tick_seconds / max(self.simulation_speed, 0.1))
