import asyncio
import contextlib
import logging
from typing import Dict, Optional

from .engine import TradingEngine
from .models import market_snapshot

logger = logging.getLogger("tradesim.ticker")


class MarketTicker:
    """Advances the engine on a fixed interval and pushes quotes to subscribers."""

    def __init__(self, engine: TradingEngine, interval: float, tz_name: str = "UTC") -> None:
        self.engine = engine
        self.interval = interval
        self.tz_name = tz_name
        self.subscribers: Dict[str, asyncio.Queue] = {}
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if not self._task:
            logger.info("Market ticker started, interval %.1fs", self.interval)
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Market ticker stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    async def tick(self) -> None:
        self.engine.update_market_prices()
        await self._broadcast()

    def snapshot(self) -> Dict[str, object]:
        return market_snapshot(self.engine, self.tz_name).model_dump()

    async def _broadcast(self) -> None:
        if not self.subscribers:
            return
        snapshot = self.snapshot()
        for queue in list(self.subscribers.values()):
            if queue.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    queue.get_nowait()
            await queue.put(snapshot)

    async def register(self, client_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.subscribers[client_id] = queue
        await queue.put(self.snapshot())
        return queue

    async def unregister(self, client_id: str) -> None:
        self.subscribers.pop(client_id, None)
