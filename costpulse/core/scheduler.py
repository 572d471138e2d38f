import asyncio

from costpulse.core.service import DashboardService
from costpulse.observability.logger import get_logger

log = get_logger("scheduler")


class Scheduler:
    """Two independent fixed-interval timers.

    The snapshot timer fires a refresh every `refresh_interval` seconds; a tick
    that fires while the previous build is still running is skipped. The
    exchange-rate timer refreshes rates on its own, slower interval.
    """

    def __init__(
        self,
        service: DashboardService,
        refresh_interval: float = 30,
        exchange_interval: float = 300,
        initial_delay: float = 1.0,
    ):
        self.service = service
        self.refresh_interval = refresh_interval
        self.exchange_interval = exchange_interval
        self.initial_delay = initial_delay
        self._running = False
        self._loops: list[asyncio.Task] = []
        self._ticks: set[asyncio.Task] = set()
        self.ticks_run = 0
        self.ticks_skipped = 0
        self.ticks_failed = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        if self._loops:
            return
        self._running = True
        self._loops = [
            asyncio.create_task(self._refresh_loop(), name="snapshot_refresh"),
            asyncio.create_task(self._exchange_loop(), name="exchange_rate_refresh"),
        ]
        log.info("scheduler_started", refresh_interval=self.refresh_interval, exchange_interval=self.exchange_interval)

    async def stop(self):
        self._running = False
        tasks = self._loops + list(self._ticks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loops = []
        self._ticks.clear()
        log.info("scheduler_stopped")

    async def tick(self) -> bool:
        """Run one refresh. Returns True if a snapshot was published."""
        try:
            published = await self.service.refresh_if_idle()
        except Exception as e:
            self.ticks_failed += 1
            log.error("refresh_failed", error=str(e), exc_info=True)
            return False
        if published:
            self.ticks_run += 1
        else:
            self.ticks_skipped += 1
        return published

    async def exchange_tick(self):
        try:
            await self.service.refresh_exchange_rates()
        except Exception as e:
            log.error("exchange_rate_refresh_failed", error=str(e), exc_info=True)

    def _spawn(self, coro, name: str):
        task = asyncio.create_task(coro, name=name)
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _refresh_loop(self):
        await asyncio.sleep(self.initial_delay)
        while self._running:
            # Not awaited: the timer keeps its cadence while a slow build runs
            self._spawn(self.tick(), "snapshot_tick")
            await asyncio.sleep(self.refresh_interval)

    async def _exchange_loop(self):
        while self._running:
            await asyncio.sleep(self.exchange_interval)
            self._spawn(self.exchange_tick(), "exchange_rate_tick")
