"""Background idle-reclaim loop shared by the breaker and cache registries."""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """Runs ``sweep()`` every ``interval`` seconds until stopped."""

    def __init__(self, name: str, interval: float, sweep: Callable[[], int]):
        self.name = name
        self.interval = interval
        self._sweep = sweep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background task. Idempotent."""
        if self._task is not None:
            return

        async def sweep_loop():
            while True:
                await asyncio.sleep(self.interval)
                try:
                    removed = self._sweep()
                except Exception as e:
                    logger.error(f"[{self.name}] Sweep failed: {e}", exc_info=True)
                    continue
                if removed:
                    logger.info(f"[{self.name}] Reclaimed {removed} idle entries")

        self._task = asyncio.create_task(sweep_loop())
        logger.info(f"[{self.name}] Started sweep task (every {self.interval}s)")

    async def stop(self) -> None:
        """Cancel the background task and wait for it to exit."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info(f"[{self.name}] Stopped sweep task")
