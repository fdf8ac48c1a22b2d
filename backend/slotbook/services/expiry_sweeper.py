"""
Background task that periodically returns expired holds to their slots.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from slotbook.core.logging import get_logger
from slotbook.services.booking_service import BookingCoordinator

logger = get_logger(__name__)


class ExpirySweeper:
    def __init__(
        self,
        coordinator: BookingCoordinator,
        interval: float,
        on_reclaimed: Optional[Callable[[int], Awaitable[None]]] = None,
    ):
        self.coordinator = coordinator
        self.interval = interval
        self.on_reclaimed = on_reclaimed
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="expiry-sweeper")
        logger.info("expiry_sweeper_started", interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("expiry_sweeper_stopped")

    async def sweep_once(self) -> int:
        reclaimed = await self.coordinator.reclaim_expired()
        if reclaimed and self.on_reclaimed is not None:
            await self.on_reclaimed(reclaimed)
        return reclaimed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep_once()
            except Exception as e:
                # Keep sweeping; the next tick retries whatever was missed
                logger.error("expiry_sweep_failed", error=str(e))
