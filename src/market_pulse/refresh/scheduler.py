"""Periodic background refresh."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from market_pulse.core.config import RefreshConfig
from market_pulse.core.models import RefreshResult, utcnow
from market_pulse.refresh.service import RefreshService

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Runs ``RefreshService.refresh`` on a fixed interval in an asyncio task.

    The first run happens ``startup_delay_seconds`` after ``start()``, then
    every ``interval_minutes``. ``trigger()`` runs a refresh immediately and
    does not reset the schedule.
    """

    def __init__(
        self,
        service: RefreshService,
        config: RefreshConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._service = service
        self._config = config or RefreshConfig()
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self.last_run: datetime | None = None
        self.next_run: datetime | None = None
        self.last_result: RefreshResult | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval_seconds(self) -> float:
        return self._config.interval_minutes * 60.0

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="market-pulse-refresh")
        logger.info(
            "Refresh scheduler started (first run in %.0fs, then every %d minutes)",
            self._config.startup_delay_seconds,
            self._config.interval_minutes,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self.next_run = None
        logger.info("Refresh scheduler stopped")

    async def trigger(self) -> RefreshResult:
        """Run one refresh now and record its outcome."""
        result = await self._service.refresh()
        self.last_run = result.completed_at or self._clock()
        self.last_result = result
        return result

    async def _loop(self) -> None:
        delay = self._config.startup_delay_seconds
        while True:
            self.next_run = self._clock() + timedelta(seconds=delay)
            await asyncio.sleep(delay)
            try:
                await self.trigger()
            except Exception:
                logger.exception("Scheduled refresh failed")
            delay = self.interval_seconds
