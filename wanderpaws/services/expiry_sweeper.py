from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..application.services.subscription_ledger import SubscriptionLedger
from ..domain.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Background task that periodically persists time-based expiry."""

    def __init__(self, ledger: SubscriptionLedger, interval_seconds: int = 3600) -> None:
        self._ledger = ledger
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task[None]] = None
        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        if self._task is not None:
            return
        if self._interval <= 0:
            logger.info("Expiry sweeper disabled.")
            return
        logger.info("Starting expiry sweeper every %s seconds.", self._interval)
        self._shutdown.clear()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="expiry-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        logger.info("Stopping expiry sweeper.")
        self._shutdown.set()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def run_once(self) -> int:
        return await asyncio.to_thread(self._ledger.expire_sweep)

    async def _run(self) -> None:
        while not self._shutdown.is_set():
            try:
                await self.run_once()
            except StoreUnavailable as exc:
                logger.warning("Expiry sweep skipped: %s", exc.message)
            except Exception:
                logger.exception("Unexpected error during expiry sweep.")
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
