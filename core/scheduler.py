from __future__ import annotations

import asyncio
import logging
from typing import Callable

from core.orchestrator import SyncOrchestrator
from models.event import SubscriptionContext

log = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 4
DEFAULT_INTERVAL_SECONDS = 900


class SyncScheduler:
    """Timer trigger that keeps configured subscriptions' caches warm.

    Spawns one worker task per subscription.  Each worker calls the shared
    ``SyncOrchestrator`` on its own cadence, acquiring an
    ``asyncio.Semaphore`` first so only a bounded number of syncs hit the
    upstream at once.

    HTTP requests may run syncs for the same subscriptions concurrently;
    that is safe because the cache write is conditional.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        subscription_ids: list[str],
        context_factory: Callable[[str], SubscriptionContext],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    ) -> None:
        self._orchestrator = orchestrator
        self._subscription_ids = list(dict.fromkeys(subscription_ids))
        self._context_factory = context_factory
        self._interval = interval_seconds
        self._concurrency_limit = concurrency_limit
        self._semaphore = asyncio.Semaphore(concurrency_limit)

    async def run_once(self, subscription_id: str) -> bool:
        """Run a single sync, logging instead of raising.  Returns success."""
        async with self._semaphore:
            try:
                result = await self._orchestrator.run(self._context_factory(subscription_id))
            except Exception:
                log.exception("Scheduled sync for %s failed", subscription_id)
                return False

        for warning in result.warnings:
            log.warning("Scheduled sync for %s: %s", subscription_id, warning)
        return True

    async def _subscription_worker(self, subscription_id: str) -> None:
        log.info(
            "Worker started for %s (interval=%ds)",
            subscription_id,
            self._interval,
        )
        while True:
            await self.run_once(subscription_id)
            await asyncio.sleep(self._interval)

    async def run(self) -> None:
        """Spawn one worker per subscription and await them all.

        Returns immediately when no subscriptions are configured.
        """
        if not self._subscription_ids:
            log.warning("No subscriptions configured for scheduled sync")
            return

        log.info(
            "Scheduler starting %d subscription worker(s), concurrency limit=%d",
            len(self._subscription_ids),
            self._concurrency_limit,
        )

        tasks = [
            asyncio.create_task(
                self._subscription_worker(sub),
                name=f"sync-{sub}",
            )
            for sub in self._subscription_ids
        ]

        await asyncio.gather(*tasks)
