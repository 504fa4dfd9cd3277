from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from core.cache import CacheStore, WriteResult
from core.errors import CacheConflictError, SyncTimeoutError
from core.normalizer import EventNormalizer
from core.planner import TimeWindowPlanner
from core.retry import Deadline, RetryExecutor
from models.event import CacheDocument, HealthEvent, SubscriptionContext, format_timestamp
from providers.base import HealthEventSource

log = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    QUERYING = "querying"
    NORMALIZING = "normalizing"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncPolicy:
    """Attempt budgets and the run deadline.

    ``timeout_seconds`` should sit below the host's own execution timeout so
    a slow upstream fails the run cleanly instead of being killed mid-way.
    """

    query_max_attempts: int = 5
    storage_max_attempts: int = 3
    write_max_attempts: int = 3
    timeout_seconds: float = 600.0


@dataclass
class SyncResult:
    subscription_id: str
    retrieved_at: datetime
    query_start: datetime
    events: list[HealthEvent]
    rejected_count: int = 0
    possibly_truncated: bool = False
    write_attempts: int = 0
    warnings: list[str] = field(default_factory=list)
    state: SyncState = SyncState.DONE

    @property
    def event_count(self) -> int:
        return len(self.events)

    def to_response(self) -> dict:
        return {
            "subscriptionId": self.subscription_id,
            "retrievedAt": format_timestamp(self.retrieved_at),
            "eventCount": self.event_count,
            "events": [e.to_dict() for e in self.events],
        }


class _Run:
    """Per-invocation state holder; the orchestrator itself is shared."""

    def __init__(self, subscription_id: str) -> None:
        self.subscription_id = subscription_id
        self.state = SyncState.IDLE

    def advance(self, state: SyncState) -> None:
        log.debug("Sync %s: %s -> %s", self.subscription_id, self.state.value, state.value)
        self.state = state


class SyncOrchestrator:
    """Runs one incremental synchronization for a subscription.

    Each run:
    1. reads the cache and plans the query window
    2. queries the upstream source (retried)
    3. normalizes rows, counting rejects
    4. re-reads, merges and conditionally writes the cache, retrying on
       version conflicts

    The orchestrator keeps no state between runs; concurrent runs for the
    same subscription are reconciled by the cache's conditional write.
    """

    def __init__(
        self,
        source: HealthEventSource,
        cache: CacheStore,
        retry: RetryExecutor | None = None,
        planner: TimeWindowPlanner | None = None,
        normalizer: EventNormalizer | None = None,
        policy: SyncPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._cache = cache
        self._retry = retry or RetryExecutor()
        self._planner = planner or TimeWindowPlanner(retention=cache.retention)
        self._normalizer = normalizer or EventNormalizer()
        self.policy = policy or SyncPolicy()
        self._clock = clock
        self._monotonic = monotonic

    async def run(self, context: SubscriptionContext) -> SyncResult:
        subscription_id = context.subscription_id
        run = _Run(subscription_id)
        deadline = Deadline(self.policy.timeout_seconds, clock=self._monotonic)
        warnings: list[str] = []

        try:
            run.advance(SyncState.PLANNING)
            document, _ = await self._read(context, deadline)
            query_start = self._planner.plan(document.last_query_time, self._clock())

            run.advance(SyncState.QUERYING)
            queried_at = self._clock()
            outcome = await self._retry.execute(
                lambda: self._source.query(context, query_start),
                max_attempts=self.policy.query_max_attempts,
                deadline=deadline,
                description=f"{self._source.name} query for {subscription_id}",
            )
            query_result = outcome.unwrap()
            if query_result.possibly_truncated:
                message = (
                    f"Upstream returned a full page of {len(query_result.rows)} rows; "
                    "older in-scope events may be missing"
                )
                log.warning("Sync %s: %s", subscription_id, message)
                warnings.append(message)

            run.advance(SyncState.NORMALIZING)
            normalized = self._normalizer.normalize_batch(query_result.rows)
            if normalized.rejected_count:
                warnings.append(
                    f"{normalized.rejected_count} malformed row(s) rejected during normalization"
                )

            run.advance(SyncState.WRITING)
            merged, write_attempts = await self._merge_and_write(
                context, normalized.events, queried_at, deadline
            )
            run.advance(SyncState.DONE)
        except Exception:
            log.error("Sync %s failed while %s", subscription_id, run.state.value)
            run.advance(SyncState.FAILED)
            raise

        result = SyncResult(
            subscription_id=subscription_id,
            retrieved_at=self._clock(),
            query_start=query_start,
            events=merged.sorted_events(),
            rejected_count=normalized.rejected_count,
            possibly_truncated=query_result.possibly_truncated,
            write_attempts=write_attempts,
            warnings=warnings,
            state=run.state,
        )
        log.info(
            "Sync %s done: %d fetched, %d rejected, %d cached, %d write attempt(s)",
            subscription_id,
            len(query_result.rows),
            result.rejected_count,
            result.event_count,
            write_attempts,
        )
        return result

    async def _read(
        self, context: SubscriptionContext, deadline: Deadline
    ) -> tuple[CacheDocument, str | None]:
        outcome = await self._retry.execute(
            lambda: self._cache.read(context),
            max_attempts=self.policy.storage_max_attempts,
            deadline=deadline,
            description=f"cache read for {context.subscription_id}",
        )
        return outcome.unwrap()

    async def _merge_and_write(
        self,
        context: SubscriptionContext,
        events: list[HealthEvent],
        queried_at: datetime,
        deadline: Deadline,
    ) -> tuple[CacheDocument, int]:
        attempts = self.policy.write_max_attempts

        for attempt in range(1, attempts + 1):
            if deadline.expired:
                raise SyncTimeoutError(
                    f"cache write for {context.subscription_id} ran out of time "
                    f"before attempt {attempt}"
                )

            existing, version = await self._read(context, deadline)
            merged = self._cache.merge(existing, events, self._clock())
            # Only persisted together with the merged events.
            merged.last_query_time = queried_at

            outcome = await self._retry.execute(
                lambda: self._cache.write(context, merged, version),
                max_attempts=self.policy.storage_max_attempts,
                deadline=deadline,
                description=f"cache write for {context.subscription_id}",
            )
            if outcome.unwrap() is WriteResult.OK:
                return merged, attempt

            log.warning(
                "Cache conflict for %s (attempt %d/%d); re-reading and merging again",
                context.subscription_id,
                attempt,
                attempts,
            )

        raise CacheConflictError(
            f"cache for {context.subscription_id} still conflicting after {attempts} attempt(s)"
        )
