"""Shared fixtures and fakes for the sync engine tests."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

import pytest

from core.cache import CacheStore
from core.orchestrator import SyncOrchestrator, SyncPolicy
from core.retry import RetryExecutor
from models.event import (
    EventLevel,
    EventStatus,
    EventType,
    HealthEvent,
    ImpactedService,
    SubscriptionContext,
    format_timestamp,
)
from providers.base import HealthEventSource, QueryResult
from storage.memory import InMemoryBlobStore

NOW = datetime(2026, 10, 18, 6, 0, tzinfo=timezone.utc)
SUBSCRIPTION_ID = "3f2b9c1e-7a4d-4e8b-9c2f-1d5e6a7b8c9d"
OTHER_SUBSCRIPTION_ID = "11111111-2222-3333-4444-555555555555"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_row(
    event_id: str,
    status: str = "Active",
    updated: datetime = NOW,
    event_type: str = "ServiceIssue",
    **overrides: object,
) -> dict:
    """A Resource Graph row shaped like the projected KQL output."""
    row = {
        "id": event_id,
        "trackingId": f"TRK-{event_id}",
        "eventType": event_type,
        "status": status,
        "title": f"Incident {event_id}",
        "summary": "<p>Customers may experience errors.</p>",
        "level": "Warning",
        "impact": [
            {
                "ImpactedService": "Storage",
                "ImpactedRegions": [{"ImpactedRegion": "West Europe"}],
            }
        ],
        "lastUpdateTime": format_timestamp(updated),
    }
    row.update(overrides)
    return row


def make_event(
    event_id: str,
    status: EventStatus | str = EventStatus.ACTIVE,
    updated: datetime = NOW,
) -> HealthEvent:
    return HealthEvent(
        id=event_id,
        tracking_id=f"TRK-{event_id}",
        event_type=EventType.SERVICE_ISSUE,
        status=status,
        title=f"Incident {event_id}",
        summary="",
        level=EventLevel.WARNING,
        impacted_services=(ImpactedService("Storage", "West Europe"),),
        last_update_time=updated,
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSource(HealthEventSource):
    """Scripted upstream: each call consumes the next response.

    The last response is repeated once the script runs out.  Exceptions in
    the script are raised instead of returned.
    """

    def __init__(self, *responses: QueryResult | Exception) -> None:
        super().__init__(client=None)  # type: ignore[arg-type]
        self._responses = list(responses)
        self.calls: list[tuple[str, datetime]] = []

    @property
    def name(self) -> str:
        return "Fake"

    async def query(self, context: SubscriptionContext, query_start: datetime) -> QueryResult:
        self.calls.append((context.subscription_id, query_start))
        if len(self._responses) > 1:
            response = self._responses.pop(0)
        else:
            response = self._responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSleep:
    """Stands in for ``asyncio.sleep`` and remembers requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Clock:
    """Settable wall clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class Monotonic:
    """Settable stand-in for ``time.monotonic``."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_orchestrator(
    source: HealthEventSource,
    cache: CacheStore,
    clock: Clock,
    sleep: RecordingSleep,
    monotonic: Monotonic | None = None,
    **policy: object,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        source=source,
        cache=cache,
        retry=RetryExecutor(sleep=sleep),
        policy=SyncPolicy(**policy),
        clock=clock,
        monotonic=monotonic or time.monotonic,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def cache(blobs: InMemoryBlobStore) -> CacheStore:
    return CacheStore(blobs)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def context() -> SubscriptionContext:
    return SubscriptionContext(SUBSCRIPTION_ID)
