"""Properties of the pure merge: dedup, monotonic updates and pruning."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from core.dedup import merge
from models.event import CacheDocument, EventStatus
from tests.conftest import NOW, make_event

RETENTION = timedelta(days=7)


@pytest.fixture
def existing() -> CacheDocument:
    return CacheDocument(
        last_query_time=NOW - timedelta(hours=1),
        events={
            "A": make_event("A", updated=NOW - timedelta(hours=5)),
            "OLD": make_event("OLD", EventStatus.RESOLVED, NOW - timedelta(days=9)),
            "RECENT": make_event("RECENT", EventStatus.RESOLVED, NOW - timedelta(days=1)),
            "ANCIENT-ACTIVE": make_event("ANCIENT-ACTIVE", updated=NOW - timedelta(days=60)),
        },
    )


def test_merge_is_idempotent(existing: CacheDocument) -> None:
    batch = [
        make_event("A", updated=NOW),
        make_event("B", EventStatus.RESOLVED, NOW - timedelta(days=10)),
        make_event("C"),
    ]
    once = merge(existing, batch, NOW, RETENTION)
    twice = merge(once, batch, NOW, RETENTION)
    assert twice == once


def test_order_of_batch_does_not_matter(existing: CacheDocument) -> None:
    batch = [make_event("A", updated=NOW), make_event("A", updated=NOW - timedelta(hours=2))]
    forward = merge(existing, batch, NOW, RETENTION)
    backward = merge(existing, list(reversed(batch)), NOW, RETENTION)
    assert forward == backward
    assert forward.events["A"].last_update_time == NOW


def test_older_update_never_replaces_newer(existing: CacheDocument) -> None:
    stale = make_event("A", updated=NOW - timedelta(days=1))
    merged = merge(existing, [stale], NOW, RETENTION)
    assert merged.events["A"].last_update_time == NOW - timedelta(hours=5)


def test_newer_update_replaces_stored_record(existing: CacheDocument) -> None:
    fresh = make_event("A", EventStatus.RESOLVED, NOW)
    merged = merge(existing, [fresh], NOW, RETENTION)
    assert merged.events["A"] == fresh


def test_active_events_are_never_pruned(existing: CacheDocument) -> None:
    merged = merge(existing, [], NOW, RETENTION)
    assert "ANCIENT-ACTIVE" in merged.events


def test_stale_resolved_events_are_pruned(existing: CacheDocument) -> None:
    merged = merge(existing, [], NOW, RETENTION)
    assert "OLD" not in merged.events
    assert "RECENT" in merged.events


def test_resolved_event_returned_by_this_batch_survives(existing: CacheDocument) -> None:
    old = make_event("B", EventStatus.RESOLVED, NOW - timedelta(days=10))
    merged = merge(existing, [old], NOW, RETENTION)
    assert "B" in merged.events


def test_last_query_time_is_left_alone(existing: CacheDocument) -> None:
    merged = merge(existing, [make_event("C")], NOW, RETENTION)
    assert merged.last_query_time == existing.last_query_time


def test_existing_document_is_not_mutated(existing: CacheDocument) -> None:
    before = dict(existing.events)
    merge(existing, [make_event("C")], NOW, RETENTION)
    assert existing.events == before


def test_same_timestamp_tie_is_resolved_by_content(existing: CacheDocument) -> None:
    first = make_event("TIE", updated=NOW - timedelta(hours=1))
    second = replace(first, title="Incident TIE (updated wording)")

    forward = merge(existing, [first, second], NOW, RETENTION)
    backward = merge(existing, [second, first], NOW, RETENTION)

    assert forward == backward
    assert merge(forward, [first], NOW, RETENTION) == forward
