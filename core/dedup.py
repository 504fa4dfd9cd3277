from __future__ import annotations

import json
from datetime import datetime, timedelta

from models.event import CacheDocument, HealthEvent


def _content_key(event: HealthEvent) -> str:
    return json.dumps(event.to_dict(), sort_keys=True)


def is_newer(candidate: HealthEvent, stored: HealthEvent | None) -> bool:
    """Return True when ``candidate`` should replace ``stored``.

    A later ``last_update_time`` wins, so re-fetching an event never moves its
    stored timestamp backwards.  Two different versions with the same
    timestamp are ordered by their serialized content, so the winner does not
    depend on which one arrived first.
    """
    if stored is None:
        return True
    if candidate.last_update_time != stored.last_update_time:
        return candidate.last_update_time > stored.last_update_time
    return _content_key(candidate) > _content_key(stored)


def merge(
    existing: CacheDocument,
    incoming: list[HealthEvent],
    now: datetime,
    retention: timedelta,
) -> CacheDocument:
    """Merge a freshly fetched batch into a cache document.

    Pure function: ``existing`` is left untouched and ``last_query_time`` is
    copied through as-is (the caller sets it once a write succeeds).

    1. Dedup by id, keeping the newest ``last_update_time``.
    2. Prune Resolved events older than ``now - retention`` unless the batch
       itself just returned them.  Active events are never pruned.

    Re-applying the same batch is a no-op.
    """
    events = dict(existing.events)
    observed: set[str] = set()

    for event in incoming:
        observed.add(event.id)
        if is_newer(event, events.get(event.id)):
            events[event.id] = event

    cutoff = now - retention
    pruned = {
        event_id: event
        for event_id, event in events.items()
        if not (
            event.is_resolved
            and event.last_update_time < cutoff
            and event_id not in observed
        )
    }

    return CacheDocument(last_query_time=existing.last_query_time, events=pruned)
