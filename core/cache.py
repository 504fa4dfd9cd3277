"""Versioned per-subscription cache document on top of a ``BlobStore``.

Wire format (JSON)::

    {
      "schemaVersion": 1,
      "lastQueryTime": "2026-10-18T06:00:00Z" | null,
      "events": {"<event id>": {...HealthEvent.to_dict()...}}
    }

The blob's version token (ETag) is returned beside the document and handed
back on write, so every write is a compare-and-swap.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta
from enum import Enum

from core.dedup import merge as merge_events
from core.errors import InvalidSubscriptionIdError
from models.event import (
    CacheDocument,
    HealthEvent,
    SubscriptionContext,
    format_timestamp,
    parse_timestamp,
)
from storage.base import BlobStore

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_PREFIX = "service-health"

# Version token for "no cache blob exists yet".
NOT_FOUND: str | None = None

_KEY_SAFE_ID_RE = re.compile(r"[A-Za-z0-9-]+")


class WriteResult(str, Enum):
    OK = "ok"
    CONFLICT = "conflict"


def serialize(document: CacheDocument) -> bytes:
    payload = {
        "schemaVersion": SCHEMA_VERSION,
        "lastQueryTime": (
            format_timestamp(document.last_query_time)
            if document.last_query_time
            else None
        ),
        "events": {
            event_id: event.to_dict()
            for event_id, event in sorted(document.events.items())
        },
    }
    return json.dumps(payload, indent=2).encode("utf-8")


def deserialize(data: bytes) -> CacheDocument:
    """Parse a cache blob.  Raises ``ValueError`` on anything unexpected."""
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError(f"cache blob is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise ValueError("cache blob is not a JSON object")
    if payload.get("schemaVersion") != SCHEMA_VERSION:
        raise ValueError(f"unsupported schemaVersion {payload.get('schemaVersion')!r}")

    raw_last = payload.get("lastQueryTime")
    last_query_time: datetime | None = parse_timestamp(raw_last) if raw_last else None

    events: dict[str, HealthEvent] = {}
    for event_id, raw in (payload.get("events") or {}).items():
        try:
            event = HealthEvent.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            log.warning("Dropping unreadable cached event %s: %s", event_id, exc)
            continue
        events[event.id] = event

    return CacheDocument(last_query_time=last_query_time, events=events)


class CacheStore:
    """Reads and conditionally writes one cache document per subscription.

    Blob key: ``{prefix}/{subscription_id}.json``.
    """

    def __init__(
        self,
        blobs: BlobStore,
        prefix: str = DEFAULT_PREFIX,
        retention: timedelta = timedelta(days=7),
    ) -> None:
        self._blobs = blobs
        self._prefix = prefix.strip("/")
        self.retention = retention

    def key_for(self, subscription_id: str) -> str:
        if not _KEY_SAFE_ID_RE.fullmatch(subscription_id):
            raise InvalidSubscriptionIdError(
                f"subscription id {subscription_id!r} cannot be used as a cache key"
            )
        return f"{self._prefix}/{subscription_id.lower()}.json"

    async def read(self, context: SubscriptionContext) -> tuple[CacheDocument, str | None]:
        key = self.key_for(context.subscription_id)
        item = await self._blobs.get(key, context)

        if item is None:
            log.info("No cache at %s/%s; starting empty", self._blobs.name, key)
            return CacheDocument(), NOT_FOUND

        try:
            document = deserialize(item.data)
        except ValueError as exc:
            # Keep the version so the rewrite is still conditional.
            log.warning("Cache %s is corrupt (%s); rebuilding from scratch", key, exc)
            document = CacheDocument()

        return document, item.version

    async def write(
        self,
        context: SubscriptionContext,
        document: CacheDocument,
        expected_version: str | None,
    ) -> WriteResult:
        key = self.key_for(context.subscription_id)
        new_version = await self._blobs.put(key, serialize(document), expected_version, context)

        if new_version is None:
            log.info("Version conflict writing %s (expected %s)", key, expected_version)
            return WriteResult.CONFLICT

        log.info(
            "Wrote cache %s: %d event(s), version %s",
            key,
            document.event_count,
            new_version,
        )
        return WriteResult.OK

    def merge(
        self,
        existing: CacheDocument,
        incoming: list[HealthEvent],
        now: datetime,
    ) -> CacheDocument:
        return merge_events(existing, incoming, now, self.retention)
