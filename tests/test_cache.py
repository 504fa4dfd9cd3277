"""Tests for CacheStore and the local/in-memory blob backends."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from core.cache import NOT_FOUND, CacheStore, WriteResult, deserialize, serialize
from core.errors import InvalidSubscriptionIdError
from core.retry import ErrorKind, classify
from models.event import CacheDocument, EventStatus, SubscriptionContext
from storage.local import LocalBlobStore
from storage.memory import InMemoryBlobStore
from tests.conftest import NOW, SUBSCRIPTION_ID, make_event


def _document() -> CacheDocument:
    return CacheDocument(
        last_query_time=NOW,
        events={
            "A": make_event("A"),
            "B": make_event("B", EventStatus.RESOLVED, NOW - timedelta(days=2)),
        },
    )


class TestCacheStore:
    @pytest.mark.asyncio
    async def test_read_miss_returns_empty_document(
        self, cache: CacheStore, context: SubscriptionContext
    ) -> None:
        document, version = await cache.read(context)
        assert document.last_query_time is None
        assert document.events == {}
        assert version is NOT_FOUND

    @pytest.mark.asyncio
    async def test_written_document_reads_back(
        self, cache: CacheStore, context: SubscriptionContext
    ) -> None:
        assert await cache.write(context, _document(), NOT_FOUND) is WriteResult.OK

        document, version = await cache.read(context)

        assert document == _document()
        assert version is not NOT_FOUND

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(
        self, cache: CacheStore, context: SubscriptionContext
    ) -> None:
        await cache.write(context, _document(), NOT_FOUND)
        _, version = await cache.read(context)
        await cache.write(context, CacheDocument(), version)

        assert await cache.write(context, _document(), version) is WriteResult.CONFLICT
        assert await cache.write(context, _document(), NOT_FOUND) is WriteResult.CONFLICT

    @pytest.mark.asyncio
    async def test_key_is_per_subscription(
        self, blobs: InMemoryBlobStore, cache: CacheStore, context: SubscriptionContext
    ) -> None:
        await cache.write(context, _document(), NOT_FOUND)
        other = SubscriptionContext("11111111-2222-3333-4444-555555555555")
        await cache.write(other, CacheDocument(), NOT_FOUND)

        assert blobs.keys == [
            "service-health/11111111-2222-3333-4444-555555555555.json",
            f"service-health/{SUBSCRIPTION_ID}.json",
        ]

    @pytest.mark.parametrize("subscription_id", ["../../etc/passwd", "a/b", "", "sub.json"])
    def test_unsafe_subscription_id_is_rejected_as_permanent(
        self, cache: CacheStore, subscription_id: str
    ) -> None:
        with pytest.raises(InvalidSubscriptionIdError) as excinfo:
            cache.key_for(subscription_id)
        assert classify(excinfo.value)[0] is ErrorKind.PERMANENT

    @pytest.mark.asyncio
    async def test_corrupt_blob_is_rebuilt_conditionally(
        self, blobs: InMemoryBlobStore, cache: CacheStore, context: SubscriptionContext
    ) -> None:
        key = cache.key_for(context.subscription_id)
        await blobs.put(key, b"{not json", None, context)

        document, version = await cache.read(context)

        assert document.events == {}
        assert version == "1"
        assert await cache.write(context, _document(), version) is WriteResult.OK

    def test_unknown_schema_version_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="schemaVersion"):
            deserialize(b'{"schemaVersion": 99, "events": {}}')

    def test_unreadable_event_is_dropped(self) -> None:
        data = serialize(_document()).replace(b'"lastUpdateTime": "2026-10-16', b'"lastUpdateTime": "never')
        document = deserialize(data)
        assert set(document.events) == {"A"}


class TestLocalBlobStore:
    @pytest.mark.asyncio
    async def test_compare_and_swap(self, tmp_path: Path, context: SubscriptionContext) -> None:
        store = LocalBlobStore(tmp_path)

        first = await store.put("service-health/sub.json", b"one", None, context)
        assert first is not None
        assert await store.put("service-health/sub.json", b"two", None, context) is None

        second = await store.put("service-health/sub.json", b"two", first, context)
        assert second is not None and second != first

        item = await store.get("service-health/sub.json", context)
        assert item is not None
        assert item.data == b"two"
        assert item.version == second
        assert (tmp_path / "service-health" / "sub.json").read_bytes() == b"two"

    @pytest.mark.asyncio
    async def test_missing_blob(self, tmp_path: Path, context: SubscriptionContext) -> None:
        assert await LocalBlobStore(tmp_path).get("nope.json", context) is None

    @pytest.mark.asyncio
    async def test_keys_cannot_escape_directory(
        self, tmp_path: Path, context: SubscriptionContext
    ) -> None:
        with pytest.raises(ValueError):
            await LocalBlobStore(tmp_path / "cache").get("../outside.json", context)
