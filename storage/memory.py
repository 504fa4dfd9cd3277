from __future__ import annotations

from models.event import SubscriptionContext
from storage.base import BlobItem, BlobStore


class InMemoryBlobStore(BlobStore):
    """Dict-backed blob store with integer versions.

    Useful for tests and throwaway local runs; contents vanish with the
    process.  ``get``/``put`` never await, so each call is atomic on the
    event loop.
    """

    def __init__(self) -> None:
        self._blobs: dict[str, BlobItem] = {}
        self._counter = 0

    @property
    def name(self) -> str:
        return "memory"

    async def get(self, key: str, context: SubscriptionContext) -> BlobItem | None:
        return self._blobs.get(key)

    async def put(
        self,
        key: str,
        data: bytes,
        if_match: str | None,
        context: SubscriptionContext,
    ) -> str | None:
        current = self._blobs.get(key)
        current_version = current.version if current else None
        if current_version != if_match:
            return None

        self._counter += 1
        version = str(self._counter)
        self._blobs[key] = BlobItem(data=bytes(data), version=version)
        return version

    @property
    def keys(self) -> list[str]:
        return sorted(self._blobs)
