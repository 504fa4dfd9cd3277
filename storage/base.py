from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from models.event import SubscriptionContext


@dataclass(frozen=True)
class BlobItem:
    data: bytes
    version: str


class BlobStore(ABC):
    """Abstract base for cache blob backends.

    Every backend offers a compare-and-swap ``put``: the write only lands if
    the blob's current version equals ``if_match`` (``None`` meaning "the blob
    must not exist yet").  This is the only way the cache is ever mutated.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short backend name used in logs (e.g. 'azure')."""

    @abstractmethod
    async def get(self, key: str, context: SubscriptionContext) -> BlobItem | None:
        """Return the blob and its version, or None when it does not exist."""

    @abstractmethod
    async def put(
        self,
        key: str,
        data: bytes,
        if_match: str | None,
        context: SubscriptionContext,
    ) -> str | None:
        """Conditionally write ``data``.

        Returns the new version on success, or None when the precondition
        failed because another writer got there first.  Any other failure
        raises.
        """
