from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path

from models.event import SubscriptionContext
from storage.base import BlobItem, BlobStore

log = logging.getLogger(__name__)


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class LocalBlobStore(BlobStore):
    """Stores cache blobs as files under a directory.

    The version of a blob is the SHA-256 of its contents.  Compare-and-swap
    is guarded by an ``asyncio.Lock``, so the guarantee only holds within a
    single process; use the Azure backend for anything shared.
    """

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self._root = Path(directory)
        self._lock = asyncio.Lock()
        log.info("LocalBlobStore rooted at %s", self._root)

    @property
    def name(self) -> str:
        return "local"

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes the cache directory: {key!r}")
        return path

    def _read(self, path: Path) -> BlobItem | None:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        return BlobItem(data=data, version=_digest(data))

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def get(self, key: str, context: SubscriptionContext) -> BlobItem | None:
        return await asyncio.to_thread(self._read, self._path(key))

    async def put(
        self,
        key: str,
        data: bytes,
        if_match: str | None,
        context: SubscriptionContext,
    ) -> str | None:
        path = self._path(key)
        async with self._lock:
            current = await asyncio.to_thread(self._read, path)
            current_version = current.version if current else None
            if current_version != if_match:
                return None
            await asyncio.to_thread(self._write, path, data)
        return _digest(data)
