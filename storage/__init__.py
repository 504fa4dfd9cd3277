from storage.azure_blob import AzureBlobStore
from storage.base import BlobItem, BlobStore
from storage.local import LocalBlobStore
from storage.memory import InMemoryBlobStore

__all__ = [
    "AzureBlobStore",
    "BlobItem",
    "BlobStore",
    "InMemoryBlobStore",
    "LocalBlobStore",
]
