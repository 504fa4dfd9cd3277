from providers.base import HealthEventSource, QueryResult
from providers.credentials import StaticTokenCredential, TokenCredential
from providers.resource_graph import ResourceGraphSource

__all__ = [
    "HealthEventSource",
    "QueryResult",
    "ResourceGraphSource",
    "StaticTokenCredential",
    "TokenCredential",
]
