from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from models.event import SubscriptionContext

DEFAULT_PAGE_SIZE = 1000


@dataclass
class QueryResult:
    """Raw rows returned by one upstream query.

    ``possibly_truncated`` is set when the page came back full: older
    in-scope rows may exist past the cap and were not returned.
    """

    rows: list[dict] = field(default_factory=list)
    possibly_truncated: bool = False


class HealthEventSource(ABC):
    """Abstract base for upstream health-event query clients.

    Each concrete source issues one time-scoped query per call and returns
    raw rows; normalisation happens downstream in ``EventNormalizer``.

    A shared ``httpx.AsyncClient`` is injected at construction time so that
    the query client and the blob store reuse one connection pool.
    """

    def __init__(self, client: httpx.AsyncClient, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._client = client
        self.page_size = page_size

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable source name (e.g. 'ResourceGraph')."""

    @abstractmethod
    async def query(self, context: SubscriptionContext, query_start: datetime) -> QueryResult:
        """Fetch events for ``context.subscription_id``.

        In scope: every Active event, plus any event updated at or after
        ``query_start``.  Rows are ordered by last update, newest first, and
        capped at ``page_size``.

        Implementations raise on failure; the caller wraps the call in a
        ``RetryExecutor`` which decides whether to retry.
        """
