from __future__ import annotations

import logging
from datetime import datetime

import httpx

from core.errors import error_from_response
from models.event import SubscriptionContext, format_timestamp
from providers.base import HealthEventSource, QueryResult
from providers.credentials import MANAGEMENT_SCOPE, TokenCredential

DEFAULT_ENDPOINT = "https://management.azure.com"
_API_VERSION = "2022-10-01"
_QUERIED_EVENT_TYPES = ("ServiceIssue", "PlannedMaintenance")

log = logging.getLogger(__name__)


def build_query(query_start: datetime, page_size: int) -> str:
    """KQL for the ``ServiceHealthResources`` table.

    Active events are always in scope; anything else only when it was
    updated at or after ``query_start``.
    """
    event_types = ", ".join(f"'{t}'" for t in _QUERIED_EVENT_TYPES)
    return "\n".join([
        "ServiceHealthResources",
        "| where type =~ 'Microsoft.ResourceHealth/events'",
        "| extend eventType = tostring(properties.EventType),",
        "         status = tostring(properties.Status),",
        "         lastUpdateTime = todatetime(properties.LastUpdateTime)",
        f"| where eventType in ({event_types})",
        f"| where status == 'Active' or lastUpdateTime >= datetime({format_timestamp(query_start)})",
        "| project id,",
        "          trackingId = tostring(properties.TrackingId),",
        "          eventType,",
        "          status,",
        "          title = tostring(properties.Title),",
        "          summary = tostring(properties.Summary),",
        "          level = tostring(properties.EventLevel),",
        "          impact = properties.Impact,",
        "          lastUpdateTime",
        "| order by lastUpdateTime desc",
        f"| limit {page_size}",
    ])


class ResourceGraphSource(HealthEventSource):
    """Queries Azure Resource Graph for Service Health events.

    One POST per run against ``/providers/Microsoft.ResourceGraph/resources``;
    results are not paginated, so a full page is reported as possibly
    truncated rather than silently dropped.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str = DEFAULT_ENDPOINT,
        page_size: int = 1000,
    ) -> None:
        super().__init__(client, page_size=page_size)
        self._url = f"{endpoint.rstrip('/')}/providers/Microsoft.ResourceGraph/resources"

    @property
    def name(self) -> str:
        return "ResourceGraph"

    async def query(self, context: SubscriptionContext, query_start: datetime) -> QueryResult:
        headers: dict[str, str] = {}
        if isinstance(context.credential, TokenCredential):
            token = await context.credential.get_token(MANAGEMENT_SCOPE)
            headers["Authorization"] = f"Bearer {token}"

        body = {
            "subscriptions": [context.subscription_id],
            "query": build_query(query_start, self.page_size),
            "options": {"resultFormat": "objectArray", "$top": self.page_size},
        }

        resp = await self._client.post(
            self._url,
            params={"api-version": _API_VERSION},
            headers=headers,
            json=body,
        )

        if resp.status_code != 200:
            try:
                payload = resp.json()
            except ValueError:
                payload = resp.text
            raise error_from_response(resp.status_code, payload)

        payload = resp.json()
        rows = payload.get("data") or []
        truncated = len(rows) >= self.page_size or bool(payload.get("$skipToken"))

        log.info(
            "[%s] %d row(s) for subscription %s since %s%s",
            self.name,
            len(rows),
            context.subscription_id,
            format_timestamp(query_start),
            " (page full, possibly truncated)" if truncated else "",
        )
        return QueryResult(rows=rows, possibly_truncated=truncated)
