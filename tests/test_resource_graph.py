"""Wire-level tests for ResourceGraphSource using httpx.MockTransport."""

from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest

from core.errors import UpstreamHttpError
from core.retry import ErrorKind, classify
from models.event import SubscriptionContext
from providers.credentials import (
    MANAGEMENT_SCOPE,
    CredentialUnavailableError,
    StaticTokenCredential,
)
from providers.resource_graph import ResourceGraphSource, build_query
from tests.conftest import NOW, SUBSCRIPTION_ID, make_row


def _context(token: str = "mgmt-token") -> SubscriptionContext:
    return SubscriptionContext(SUBSCRIPTION_ID, StaticTokenCredential({MANAGEMENT_SCOPE: token}))


def test_query_keeps_active_events_and_bounds_the_rest() -> None:
    kql = build_query(NOW - timedelta(days=7), 1000)

    assert kql.startswith("ServiceHealthResources")
    assert "eventType in ('ServiceIssue', 'PlannedMaintenance')" in kql
    assert "status == 'Active' or lastUpdateTime >= datetime(2026-10-11T06:00:00Z)" in kql
    assert "order by lastUpdateTime desc" in kql
    assert kql.endswith("| limit 1000")


@pytest.mark.asyncio
async def test_posts_query_for_the_subscription() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"count": 2, "data": [make_row("A"), make_row("B")]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await ResourceGraphSource(client).query(_context(), NOW - timedelta(days=1))

    assert seen["url"].path == "/providers/Microsoft.ResourceGraph/resources"
    assert seen["url"].params["api-version"] == "2022-10-01"
    assert seen["auth"] == "Bearer mgmt-token"
    assert seen["body"]["subscriptions"] == [SUBSCRIPTION_ID]
    assert seen["body"]["options"]["$top"] == 1000
    assert [r["id"] for r in result.rows] == ["A", "B"]
    assert not result.possibly_truncated


@pytest.mark.asyncio
async def test_full_page_is_possibly_truncated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [make_row("A"), make_row("B")]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await ResourceGraphSource(client, page_size=2).query(_context(), NOW)

    assert result.possibly_truncated


@pytest.mark.asyncio
async def test_skip_token_is_possibly_truncated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [make_row("A")], "$skipToken": "ew0K"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await ResourceGraphSource(client).query(_context(), NOW)

    assert result.possibly_truncated


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "code", "kind"),
    [
        (403, "AuthorizationFailed", ErrorKind.PERMANENT),
        (400, "BadRequest", ErrorKind.PERMANENT),
        (429, "RateLimiting", ErrorKind.TRANSIENT),
        (502, "BadGateway", ErrorKind.TRANSIENT),
        (503, "ServiceUnavailable", ErrorKind.TRANSIENT),
    ],
)
async def test_error_responses_carry_code_for_classification(
    status: int, code: str, kind: ErrorKind
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"code": code, "message": "details"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamHttpError) as excinfo:
            await ResourceGraphSource(client).query(_context(), NOW)

    assert excinfo.value.status_code == status
    assert excinfo.value.code == code
    assert classify(excinfo.value)[0] is kind


@pytest.mark.asyncio
async def test_missing_token_fails_before_any_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    context = SubscriptionContext(SUBSCRIPTION_ID, StaticTokenCredential({}))
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(CredentialUnavailableError):
            await ResourceGraphSource(client).query(context, NOW)
