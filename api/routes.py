"""HTTP entry points: ``/api/GetServiceHealth`` and a liveness probe."""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from core.errors import InvalidSubscriptionIdError, SyncError, ValidationError
from core.orchestrator import SyncOrchestrator
from models.event import SubscriptionContext
from settings import Settings, get_settings

router = APIRouter(prefix="/api")
log = logging.getLogger(__name__)

_PARAM_NAMES = ("SubscriptionId", "subscriptionId", "subscriptionid")
_SUBSCRIPTION_ID_RE = re.compile(
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_context_factory(request: Request) -> Callable[[str], SubscriptionContext]:
    return request.app.state.context_factory


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def _pick(source: object) -> str:
    if not hasattr(source, "get"):
        return ""
    for name in _PARAM_NAMES:
        value = source.get(name)
        if value:
            return str(value).strip()
    return ""


async def resolve_subscription_id(request: Request, default: str) -> str:
    """Query string first, then a JSON body, then the configured default."""
    subscription_id = _pick(request.query_params)

    if not subscription_id:
        raw = await request.body()
        if raw:
            try:
                subscription_id = _pick(json.loads(raw))
            except ValueError:
                log.debug("Ignoring non-JSON request body")

    subscription_id = subscription_id or default.strip()
    if not subscription_id:
        raise ValidationError(
            "no subscription id in request and no default configured",
            public_message=(
                "SubscriptionId is required: pass it in the query string or "
                "request body, or configure AZURE_SUBSCRIPTION_ID"
            ),
        )
    if not _SUBSCRIPTION_ID_RE.fullmatch(subscription_id):
        raise InvalidSubscriptionIdError(f"subscription id {subscription_id!r} is not a GUID")
    return subscription_id


@router.api_route("/GetServiceHealth", methods=["GET", "POST"])
async def get_service_health(
    request: Request,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    context_factory: Callable[[str], SubscriptionContext] = Depends(get_context_factory),
    settings: Settings = Depends(get_app_settings),
) -> JSONResponse:
    try:
        subscription_id = await resolve_subscription_id(request, settings.azure_subscription_id)
        result = await orchestrator.run(context_factory(subscription_id))
    except ValidationError as exc:
        log.info("Rejected request: %s", exc)
        return JSONResponse({"error": exc.public_message}, status_code=400)
    except SyncError as exc:
        log.error("Service health sync failed: %s", exc)
        return JSONResponse(
            {"error": "Failed to retrieve service health", "details": exc.public_message},
            status_code=500,
        )
    except Exception:
        log.exception("Unhandled error in GetServiceHealth")
        return JSONResponse(
            {
                "error": "Failed to retrieve service health",
                "details": "An unexpected error occurred; see service logs",
            },
            status_code=500,
        )

    return JSONResponse(result.to_response(), status_code=200)


@router.get("/health")
async def health_check(settings: Settings = Depends(get_app_settings)) -> dict:
    """Liveness probe.  Does not touch the upstream or the cache."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
