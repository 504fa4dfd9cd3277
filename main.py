"""Service Health Sync -- entry point.

Assembles the synchronization service:

    HTTP trigger (FastAPI route) or timer trigger (SyncScheduler)
        -> SyncOrchestrator
            -> ResourceGraphSource (httpx)
            -> EventNormalizer
            -> CacheStore -> BlobStore

A shared httpx.AsyncClient is injected into the query source and the Azure
blob backend.  All state lives in the cache blob; the process keeps none
between runs.

Run locally:
    python main.py            (or: uvicorn main:app --port 7071)
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator

import httpx
import uvicorn
from fastapi import FastAPI

from api.routes import router
from core.cache import CacheStore
from core.orchestrator import SyncOrchestrator, SyncPolicy
from core.planner import TimeWindowPlanner
from core.retry import RetryExecutor
from core.scheduler import SyncScheduler
from models.event import SubscriptionContext
from providers.credentials import (
    MANAGEMENT_SCOPE,
    STORAGE_SCOPE,
    StaticTokenCredential,
)
from providers.resource_graph import ResourceGraphSource
from settings import Settings, get_settings
from storage.azure_blob import AzureBlobStore
from storage.base import BlobStore
from storage.local import LocalBlobStore
from storage.memory import InMemoryBlobStore

log = logging.getLogger("service_health")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_credential(settings: Settings) -> StaticTokenCredential:
    return StaticTokenCredential({
        MANAGEMENT_SCOPE: settings.management_access_token.get_secret_value(),
        STORAGE_SCOPE: settings.storage_access_token.get_secret_value(),
    })


def build_blob_store(settings: Settings, client: httpx.AsyncClient) -> BlobStore:
    if settings.cache_backend == "azure":
        if not settings.storage_account_url:
            raise ValueError("STORAGE_ACCOUNT_URL is required when CACHE_BACKEND=azure")
        return AzureBlobStore(
            client=client,
            account_url=settings.storage_account_url,
            container=settings.cache_container,
        )
    if settings.cache_backend == "memory":
        return InMemoryBlobStore()
    return LocalBlobStore(settings.cache_local_directory)


def build_orchestrator(settings: Settings, client: httpx.AsyncClient) -> SyncOrchestrator:
    retention = timedelta(days=settings.retention_days)
    cache = CacheStore(
        blobs=build_blob_store(settings, client),
        prefix=settings.cache_prefix,
        retention=retention,
    )
    source = ResourceGraphSource(
        client=client,
        endpoint=settings.resource_graph_endpoint,
        page_size=settings.resource_graph_page_size,
    )
    return SyncOrchestrator(
        source=source,
        cache=cache,
        retry=RetryExecutor(
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
        planner=TimeWindowPlanner(retention=retention),
        policy=SyncPolicy(
            query_max_attempts=settings.query_max_attempts,
            storage_max_attempts=settings.storage_max_attempts,
            write_max_attempts=settings.cache_write_max_attempts,
            timeout_seconds=settings.sync_timeout_seconds,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown: shared HTTP client, orchestrator, optional scheduler."""
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)
    log.info(
        "Starting %s v%s (cache backend=%s)",
        settings.app_name,
        settings.app_version,
        settings.cache_backend,
    )

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        owns_orchestrator = app.state.orchestrator is None
        if owns_orchestrator:
            app.state.orchestrator = build_orchestrator(settings, client)

        scheduler_task: asyncio.Task | None = None
        if settings.schedule_enabled:
            scheduler = SyncScheduler(
                orchestrator=app.state.orchestrator,
                subscription_ids=(
                    settings.scheduled_subscription_ids
                    or [s for s in [settings.azure_subscription_id] if s]
                ),
                context_factory=app.state.context_factory,
                interval_seconds=settings.sync_interval_seconds,
                concurrency_limit=settings.sync_concurrency_limit,
            )
            scheduler_task = asyncio.create_task(scheduler.run(), name="scheduler")

        try:
            yield
        finally:
            if scheduler_task is not None:
                scheduler_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await scheduler_task
            if owns_orchestrator:
                # Bound to the client closing below.
                app.state.orchestrator = None
            log.info("%s shut down", settings.app_name)


def create_app(
    settings: Settings | None = None,
    orchestrator: SyncOrchestrator | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    credential = build_credential(settings)

    app = FastAPI(
        title="Service Health Sync",
        description="Incremental Azure Service Health sync with a versioned blob cache.",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.context_factory = lambda sub: SubscriptionContext(sub, credential)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        uvicorn.run(app, host=settings.host, port=settings.port)
    except KeyboardInterrupt:
        print("\nShutting down.")


if __name__ == "__main__":
    main()
