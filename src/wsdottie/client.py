"""Composition root.

Responsibilities:
- Configure structlog once per process
- Open the shared httpx client and the SQLite cache
- Build the Fetcher and QueryClient around them
- Start the flush-date monitor and the expired-entry cleanup task
- Tear all of it down on exit

Usage::

    async with open_client() as client:
        vessels = await client.query.query(VESSEL_LOCATIONS)
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from wsdottie import __version__
from wsdottie.cache import Cache
from wsdottie.catalog import flush_date_endpoint
from wsdottie.config import Settings
from wsdottie.fetcher import Fetcher
from wsdottie.query import QueryClient
from wsdottie.schedulers import FlushDateMonitor, run_cache_cleanup_scheduler
from wsdottie.transport import build_http_client

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

log = structlog.get_logger()


def configure_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


@dataclass
class ClientState:
    """Everything a running client owns."""

    settings: Settings
    http_client: httpx.AsyncClient
    cache: Cache
    fetcher: Fetcher
    query: QueryClient
    monitor: FlushDateMonitor | None = None


@asynccontextmanager
async def open_client(settings: Settings | None = None) -> AsyncIterator[ClientState]:
    """Build a ready-to-use client and shut it down cleanly on exit."""
    settings = settings or Settings()
    configure_logging(settings)

    if not settings.api.access_token:
        log.warning("access_token_missing", hint="set WSDOTTIE__API__ACCESS_TOKEN")

    http_client = build_http_client(settings.transport)
    db: aiosqlite.Connection | None = None
    monitor: FlushDateMonitor | None = None
    cleanup_task: asyncio.Task[None] | None = None

    try:
        db_path = Path(settings.cache.db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(db_path))
        cache = Cache(db)
        await cache.init_db()

        fetcher = Fetcher(
            settings.credentials(),
            http_client=http_client,
            transport_mode=settings.transport.mode,
        )

        if settings.monitor.enabled and settings.monitor.domains:
            monitor = FlushDateMonitor(
                fetcher,
                cache,
                {domain: flush_date_endpoint(domain) for domain in settings.monitor.domains},
            )
            monitor.start()

        cleanup_task = asyncio.create_task(
            run_cache_cleanup_scheduler(
                cache,
                grace_days=settings.cache.cleanup_grace_days,
                interval_hours=settings.cache.cleanup_interval_hours,
            )
        )

        log.info(
            "client_started",
            version=__version__,
            transport_mode=settings.transport.mode,
            monitored_domains=settings.monitor.domains if monitor else [],
        )

        yield ClientState(
            settings=settings,
            http_client=http_client,
            cache=cache,
            fetcher=fetcher,
            query=QueryClient(fetcher, cache),
            monitor=monitor,
        )
    finally:
        if monitor is not None:
            await monitor.stop()
        if cleanup_task is not None:
            cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await cleanup_task
        await http_client.aclose()
        if db is not None:
            await db.close()
        log.info("client_stopped")
