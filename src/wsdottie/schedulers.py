"""Background flush-date monitor.

One cancellable task per data domain polls the domain's cache-flush-date
endpoint and invalidates the domain's cached results when the date moves
forward. A failed poll is logged and leaves the stored state untouched;
nothing here ever raises into a user-facing query.
"""

from __future__ import annotations

import asyncio
import random
from contextlib import suppress
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from wsdottie.errors import WsdottieError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime
    from types import TracebackType

    from wsdottie.models.endpoint import EndpointDescriptor
    from wsdottie.protocols import CacheProtocol, FetcherProtocol

log = structlog.get_logger()

CAS_ATTEMPTS = 2


class MonitorPhase(StrEnum):
    IDLE = "idle"
    POLLING = "polling"


class PollOutcome(StrEnum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    FAILED = "failed"


def _jittered_delay(base_seconds: float) -> float:
    return base_seconds * random.uniform(0.8, 1.2)


class FlushDateMonitor:
    """Polls flush dates and marks domain results stale when they advance."""

    def __init__(
        self,
        fetcher: FetcherProtocol,
        cache: CacheProtocol,
        endpoints: Mapping[str, EndpointDescriptor],
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._endpoints = dict(endpoints)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self.phases: dict[str, MonitorPhase] = dict.fromkeys(self._endpoints, MonitorPhase.IDLE)

    # ------------------------------------------------------------------
    # Single poll
    # ------------------------------------------------------------------

    async def poll_once(self, domain: str) -> PollOutcome:
        """Fetch the domain's flush date and apply it. Never raises."""
        descriptor = self._endpoints[domain]
        self.phases[domain] = MonitorPhase.POLLING
        try:
            try:
                observed = await self._fetcher.fetch(descriptor)
            except WsdottieError as exc:
                log.warning(
                    "flush_date_poll_failed",
                    domain=domain,
                    code=exc.code,
                    message=exc.message,
                )
                return PollOutcome.FAILED

            try:
                return await self._apply(domain, observed)
            except Exception:
                log.warning("flush_date_apply_failed", domain=domain, exc_info=True)
                return PollOutcome.FAILED
        finally:
            self.phases[domain] = MonitorPhase.IDLE

    async def _apply(self, domain: str, observed: datetime) -> PollOutcome:
        for _ in range(CAS_ATTEMPTS):
            state = await self._cache.get_domain_state(domain)
            stored = state.changed_at if state is not None else None

            if stored is not None and observed == stored:
                log.debug("flush_date_unchanged", domain=domain, changed_at=observed.isoformat())
                return PollOutcome.UNCHANGED

            # First observation counts as an advance: results cached before it are unverified
            advanced = stored is None or observed > stored
            invalidated = await self._cache.compare_and_set_domain(
                domain, stored, observed, invalidate=advanced
            )
            if invalidated is None:
                log.debug("flush_date_cas_retry", domain=domain)
                continue

            if advanced:
                log.info(
                    "flush_date_changed",
                    domain=domain,
                    previous=stored.isoformat() if stored else None,
                    current=observed.isoformat(),
                    invalidated=invalidated,
                )
                return PollOutcome.CHANGED

            log.warning(
                "flush_date_regressed",
                domain=domain,
                previous=stored.isoformat() if stored else None,
                current=observed.isoformat(),
            )
            return PollOutcome.UNCHANGED

        log.warning("flush_date_cas_conflict", domain=domain, attempts=CAS_ATTEMPTS)
        return PollOutcome.FAILED

    # ------------------------------------------------------------------
    # Periodic tasks
    # ------------------------------------------------------------------

    async def _run(self, domain: str, interval_seconds: float) -> None:
        while True:
            await self.poll_once(domain)
            await asyncio.sleep(_jittered_delay(interval_seconds))

    def start(self) -> None:
        """Start one polling task per domain. Already-running domains are left alone."""
        for domain, descriptor in self._endpoints.items():
            task = self._tasks.get(domain)
            if task is not None and not task.done():
                continue
            interval = descriptor.cache_policy.settings.poll_interval
            if interval is None:
                log.info("flush_date_monitor_skipped", domain=domain, reason="no_poll_interval")
                continue
            self._tasks[domain] = asyncio.create_task(
                self._run(domain, interval), name=f"flush-date-monitor:{domain}"
            )
        log.info("flush_date_monitor_started", domains=sorted(self._tasks))

    async def stop(self) -> None:
        """Cancel every polling task and wait for it to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        log.info("flush_date_monitor_stopped")

    @property
    def running(self) -> frozenset[str]:
        return frozenset(domain for domain, task in self._tasks.items() if not task.done())

    async def __aenter__(self) -> FlushDateMonitor:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


async def run_cache_cleanup_scheduler(
    cache: CacheProtocol,
    *,
    grace_days: int,
    interval_hours: float,
) -> None:
    """Delete long-expired results at startup, then on a fixed interval."""
    while True:
        await cache.cleanup_expired(grace_days)
        await asyncio.sleep(_jittered_delay(interval_hours * 3600))
