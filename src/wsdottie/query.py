"""Cached queries with per-policy retry.

This is the Fetcher's caller: it decides whether a stored result is still
usable, re-fetches when it is not, retries retryable failures according to
the descriptor's cache policy, and registers every stored key with its data
domain so the flush-date monitor can invalidate it.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from typing import TYPE_CHECKING, Any

import structlog

from wsdottie.contracts import dump_output, load_output
from wsdottie.errors import ContractViolation, WsdottieError
from wsdottie.models.endpoint import CachePolicy

if TYPE_CHECKING:
    from collections.abc import Mapping

    from wsdottie.models.cache import CacheEntry
    from wsdottie.models.endpoint import EndpointDescriptor
    from wsdottie.protocols import CacheProtocol, FetcherProtocol


def cache_key(descriptor: EndpointDescriptor, params: Mapping[str, Any] | None) -> str:
    """Stable key for one endpoint + parameter set. Parameter order is irrelevant."""
    canonical = json.dumps(dict(params or {}), sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(f"{descriptor.endpoint_id}|{canonical}".encode()).hexdigest()


class QueryClient:
    """Serves endpoint results from the cache, fetching and retrying as needed."""

    def __init__(self, fetcher: FetcherProtocol, cache: CacheProtocol) -> None:
        self._fetcher = fetcher
        self._cache = cache

    async def query(
        self,
        descriptor: EndpointDescriptor,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Return the endpoint's validated output, from cache when still fresh."""
        key = cache_key(descriptor, params)
        log = structlog.get_logger().bind(endpoint=descriptor.endpoint_id, key=key[:12])

        if descriptor.cache_policy == CachePolicy.NONE:
            return await self._fetch_with_retry(descriptor, params)

        # Domain state as of before the fetch; a flush after this point invalidates the write
        seen_domain_state = None
        if descriptor.domain is not None:
            await self._cache.ensure_domain(descriptor.domain)
            seen_domain_state = await self._cache.get_domain_state(descriptor.domain)

        cached_entry = await self._cache.get(key)
        if cached_entry is not None and not cached_entry.stale:
            cached = self._load(descriptor, cached_entry)
            if cached is not None:
                log.debug("cache_hit", stale=False)
                return cached

        if cached_entry is None:
            reason = "absent"
        elif cached_entry.stale:
            reason = "invalidated" if cached_entry.invalidated else "stale"
        else:
            reason = "rejected"
        log.info("cache_miss_fetching", reason=reason)
        try:
            output = await self._fetch_with_retry(descriptor, params)
        except WsdottieError as exc:
            # Stale but unexpired data beats no data when the remote is unreachable
            if exc.retryable and cached_entry is not None and not cached_entry.expired:
                cached = self._load(descriptor, cached_entry)
                if cached is not None:
                    log.warning("serving_stale_after_error", code=exc.code, message=exc.message)
                    return cached
            raise

        policy = descriptor.cache_policy.settings
        await self._cache.set(
            key,
            descriptor.endpoint_id,
            dump_output(descriptor.output_contract, output),
            stale_after=policy.stale_after,
            expire_after=policy.expire_after,
            domain=descriptor.domain,
            seen_domain_state=seen_domain_state,
        )
        return output

    async def _fetch_with_retry(
        self,
        descriptor: EndpointDescriptor,
        params: Mapping[str, Any] | None,
    ) -> Any:
        policy = descriptor.cache_policy.settings
        attempt = 0
        while True:
            try:
                return await self._fetcher.fetch(descriptor, params)
            except WsdottieError as exc:
                if not exc.retryable or attempt >= policy.retries:
                    raise
                attempt += 1
                structlog.get_logger().info(
                    "fetch_retry_scheduled",
                    endpoint=descriptor.endpoint_id,
                    attempt=attempt,
                    max_retries=policy.retries,
                    delay_seconds=policy.retry_delay,
                    code=exc.code,
                )
                await asyncio.sleep(policy.retry_delay)

    @staticmethod
    def _load(descriptor: EndpointDescriptor, entry: CacheEntry) -> Any | None:
        """Rebuild a cached value. A payload the contract no longer accepts is a miss."""
        try:
            return load_output(descriptor.output_contract, entry.payload)
        except ContractViolation:
            structlog.get_logger().warning(
                "cache_payload_rejected", endpoint=descriptor.endpoint_id, key=entry.key[:12]
            )
            return None
