"""Protocol interfaces for swappable components.

The Fetcher, query layer and monitor reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight in-memory implementations (fake script hosts,
  recording caches)
- Other cache backends or DOM bridges to be swapped without touching the
  pipeline
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime

    from wsdottie.models.cache import CacheEntry, DomainCacheState
    from wsdottie.models.endpoint import EndpointDescriptor, TransportMode
    from wsdottie.transport import TransportResult


class TransportProtocol(Protocol):
    """One way of turning a URL into decoded JSON."""

    name: str

    async def transport(self, url: str, timeout: float) -> TransportResult: ...


class ScriptHost(Protocol):
    """The global state a cross-origin call touches: callbacks and script elements."""

    def register_callback(self, name: str, callback: Callable[[Any], None]) -> None: ...

    def unregister_callback(self, name: str) -> None: ...

    def inject_script(self, src: str, on_error: Callable[[], None]) -> object: ...

    def remove_script(self, handle: object) -> None: ...


class FetcherProtocol(Protocol):
    """Interface for the fetch orchestrator."""

    async def fetch(
        self,
        descriptor: EndpointDescriptor,
        params: Mapping[str, Any] | None = None,
        *,
        transport_mode: TransportMode | None = None,
        timeout: float | None = None,
    ) -> Any: ...


class CacheProtocol(Protocol):
    """Interface for the result cache and per-domain flush-date state."""

    async def get(self, key: str) -> CacheEntry | None: ...

    async def set(
        self,
        key: str,
        endpoint_id: str,
        payload: str,
        *,
        stale_after: float,
        expire_after: float,
        domain: str | None = None,
        seen_domain_state: DomainCacheState | None = None,
    ) -> None: ...

    async def mark_stale(self, key: str) -> bool: ...

    async def keys_for_domain(self, domain: str) -> frozenset[str]: ...

    async def ensure_domain(self, domain: str) -> None: ...

    async def get_domain_state(self, domain: str) -> DomainCacheState | None: ...

    async def compare_and_set_domain(
        self,
        domain: str,
        expected: datetime | None,
        new: datetime,
        *,
        invalidate: bool,
    ) -> int | None: ...

    async def cleanup_expired(self, grace_days: int = 7) -> None: ...
