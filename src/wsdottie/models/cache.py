from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CacheEntry(BaseModel):
    """Cached, contract-checked result of one endpoint call."""

    key: str  # SHA-256 of endpoint id + canonical params (primary key)
    endpoint_id: str
    domain: str | None = None
    payload: str  # JSON as produced by the output contract's serializer
    fetched_at: datetime
    stale_at: datetime
    expires_at: datetime
    invalidated: bool = False  # Set by the flush-date monitor
    stale: bool = False  # invalidated, or past stale_at
    expired: bool = False  # past expires_at; must not be served


class DomainCacheState(BaseModel):
    """Last observed flush date for a data domain and the keys it owns."""

    domain: str
    changed_at: datetime | None = None
    keys: frozenset[str] = frozenset()
    updated_at: datetime
