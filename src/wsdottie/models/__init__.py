from __future__ import annotations

from wsdottie.models.cache import CacheEntry, DomainCacheState
from wsdottie.models.endpoint import (
    CACHE_POLICY_SETTINGS,
    CachePolicy,
    CachePolicySettings,
    EndpointDescriptor,
    TransportMode,
)

__all__ = [
    # endpoint
    "EndpointDescriptor",
    "CachePolicy",
    "CachePolicySettings",
    "CACHE_POLICY_SETTINGS",
    "TransportMode",
    # cache
    "CacheEntry",
    "DomainCacheState",
]
