from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, model_validator

if TYPE_CHECKING:
    from collections.abc import Mapping

_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR
_WEEK = 7 * _DAY


class TransportMode(StrEnum):
    AUTO = "auto"
    DIRECT = "direct"
    CROSS_ORIGIN = "cross_origin"


class CachePolicySettings(BaseModel):
    """Timing and retry parameters for one cache policy. All durations in seconds."""

    model_config = ConfigDict(frozen=True)

    stale_after: float
    expire_after: float
    poll_interval: float | None  # None: never polled on a timer
    retries: int
    retry_delay: float
    request_timeout: float

    @model_validator(mode="after")
    def _stale_before_expiry(self) -> CachePolicySettings:
        if self.stale_after > self.expire_after:
            raise ValueError(
                f"stale_after ({self.stale_after}s) must not exceed "
                f"expire_after ({self.expire_after}s)"
            )
        return self


class CachePolicy(StrEnum):
    REALTIME_UPDATES = "REALTIME_UPDATES"
    MINUTE_UPDATES = "MINUTE_UPDATES"
    FIVE_MINUTE_UPDATES = "FIVE_MINUTE_UPDATES"
    HOURLY_UPDATES = "HOURLY_UPDATES"
    DAILY_UPDATES = "DAILY_UPDATES"
    DAILY_STATIC = "DAILY_STATIC"
    WEEKLY_STATIC = "WEEKLY_STATIC"
    NONE = "NONE"

    @property
    def settings(self) -> CachePolicySettings:
        return CACHE_POLICY_SETTINGS[self]


CACHE_POLICY_SETTINGS: dict[CachePolicy, CachePolicySettings] = {
    CachePolicy.REALTIME_UPDATES: CachePolicySettings(
        stale_after=5,
        expire_after=_HOUR,
        poll_interval=5,
        retries=1,
        retry_delay=5,
        request_timeout=10,
    ),
    CachePolicy.MINUTE_UPDATES: CachePolicySettings(
        stale_after=_MINUTE,
        expire_after=_HOUR,
        poll_interval=_MINUTE,
        retries=0,
        retry_delay=5,
        request_timeout=15,
    ),
    CachePolicy.FIVE_MINUTE_UPDATES: CachePolicySettings(
        stale_after=5 * _MINUTE,
        expire_after=_HOUR,
        poll_interval=5 * _MINUTE,
        retries=3,
        retry_delay=5,
        request_timeout=30,
    ),
    CachePolicy.HOURLY_UPDATES: CachePolicySettings(
        stale_after=_HOUR,
        expire_after=6 * _HOUR,
        poll_interval=_HOUR,
        retries=5,
        retry_delay=30,
        request_timeout=30,
    ),
    CachePolicy.DAILY_UPDATES: CachePolicySettings(
        stale_after=_DAY,
        expire_after=2 * _DAY,
        poll_interval=_DAY,
        retries=5,
        retry_delay=_MINUTE,
        request_timeout=30,
    ),
    CachePolicy.DAILY_STATIC: CachePolicySettings(
        stale_after=_DAY,
        expire_after=2 * _DAY,
        poll_interval=_DAY,
        retries=5,
        retry_delay=5,
        request_timeout=30,
    ),
    CachePolicy.WEEKLY_STATIC: CachePolicySettings(
        stale_after=_WEEK,
        expire_after=2 * _WEEK,
        poll_interval=None,
        retries=5,
        retry_delay=5,
        request_timeout=30,
    ),
    CachePolicy.NONE: CachePolicySettings(
        stale_after=0,
        expire_after=0,
        poll_interval=None,
        retries=0,
        retry_delay=5,
        request_timeout=30,
    ),
}


@dataclass(frozen=True)
class EndpointDescriptor:
    """Static description of one remote operation.

    Owned by the catalog and shared read-only by every fetch; nothing in the
    pipeline mutates or copies it.
    """

    endpoint_id: str  # "<module group>:<function name>"
    url_template: str
    input_contract: type[BaseModel] | None
    output_contract: Any  # Any type expression pydantic can validate against
    cache_policy: CachePolicy
    sample_params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    domain: str | None = None  # Logical data domain for flush-date invalidation

    def __post_init__(self) -> None:
        if not isinstance(self.sample_params, MappingProxyType):
            object.__setattr__(self, "sample_params", MappingProxyType(dict(self.sample_params)))
