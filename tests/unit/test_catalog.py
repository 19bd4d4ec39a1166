"""Unit tests for wsdottie.catalog descriptors."""

from __future__ import annotations

import pytest

from wsdottie.catalog import (
    ENDPOINTS,
    FARE_LINE_ITEMS,
    FLUSH_DATE_ENDPOINTS,
    WSF_DOMAINS,
)
from wsdottie.contracts import validate_input
from wsdottie.models.endpoint import CACHE_POLICY_SETTINGS, CachePolicy, CachePolicySettings
from wsdottie.urls import placeholders


class TestFlushDateEndpoints:
    def test_one_per_domain(self) -> None:
        assert set(FLUSH_DATE_ENDPOINTS) == set(WSF_DOMAINS)

    @pytest.mark.parametrize("domain", WSF_DOMAINS)
    def test_shape(self, domain: str) -> None:
        descriptor = FLUSH_DATE_ENDPOINTS[domain]
        assert descriptor.url_template == f"/ferries/api/{domain}/rest/cacheflushdate"
        assert descriptor.input_contract is None
        assert descriptor.cache_policy == CachePolicy.FIVE_MINUTE_UPDATES
        assert descriptor.domain is None


class TestDescriptors:
    def test_ids_unique_and_indexed(self) -> None:
        assert all(key == descriptor.endpoint_id for key, descriptor in ENDPOINTS.items())

    @pytest.mark.parametrize("descriptor", list(ENDPOINTS.values()), ids=list(ENDPOINTS))
    def test_sample_params_satisfy_contract(self, descriptor) -> None:  # type: ignore[no-untyped-def]
        if descriptor.input_contract is None:
            assert dict(descriptor.sample_params) == {}
            return
        validate_input(descriptor.input_contract, descriptor.sample_params)
        assert set(placeholders(descriptor.url_template)) <= set(descriptor.sample_params)

    def test_sample_params_read_only(self) -> None:
        with pytest.raises(TypeError):
            FARE_LINE_ITEMS.sample_params["RoundTrip"] = True  # type: ignore[index]

    def test_descriptor_frozen(self) -> None:
        with pytest.raises(AttributeError):
            FARE_LINE_ITEMS.url_template = "/elsewhere"  # type: ignore[misc]


class TestCachePolicies:
    def test_every_policy_has_settings(self) -> None:
        assert set(CACHE_POLICY_SETTINGS) == set(CachePolicy)

    @pytest.mark.parametrize("policy", list(CachePolicy))
    def test_stale_never_after_expiry(self, policy: CachePolicy) -> None:
        assert policy.settings.stale_after <= policy.settings.expire_after

    def test_invalid_windows_rejected(self) -> None:
        with pytest.raises(ValueError, match="must not exceed"):
            CachePolicySettings(
                stale_after=10,
                expire_after=5,
                poll_interval=None,
                retries=0,
                retry_delay=1,
                request_timeout=1,
            )
