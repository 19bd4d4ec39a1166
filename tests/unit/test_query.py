"""Unit tests for wsdottie.query.

The Fetcher is replaced with an AsyncMock; the cache is the real SQLite
cache over an in-memory database.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest

from wsdottie.contracts import InputContract, OutputContract
from wsdottie.errors import ErrorCode, WsdottieError
from wsdottie.models.endpoint import CachePolicy, EndpointDescriptor
from wsdottie.query import QueryClient, cache_key

if TYPE_CHECKING:
    from wsdottie.cache import Cache


class _TerminalInput(InputContract):
    TerminalID: int


class _Terminal(OutputContract):
    TerminalID: int
    TerminalName: str


_TERMINAL = EndpointDescriptor(
    endpoint_id="wsf-terminals:terminalBasicsByTerminalId",
    url_template="/ferries/api/terminals/rest/terminalbasics/{TerminalID}",
    input_contract=_TerminalInput,
    output_contract=_Terminal,
    cache_policy=CachePolicy.REALTIME_UPDATES,  # 1 retry, 5s delay
    domain="terminals",
)
_PARAMS = {"TerminalID": 3}
_BAINBRIDGE = _Terminal(TerminalID=3, TerminalName="Bainbridge Island")


def _network_error() -> WsdottieError:
    return WsdottieError(ErrorCode.TRANSPORT_NETWORK, _TERMINAL.endpoint_id, "connection refused")


@pytest.fixture()
def fake_fetcher() -> AsyncMock:
    fetcher = AsyncMock()
    fetcher.fetch.return_value = _BAINBRIDGE
    return fetcher


@pytest.fixture()
def client(fake_fetcher: AsyncMock, cache: Cache) -> QueryClient:
    return QueryClient(fake_fetcher, cache)


async def _age(cache: Cache, *, stale: bool = False, expired: bool = False) -> None:
    past = (datetime.now(UTC) - timedelta(seconds=1)).isoformat()
    key = cache_key(_TERMINAL, _PARAMS)
    if stale:
        await cache._db.execute("UPDATE result_cache SET stale_at = ? WHERE key = ?", (past, key))
    if expired:
        await cache._db.execute(
            "UPDATE result_cache SET expires_at = ? WHERE key = ?", (past, key)
        )
    await cache._db.commit()


class TestCacheKey:
    def test_param_order_irrelevant(self) -> None:
        assert cache_key(_TERMINAL, {"a": 1, "b": 2}) == cache_key(_TERMINAL, {"b": 2, "a": 1})

    def test_params_distinguish(self) -> None:
        assert cache_key(_TERMINAL, {"TerminalID": 3}) != cache_key(_TERMINAL, {"TerminalID": 7})

    def test_endpoint_distinguishes(self) -> None:
        other = replace(_TERMINAL, endpoint_id="wsf-terminals:other")
        assert cache_key(_TERMINAL, _PARAMS) != cache_key(other, _PARAMS)

    def test_none_and_empty_equivalent(self) -> None:
        assert cache_key(_TERMINAL, None) == cache_key(_TERMINAL, {})


class TestQueryCaching:
    async def test_miss_then_hit(
        self, client: QueryClient, fake_fetcher: AsyncMock, cache: Cache
    ) -> None:
        first = await client.query(_TERMINAL, _PARAMS)
        second = await client.query(_TERMINAL, _PARAMS)

        assert first == _BAINBRIDGE
        assert second == _BAINBRIDGE
        fake_fetcher.fetch.assert_awaited_once_with(_TERMINAL, _PARAMS)
        assert await cache.keys_for_domain("terminals") == frozenset(
            {cache_key(_TERMINAL, _PARAMS)}
        )

    async def test_stale_entry_refetched(
        self, client: QueryClient, fake_fetcher: AsyncMock, cache: Cache
    ) -> None:
        await client.query(_TERMINAL, _PARAMS)
        await _age(cache, stale=True)

        await client.query(_TERMINAL, _PARAMS)

        assert fake_fetcher.fetch.await_count == 2

    async def test_invalidated_entry_refetched(
        self, client: QueryClient, fake_fetcher: AsyncMock, cache: Cache
    ) -> None:
        await client.query(_TERMINAL, _PARAMS)
        await cache.mark_stale(cache_key(_TERMINAL, _PARAMS))
        fake_fetcher.fetch.return_value = _Terminal(TerminalID=3, TerminalName="Renamed")

        result = await client.query(_TERMINAL, _PARAMS)

        assert result.TerminalName == "Renamed"
        entry = await cache.get(cache_key(_TERMINAL, _PARAMS))
        assert entry is not None
        assert entry.stale is False

    async def test_rejected_payload_is_a_miss(
        self, client: QueryClient, fake_fetcher: AsyncMock, cache: Cache
    ) -> None:
        await cache.set(
            cache_key(_TERMINAL, _PARAMS),
            _TERMINAL.endpoint_id,
            '{"TerminalID": "not-an-int"}',
            stale_after=60,
            expire_after=3600,
            domain="terminals",
        )

        assert await client.query(_TERMINAL, _PARAMS) == _BAINBRIDGE
        fake_fetcher.fetch.assert_awaited_once()

    async def test_policy_none_bypasses_cache(
        self, client: QueryClient, fake_fetcher: AsyncMock, cache: Cache
    ) -> None:
        uncached = replace(_TERMINAL, cache_policy=CachePolicy.NONE)

        await client.query(uncached, _PARAMS)
        await client.query(uncached, _PARAMS)

        assert fake_fetcher.fetch.await_count == 2
        assert await cache.get(cache_key(uncached, _PARAMS)) is None


class TestQueryRetry:
    async def test_retryable_error_retried_after_policy_delay(
        self, client: QueryClient, fake_fetcher: AsyncMock
    ) -> None:
        fake_fetcher.fetch.side_effect = [_network_error(), _BAINBRIDGE]

        with patch("wsdottie.query.asyncio.sleep", AsyncMock()) as mock_sleep:
            result = await client.query(_TERMINAL, _PARAMS)

        assert result == _BAINBRIDGE
        assert fake_fetcher.fetch.await_count == 2
        mock_sleep.assert_awaited_once_with(5)

    async def test_retries_exhausted(self, client: QueryClient, fake_fetcher: AsyncMock) -> None:
        fake_fetcher.fetch.side_effect = [_network_error(), _network_error(), _BAINBRIDGE]

        with (
            patch("wsdottie.query.asyncio.sleep", AsyncMock()),
            pytest.raises(WsdottieError) as exc_info,
        ):
            await client.query(_TERMINAL, _PARAMS)

        assert exc_info.value.code == ErrorCode.TRANSPORT_NETWORK
        assert fake_fetcher.fetch.await_count == 2

    async def test_non_retryable_error_not_retried(
        self, client: QueryClient, fake_fetcher: AsyncMock
    ) -> None:
        fake_fetcher.fetch.side_effect = WsdottieError(
            ErrorCode.TRANSPORT_STATUS, _TERMINAL.endpoint_id, "HTTP 404", status=404
        )

        with (
            patch("wsdottie.query.asyncio.sleep", AsyncMock()) as mock_sleep,
            pytest.raises(WsdottieError),
        ):
            await client.query(_TERMINAL, _PARAMS)

        fake_fetcher.fetch.assert_awaited_once()
        mock_sleep.assert_not_awaited()

    async def test_zero_retry_policy(self, client: QueryClient, fake_fetcher: AsyncMock) -> None:
        minute = replace(_TERMINAL, cache_policy=CachePolicy.MINUTE_UPDATES)
        fake_fetcher.fetch.side_effect = _network_error()

        with pytest.raises(WsdottieError):
            await client.query(minute, _PARAMS)

        fake_fetcher.fetch.assert_awaited_once()


class TestServeStale:
    async def test_stale_served_when_remote_unreachable(
        self, client: QueryClient, fake_fetcher: AsyncMock, cache: Cache
    ) -> None:
        await client.query(_TERMINAL, _PARAMS)
        await _age(cache, stale=True)
        fake_fetcher.fetch.side_effect = _network_error()

        with patch("wsdottie.query.asyncio.sleep", AsyncMock()):
            result = await client.query(_TERMINAL, _PARAMS)

        assert result == _BAINBRIDGE

    async def test_expired_never_served(
        self, client: QueryClient, fake_fetcher: AsyncMock, cache: Cache
    ) -> None:
        await client.query(_TERMINAL, _PARAMS)
        await _age(cache, stale=True, expired=True)
        fake_fetcher.fetch.side_effect = _network_error()

        with (
            patch("wsdottie.query.asyncio.sleep", AsyncMock()),
            pytest.raises(WsdottieError),
        ):
            await client.query(_TERMINAL, _PARAMS)

    async def test_validation_errors_not_masked_by_stale_data(
        self, client: QueryClient, fake_fetcher: AsyncMock, cache: Cache
    ) -> None:
        await client.query(_TERMINAL, _PARAMS)
        await _age(cache, stale=True)
        fake_fetcher.fetch.side_effect = WsdottieError(
            ErrorCode.OUTPUT_VALIDATION, _TERMINAL.endpoint_id, "TerminalName: Field required"
        )

        with pytest.raises(WsdottieError) as exc_info:
            await client.query(_TERMINAL, _PARAMS)

        assert exc_info.value.code == ErrorCode.OUTPUT_VALIDATION
