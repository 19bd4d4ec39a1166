"""Shared test fixtures for the wsdottie test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import aiosqlite
import httpx
import pytest
import respx

from wsdottie.cache import Cache
from wsdottie.config import Credentials
from wsdottie.fetcher import Fetcher

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

BASE_URL = "https://www.wsdot.wa.gov"
ACCESS_TOKEN = "test-token"


@pytest.fixture(autouse=True)
def _isolate_respx_routes() -> None:
    """Drop routes left on respx's global router by earlier tests."""
    respx.mock.clear()


@pytest.fixture()
def credentials() -> Credentials:
    return Credentials(access_token=ACCESS_TOKEN, base_url=BASE_URL)


@pytest.fixture()
async def cache() -> AsyncIterator[Cache]:
    """Cache over an in-memory SQLite database, schema created."""
    db = await aiosqlite.connect(":memory:")
    cache = Cache(db)
    await cache.init_db()
    yield cache
    await db.close()


@pytest.fixture()
async def http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture()
def fetcher(credentials: Credentials, http_client: httpx.AsyncClient) -> Fetcher:
    """Direct-transport Fetcher; HTTP is intercepted with respx in each test."""
    return Fetcher(credentials, http_client=http_client)


class FakeScriptHost:
    """In-memory ScriptHost recording every callback and script it is given.

    ``respond`` decides what happens when a script is injected: it receives
    the script URL, the callback registry and the error hook, and may call
    either synchronously. ``None`` leaves the request hanging.
    """

    def __init__(
        self,
        respond: Callable[[str, dict[str, Callable[[Any], None]], Callable[[], None]], None]
        | None = None,
    ) -> None:
        self.callbacks: dict[str, Callable[[Any], None]] = {}
        self.scripts: dict[int, str] = {}
        self.injected: list[str] = []
        self.registered: list[str] = []
        self.error_hooks: list[Callable[[], None]] = []
        self._respond = respond
        self._next_handle = 0

    def register_callback(self, name: str, callback: Callable[[Any], None]) -> None:
        self.callbacks[name] = callback
        self.registered.append(name)

    def unregister_callback(self, name: str) -> None:
        self.callbacks.pop(name, None)

    def inject_script(self, src: str, on_error: Callable[[], None]) -> object:
        self._next_handle += 1
        self.scripts[self._next_handle] = src
        self.injected.append(src)
        self.error_hooks.append(on_error)
        if self._respond is not None:
            self._respond(src, self.callbacks, on_error)
        return self._next_handle

    def remove_script(self, handle: object) -> None:
        del self.scripts[handle]  # type: ignore[arg-type]


@pytest.fixture()
def script_host() -> FakeScriptHost:
    return FakeScriptHost()


@pytest.fixture()
def script_host_factory() -> type[FakeScriptHost]:
    """The FakeScriptHost class, for tests that need a custom responder."""
    return FakeScriptHost
