"""Transport strategies: direct HTTP and callback-based cross-origin script loading.

Both implement ``TransportProtocol``. The remote services do not send
permissive CORS headers, so browser callers cannot use plain HTTP; instead a
``<script>`` element is injected whose response calls back into a uniquely
named global function. The DOM side of that lives behind ``ScriptHost`` so
the strategy itself is plain asyncio and can be exercised anywhere.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from wsdottie.environment import RuntimeEnvironment
from wsdottie.errors import TransportFailure
from wsdottie.models.endpoint import TransportMode
from wsdottie.urls import redact_url

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from wsdottie.config import TransportSettings
    from wsdottie.protocols import ScriptHost, TransportProtocol

log = structlog.get_logger()


@dataclass(frozen=True)
class TransportResult:
    """Decoded JSON from one call plus its wall-clock duration in seconds."""

    data: Any
    elapsed: float


def build_http_client(settings: TransportSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(30.0),
        headers={"User-Agent": settings.user_agent, "Accept": "application/json"},
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=max(1, settings.max_connections // 2),
        ),
    )


class DirectTransport:
    """Plain HTTP GET through a shared httpx client."""

    name = "direct"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def transport(self, url: str, timeout: float) -> TransportResult:
        started = time.perf_counter()
        safe_url = redact_url(url)
        try:
            response = await self._client.get(url, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise TransportFailure(f"Timed out after {timeout}s fetching {safe_url}") from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(f"Network error fetching {safe_url}: {exc}") from exc

        if not response.is_success:
            raise TransportFailure(
                f"HTTP {response.status_code} fetching {safe_url}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportFailure(f"Response from {safe_url} is not valid JSON") from exc

        return TransportResult(data=data, elapsed=time.perf_counter() - started)


def _callback_name() -> str:
    return f"jsonp_{int(time.time() * 1000)}_{uuid.uuid4().hex}"


def with_callback(url: str, callback_name: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}callback={callback_name}"


class CrossOriginTransport:
    """Callback-wrapped script injection for browsers without CORS access.

    Each call registers its own callback name, so concurrent calls never
    collide. The call resolves exactly once: whichever of callback, script
    error or timeout happens first wins and later signals are ignored. The
    callback and script are removed on every exit path, cancellation included.
    """

    name = "cross_origin"

    def __init__(self, host: ScriptHost) -> None:
        self._host = host

    @contextmanager
    def _injected(
        self,
        callback_name: str,
        src: str,
        on_data: Callable[[Any], None],
        on_error: Callable[[], None],
    ) -> Iterator[None]:
        self._host.register_callback(callback_name, on_data)
        handle: object | None = None
        try:
            handle = self._host.inject_script(src, on_error)
            yield
        finally:
            if handle is not None:
                self._host.remove_script(handle)
            self._host.unregister_callback(callback_name)

    async def transport(self, url: str, timeout: float) -> TransportResult:
        if timeout <= 0:
            raise ValueError("Cross-origin transport requires a positive timeout")

        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[Any] = loop.create_future()
        callback_name = _callback_name()
        safe_url = redact_url(url)

        def on_data(data: Any) -> None:
            if not outcome.done():
                outcome.set_result(data)

        def on_error() -> None:
            if not outcome.done():
                outcome.set_exception(TransportFailure(f"Script load failed for {safe_url}"))

        started = time.perf_counter()
        with self._injected(callback_name, with_callback(url, callback_name), on_data, on_error):
            try:
                data = await asyncio.wait_for(outcome, timeout)
            except TimeoutError as exc:
                log.warning("cross_origin_timeout", url=safe_url, timeout=timeout)
                raise TransportFailure(
                    f"Cross-origin request timed out after {timeout}s for {safe_url}"
                ) from exc

        return TransportResult(data=data, elapsed=time.perf_counter() - started)


@dataclass
class _ScriptHandle:
    element: Any
    on_error: Any


class BrowserScriptHost:
    """ScriptHost over the DOM of a browser-hosted interpreter (Pyodide).

    ``create_proxy`` wraps Python callables so JavaScript can call them; each
    proxy is destroyed when its callback or script is removed.
    """

    def __init__(self, document: Any, window: Any, create_proxy: Callable[[Any], Any]) -> None:
        self._document = document
        self._window = window
        self._create_proxy = create_proxy
        self._proxies: dict[str, Any] = {}

    @classmethod
    def from_runtime(cls) -> BrowserScriptHost:
        import js  # type: ignore[import-not-found]  # noqa: PLC0415
        from pyodide.ffi import create_proxy  # type: ignore[import-not-found]  # noqa: PLC0415

        return cls(js.document, js.window, create_proxy)

    def register_callback(self, name: str, callback: Callable[[Any], None]) -> None:
        def receive(data: Any) -> None:
            callback(data.to_py() if hasattr(data, "to_py") else data)

        proxy = self._create_proxy(receive)
        self._proxies[name] = proxy
        setattr(self._window, name, proxy)

    def unregister_callback(self, name: str) -> None:
        if hasattr(self._window, name):
            delattr(self._window, name)
        proxy = self._proxies.pop(name, None)
        if proxy is not None:
            proxy.destroy()

    def inject_script(self, src: str, on_error: Callable[[], None]) -> object:
        element = self._document.createElement("script")
        error_proxy = self._create_proxy(lambda *_: on_error())
        element.onerror = error_proxy
        element.src = src
        self._document.head.appendChild(element)
        return _ScriptHandle(element=element, on_error=error_proxy)

    def remove_script(self, handle: object) -> None:
        if not isinstance(handle, _ScriptHandle):
            raise TypeError(f"Unknown script handle: {handle!r}")
        parent = handle.element.parentNode
        if parent is not None:
            parent.removeChild(handle.element)
        handle.on_error.destroy()


def select_transport(
    environment: RuntimeEnvironment,
    mode: TransportMode,
    *,
    direct: TransportProtocol,
    cross_origin: Callable[[], TransportProtocol],
) -> TransportProtocol:
    """Pick a strategy. An explicit mode wins in every environment.

    ``cross_origin`` is a factory so the script host is only created when the
    cross-origin strategy is actually selected.
    """
    if mode == TransportMode.DIRECT:
        return direct
    if mode == TransportMode.CROSS_ORIGIN:
        return cross_origin()
    if environment == RuntimeEnvironment.BROWSER:
        return cross_origin()
    return direct
