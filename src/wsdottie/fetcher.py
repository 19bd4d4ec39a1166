"""Fetch orchestrator.

All network I/O for endpoint calls goes through a single Fetcher instance.
The Fetcher receives its credentials and the httpx.AsyncClient via
constructor injection; the composition root owns their lifecycle.

One call runs a fixed sequence and aborts at the first failure:

    environment -> transport -> validate input -> build URL -> transport
    -> decode dates -> validate output

Every failure leaves as a ``WsdottieError``. Nothing is retried here; retry
policy belongs to the caller (see ``wsdottie.query``).
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import structlog

from wsdottie.contracts import accepts_empty, validate_input, validate_output
from wsdottie.dates import convert_dates
from wsdottie.environment import detect_environment
from wsdottie.errors import (
    ContractViolation,
    ErrorCode,
    TransportFailure,
    UrlBuildError,
    WsdottieError,
)
from wsdottie.models.endpoint import TransportMode
from wsdottie.transport import (
    BrowserScriptHost,
    CrossOriginTransport,
    DirectTransport,
    select_transport,
)
from wsdottie.urls import build_url, redact_url

if TYPE_CHECKING:
    from collections.abc import Mapping

    import httpx

    from wsdottie.config import Credentials
    from wsdottie.models.endpoint import EndpointDescriptor
    from wsdottie.protocols import ScriptHost, TransportProtocol

log = structlog.get_logger()


class Fetcher:
    """Runs endpoint descriptors through transport, date decoding and validation."""

    def __init__(
        self,
        credentials: Credentials,
        *,
        http_client: httpx.AsyncClient,
        script_host: ScriptHost | None = None,
        transport_mode: TransportMode = TransportMode.AUTO,
    ) -> None:
        self._credentials = credentials
        self._direct = DirectTransport(http_client)
        self._script_host = script_host
        self._cross_origin: CrossOriginTransport | None = None
        self._transport_mode = transport_mode

    def _cross_origin_transport(self) -> TransportProtocol:
        if self._cross_origin is None:
            host = self._script_host or BrowserScriptHost.from_runtime()
            self._cross_origin = CrossOriginTransport(host)
        return self._cross_origin

    def _select(self, mode: TransportMode) -> TransportProtocol:
        return select_transport(
            detect_environment(),
            mode,
            direct=self._direct,
            cross_origin=self._cross_origin_transport,
        )

    async def fetch(
        self,
        descriptor: EndpointDescriptor,
        params: Mapping[str, Any] | None = None,
        *,
        transport_mode: TransportMode | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Fetch one endpoint and return its contract-checked output.

        ``transport_mode`` overrides the instance default for this call.
        ``timeout`` defaults to the descriptor's cache-policy request timeout.
        """
        endpoint = descriptor.endpoint_id
        params = params or {}
        call_log = log.bind(endpoint=endpoint)
        # Contract failures before the transport call are the caller's, after it the remote's
        violation_code = ErrorCode.INPUT_VALIDATION

        call_timeout = (
            timeout if timeout is not None else descriptor.cache_policy.settings.request_timeout
        )
        if call_timeout <= 0:
            raise self._classified(
                call_log,
                ErrorCode.INPUT_VALIDATION,
                endpoint,
                f"Timeout must be positive, got {call_timeout}",
            )

        try:
            # 1. Environment and transport
            transport = self._select(transport_mode or self._transport_mode)

            # 2. Input contract
            if params or not accepts_empty(descriptor.input_contract):
                validate_input(descriptor.input_contract, params)

            # 3. URL
            url = build_url(descriptor.url_template, params, self._credentials)

            # 4. Transport
            call_log.debug(
                "fetch_started",
                transport=transport.name,
                url=redact_url(url),
                timeout=call_timeout,
            )
            started = time.perf_counter()
            result = await transport.transport(url, call_timeout)
            violation_code = ErrorCode.OUTPUT_VALIDATION

            # 5. Dates
            converted = convert_dates(result.data)

            # 6. Output contract
            output = validate_output(descriptor.output_contract, converted)

        except ContractViolation as exc:
            raise self._classified(
                call_log, violation_code, endpoint, str(exc), issues=exc.issues
            ) from exc
        except UrlBuildError as exc:
            raise self._classified(
                call_log, ErrorCode.INPUT_VALIDATION, endpoint, str(exc)
            ) from exc
        except TransportFailure as exc:
            code = ErrorCode.TRANSPORT_NETWORK if exc.status is None else ErrorCode.TRANSPORT_STATUS
            raise self._classified(
                call_log, code, endpoint, exc.message, status=exc.status
            ) from exc
        except Exception as exc:
            raise self._classified(
                call_log, ErrorCode.UNKNOWN, endpoint, f"{type(exc).__name__}: {exc}"
            ) from exc

        call_log.info(
            "fetch_complete",
            transport=transport.name,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
            transport_ms=round(result.elapsed * 1000, 1),
        )
        return output

    @staticmethod
    def _classified(
        call_log: Any,
        code: ErrorCode,
        endpoint: str,
        message: str,
        **kwargs: Any,
    ) -> WsdottieError:
        error = WsdottieError(code, endpoint, message, **kwargs)
        call_log.warning(
            "fetch_failed",
            code=code,
            message=message,
            status=error.status,
            retryable=error.retryable,
        )
        return error
