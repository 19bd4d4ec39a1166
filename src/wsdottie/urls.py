"""URL construction from endpoint templates.

Pure functions only. ``build_url`` is the single entry point used by the
Fetcher; the helpers are exposed for the catalog and tests.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlencode

from wsdottie.errors import UrlBuildError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from wsdottie.config import Credentials

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")

TRAFFIC_ACCESS_PARAM = "AccessCode"
FERRIES_ACCESS_PARAM = "apiaccesscode"


def placeholders(template: str) -> list[str]:
    """Placeholder names in template order, duplicates removed."""
    return list(dict.fromkeys(_PLACEHOLDER.findall(template)))


def format_param(value: Any) -> str:
    """String form of a parameter as the remote services expect it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    # Both services take calendar dates as YYYY-MM-DD, even for datetimes
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def access_param_name(url: str) -> str:
    """Traffic (WSDOT) endpoints use ``AccessCode``; ferries (WSF) ``apiaccesscode``."""
    return TRAFFIC_ACCESS_PARAM if "/traffic/" in url.lower() else FERRIES_ACCESS_PARAM


def _absolute(path: str, base_url: str) -> str:
    if path.startswith(("http://", "https://")):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def _append_query(url: str, query: str) -> str:
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


def build_url(
    template: str,
    params: Mapping[str, Any] | None,
    credentials: Credentials,
) -> str:
    """Interpolate ``params`` into ``template`` and append the access credential.

    Raises ``UrlBuildError`` if any placeholder has no (or a ``None``)
    parameter. Parameters not referenced by a placeholder become query pairs;
    ``None`` values among them are dropped.
    """
    params = params or {}
    names = placeholders(template)

    missing = [name for name in names if params.get(name) is None]
    if missing:
        raise UrlBuildError(missing, template)

    path = _PLACEHOLDER.sub(
        lambda match: quote(format_param(params[match.group(1)]), safe=""),
        template,
    )
    url = _absolute(path, credentials.base_url)

    extra = [
        (key, format_param(value))
        for key, value in params.items()
        if key not in names and value is not None
    ]
    url = _append_query(url, urlencode(extra, quote_via=quote))

    # Credential always goes last
    access = urlencode(
        [(access_param_name(url), credentials.access_token)], quote_via=quote
    )
    return _append_query(url, access)


_ACCESS_VALUE = re.compile(
    rf"(?i)([?&](?:{TRAFFIC_ACCESS_PARAM}|{FERRIES_ACCESS_PARAM})=)[^&]*"
)


def redact_url(url: str) -> str:
    """Mask the access credential so URLs can be logged."""
    return _ACCESS_VALUE.sub(r"\1***", url)
