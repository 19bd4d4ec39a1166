"""Runtime environment detection.

Evaluated on every call rather than once at import: test harnesses flip the
markers between tests and the result must follow them.
"""

from __future__ import annotations

import os
import sys
from enum import StrEnum

TEST_MODE_VARIABLE = "WSDOTTIE_ENV"


class RuntimeEnvironment(StrEnum):
    BROWSER = "browser"
    SERVER = "server"
    TEST = "test"


def _has_test_markers() -> bool:
    if os.environ.get(TEST_MODE_VARIABLE, "").lower() == "test":
        return True
    # pytest sets this for the duration of each test
    return "PYTEST_CURRENT_TEST" in os.environ


def _has_browser_globals() -> bool:
    """True inside a browser-hosted interpreter (Pyodide) with DOM access."""
    if sys.platform != "emscripten":
        return False
    js = sys.modules.get("js")
    if js is None:
        try:
            import js  # type: ignore[import-not-found]  # noqa: PLC0415
        except ImportError:
            return False
    return hasattr(js, "document") and hasattr(js, "window")


def detect_environment() -> RuntimeEnvironment:
    """Classify the current runtime. Test markers win over browser globals."""
    if _has_test_markers():
        return RuntimeEnvironment.TEST
    if _has_browser_globals():
        return RuntimeEnvironment.BROWSER
    return RuntimeEnvironment.SERVER
