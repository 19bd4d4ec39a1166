from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorCode(StrEnum):
    INPUT_VALIDATION = "INPUT_VALIDATION"
    OUTPUT_VALIDATION = "OUTPUT_VALIDATION"
    TRANSPORT_NETWORK = "TRANSPORT_NETWORK"
    TRANSPORT_STATUS = "TRANSPORT_STATUS"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class FieldIssue:
    """One offending field in a validated structure."""

    path: str  # Dotted location, "" for the root value
    reason: str

    def __str__(self) -> str:
        return f"{self.path or '<root>'}: {self.reason}"


class ContractViolation(Exception):
    """Raised by the validation engine. Carries every issue, not just the first."""

    def __init__(self, issues: list[FieldIssue]) -> None:
        super().__init__("; ".join(str(issue) for issue in issues))
        self.issues = issues


class UrlBuildError(ValueError):
    """Raised when a URL template references parameters that were not supplied."""

    def __init__(self, missing: list[str], template: str) -> None:
        super().__init__(
            f"Missing parameters for URL template {template!r}: {', '.join(missing)}"
        )
        self.missing = missing
        self.template = template


class TransportFailure(Exception):
    """Raised by transport strategies.

    ``status`` is the HTTP status code when the remote answered, ``None`` for
    timeouts, connection failures and unreadable bodies.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class WsdottieError(Exception):
    """Classified error raised by the fetch pipeline.

    Every failure inside ``Fetcher.fetch`` is re-raised as one of these.
    Retry decisions belong to the caller; ``retryable`` only reports whether
    a retry could plausibly succeed.
    """

    def __init__(
        self,
        code: ErrorCode,
        endpoint: str,
        message: str,
        *,
        status: int | None = None,
        issues: list[FieldIssue] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.endpoint = endpoint
        self.message = message
        self.status = status
        self.issues = issues or []

    @property
    def retryable(self) -> bool:
        if self.code == ErrorCode.TRANSPORT_NETWORK:
            return True
        if self.code == ErrorCode.TRANSPORT_STATUS:
            return self.status is not None and self.status >= 500
        return False

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "endpoint": self.endpoint,
                "message": self.message,
                "status": self.status,
                "issues": [{"path": i.path, "reason": i.reason} for i in self.issues],
                "retryable": self.retryable,
            }
        }
