"""
Error taxonomy and classification for AI provider calls.

`classify()` is the single place that decides whether a raw failure is
rate-limit/quota related; the retry controller branches on its verdict and
nothing else. Signatures are checked in a fixed order:

1. exceptions that already carry a ClassifiedError (re-raised provider errors)
2. HTTP status 429, read from `status_code` / `code` / `status`, from a nested
   `error` payload, or from `httpx.HTTPStatusError.response`
3. symbolic status text `RESOURCE_EXHAUSTED`
4. message text containing "quota" or "rate limit"
"""
from dataclasses import dataclass
from typing import Any, Optional

import httpx

RATE_LIMIT_STATUS = 429
RATE_LIMIT_STATUS_TEXT = "resource_exhausted"
RATE_LIMIT_MESSAGE_MARKERS = ("quota", "rate limit")


@dataclass(frozen=True)
class ClassifiedError:
    """Retry verdict derived from a raw failure."""

    is_rate_limited: bool
    message: str
    http_status: Optional[int] = None


class AIServiceError(Exception):
    """
    Base class for failures surfaced to callers of the AI layer.

    Carries the flags UI callers branch on, plus the feature and the provider
    label (never the credential) for diagnostics.
    """

    is_rate_limited = False
    is_timeout = False
    is_cancelled = False

    def __init__(
        self,
        message: str,
        *,
        feature: Optional[str] = None,
        provider: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.feature = feature
        self.provider = provider
        self.http_status = http_status


class NoCredentialsConfiguredError(AIServiceError):
    """No caller or fallback credential is available. Never retried."""


class InvalidInputError(AIServiceError):
    """Caller input rejected before any provider is called. Never retried."""


class OperationCancelledError(AIServiceError):
    """The caller's cancellation token fired."""

    is_cancelled = True

    def __init__(self, message: str = "Operation was cancelled.", **kwargs: Any):
        super().__init__(message, **kwargs)


class ProviderTimeoutError(AIServiceError):
    """A provider did not settle within the per-call deadline."""

    is_timeout = True


class MalformedResponseError(AIServiceError):
    """A response arrived but could not be parsed into the expected shape."""

    def __init__(self, message: str, raw_output: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.raw_output = raw_output


class ProviderCallError(AIServiceError):
    """A provider's retry loop ended in a classified failure."""

    def __init__(
        self,
        classified: ClassifiedError,
        *,
        cause: Optional[BaseException] = None,
        feature: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(
            classified.message,
            feature=feature,
            provider=provider,
            http_status=classified.http_status,
        )
        self.classified = classified
        self.cause = cause
        self.is_rate_limited = classified.is_rate_limited


class AllProvidersExhaustedError(AIServiceError):
    """Every provider in the priority list failed; carries the last error."""

    def __init__(
        self,
        message: str,
        *,
        last_error: Optional[BaseException] = None,
        feature: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(
            message,
            feature=feature,
            provider=provider,
            http_status=getattr(last_error, "http_status", None),
        )
        self.last_error = last_error
        if last_error is not None:
            self.is_rate_limited = classify(last_error).is_rate_limited
            self.is_timeout = bool(getattr(last_error, "is_timeout", False))


class BackendHTTPError(Exception):
    """Non-2xx response from an LLM backend, parsed from the vendor error body."""

    def __init__(
        self,
        message: str,
        status_code: int,
        status_text: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status_text = status_text

    def __str__(self) -> str:
        return f"{self.message} (HTTP {self.status_code})"


def _probe(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _as_status_code(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _http_status(raw: BaseException, details: Any) -> Optional[int]:
    if isinstance(raw, httpx.HTTPStatusError):
        return raw.response.status_code
    for source, name in (
        (raw, "status_code"),
        (details, "code"),
        (raw, "code"),
        (raw, "status"),
        (details, "status"),
        (raw, "http_status"),
    ):
        status = _as_status_code(_probe(source, name))
        if status is not None:
            return status
    return None


def _status_text(raw: BaseException, details: Any) -> str:
    for source, name in ((details, "status"), (raw, "status_text"), (raw, "status")):
        value = _probe(source, name)
        if isinstance(value, str):
            return value
    return ""


def classify(raw: BaseException) -> ClassifiedError:
    """Classify a raw failure as rate-limited or not."""
    existing = getattr(raw, "classified", None)
    if isinstance(existing, ClassifiedError):
        return existing

    details = _probe(raw, "error")
    if details is None:
        details = raw

    status = _http_status(raw, details)
    message = str(_probe(details, "message") or "") or str(raw) or type(raw).__name__

    if status == RATE_LIMIT_STATUS:
        return ClassifiedError(True, message, status)

    if _status_text(raw, details).lower() == RATE_LIMIT_STATUS_TEXT:
        return ClassifiedError(True, message, status)

    lowered = message.lower()
    if any(marker in lowered for marker in RATE_LIMIT_MESSAGE_MARKERS):
        return ClassifiedError(True, message, status)

    return ClassifiedError(False, message, status)


def is_quota_message(message: str) -> bool:
    """Whether user-facing text describes a quota/rate-limit failure."""
    lowered = message.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MESSAGE_MARKERS)
