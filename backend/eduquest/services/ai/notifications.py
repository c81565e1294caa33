"""
User-facing notification throttle.

Quota/rate-limit errors tend to arrive in bursts (one per retried provider,
one per concurrent request); only the first within the cooldown window is
shown. Connectivity errors are rewritten into one actionable message.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from eduquest.core.config import Settings, get_settings
from eduquest.core.logging import get_logger
from eduquest.core.metrics import record_notification_shown, record_notification_suppressed
from eduquest.services.ai.errors import AIServiceError, is_quota_message

logger = get_logger(__name__)

DEFAULT_COOLDOWN_SECONDS = 10.0

CONNECTIVITY_SIGNATURES = (
    "failed to fetch",
    "all connection attempts failed",
    "connection refused",
    "network is unreachable",
    "name or service not known",
)

NETWORK_ERROR_MESSAGE = (
    "Network Error: Could not connect to the server. Please check your "
    "internet connection, disable any ad-blockers, and try again."
)


class Severity(Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    message: str
    severity: Severity
    created_at: float


def is_connectivity_message(message: str) -> bool:
    lowered = message.lower()
    return any(signature in lowered for signature in CONNECTIVITY_SIGNATURES)


def render_error(exc: BaseException) -> str:
    """User-facing text for an AI failure: feature, provider label, message."""
    if not isinstance(exc, AIServiceError):
        return str(exc) or type(exc).__name__
    message = exc.message
    if exc.feature and exc.feature not in message:
        message = f"{exc.feature}: {message}"
    if exc.provider and exc.provider not in message:
        message = f"{message} ({exc.provider})"
    return message


class NotificationThrottle:
    """Collapses repeated quota errors into one notification per cooldown."""

    def __init__(
        self,
        sink: Optional[Callable[[Notification], None]] = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sink = sink
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_quota_shown_at: Optional[float] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sink: Optional[Callable[[Notification], None]] = None,
    ) -> "NotificationThrottle":
        return cls(sink=sink, cooldown_seconds=settings.notification_cooldown_seconds)

    def notify(self, message: str, severity: Severity = Severity.ERROR) -> Optional[Notification]:
        """
        Show `message` unless throttled.

        Returns the notification that was shown, or None when suppressed.
        """
        now = self._clock()

        if severity is Severity.ERROR:
            if is_quota_message(message):
                if (
                    self._last_quota_shown_at is not None
                    and now - self._last_quota_shown_at < self.cooldown_seconds
                ):
                    record_notification_suppressed()
                    logger.debug("notification_suppressed", message=message)
                    return None
                self._last_quota_shown_at = now
            if is_connectivity_message(message):
                message = NETWORK_ERROR_MESSAGE

        notification = Notification(message=message, severity=severity, created_at=now)
        record_notification_shown(severity.value)
        logger.info("notification_shown", severity=severity.value, message=message)
        if self._sink is not None:
            self._sink(notification)
        return notification

    def notify_error(self, exc: BaseException) -> Optional[Notification]:
        """Route a failure through the throttle. Cancellations are not shown."""
        if getattr(exc, "is_cancelled", False):
            return None
        return self.notify(render_error(exc), Severity.ERROR)


_throttle: Optional[NotificationThrottle] = None


def get_notification_throttle() -> NotificationThrottle:
    """Process-wide throttle; built from settings on first use."""
    global _throttle
    if _throttle is None:
        _throttle = NotificationThrottle.from_settings(get_settings())
    return _throttle


def set_notification_throttle(throttle: Optional[NotificationThrottle]) -> None:
    global _throttle
    _throttle = throttle
