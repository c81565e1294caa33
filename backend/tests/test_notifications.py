"""
Unit tests for the notification throttle.
"""
from eduquest.services.ai.errors import (
    AllProvidersExhaustedError,
    BackendHTTPError,
    OperationCancelledError,
)
from eduquest.core.config import Settings
from eduquest.services.ai import notifications as notifications_module
from eduquest.services.ai.notifications import (
    NETWORK_ERROR_MESSAGE,
    NotificationThrottle,
    Severity,
    get_notification_throttle,
    render_error,
    set_notification_throttle,
)

QUOTA_MESSAGE = "Question Generation failed: You exceeded your current quota"


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def test_quota_error_suppressed_within_cooldown():
    clock = FakeClock()
    shown = []
    throttle = NotificationThrottle(sink=shown.append, clock=clock)

    first = throttle.notify(QUOTA_MESSAGE, Severity.ERROR)
    clock.now += 2
    second = throttle.notify(QUOTA_MESSAGE, Severity.ERROR)

    assert first is not None
    assert second is None
    assert len(shown) == 1


def test_quota_error_shown_again_after_cooldown():
    clock = FakeClock()
    shown = []
    throttle = NotificationThrottle(sink=shown.append, clock=clock)

    throttle.notify(QUOTA_MESSAGE, Severity.ERROR)
    clock.now += 11
    again = throttle.notify(QUOTA_MESSAGE, Severity.ERROR)

    assert again is not None
    assert len(shown) == 2


def test_suppressed_notification_does_not_reset_cooldown():
    clock = FakeClock()
    throttle = NotificationThrottle(clock=clock)

    throttle.notify(QUOTA_MESSAGE)
    clock.now += 8
    assert throttle.notify(QUOTA_MESSAGE) is None
    clock.now += 3
    assert throttle.notify(QUOTA_MESSAGE) is not None


def test_non_quota_errors_are_never_throttled():
    throttle = NotificationThrottle(clock=FakeClock())

    assert throttle.notify("Invalid API key") is not None
    assert throttle.notify("Invalid API key") is not None


def test_success_notifications_pass_through():
    throttle = NotificationThrottle(clock=FakeClock())

    throttle.notify(QUOTA_MESSAGE)
    result = throttle.notify("Saved 5 questions.", Severity.SUCCESS)

    assert result.severity is Severity.SUCCESS
    assert result.message == "Saved 5 questions."


def test_connectivity_error_is_rewritten():
    throttle = NotificationThrottle(clock=FakeClock())

    result = throttle.notify("TypeError: Failed to fetch", Severity.ERROR)

    assert result.message == NETWORK_ERROR_MESSAGE


def test_notify_error_skips_cancellation():
    shown = []
    throttle = NotificationThrottle(sink=shown.append, clock=FakeClock())

    assert throttle.notify_error(OperationCancelledError()) is None
    assert shown == []


def test_notify_error_renders_exhaustion():
    throttle = NotificationThrottle(clock=FakeClock())
    error = AllProvidersExhaustedError(
        "Quota exceeded (HTTP 429)",
        last_error=BackendHTTPError("Quota exceeded", 429),
        feature="Flashcard Generation",
        provider="System Fallback Key",
    )

    result = throttle.notify_error(error)

    assert result.message == "Flashcard Generation: Quota exceeded (HTTP 429) (System Fallback Key)"
    assert throttle.notify_error(error) is None


def test_render_error_plain_exception():
    assert render_error(RuntimeError("boom")) == "boom"


def test_quota_and_connectivity_message_is_rewritten():
    throttle = NotificationThrottle(clock=FakeClock())

    result = throttle.notify("Quota check failed: Failed to fetch", Severity.ERROR)

    assert result.message == NETWORK_ERROR_MESSAGE


def test_quota_and_connectivity_message_still_throttled():
    clock = FakeClock()
    throttle = NotificationThrottle(clock=clock)

    throttle.notify("Quota check failed: Failed to fetch")
    clock.now += 1

    assert throttle.notify("Quota check failed: Failed to fetch") is None
    assert throttle.notify(QUOTA_MESSAGE) is None


def test_from_settings_uses_configured_cooldown():
    settings = Settings(notification_cooldown_seconds=3.0)
    throttle = NotificationThrottle.from_settings(settings)
    throttle._clock = FakeClock()

    throttle.notify(QUOTA_MESSAGE)
    throttle._clock.now += 4

    assert throttle.cooldown_seconds == 3.0
    assert throttle.notify(QUOTA_MESSAGE) is not None


def test_process_wide_throttle(monkeypatch):
    monkeypatch.setattr(notifications_module, "_throttle", None)
    monkeypatch.setattr(
        notifications_module, "get_settings", lambda: Settings(notification_cooldown_seconds=4.0)
    )

    throttle = get_notification_throttle()

    assert throttle.cooldown_seconds == 4.0
    assert get_notification_throttle() is throttle
    set_notification_throttle(None)
