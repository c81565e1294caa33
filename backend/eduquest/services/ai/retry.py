"""
In-provider retry with exponential backoff and jitter.

Only failures that `classify()` marks as rate-limited are retried. After
failed attempt n (counting from 1) the controller sleeps

    2**n * base_delay + uniform(0, max_jitter)

so the first retry waits at least 2 * base_delay. Every attempt and every
backoff sleep observes the cancellation token; a cancelled token ends the loop
immediately with CANCELLED.
"""
import random
from typing import Any, Awaitable, Callable, Optional

from eduquest.core.logging import get_logger
from eduquest.core.metrics import record_retry
from eduquest.services.ai.cancellation import CancellationToken, cancellable_sleep
from eduquest.services.ai.envelope import ExecutionEnvelope
from eduquest.services.ai.errors import OperationCancelledError
from eduquest.services.ai.outcome import ExecutionOutcome, OutcomeStatus

logger = get_logger(__name__)


class RetryController:
    """Repeats work against a single provider on rate-limit errors."""

    def __init__(
        self,
        envelope: Optional[ExecutionEnvelope] = None,
        base_delay_seconds: float = 1.0,
        max_jitter_seconds: float = 1.0,
        rng: Optional[random.Random] = None,
    ):
        if base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")
        self._envelope = envelope or ExecutionEnvelope()
        self.base_delay_seconds = base_delay_seconds
        self.max_jitter_seconds = max_jitter_seconds
        self._rng = rng or random.Random()

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before the retry that follows failed attempt `attempt`."""
        jitter = self._rng.uniform(0, self.max_jitter_seconds) if self.max_jitter_seconds else 0.0
        return (2 ** attempt) * self.base_delay_seconds + jitter

    async def attempt(
        self,
        work: Callable[[], Awaitable[Any]],
        max_attempts: int,
        token: Optional[CancellationToken] = None,
        *,
        feature: str = "unknown",
        provider: Optional[str] = None,
    ) -> ExecutionOutcome:
        """
        Run `work` up to `max_attempts` times.

        Returns:
            SUCCEEDED with the value, CANCELLED, or FAILED with the last
            classified error (non-retryable, or attempts exhausted)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        attempt = 0
        while True:
            attempt += 1
            outcome = await self._envelope.run(work, None, token)

            if outcome.status is OutcomeStatus.SUCCEEDED:
                return ExecutionOutcome.success(outcome.value, attempts=attempt)

            if outcome.status is OutcomeStatus.CANCELLED:
                return ExecutionOutcome.cancelled(attempts=attempt)

            classified = outcome.error
            if classified.is_rate_limited and attempt < max_attempts:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "llm_rate_limited_retrying",
                    feature=feature,
                    provider=provider,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay_ms=round(delay * 1000),
                    http_status=classified.http_status,
                )
                record_retry(feature)
                try:
                    await cancellable_sleep(delay, token)
                except OperationCancelledError:
                    return ExecutionOutcome.cancelled(attempts=attempt)
                continue

            if classified.is_rate_limited:
                logger.warning(
                    "llm_rate_limit_retries_exhausted",
                    feature=feature,
                    provider=provider,
                    attempts=attempt,
                )
            else:
                logger.debug(
                    "llm_non_retryable_error",
                    feature=feature,
                    provider=provider,
                    error=classified.message,
                    http_status=classified.http_status,
                )
            return ExecutionOutcome.failed(classified, outcome.exception, attempts=attempt)
