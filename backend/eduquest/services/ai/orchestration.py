"""
Fallback orchestration across the provider priority list.

Responsibilities:
- Try providers strictly one at a time, in priority order
- Run each provider's retry loop inside one execution envelope, so the
  per-call deadline bounds all of that provider's attempts and a timeout is
  never retried against the same provider
- Return the first success; record failures/timeouts and move on
- Abort on cancellation without touching further providers
- Aggregate exhaustion into AllProvidersExhaustedError

NON-responsibilities:
- Does NOT write caches (callers do, after a successful return)
- Does NOT render or throttle user-facing messages
"""
from typing import Any, Awaitable, Callable, Optional, Sequence

from eduquest.core.logging import get_logger
from eduquest.core.metrics import (
    record_fallback,
    record_provider_attempt,
    record_providers_exhausted,
)
from eduquest.core.tracing import start_span
from eduquest.services.ai.cancellation import CancellationToken
from eduquest.services.ai.envelope import ExecutionEnvelope
from eduquest.services.ai.errors import (
    AllProvidersExhaustedError,
    NoCredentialsConfiguredError,
    OperationCancelledError,
    ProviderCallError,
    ProviderTimeoutError,
)
from eduquest.services.ai.outcome import OutcomeStatus
from eduquest.services.ai.providers import NO_CREDENTIALS_MESSAGE, ProviderDescriptor
from eduquest.services.ai.retry import RetryController

logger = get_logger(__name__)

DEFAULT_DEADLINE_SECONDS = 120.0
DOCUMENT_DEADLINE_SECONDS = 300.0
DEFAULT_MAX_ATTEMPTS = 5

Work = Callable[[], Awaitable[Any]]
WorkFactory = Callable[[ProviderDescriptor], Work]


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


class FallbackOrchestrator:
    """Drives a priority list through envelope + retry, provider by provider."""

    def __init__(
        self,
        envelope: Optional[ExecutionEnvelope] = None,
        retry: Optional[RetryController] = None,
        default_deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
        default_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self._envelope = envelope or ExecutionEnvelope()
        self._retry = retry or RetryController(envelope=self._envelope)
        self.default_deadline_seconds = default_deadline_seconds
        self.default_max_attempts = default_max_attempts

    async def run(
        self,
        providers: Sequence[ProviderDescriptor],
        work_factory: WorkFactory,
        feature: str,
        token: Optional[CancellationToken] = None,
        *,
        deadline_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> Any:
        """
        Run `work_factory(provider)()` for each provider until one succeeds.

        Raises:
            NoCredentialsConfiguredError: empty provider list
            OperationCancelledError: the token fired
            AllProvidersExhaustedError: every provider failed or timed out
            ValueError: max_attempts below 1
        """
        if not providers:
            raise NoCredentialsConfiguredError(NO_CREDENTIALS_MESSAGE, feature=feature)

        if token is not None and token.cancelled:
            raise OperationCancelledError(feature=feature)

        deadline = self.default_deadline_seconds if deadline_seconds is None else deadline_seconds
        attempts = self.default_max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")

        last_error: Optional[BaseException] = None
        last_provider: Optional[str] = None

        for index, provider in enumerate(providers):
            if index > 0:
                record_fallback(feature)

            logger.info(
                "llm_provider_attempt_started",
                feature=feature,
                provider=provider.label,
                provider_kind=provider.kind.value,
            )

            async def _provider_call(provider: ProviderDescriptor = provider) -> Any:
                work = work_factory(provider)
                outcome = await self._retry.attempt(
                    work,
                    attempts,
                    token,
                    feature=feature,
                    provider=provider.label,
                )
                return outcome.unwrap()

            with start_span(
                "ai.provider_attempt",
                {"ai.feature": feature, "ai.provider": provider.label, "ai.provider_kind": provider.kind.value},
            ) as span:
                outcome = await self._envelope.run(_provider_call, deadline, token)
                span.set_attribute("ai.outcome", outcome.status.value)

            record_provider_attempt(feature, provider.kind.value, outcome.status.value)
            last_provider = provider.label

            if outcome.status is OutcomeStatus.SUCCEEDED:
                logger.info(
                    "llm_provider_succeeded",
                    feature=feature,
                    provider=provider.label,
                )
                return outcome.value

            if outcome.status is OutcomeStatus.CANCELLED:
                logger.info("llm_request_cancelled", feature=feature, provider=provider.label)
                raise OperationCancelledError(feature=feature, provider=provider.label)

            if outcome.status is OutcomeStatus.TIMED_OUT:
                last_error = ProviderTimeoutError(
                    f"AI operation '{feature}' timed out after {_format_seconds(deadline)} seconds.",
                    feature=feature,
                    provider=provider.label,
                )
            else:
                last_error = outcome.exception
                if isinstance(last_error, ProviderCallError) and last_error.cause is not None:
                    last_error = last_error.cause

            logger.warning(
                "llm_provider_failed",
                feature=feature,
                provider=provider.label,
                outcome=outcome.status.value,
                error=str(last_error),
                error_type=type(last_error).__name__,
                rate_limited=bool(outcome.error and outcome.error.is_rate_limited),
            )

        record_providers_exhausted(feature)
        logger.error("llm_all_providers_failed", feature=feature, providers=len(providers))

        if last_error is None:
            message = f"{feature} failed with all available keys. Please check your keys in Settings."
        else:
            message = f"{feature} failed ({last_provider}): {last_error}"
        raise AllProvidersExhaustedError(
            message,
            last_error=last_error,
            feature=feature,
            provider=last_provider,
        )
