"""
Tagged result of one envelope run or one retry loop.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from eduquest.services.ai.errors import (
    ClassifiedError,
    OperationCancelledError,
    ProviderCallError,
    ProviderTimeoutError,
)


class OutcomeStatus(Enum):
    """Terminal states of an execution."""
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionOutcome:
    status: OutcomeStatus
    value: Any = None
    error: Optional[ClassifiedError] = None
    exception: Optional[BaseException] = None
    attempts: int = 0

    @classmethod
    def success(cls, value: Any, attempts: int = 1) -> "ExecutionOutcome":
        return cls(OutcomeStatus.SUCCEEDED, value=value, attempts=attempts)

    @classmethod
    def timed_out(cls) -> "ExecutionOutcome":
        return cls(OutcomeStatus.TIMED_OUT)

    @classmethod
    def cancelled(cls, attempts: int = 0) -> "ExecutionOutcome":
        return cls(OutcomeStatus.CANCELLED, attempts=attempts)

    @classmethod
    def failed(
        cls,
        error: ClassifiedError,
        exception: Optional[BaseException] = None,
        attempts: int = 0,
    ) -> "ExecutionOutcome":
        return cls(OutcomeStatus.FAILED, error=error, exception=exception, attempts=attempts)

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    def unwrap(self) -> Any:
        """
        Return the value, or raise the error matching the outcome.

        Raises:
            OperationCancelledError: CANCELLED
            ProviderTimeoutError: TIMED_OUT
            ProviderCallError: FAILED (carries the classification)
        """
        if self.status is OutcomeStatus.SUCCEEDED:
            return self.value
        if self.status is OutcomeStatus.CANCELLED:
            raise OperationCancelledError()
        if self.status is OutcomeStatus.TIMED_OUT:
            raise ProviderTimeoutError("Operation timed out.")
        raise ProviderCallError(self.error, cause=self.exception) from self.exception
