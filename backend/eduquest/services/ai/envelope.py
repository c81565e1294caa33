"""
Execution envelope: races one unit of work against a deadline and a
cancellation token.

The three branches are plain asyncio tasks/timeouts joined with
`asyncio.wait(FIRST_COMPLETED)`. Whichever settles first decides the outcome;
the losers are torn down before `run()` returns (the work task is cancelled
and awaited, the token listener is cancelled and its callback detached, the
deadline timer lives inside `asyncio.wait`), so nothing outlives the call.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional

from eduquest.core.logging import get_logger
from eduquest.services.ai.cancellation import CancellationToken
from eduquest.services.ai.errors import OperationCancelledError, classify
from eduquest.services.ai.outcome import ExecutionOutcome

logger = get_logger(__name__)

Work = Callable[[], Awaitable[Any]]


async def _teardown(task: "asyncio.Future[Any]") -> None:
    if task.done():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


class ExecutionEnvelope:
    """Deadline + cancellation wrapper around a single attempt."""

    async def run(
        self,
        work: Work,
        deadline_seconds: Optional[float],
        token: Optional[CancellationToken] = None,
    ) -> ExecutionOutcome:
        """
        Run `work()` and settle to SUCCEEDED, TIMED_OUT, CANCELLED or FAILED.

        Args:
            work: zero-argument coroutine factory; not invoked when the token
                is already cancelled
            deadline_seconds: deadline for the work, or None for no deadline
            token: optional caller-owned cancellation token
        """
        if token is not None and token.cancelled:
            return ExecutionOutcome.cancelled()

        work_task = asyncio.ensure_future(work())
        listener: Optional[asyncio.Task] = None
        if token is not None:
            listener = asyncio.ensure_future(token.wait())

        branches = {work_task} if listener is None else {work_task, listener}
        try:
            done, _ = await asyncio.wait(
                branches,
                timeout=deadline_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            # Also runs when the caller's own task is cancelled mid-wait.
            if listener is not None:
                await _teardown(listener)
            if not work_task.done():
                await _teardown(work_task)

        if work_task in done:
            return self._settle(work_task, token)

        if listener is not None and listener in done:
            logger.debug("envelope_cancelled")
            return ExecutionOutcome.cancelled()

        logger.debug("envelope_timed_out", deadline_seconds=deadline_seconds)
        return ExecutionOutcome.timed_out()

    @staticmethod
    def _settle(work_task: "asyncio.Future[Any]", token: Optional[CancellationToken]) -> ExecutionOutcome:
        # A result that lands after cancellation is never reported as success.
        if work_task.cancelled() or (token is not None and token.cancelled):
            if not work_task.cancelled():
                work_task.exception()
            return ExecutionOutcome.cancelled()

        exc = work_task.exception()
        if exc is None:
            return ExecutionOutcome.success(work_task.result())

        if isinstance(exc, OperationCancelledError):
            return ExecutionOutcome.cancelled()

        return ExecutionOutcome.failed(classify(exc), exc)
