import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from curriculum_synth.domain.exceptions import SynthesisCancelled
from curriculum_synth.infrastructure.observability.synthesis_logging import compact_error, emit_event

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Bounded exponential-backoff retry around a single async operation.

    `max_attempts` counts retries after the first call: with the defaults the
    operation runs at most four times, sleeping 2s, 4s and 8s in between.
    Once the budget is spent the last error propagates unchanged.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 2.0,
        *,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if initial_delay < 0:
            raise ValueError("initial_delay must be >= 0")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.retry_on = retry_on
        self._sleep = sleep

    def delay_for(self, retry_number: int) -> float:
        """Seconds slept before the given retry (1-based)."""
        return self.initial_delay * (2 ** (retry_number - 1))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str = "operation",
        chapter_id: Optional[str] = None,
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            emit_event(
                logger,
                "operation_retry_scheduled",
                level="warning",
                operation=operation_name,
                chapter_id=chapter_id,
                retry=retry_state.attempt_number,
                max_retries=self.max_attempts,
                delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error=compact_error(error),
            )
            if on_retry is not None and error is not None:
                on_retry(retry_state.attempt_number, error)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts + 1),
            wait=wait_exponential(multiplier=self.initial_delay, exp_base=2),
            retry=(
                retry_if_exception_type(self.retry_on)
                & retry_if_not_exception_type(SynthesisCancelled)
            ),
            sleep=self._sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )

        result: T
        async for attempt in retrying:
            with attempt:
                result = await operation()
        return result
