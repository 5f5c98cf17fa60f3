import asyncio
from typing import Awaitable, Optional, TypeVar

from curriculum_synth.domain.exceptions import TransientServiceError

T = TypeVar("T")


async def call_with_timeout(
    awaitable: Awaitable[T],
    *,
    timeout: Optional[float],
    operation: str,
    chapter_id: Optional[str] = None,
) -> T:
    """Bounds one content-service call; an expired call is a retryable failure."""
    if timeout is None or timeout <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TransientServiceError(
            f"{operation} timed out after {timeout:g}s",
            operation=operation,
            chapter_id=chapter_id,
        ) from exc
