from __future__ import annotations

import time
from typing import Any, Optional


def perf_now() -> float:
    """Monotonic timer for stage and chapter latency."""

    return time.perf_counter()


def elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def compact_error(value: Any, *, limit: int = 320) -> str:
    text = str(value or "").replace("\n", " ").strip()
    if not text and isinstance(value, BaseException):
        text = type(value).__name__
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def emit_event(
    logger: Any,
    event: str,
    *,
    level: str = "info",
    since: Optional[float] = None,
    **fields: Any,
) -> None:
    """
    Emits a snake_case synthesis event, dropping empty fields.

    When `since` is given (a `perf_now()` reading) a `duration_ms` field is added.
    Stdlib loggers that reject keyword fields get them through `extra`.
    """
    payload = {key: value for key, value in fields.items() if value is not None and key != "event"}
    if since is not None:
        payload["duration_ms"] = elapsed_ms(since)

    log_fn = getattr(logger, level, None) or logger.info
    try:
        log_fn(str(event), **payload)
    except TypeError:
        log_fn(str(event), extra={"synthesis_event": str(event), **payload})
