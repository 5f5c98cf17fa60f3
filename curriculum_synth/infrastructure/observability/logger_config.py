import logging

import structlog
from structlog.contextvars import merge_contextvars

from curriculum_synth.core.settings import settings


TRACE_KEYS = ("curriculum_id", "deck_id", "chapter_id")


def add_trace_context(_, __, event_dict):
    """
    Processor that nests synthesis identifiers under 'trace' and renames the
    event to the canonical 'message' field.
    """
    trace = {}
    for key in TRACE_KEYS:
        if key in event_dict:
            trace[key] = event_dict.pop(key)

    existing_trace = event_dict.get("trace", {})
    if isinstance(existing_trace, dict):
        trace.update(existing_trace)

    event_dict["trace"] = {k: v for k, v in trace.items() if v is not None}

    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")

    return event_dict


def configure_structlog():
    """
    Configures structlog to replace standard logging with Canonical JSON.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(" [%(asctime)s] [%(levelname)s] %(name)s: %(message)s"))

    resolved_level = str(settings.LOG_LEVEL or "INFO").upper()
    log_level = getattr(logging, resolved_level, logging.INFO)

    logging.basicConfig(format="%(message)s", level=log_level, handlers=[handler])

    # Provider SDK chatter drowns the per-chapter events otherwise.
    for noisy_logger in ("httpx", "httpcore", "google_genai", "groq"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    processors = [
        merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
