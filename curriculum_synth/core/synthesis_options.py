from dataclasses import dataclass, replace
from typing import Any, Optional

from curriculum_synth.core.settings import Settings, settings as global_settings


@dataclass(frozen=True)
class SynthesisOptions:
    """Per-run view of the synthesis knobs; defaults come from Settings."""

    max_concurrency: int = 3
    max_chapter_retries: int = 3
    draft_retry_max_attempts: int = 3
    draft_retry_initial_delay: float = 2.0
    call_timeout_seconds: Optional[float] = 180.0
    draft_timeout_seconds: Optional[float] = 600.0
    enable_verification: bool = True
    enable_enrichment: bool = False
    audit_excerpt_chars: int = 300
    min_chapters_for_audit: int = 2

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "SynthesisOptions":
        cfg = source or global_settings
        return cls(
            max_concurrency=max(1, int(cfg.SYNTHESIS_MAX_CONCURRENCY)),
            max_chapter_retries=max(1, int(cfg.SYNTHESIS_MAX_CHAPTER_RETRIES)),
            draft_retry_max_attempts=max(0, int(cfg.SYNTHESIS_DRAFT_RETRY_MAX_ATTEMPTS)),
            draft_retry_initial_delay=max(0.0, float(cfg.SYNTHESIS_DRAFT_RETRY_INITIAL_DELAY_SECONDS)),
            call_timeout_seconds=float(cfg.SYNTHESIS_CALL_TIMEOUT_SECONDS) or None,
            draft_timeout_seconds=float(cfg.SYNTHESIS_DRAFT_TIMEOUT_SECONDS) or None,
            enable_verification=bool(cfg.SYNTHESIS_ENABLE_VERIFICATION),
            enable_enrichment=bool(cfg.SYNTHESIS_ENABLE_ENRICHMENT),
            audit_excerpt_chars=max(1, int(cfg.SYNTHESIS_AUDIT_EXCERPT_CHARS)),
            min_chapters_for_audit=max(1, int(cfg.SYNTHESIS_MIN_CHAPTERS_FOR_AUDIT)),
        )

    def with_overrides(self, **overrides: Any) -> "SynthesisOptions":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
