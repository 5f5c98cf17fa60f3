import argparse
import asyncio
import signal
import sys

import structlog

from curriculum_synth.application.use_cases.synthesize_curriculum_use_case import (
    SynthesisRequest,
    SynthesizeCurriculumUseCase,
)
from curriculum_synth.core.settings import settings
from curriculum_synth.core.synthesis_options import SynthesisOptions
from curriculum_synth.domain.schemas.curriculum import PlanningConstraints
from curriculum_synth.infrastructure.ai.llm_content_service import LLMContentGenerationService
from curriculum_synth.infrastructure.concurrency.cancellation import CancellationToken
from curriculum_synth.infrastructure.observability.logger_config import configure_structlog
from curriculum_synth.infrastructure.repositories.in_memory_synthesis_repository import (
    InMemorySynthesisRepository,
)
from curriculum_synth.infrastructure.repositories.supabase_synthesis_repository import (
    SupabaseSynthesisRepository,
)

logger = structlog.get_logger(__name__)


def _parse_args(argv):
    parser = argparse.ArgumentParser(description="Synthesize a multi-chapter course.")
    parser.add_argument("topic")
    parser.add_argument("--deck-id", required=True)
    parser.add_argument("--curriculum-id", help="Resumes from this checkpoint when one exists.")
    parser.add_argument("--understanding", default="Intermediate")
    parser.add_argument("--chapters", type=int, default=settings.SYNTHESIS_DEFAULT_CHAPTER_COUNT)
    parser.add_argument("--words", type=int, default=settings.SYNTHESIS_TARGET_CHAPTER_WORDS)
    parser.add_argument("--concurrency", type=int)
    parser.add_argument("--enrich", action="store_true", help="Add SVG diagrams to chapters.")
    parser.add_argument("--no-verify", action="store_true")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    configure_structlog()
    args = _parse_args(argv)

    options = SynthesisOptions.from_settings().with_overrides(
        max_concurrency=args.concurrency,
        enable_enrichment=True if args.enrich else None,
        enable_verification=False if args.no_verify else None,
    )
    if settings.SUPABASE_URL and settings.SUPABASE_SERVICE_KEY:
        repository = SupabaseSynthesisRepository()
    else:
        logger.warning("supabase_not_configured_using_memory_store")
        repository = InMemorySynthesisRepository()

    use_case = SynthesizeCurriculumUseCase(
        LLMContentGenerationService.from_settings(), repository, options=options
    )
    cancellation = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancellation.cancel, "interrupted")
    except NotImplementedError:
        pass

    report = await use_case.execute(
        SynthesisRequest(
            topic=args.topic,
            deck_id=args.deck_id,
            curriculum_id=args.curriculum_id,
            constraints=PlanningConstraints(
                understanding=args.understanding,
                chapter_count=args.chapters,
                target_chapter_words=args.words,
            ),
        ),
        cancellation,
    )
    logger.info(
        "synthesis_report",
        status=report.status.value,
        completed=list(report.completed_chapter_ids),
        unresolved=[(u.chapter_id, u.reason.value) for u in report.unresolved],
    )
    return 0 if report.status.value in ("completed", "partial") else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
