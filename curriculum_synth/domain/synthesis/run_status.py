from enum import Enum


class ChapterRunState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"
    FAILED_RETRYABLE = "failed-retryable"
    FAILED_EXHAUSTED = "failed-exhausted"


class ChapterPhase(str, Enum):
    """Transition events published to the presentation layer."""

    DRAFTING = "drafting"
    FINALIZING = "finalizing"
    AUDITING = "auditing"
    ILLUSTRATING = "illustrating"
    ASSESSING = "assessing"
    COMPLETE = "complete"
    FAILED = "failed"


class SchedulerStatus(str, Enum):
    DONE = "done"
    STALLED = "stalled"
    CANCELLED = "cancelled"


class CourseStatus(str, Enum):
    GENERATING = "generating"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class UnresolvedReason(str, Enum):
    EXHAUSTED = "exhausted"
    BLOCKED = "blocked"
    UNREACHABLE = "unreachable"
    CANCELLED = "cancelled"
