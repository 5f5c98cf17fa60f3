from typing import Optional


class SynthesisError(Exception):
    """Base class for failures raised while synthesizing a curriculum."""

    def __init__(self, message: str, *, chapter_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.chapter_id = chapter_id


class TransientServiceError(SynthesisError):
    """
    Network, timeout or rate-limit failure of the content service.
    Retryable by the draft retry policy and by the chapter retry budget.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        chapter_id: Optional[str] = None,
    ):
        super().__init__(message, chapter_id=chapter_id)
        self.operation = operation


class MalformedResponseError(SynthesisError):
    """
    The content service answered, but the payload does not parse into the
    expected structure. Counts against the chapter retry budget.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        raw_response: Optional[str] = None,
        chapter_id: Optional[str] = None,
    ):
        super().__init__(message, chapter_id=chapter_id)
        self.operation = operation
        self.raw_response = raw_response


class BestEffortRefinementFailure(SynthesisError):
    """A single audit fix could not be applied. Logged and skipped."""

    def __init__(self, message: str, *, chapter_id: str, issue: str):
        super().__init__(message, chapter_id=chapter_id)
        self.issue = issue


class RunStateViolation(SynthesisError):
    """A run-state mutation would break a scheduling invariant."""


class SynthesisCancelled(Exception):
    """
    Cooperative stop requested by the caller.
    Not a SynthesisError: cancellation is never counted as a chapter failure.
    """

    def __init__(self, stage: Optional[str] = None, chapter_id: Optional[str] = None):
        super().__init__(f"Synthesis cancelled at {stage or 'scheduler'}")
        self.stage = stage
        self.chapter_id = chapter_id
