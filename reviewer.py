"""Review of a single file: prompt, call the provider with retries, validate."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from errors import (
    ProviderError,
    ProviderExhausted,
    ResponseValidationError,
    RunCancelled,
    SchedulingError,
)
from git_miner import GitHistory
from models import DEFAULT_GREEN_IMPROVEMENT_THRESHOLD, FileReview, SourceFileInfo
from providers import ReviewProvider
from retry import RetryPolicy, run_with_retry
from scanner import SourceFile
from validator import degraded_file_review, validate_file_review

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-file lifecycle
# ---------------------------------------------------------------------------
class FileState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FAILED = "failed"


VALID_TRANSITIONS: dict[FileState, set[FileState]] = {
    FileState.PENDING: {FileState.IN_FLIGHT, FileState.FAILED},
    FileState.IN_FLIGHT: {FileState.SUCCEEDED, FileState.DEGRADED, FileState.FAILED},
    FileState.SUCCEEDED: set(),
    FileState.DEGRADED: set(),
    FileState.FAILED: set(),
}

TERMINAL_STATES = frozenset({FileState.SUCCEEDED, FileState.DEGRADED, FileState.FAILED})


@dataclass
class FileStateMachine:
    path: str
    state: FileState = FileState.PENDING

    def transition(self, next_state: FileState) -> None:
        if next_state not in VALID_TRANSITIONS[self.state]:
            raise ValueError(
                f"{self.path}: illegal transition {self.state.value} -> {next_state.value}"
            )
        self.state = next_state


@dataclass
class FileOutcome:
    """Terminal result for one file.

    ``review`` is set for Succeeded and Degraded; ``reason`` explains
    Degraded and Failed.
    """

    path: str
    state: FileState
    review: FileReview | None = None
    reason: str | None = None


# ---------------------------------------------------------------------------
# Reviewer
# ---------------------------------------------------------------------------
class FileReviewer:
    """Runs one file through prepare -> execute (with retry) -> validate.

    Provider and validation failures never escape: they produce a Degraded
    outcome with a synthetic review. Files that cannot be read produce a
    Failed outcome and no review. Setting *cancel_event* stops retries and
    back-off waits; the file then ends Failed.
    """

    def __init__(
        self,
        provider: ReviewProvider,
        policy: RetryPolicy,
        template_id: str = "general_review",
        green_threshold: int = DEFAULT_GREEN_IMPROVEMENT_THRESHOLD,
        history: GitHistory | None = None,
        sleep_fn: Callable[[float], None] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.provider = provider
        self.policy = policy
        self.template_id = template_id
        self.green_threshold = green_threshold
        self.history = history
        self.sleep_fn = sleep_fn
        self.cancel_event = cancel_event

    def _info(self, source: SourceFile) -> SourceFileInfo:
        if self.history is None:
            return source.info()
        commits, frequency = self.history.file_statistics(source.relative_path)
        return source.info(num_commits=commits, frequency=frequency)

    def review(self, source: SourceFile) -> FileOutcome:
        machine = FileStateMachine(source.relative_path)
        machine.transition(FileState.IN_FLIGHT)

        try:
            request = self.provider.prepare(source, self.template_id)
        except SchedulingError as e:
            machine.transition(FileState.FAILED)
            logger.warning("   ⏭️  Skipping %s: %s", source.relative_path, e.reason)
            return FileOutcome(source.relative_path, machine.state, reason=e.reason)

        info = self._info(source)

        try:
            response = run_with_retry(
                self.policy,
                lambda: self.provider.execute(request),
                label=source.relative_path,
                sleep_fn=self.sleep_fn,
                cancelled=self.cancel_event,
            )
        except RunCancelled:
            machine.transition(FileState.FAILED)
            logger.info("   🛑 %s abandoned: run cancelled", source.relative_path)
            return FileOutcome(source.relative_path, machine.state, reason="run cancelled")
        except ProviderExhausted as e:
            return self._degraded(machine, info, f"Provider gave up: {e}")
        except ProviderError as e:
            return self._degraded(machine, info, f"{type(e).__name__}: {e}")

        try:
            outcome = validate_file_review(response.text, info, self.green_threshold)
        except ResponseValidationError as e:
            return self._degraded(machine, info, f"Unusable response: {e}")

        if outcome.degraded:
            machine.transition(FileState.DEGRADED)
            reason = "; ".join(outcome.notes) or "response needed repair"
            logger.info("   🩹 %s reviewed with repairs (%s)", source.relative_path, reason)
            return FileOutcome(source.relative_path, machine.state, outcome.review, reason)

        machine.transition(FileState.SUCCEEDED)
        logger.info(
            "   ✅ %s: %s", source.relative_path, outcome.review.file_rag_status.value
        )
        return FileOutcome(source.relative_path, machine.state, outcome.review)

    def _degraded(
        self, machine: FileStateMachine, info: SourceFileInfo, reason: str
    ) -> FileOutcome:
        machine.transition(FileState.DEGRADED)
        logger.warning("   ⚠️  %s degraded: %s", machine.path, reason)
        review = degraded_file_review(info, reason, self.green_threshold)
        return FileOutcome(machine.path, machine.state, review, reason)
