"""Roll per-file outcomes up into the repository report."""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable

from errors import ProviderError, ProviderExhausted
from git_miner import GitHistory
from models import FailedFile, FileReview, RepositoryReview, Statistics
from providers import ReviewProvider
from retry import RetryPolicy, run_with_retry
from reviewer import FileOutcome, FileState
from scanner import LanguageBreakdown, predominant_language

logger = logging.getLogger(__name__)

SUMMARY_TEMPLATE_ID = "repository_summary"


def truncate_words(text: str, max_words: int) -> str:
    """Collapse whitespace and keep at most *max_words* words."""
    words = text.split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]).rstrip(",;:") + "…"


class Aggregator:
    """Collects outcomes from worker threads into one ``RepositoryReview``.

    ``add_outcome`` is the only method called concurrently; it appends under a
    lock. Everything else runs after the scheduler has drained.
    """

    def __init__(
        self,
        repository_name: str,
        provider: str = "",
        service: str = "",
        model: str = "",
        date: str | None = None,
    ):
        self._lock = threading.Lock()
        self._breakdown = LanguageBreakdown()
        self._commit_count = 0
        self.review = RepositoryReview(
            repository_name=repository_name,
            date=date or datetime.now(timezone.utc).isoformat(timespec="seconds"),
            provider=provider,
            service=service,
            model=model,
        )

    def add_outcome(self, outcome: FileOutcome) -> None:
        with self._lock:
            if outcome.state is FileState.FAILED or outcome.review is None:
                self.review.failed_files.append(
                    FailedFile(path=outcome.path, reason=outcome.reason or "unknown")
                )
                return
            self.review.file_reviews.append(outcome.review)
            self._breakdown.add(outcome.review.source_file_info)

    def add_outcomes(self, outcomes: list[FileOutcome]) -> None:
        for outcome in outcomes:
            self.add_outcome(outcome)

    def apply_history(self, history: GitHistory | None) -> None:
        if history is None:
            return
        self._commit_count = history.commit_count
        self.review.contributors = list(history.contributors)

    def finalize(self, interrupted: str | None = None) -> RepositoryReview:
        """Sort, compute statistics and language breakdown. Idempotent."""
        with self._lock:
            review = self.review
            review.file_reviews.sort(key=lambda r: r.source_file_info.relative_path)
            review.failed_files.sort(key=lambda f: f.path)
            review.language_types = self._breakdown.language_types()
            review.repository_type = predominant_language(review.language_types)
            review.statistics = Statistics(
                size=sum(r.source_file_info.statistics.size for r in review.file_reviews),
                loc=sum(r.source_file_info.statistics.loc for r in review.file_reviews),
                num_files=len(review.file_reviews),
                num_commits=self._commit_count,
            )
            if interrupted:
                review.interrupted = interrupted
        return review

    def summarise(
        self,
        provider: ReviewProvider,
        policy: RetryPolicy,
        max_words: int = 150,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> str:
        """Ask the provider for an executive summary of all file summaries.

        Any failure leaves the summary empty; the report is still produced.
        """
        reviews: list[FileReview] = self.review.file_reviews
        if not reviews:
            return ""

        content = "\n".join(
            f"{r.source_file_info.relative_path} ({r.file_rag_status.value}): {r.summary}"
            for r in reviews
        )
        try:
            response = run_with_retry(
                policy,
                lambda: provider.complete(SUMMARY_TEMPLATE_ID, content, max_words=max_words),
                label="repository summary",
                sleep_fn=sleep_fn,
            )
        except (ProviderError, ProviderExhausted) as e:
            logger.warning("Executive summary unavailable: %s", e)
            return ""
        except Exception:
            logger.exception("❌ Executive summary failed")
            return ""

        summary = truncate_words(response.text, max_words)
        self.review.summary = summary
        return summary
