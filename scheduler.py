"""Bounded-concurrency fan-out of file reviews."""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable

from errors import RunCancelled, RunTimeoutError
from reviewer import FileOutcome, FileReviewer, FileState
from scanner import SourceFile

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.5  # seconds between cancellation/deadline checks


class ReviewScheduler:
    """Review files on a fixed-size thread pool.

    Outcomes are handed to *on_complete* as they finish, in completion order.
    A run-level timeout or ``cancel()`` stops new work, stops retries of
    in-flight files, and raises with the outcomes collected so far.
    """

    def __init__(
        self,
        reviewer: FileReviewer,
        max_workers: int = 4,
        run_timeout: float | None = None,
        on_complete: Callable[[FileOutcome], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.reviewer = reviewer
        self.max_workers = max_workers
        self.run_timeout = run_timeout
        self.on_complete = on_complete
        self.clock = clock
        self._cancelled = threading.Event()
        # Lets in-flight retries and back-off waits see cancel and timeout
        reviewer.cancel_event = self._cancelled

    def cancel(self) -> None:
        """Stop the run; files not yet started are skipped."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _review_one(self, source: SourceFile) -> FileOutcome:
        if self._cancelled.is_set():
            return FileOutcome(source.relative_path, FileState.FAILED, reason="run cancelled")
        try:
            return self.reviewer.review(source)
        except Exception as e:
            # One broken file must not take the run down with it
            logger.exception("Unexpected error reviewing %s", source.relative_path)
            return FileOutcome(
                source.relative_path,
                FileState.FAILED,
                reason=f"unexpected error: {type(e).__name__}: {e}",
            )

    def run(self, files: Iterable[SourceFile]) -> list[FileOutcome]:
        """Review every file and return all outcomes.

        Raises:
            RunTimeoutError: the run timeout elapsed.
            RunCancelled: ``cancel()`` was called.
        """
        files = list(files)
        outcomes: list[FileOutcome] = []
        deadline = self.clock() + self.run_timeout if self.run_timeout else None

        logger.info(
            "🚀 Reviewing %d file(s) with %d worker(s)", len(files), self.max_workers
        )

        executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="review"
        )
        try:
            pending: set[Future] = {
                executor.submit(self._review_one, source) for source in files
            }
            while pending:
                timeout = POLL_INTERVAL
                if deadline is not None:
                    remaining = deadline - self.clock()
                    if remaining <= 0:
                        self._cancelled.set()
                        raise RunTimeoutError(
                            f"Run timed out after {self.run_timeout}s with "
                            f"{len(pending)} file(s) unfinished",
                            outcomes,
                        )
                    timeout = min(timeout, remaining)
                if self._cancelled.is_set():
                    raise RunCancelled(
                        f"Run cancelled with {len(pending)} file(s) unfinished",
                        outcomes,
                    )

                done, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                for future in done:
                    outcome = future.result()
                    outcomes.append(outcome)
                    if self.on_complete is not None:
                        self.on_complete(outcome)
        except BaseException:
            self._cancelled.set()
            executor.shutdown(wait=False, cancel_futures=True)
            raise

        executor.shutdown(wait=True)
        return outcomes
