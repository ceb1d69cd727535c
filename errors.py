"""Error taxonomy shared by providers, the scheduler and the CLI."""


class ReviewError(Exception):
    """Base class for every error raised by RepoLens."""


# ---------------------------------------------------------------------------
# Fatal configuration errors
# ---------------------------------------------------------------------------
class ConfigError(ReviewError):
    """Settings, prompt templates or URL templates are unusable.

    Raised before any file is scheduled; the run cannot start.
    """


# ---------------------------------------------------------------------------
# Provider errors (raised by adapters, classified by the retry policy)
# ---------------------------------------------------------------------------
class ProviderError(ReviewError):
    """A backend call failed. Adapters translate every backend error into one
    of the subclasses below; raw ``requests``/``httpx``/SDK exceptions never
    leave an adapter.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class RateLimited(ProviderError):
    """HTTP 429 or an SDK quota error."""

    retryable = True

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class Timeout(ProviderError):
    """The call exceeded its per-call timeout (or the server said so)."""

    retryable = True


class ServerError(ProviderError):
    """5xx from the backend."""

    retryable = True


class NetworkError(ProviderError):
    """Connection refused, DNS failure, reset stream and friends."""

    retryable = True


class Unauthorized(ProviderError):
    """Missing, invalid or expired credentials (401/403)."""


class MalformedResponse(ProviderError):
    """The backend rejected the request or returned a body we cannot read."""


class ProviderExhausted(ReviewError):
    """Every attempt allowed by the retry policy failed."""

    def __init__(self, attempts: int, last_error: ProviderError):
        super().__init__(
            f"gave up after {attempts} attempt(s): {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Per-file and run-level errors
# ---------------------------------------------------------------------------
class ResponseValidationError(ReviewError):
    """Model output could not be turned into a FileReview, even after repair."""


class SchedulingError(ReviewError):
    """A file could not be submitted for review (unreadable, not UTF-8)."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class RunCancelled(ReviewError):
    """The run was stopped before every file finished.

    ``outcomes`` holds the per-file outcomes that did complete so a partial
    report can still be written.
    """

    def __init__(self, message: str, outcomes: list | None = None):
        super().__init__(message)
        self.outcomes = outcomes or []


class RunTimeoutError(RunCancelled):
    """The run-level deadline elapsed."""
