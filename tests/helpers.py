"""Shared builders and a scripted provider for the test suite."""

import json
import threading
import time

from config import ProviderConfig, Service, Settings
from providers import Capability, ReviewProvider, ReviewRequest, ReviewResponse
from scanner import SourceFile


def mock_provider_config(**overrides) -> ProviderConfig:
    values = {
        "name": "mock",
        "adapter": "mock",
        "services": (Service(name="mock", model="mock-model"),),
        "default_service": "mock",
        "max_retries": 3,
    }
    values.update(overrides)
    return ProviderConfig(**values)


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "providers": (mock_provider_config(),),
        "active_provider": "mock",
        "repository_path": str(tmp_path),
        "report_output_path": str(tmp_path / "reports"),
        "base_retry_delay": 0.0,
        "max_retry_delay": 0.0,
        "max_workers": 2,
    }
    values.update(overrides)
    return Settings(**values)


def make_source(path: str, text: str = "print('hello')\n", language: str = "Python") -> SourceFile:
    return SourceFile(path, text.encode("utf-8"), language)


def review_json(
    path: str = "app.py",
    summary: str = "Looks fine.",
    security_issues: list | None = None,
    errors: list | None = None,
    improvements: list | None = None,
    rag: str = "Green",
) -> str:
    return json.dumps(
        {
            "source_file_info": {"name": path.rsplit("/", 1)[-1], "relative_path": path},
            "summary": summary,
            "file_rag_status": rag,
            "security_issues": security_issues or [],
            "errors": errors or [],
            "improvements": improvements or [],
        }
    )


def security_issue(severity: str = "High") -> dict:
    return {
        "severity": severity,
        "code": "12: cursor.execute(query + user_input)",
        "threat": "SQL injection",
        "mitigation": "Use a parameterised query",
    }


def code_error() -> dict:
    return {
        "code": "3: return total / len(numbers)",
        "issue": "ZeroDivisionError on empty input",
        "resolution": "Guard against an empty list",
    }


def improvement() -> dict:
    return {
        "code": "1: def f(x):",
        "suggestion": "Add type hints",
        "improvement_details": "def f(x: int) -> int:",
    }


class ScriptedProvider(ReviewProvider):
    """Provider whose answers are scripted per file path.

    A scripted value may be a response string, an exception instance to
    raise, or a list of those consumed one call at a time.
    """

    capability = Capability.CHAT_COMPLETION

    def __init__(
        self,
        responses: dict | None = None,
        summary="Executive summary of the repository.",
        default: str | None = None,
        delay: float = 0.0,
        config: ProviderConfig | None = None,
    ):
        super().__init__(config or mock_provider_config())
        self.responses = dict(responses or {})
        self.summary = summary
        self.default = default if default is not None else review_json()
        self.delay = delay
        self.calls: list[ReviewRequest] = []
        self.active = 0
        self.max_active = 0
        self.closed = False
        self._lock = threading.Lock()

    def _next(self, request: ReviewRequest):
        if request.template_id == "repository_summary":
            scripted = self.summary
        else:
            scripted = self.responses.get(request.path, self.default)
        if isinstance(scripted, list):
            with self._lock:
                scripted = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        return scripted

    def execute(self, request: ReviewRequest) -> ReviewResponse:
        with self._lock:
            self.calls.append(request)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            scripted = self._next(request)
            if isinstance(scripted, BaseException):
                raise scripted
            return ReviewResponse(text=scripted, provider=self.name, model=request.model)
        finally:
            with self._lock:
                self.active -= 1

    def calls_for(self, path: str) -> list[ReviewRequest]:
        return [c for c in self.calls if c.path == path]

    def close(self) -> None:
        self.closed = True
