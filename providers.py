"""Provider contract and the HTTP chat-completion adapters.

Every backend implements ``ReviewProvider``: ``prepare`` turns a source file
into a ``ReviewRequest`` and ``execute`` returns the model's raw text as a
``ReviewResponse`` or raises a ``ProviderError``. Google adapters live in
``google_providers``.
"""

import logging
import string
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

import requests

from config import ProviderConfig, Service, Settings
from errors import (
    ConfigError,
    MalformedResponse,
    NetworkError,
    ProviderError,
    RateLimited,
    ServerError,
    Timeout,
    Unauthorized,
)
from prompts import (
    REVIEW_TEMPLATE_IDS,
    PromptMessage,
    build_prompt,
    file_review_content,
)

logger = logging.getLogger(__name__)

URL_PLACEHOLDERS = frozenset({"model", "region", "project_id"})
OPENAI_SEED = 1234


class Capability(str, Enum):
    CHAT_COMPLETION = "chat_completion"
    SINGLE_GENERATE = "single_generate"
    STREAMING_GENERATE = "streaming_generate"


@dataclass
class ReviewRequest:
    """One provider call. Built per file, consumed once."""

    path: str
    content: str
    language: str
    template_id: str
    model: str
    messages: list[PromptMessage] = field(default_factory=list)

    @property
    def system_messages(self) -> list[PromptMessage]:
        return [m for m in self.messages if m.role == "system"]

    @property
    def user_text(self) -> str:
        return "\n".join(m.content for m in self.messages if m.role != "system")


@dataclass
class ReviewResponse:
    text: str
    provider: str
    model: str


# =============================================================================
# URL TEMPLATES
# =============================================================================
def resolve_api_url(
    template: str,
    model: str | None = None,
    region: str | None = None,
    project_id: str | None = None,
) -> str:
    """Substitute ``{model}``, ``{region}`` and ``{project_id}`` in *template*.

    Raises:
        ConfigError: unknown placeholder, or a placeholder with no value.
    """
    values = {"model": model, "region": region, "project_id": project_id}
    try:
        used = {
            name
            for _, name, _, _ in string.Formatter().parse(template)
            if name is not None
        }
    except ValueError as e:
        raise ConfigError(f"Malformed API URL template {template!r}: {e}") from e

    unknown = used - URL_PLACEHOLDERS
    if unknown:
        raise ConfigError(
            f"API URL template {template!r} has unknown placeholder(s) {sorted(unknown)}"
        )
    missing = sorted(name for name in used if not values[name])
    if missing:
        raise ConfigError(
            f"API URL template {template!r} needs value(s) for {missing}"
        )
    return template.format_map({k: v for k, v in values.items() if k in used})


# =============================================================================
# ERROR MAPPING
# =============================================================================
def _retry_after(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def error_for_status(
    status_code: int,
    message: str,
    provider: str,
    retry_after: float | None = None,
) -> ProviderError:
    """Map an HTTP status code to the shared error taxonomy."""
    kwargs = {"provider": provider, "status_code": status_code}
    if status_code == 429:
        return RateLimited(message, retry_after=retry_after, **kwargs)
    if status_code in (401, 403):
        return Unauthorized(message, **kwargs)
    if status_code in (408, 504):
        return Timeout(message, **kwargs)
    if status_code >= 500:
        return ServerError(message, **kwargs)
    return MalformedResponse(message, **kwargs)


def raise_for_status(response: requests.Response, provider: str) -> None:
    if response.status_code < 400:
        return
    raise error_for_status(
        response.status_code,
        f"HTTP {response.status_code} from {provider}: {response.text[:200]}",
        provider,
        retry_after=_retry_after(response),
    )


def translate_request_error(exc: requests.RequestException, provider: str) -> ProviderError:
    if isinstance(exc, requests.Timeout):
        return Timeout(f"{provider} timed out: {exc}", provider=provider)
    return NetworkError(f"{provider} unreachable: {exc}", provider=provider)


# =============================================================================
# CONTRACT
# =============================================================================
class ReviewProvider(ABC):
    """Base class every backend adapter implements."""

    capability: Capability

    def __init__(
        self,
        config: ProviderConfig,
        service: Service | None = None,
        target_language: str = "English",
        green_threshold: int = 10,
    ):
        self.config = config
        self.service = service or config.service()
        self.target_language = target_language
        self.green_threshold = green_threshold
        # Fail before any file is scheduled if the URL template is unusable
        self.resolve_url()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def model(self) -> str:
        return self.service.model

    def resolve_url(self) -> str:
        if not self.config.api_url:
            return ""
        return resolve_api_url(
            self.config.api_url,
            model=self.model,
            region=self.config.region,
            project_id=self.config.project_id,
        )

    def prepare(self, source, template_id: str) -> ReviewRequest:
        """Build the request for one source file.

        *source* needs ``relative_path``, ``language`` and ``text()``; a
        ``SchedulingError`` from ``text()`` propagates to the caller.
        """
        content = source.text()
        messages = build_prompt(
            template_id,
            user_content=file_review_content(source.relative_path, content),
            target_language=self.target_language,
            green_threshold=self.green_threshold,
        )
        return ReviewRequest(
            path=source.relative_path,
            content=content,
            language=source.language,
            template_id=template_id,
            model=self.model,
            messages=messages,
        )

    def complete(self, template_id: str, user_content: str, **values) -> ReviewResponse:
        """Run a free-form prompt (e.g. the repository summary) through ``execute``."""
        messages = build_prompt(
            template_id,
            user_content=user_content,
            target_language=self.target_language,
            **values,
        )
        request = ReviewRequest(
            path="",
            content=user_content,
            language="",
            template_id=template_id,
            model=self.model,
            messages=messages,
        )
        return self.execute(request)

    def wants_json(self, request: ReviewRequest) -> bool:
        return self.config.json_mode and request.template_id in REVIEW_TEMPLATE_IDS.values()

    @abstractmethod
    def execute(self, request: ReviewRequest) -> ReviewResponse:
        """Send *request* and return the raw model text."""
        ...

    def close(self) -> None:
        """Release network resources."""


class HTTPProvider(ReviewProvider):
    """Base for adapters that talk HTTP through ``requests``.

    ``requests.Session`` is not safe to share between threads, and
    ``execute`` runs on every scheduler worker, so each thread gets its own
    session. ``close`` closes every session handed out. Assigning
    ``session`` pins one session for all threads.
    """

    def __init__(self, config: ProviderConfig, service: Service | None = None, **kwargs):
        super().__init__(config, service, **kwargs)
        if not config.api_url:
            raise ConfigError(f"Provider {config.name!r} needs an api_url")
        self._local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()
        self._pinned: requests.Session | None = None

    @property
    def session(self) -> requests.Session:
        if self._pinned is not None:
            return self._pinned
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    @session.setter
    def session(self, session: requests.Session) -> None:
        self._pinned = session

    def close(self) -> None:
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        if self._pinned is not None:
            sessions.append(self._pinned)
        for session in sessions:
            session.close()
        self._local = threading.local()


# =============================================================================
# CHAT-COMPLETION ADAPTERS
# =============================================================================
class OpenAIChatProvider(HTTPProvider):
    """OpenAI-style ``/chat/completions`` endpoint with a bearer API key."""

    capability = Capability.CHAT_COMPLETION

    def _headers(self) -> dict[str, str]:
        api_key = self.config.api_key()
        if not api_key:
            raise Unauthorized(
                f"No API key for {self.name}. Set {self.config.api_key_env} in .env file.",
                provider=self.name,
            )
        return {"Authorization": f"Bearer {api_key}"}

    def _payload(self, request: ReviewRequest) -> dict:
        payload = {
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages],
            "max_tokens": self.config.max_tokens,
            "n": 1,
            "seed": OPENAI_SEED,
        }
        if self.wants_json(request):
            payload["response_format"] = {"type": "json_object"}
        return payload

    def execute(self, request: ReviewRequest) -> ReviewResponse:
        url = self.resolve_url()
        headers = self._headers()
        try:
            response = self.session.post(
                url,
                json=self._payload(request),
                headers=headers,
                timeout=self.config.api_timeout,
            )
        except requests.RequestException as e:
            raise translate_request_error(e, self.name) from e

        raise_for_status(response, self.name)
        return ReviewResponse(
            text=self._extract_text(response),
            provider=self.name,
            model=request.model,
        )

    def _extract_text(self, response: requests.Response) -> str:
        try:
            body = response.json()
            text = body["choices"][0]["message"]["content"]
        except ValueError as e:
            raise MalformedResponse(
                f"{self.name} returned a non-JSON body", provider=self.name
            ) from e
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(
                f"{self.name} response has no choices[0].message.content",
                provider=self.name,
            ) from e
        if not isinstance(text, str):
            raise MalformedResponse(
                f"{self.name} returned empty content", provider=self.name
            )
        return text


class LMStudioProvider(OpenAIChatProvider):
    """Local OpenAI-compatible server (LM Studio). No authentication."""

    def _headers(self) -> dict[str, str]:
        return {}

    def _payload(self, request: ReviewRequest) -> dict:
        return {
            "model": request.model,
            "messages": [m.to_dict() for m in request.messages],
            "max_tokens": -1,
            "temperature": 0.7,
            "stream": False,
        }


class MockProvider(ReviewProvider):
    """Returns canned responses. Used when ``USE_MOCK=true``."""

    capability = Capability.SINGLE_GENERATE

    def execute(self, request: ReviewRequest) -> ReviewResponse:
        from mock_data import MOCK_RESPONSE, MOCK_SUMMARY

        if request.template_id in REVIEW_TEMPLATE_IDS.values():
            text = MOCK_RESPONSE
        else:
            text = MOCK_SUMMARY
        return ReviewResponse(text=text, provider=self.name, model=request.model)


# =============================================================================
# FACTORY
# =============================================================================
def _google_adapter(adapter: str):
    # Imported lazily so the Google SDKs load only when a Google backend is used
    from google_providers import GeminiProvider, VertexAIProvider

    return {"gemini": GeminiProvider, "vertex_ai": VertexAIProvider}[adapter]


_ADAPTERS = {
    "openai": lambda: OpenAIChatProvider,
    "lmstudio": lambda: LMStudioProvider,
    "mock": lambda: MockProvider,
    "gemini": lambda: _google_adapter("gemini"),
    "vertex_ai": lambda: _google_adapter("vertex_ai"),
}


def create_provider(settings: Settings) -> ReviewProvider:
    """Instantiate the adapter for the active provider and service.

    Raises:
        ConfigError: unknown adapter or unusable URL template.
    """
    config = settings.provider
    factory = _ADAPTERS.get(config.adapter)
    if factory is None:
        raise ConfigError(f"No adapter named {config.adapter!r}")

    provider_cls = factory()
    provider = provider_cls(
        config,
        settings.service,
        target_language=settings.target_language,
        green_threshold=settings.green_improvement_threshold,
    )
    logger.info(
        "🔌 Using provider %s (%s, %s)",
        provider.name,
        provider.model,
        provider.capability.value,
    )
    return provider
