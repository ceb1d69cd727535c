"""Google adapters: Gemini (google-genai SDK) and Vertex AI (streamed REST)."""

import functools
import json
import logging
import threading
from typing import Iterator

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import httpx
import requests
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from config import ProviderConfig, Service
from errors import (
    MalformedResponse,
    NetworkError,
    ProviderError,
    Timeout,
    Unauthorized,
)
from providers import (
    Capability,
    HTTPProvider,
    ReviewProvider,
    ReviewRequest,
    ReviewResponse,
    error_for_status,
    raise_for_status,
    translate_request_error,
)

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


# =============================================================================
# GEMINI (single generate)
# =============================================================================
@functools.lru_cache(maxsize=8)
def get_gemini_client(api_key: str, base_url: str, timeout_ms: int) -> genai.Client:
    """Return a cached Gemini client (one per key, endpoint and timeout)."""
    http_options = types.HttpOptions(timeout=timeout_ms)
    if base_url:
        http_options = types.HttpOptions(base_url=base_url, timeout=timeout_ms)
    return genai.Client(api_key=api_key, http_options=http_options)


class GeminiProvider(ReviewProvider):
    """Gemini ``generate_content``: one prompt in, one response out."""

    capability = Capability.SINGLE_GENERATE

    def _client(self) -> genai.Client:
        api_key = self.config.api_key()
        if not api_key:
            raise Unauthorized(
                f"No API key for {self.name}. Set {self.config.api_key_env} in .env file.",
                provider=self.name,
            )
        return get_gemini_client(
            api_key, self.resolve_url(), int(self.config.api_timeout * 1000)
        )

    def _generation_config(self, request: ReviewRequest) -> types.GenerateContentConfig:
        system = "\n\n".join(m.content for m in request.system_messages)
        if self.wants_json(request):
            return types.GenerateContentConfig(
                system_instruction=system,
                max_output_tokens=self.config.max_tokens,
                response_mime_type="application/json",
            )
        return types.GenerateContentConfig(
            system_instruction=system,
            max_output_tokens=self.config.max_tokens,
        )

    def execute(self, request: ReviewRequest) -> ReviewResponse:
        client = self._client()
        try:
            response = client.models.generate_content(
                model=request.model,
                contents=request.user_text,
                config=self._generation_config(request),
            )
        except genai_errors.APIError as e:
            raise error_for_status(
                e.code or 500, f"Gemini error: {e.message or e}", self.name
            ) from e
        except httpx.TimeoutException as e:
            raise Timeout(f"{self.name} timed out: {e}", provider=self.name) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{self.name} unreachable: {e}", provider=self.name) from e

        text = response.text
        if not text:
            raise MalformedResponse(
                f"{self.name} returned no text (blocked or empty candidate)",
                provider=self.name,
            )
        return ReviewResponse(text=text, provider=self.name, model=request.model)


# =============================================================================
# VERTEX AI (streaming generate)
# =============================================================================
class GoogleTokenSource:
    """Bearer tokens from application-default credentials.

    Shared by all worker threads; refresh happens under a lock.
    """

    def __init__(self, credentials=None):
        self._credentials = credentials
        self._lock = threading.Lock()

    def token(self) -> str:
        with self._lock:
            if self._credentials is None:
                self._credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
            if not self._credentials.valid:
                logger.debug("Refreshing Google access token")
                self._credentials.refresh(google.auth.transport.requests.Request())
            return self._credentials.token


class VertexAIProvider(HTTPProvider):
    """Vertex AI ``streamGenerateContent`` over server-sent events.

    The URL template carries ``{region}``, ``{project_id}`` and ``{model}``.
    Chunks are drained and joined before ``execute`` returns.
    """

    capability = Capability.STREAMING_GENERATE

    def __init__(
        self,
        config: ProviderConfig,
        service: Service | None = None,
        token_source: GoogleTokenSource | None = None,
        **kwargs,
    ):
        super().__init__(config, service, **kwargs)
        self.token_source = token_source or GoogleTokenSource()

    def _bearer_token(self) -> str:
        try:
            return self.token_source.token()
        except google.auth.exceptions.TransportError as e:
            raise NetworkError(f"Token refresh failed: {e}", provider=self.name) from e
        except google.auth.exceptions.GoogleAuthError as e:
            raise Unauthorized(f"No usable Google credentials: {e}", provider=self.name) from e

    def _payload(self, request: ReviewRequest) -> dict:
        generation_config: dict = {"maxOutputTokens": self.config.max_tokens}
        if self.wants_json(request):
            generation_config["responseMimeType"] = "application/json"
        return {
            "contents": [{"role": "user", "parts": [{"text": request.user_text}]}],
            "systemInstruction": {
                "parts": [{"text": m.content} for m in request.system_messages]
            },
            "generationConfig": generation_config,
        }

    def _malformed_chunk(self, what: str) -> MalformedResponse:
        return MalformedResponse(
            f"{self.name} sent a stream chunk with {what}", provider=self.name
        )

    def _chunk_text(self, chunk) -> Iterator[str]:
        """Yield the text parts of one decoded chunk, rejecting unexpected shapes."""
        if not isinstance(chunk, dict):
            raise self._malformed_chunk(f"a {type(chunk).__name__} body")

        if "error" in chunk:
            error = chunk["error"] or {}
            if not isinstance(error, dict):
                raise self._malformed_chunk(f"an unstructured error: {error!r}")
            try:
                code = int(error.get("code", 500))
            except (TypeError, ValueError):
                code = 500
            raise error_for_status(
                code, f"Vertex AI stream error: {error.get('message', '')}", self.name
            )

        candidates = chunk.get("candidates") or []
        if not isinstance(candidates, list):
            raise self._malformed_chunk("non-list candidates")
        for candidate in candidates[:1]:
            if not isinstance(candidate, dict):
                raise self._malformed_chunk("a non-object candidate")
            content = candidate.get("content") or {}
            if not isinstance(content, dict):
                raise self._malformed_chunk("a non-object candidate content")
            parts = content.get("parts") or []
            if not isinstance(parts, list):
                raise self._malformed_chunk("non-list content parts")
            for part in parts:
                if not isinstance(part, dict):
                    raise self._malformed_chunk("a non-object content part")
                text = part.get("text")
                if text:
                    yield str(text)

    def _iter_chunks(self, response: requests.Response) -> Iterator[str]:
        """Yield the text of each ``data:`` event in the stream."""
        for line in response.iter_lines():
            if isinstance(line, bytes):
                line = line.decode("utf-8")
            if not line.startswith("data:"):
                continue
            try:
                chunk = json.loads(line[len("data:"):].strip())
            except ValueError as e:
                raise MalformedResponse(
                    f"{self.name} sent an undecodable stream chunk", provider=self.name
                ) from e
            yield from self._chunk_text(chunk)

    def execute(self, request: ReviewRequest) -> ReviewResponse:
        url = self.resolve_url()
        headers = {"Authorization": f"Bearer {self._bearer_token()}"}
        try:
            with self.session.post(
                url,
                params={"alt": "sse"},
                json=self._payload(request),
                headers=headers,
                timeout=self.config.api_timeout,
                stream=True,
            ) as response:
                raise_for_status(response, self.name)
                text = "".join(self._iter_chunks(response))
        except ProviderError:
            raise
        except requests.RequestException as e:
            raise translate_request_error(e, self.name) from e

        if not text:
            raise MalformedResponse(f"{self.name} stream carried no text", provider=self.name)
        return ReviewResponse(text=text, provider=self.name, model=request.model)
