"""Shared configuration for RepoLens: environment, logging and settings."""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from errors import ConfigError
from models import DEFAULT_GREEN_IMPROVEMENT_THRESHOLD

# ---------------------------------------------------------------------------
# Environment & logging (initialised once on first import)
# ---------------------------------------------------------------------------
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
USE_MOCK: bool = os.getenv("USE_MOCK", "false").lower() == "true"
_BUNDLED_SETTINGS_PATH = Path(__file__).resolve().parent / "settings" / "default.json"
ENV_PREFIX = "REPOLENS_"


def default_settings_path() -> Path:
    """Settings shipped with the code: beside the source in a checkout or
    editable install, under ``<prefix>/share/repolens`` in a wheel install."""
    if _BUNDLED_SETTINGS_PATH.is_file():
        return _BUNDLED_SETTINGS_PATH
    return Path(sys.prefix) / "share" / "repolens" / "default.json"


DEFAULT_SETTINGS_PATH = default_settings_path()

AdapterName = Literal["openai", "gemini", "vertex_ai", "lmstudio", "mock"]
ReviewType = Literal["general", "security"]


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------
class Service(BaseModel):
    """A named model offered by a provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    model: str


class ProviderConfig(BaseModel):
    """Connection details for one backend. Immutable after load."""

    model_config = ConfigDict(frozen=True)

    name: str
    adapter: AdapterName
    services: tuple[Service, ...] = Field(min_length=1)
    default_service: str
    api_url: str = ""
    max_retries: int = Field(default=3, ge=0)
    api_timeout: float = Field(default=30.0, gt=0)
    max_tokens: int = 4096
    region: str | None = None
    project_id: str | None = None
    api_key_env: str | None = Field(
        default=None, description="Environment variable holding the API key"
    )
    json_mode: bool = True

    @model_validator(mode="after")
    def _default_service_exists(self) -> "ProviderConfig":
        if self.default_service not in {s.name for s in self.services}:
            raise ValueError(
                f"default_service {self.default_service!r} is not one of "
                f"{[s.name for s in self.services]}"
            )
        return self

    def service(self, name: str | None = None) -> Service:
        """Return the named service, or the default one."""
        wanted = name or self.default_service
        for service in self.services:
            if service.name == wanted:
                return service
        raise ConfigError(
            f"Provider {self.name!r} has no service {wanted!r}"
        )

    def api_key(self) -> str | None:
        if not self.api_key_env:
            return None
        return os.getenv(self.api_key_env)


class Settings(BaseModel):
    """Everything a run needs to know, loaded once and shared read-only."""

    model_config = ConfigDict(frozen=True)

    providers: tuple[ProviderConfig, ...] = Field(min_length=1)
    active_provider: str
    active_service: str | None = None
    target_language: str = "English"
    repository_path: str = "."
    report_output_path: str = "reports"
    review_type: ReviewType = "general"
    max_workers: int = Field(default=4, ge=1)
    run_timeout: float | None = Field(default=None, gt=0)
    green_improvement_threshold: int = Field(
        default=DEFAULT_GREEN_IMPROVEMENT_THRESHOLD, ge=1
    )
    summary_max_words: int = Field(default=150, ge=1)
    max_file_bytes: int = Field(default=200_000, ge=1)
    base_retry_delay: float = Field(default=1.0, ge=0)
    max_retry_delay: float = Field(default=30.0, ge=0)

    @model_validator(mode="after")
    def _active_provider_exists(self) -> "Settings":
        names = [p.name for p in self.providers]
        if self.active_provider not in names:
            raise ValueError(
                f"active_provider {self.active_provider!r} is not one of {names}"
            )
        return self

    @property
    def provider(self) -> ProviderConfig:
        """The active provider's configuration."""
        for provider in self.providers:
            if provider.name == self.active_provider:
                return provider
        raise ConfigError(f"Unknown provider {self.active_provider!r}")

    @property
    def service(self) -> Service:
        """The active service of the active provider."""
        return self.provider.service(self.active_service)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
# Environment variable -> settings field
_ENV_OVERRIDES: dict[str, str] = {
    "PROVIDER": "active_provider",
    "SERVICE": "active_service",
    "REPOSITORY_PATH": "repository_path",
    "OUTPUT_PATH": "report_output_path",
    "TARGET_LANGUAGE": "target_language",
    "REVIEW_TYPE": "review_type",
    "MAX_WORKERS": "max_workers",
    "RUN_TIMEOUT": "run_timeout",
}


def _env_overrides() -> dict:
    overrides = {}
    for suffix, field_name in _ENV_OVERRIDES.items():
        value = os.getenv(ENV_PREFIX + suffix)
        if value:
            overrides[field_name] = value
    return overrides


def load_settings(
    path: str | Path | None = None,
    overrides: dict | None = None,
) -> Settings:
    """Load settings from a JSON file, then apply env and explicit overrides.

    Precedence (highest first): *overrides*, ``REPOLENS_*`` environment
    variables, the JSON file. ``USE_MOCK=true`` forces the mock provider.

    Raises:
        ConfigError: file missing, not JSON, or failing validation.
    """
    path = Path(path or os.getenv(ENV_PREFIX + "SETTINGS") or default_settings_path())

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Settings file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Settings file {path} is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Settings file {path} must contain a JSON object")

    raw.update(_env_overrides())
    raw.update({k: v for k, v in (overrides or {}).items() if v is not None})

    if USE_MOCK:
        raw = _with_mock_provider(raw)

    try:
        settings = Settings.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {path}:\n{e}") from e

    logger.debug(
        "Loaded settings from %s (provider=%s)", path, settings.active_provider
    )
    return settings


def _with_mock_provider(raw: dict) -> dict:
    """Append a mock provider and make it active."""
    providers = [p for p in raw.get("providers", []) if p.get("name") != "mock"]
    providers.append(
        {
            "name": "mock",
            "adapter": "mock",
            "services": [{"name": "mock", "model": "mock-model"}],
            "default_service": "mock",
            "max_retries": 1,
        }
    )
    return {**raw, "providers": providers, "active_provider": "mock", "active_service": None}
