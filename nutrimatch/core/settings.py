"""Service settings: YAML loader, Pydantic models, and environment overrides."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from nutrimatch.core.errors import UpstreamConfigurationError


# ── LLM Gateway ──────────────────────────────────────────────────────


class LLMSettings(BaseModel):
    """Connection details for the chat model gateway."""

    host: str = "http://localhost:11434"
    api_key: Optional[str] = None
    model: str = "qwen3:8b"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    filter_temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    timeout: float = Field(default=30.0, gt=0, description="Seconds before one gateway call is abandoned")
    require_api_key: bool = Field(
        default=False,
        description="Hosted gateways need a Bearer key; a local Ollama does not",
    )

    def check_credentials(self) -> None:
        """Raise if the gateway needs a key and none is configured."""
        if self.require_api_key and not self.api_key:
            raise UpstreamConfigurationError(
                "LLM API key is not configured (set NUTRIMATCH_LLM_API_KEY)"
            )


# ── PubMed ───────────────────────────────────────────────────────────


class PubMedSettings(BaseModel):
    """NCBI E-utilities identity and pacing."""

    email: str = "nutrimatch@example.org"
    tool: str = "nutrimatch"
    api_key: Optional[str] = None
    request_interval: float = Field(
        default=0.35, ge=0.0, description="Seconds between NCBI calls (< 3 req/s)"
    )
    search_max_results: int = Field(default=15, ge=1, le=100)
    timeout: float = Field(default=15.0, gt=0, description="Socket timeout for one E-utilities call")


# ── Cache ────────────────────────────────────────────────────────────


class CacheSettings(BaseModel):
    """SQLite citation cache."""

    enabled: bool = True
    path: Path = Path("data/citation_cache.db")
    ttl_days: int = Field(default=30, ge=1)


# ── Settings (top-level) ─────────────────────────────────────────────


class Settings(BaseModel):
    """Top-level service configuration."""

    llm: LLMSettings = Field(default_factory=LLMSettings)
    pubmed: PubMedSettings = Field(default_factory=PubMedSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    request_timeout: float = Field(
        default=60.0, gt=0, description="Overall deadline for one recommendation request"
    )
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator("request_timeout")
    @classmethod
    def fits_three_rounds(cls, v: float) -> float:
        if v < 5:
            raise ValueError(
                f"request_timeout ({v}s) is too short for three search rounds"
            )
        return v


# ── Loader ───────────────────────────────────────────────────────────

_ENV_OVERRIDES = {
    "NUTRIMATCH_LLM_HOST": ("llm", "host"),
    "NUTRIMATCH_LLM_API_KEY": ("llm", "api_key"),
    "NUTRIMATCH_LLM_MODEL": ("llm", "model"),
    "NCBI_EMAIL": ("pubmed", "email"),
    "NCBI_API_KEY": ("pubmed", "api_key"),
    "NUTRIMATCH_CACHE_PATH": ("cache", "path"),
}


def load_settings(path: str | Path | None = None, env: dict | None = None) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides."""
    raw: dict = {}
    if path is not None:
        with open(Path(path)) as f:
            raw = yaml.safe_load(f) or {}

    env = os.environ if env is None else env
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(var, "").strip()
        if value:
            raw.setdefault(section, {})[key] = value

    return Settings.model_validate(raw)
