"""Configuration models and YAML loader for the sourcing pipeline."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/sourcing.db"


class ProviderConfig(BaseModel):
    """Connection settings for the profile scraping provider."""

    api_key: str | None = None
    api_key_env: str = "BRIGHTDATA_API_KEY"
    base_url: str = "https://api.brightdata.com/datasets/v3"
    dataset_id: str = "gd_l1viktl72bvl7bjuj0"
    allowed_host: str = "linkedin.com"
    poll_max_attempts: int = Field(default=60, ge=1)
    poll_delay_s: float = Field(default=3.0, ge=0.0)
    timeout_s: float = Field(default=30.0, gt=0.0)
    cost_per_call: float = Field(default=0.0015, ge=0.0)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def resolve_api_key(self) -> str:
        """Return the configured API key, falling back to the environment.

        Raises:
            ValueError: If no key is configured anywhere.
        """
        key = self.api_key or os.environ.get(self.api_key_env)
        if not key:
            msg = f"{self.api_key_env} is required (set provider.api_key or the environment)"
            raise ValueError(msg)
        return key


class SourcingConfig(BaseModel):
    """Batching, retry and budget limits for one sourcing run."""

    batch_size: int = Field(default=5, ge=1)
    max_retries: int = Field(default=2, ge=0)
    batch_delay_ms: int = Field(default=2000, ge=0)
    backoff_base_ms: int = Field(default=2000, ge=0)
    backoff_cap_ms: int = Field(default=10000, ge=0)
    target_count: int | None = Field(default=None, ge=1)
    budget_ceiling: float | None = Field(default=None, ge=0.0)


class ScoringConfig(BaseModel):
    """Quality gate threshold and reasoning-model settings."""

    threshold: int = Field(default=70, ge=0, le=100)
    match_indicator: int = Field(default=80, ge=0, le=100)
    batch_size: int = Field(default=4, ge=1)
    batch_delay_ms: int = Field(default=500, ge=0)
    llm_provider: str = "xai"
    llm_model: str | None = None
    llm_api_key: str | None = None


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    sourcing: SourcingConfig = Field(default_factory=SourcingConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
