"""Pydantic models used across the airdrop-crawler configuration flow."""

from __future__ import annotations

import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

_LOCALE_ALIASES = {"english": "en", "chinese": "zh", "zh-cn": "zh", "en-us": "en"}


class SourceKind(str, Enum):
    """How a source is fetched and parsed."""

    SOCIAL_SEARCH = "social-search"
    WEBPAGE = "webpage"
    STRUCTURED_API = "structured-api"


class ScheduleType(str, Enum):
    """Trigger modes supported by the scheduler adapter."""

    CRON = "cron"
    INTERVAL = "interval"


class ExtractionRules(BaseModel):
    """CSS locators applied inside each container node of a webpage source."""

    container: str | None = None
    name: str | None = None
    description: str | None = None
    category: str | None = None
    chain: str | None = None
    website: str | None = None
    handle: str | None = None
    # Rendering fetches wait for this selector before reading the DOM.
    wait_selector: str | None = None


class SourceConfig(BaseModel):
    """Full definition of one data source in the registry."""

    source_id: str
    name: str
    endpoint: str
    kind: SourceKind
    locale: str = "en"
    priority: int = 0
    extraction_rules: ExtractionRules = Field(default_factory=ExtractionRules)
    query: str = "#airdrop crypto"
    max_results: int = 100
    active: bool = True
    last_run_at: datetime | None = None

    @field_validator("locale", mode="before")
    @classmethod
    def _normalise_locale(cls, value: Any) -> str:
        if value in (None, ""):
            return "en"
        text = str(value).strip().lower()
        return _LOCALE_ALIASES.get(text, text)

    @model_validator(mode="after")
    def _validate_source(self) -> "SourceConfig":
        if not self.source_id.strip():
            raise ValueError("source_id cannot be empty")
        if not self.endpoint.strip():
            raise ValueError("endpoint cannot be empty")
        if not 10 <= self.max_results <= 100:
            raise ValueError("max_results must be between 10 and 100")
        return self


class JobSchedule(BaseModel):
    """When one recurring run type fires."""

    type: ScheduleType = ScheduleType.INTERVAL
    value: Any = Field(default_factory=lambda: {"hours": 6})
    enabled: bool = True

    @model_validator(mode="after")
    def _validate_value(self) -> "JobSchedule":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        return self


class JobsConfig(BaseModel):
    """Cadence of the four independent run types."""

    full_cycle: JobSchedule = Field(default_factory=lambda: JobSchedule(value={"hours": 6}))
    secondary_cycle: JobSchedule = Field(default_factory=lambda: JobSchedule(value={"hours": 8}))
    urgent_check: JobSchedule = Field(default_factory=lambda: JobSchedule(value={"hours": 2}))
    maintenance: JobSchedule = Field(default_factory=lambda: JobSchedule(value={"days": 1}))


class FeaturedConfig(BaseModel):
    priority_threshold: int = 8
    top_k: int = 10

    @model_validator(mode="after")
    def _validate_top_k(self) -> "FeaturedConfig":
        if self.top_k < 0:
            raise ValueError("top_k must be >= 0")
        return self


class SocialApiConfig(BaseModel):
    """Credentials for the social search provider; empty token means page scraping only."""

    bearer_token: str | None = None
    base_url: str = "https://api.twitter.com/2"


class GlobalConfig(BaseModel):
    """Global controls shared across sources and jobs."""

    delay_range: tuple[float, float] = (1.0, 3.0)
    fetch_timeout: float = 10.0
    render_timeout: float = 30.0
    headless: bool = True
    user_agents: list[str] = Field(default_factory=lambda: [DEFAULT_USER_AGENT])
    database_path: Path = Field(default=Path("data/airdrops.db"))
    api_token: str | None = None
    social_api: SocialApiConfig = Field(default_factory=SocialApiConfig)
    featured: FeaturedConfig = Field(default_factory=FeaturedConfig)
    urgent_priority: int = 8
    urgent_limit: int = 10
    log_retention_days: int = 30
    jobs: JobsConfig = Field(default_factory=JobsConfig)

    @field_validator("delay_range", mode="before")
    @classmethod
    def _coerce_delay(cls, value: Any) -> tuple[float, float]:
        if value in (None, ""):
            return (0.0, 0.0)
        if isinstance(value, (list, tuple)) and len(value) == 2:
            low, high = float(value[0]), float(value[1])
            if low < 0 or high < 0:
                raise ValueError("Delay range values must be non-negative")
            if high < low:
                raise ValueError("Delay range upper bound must be >= lower bound")
            return (low, high)
        raise ValueError("Delay range expects a two-item list or tuple")

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @model_validator(mode="after")
    def _apply_env_secrets(self) -> "GlobalConfig":
        if not self.api_token:
            self.api_token = os.environ.get("AIRDROP_CRAWLER_API_TOKEN") or None
        if not self.social_api.bearer_token:
            self.social_api.bearer_token = (
                os.environ.get("AIRDROP_CRAWLER_SOCIAL_BEARER") or None
            )
        if self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        return self

    def resolved_database_path(self, base_dir: Path) -> Path:
        if not self.database_path.is_absolute():
            return (base_dir / self.database_path).resolve()
        return self.database_path


__all__ = [
    "DEFAULT_USER_AGENT",
    "ExtractionRules",
    "FeaturedConfig",
    "GlobalConfig",
    "JobSchedule",
    "JobsConfig",
    "ScheduleType",
    "SocialApiConfig",
    "SourceConfig",
    "SourceKind",
]
