"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    DEFAULT_USER_AGENT,
    ExtractionRules,
    FeaturedConfig,
    GlobalConfig,
    JobSchedule,
    JobsConfig,
    ScheduleType,
    SocialApiConfig,
    SourceConfig,
    SourceKind,
)

__all__ = [
    "DEFAULT_USER_AGENT",
    "ConfigLocator",
    "ConfigRepository",
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
