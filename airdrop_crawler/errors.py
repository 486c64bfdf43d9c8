"""Exception taxonomy shared by collectors, stores and entry points."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors raised inside the ingestion pipeline."""


class FetchError(PipelineError):
    """A source could not be reached (transport error, timeout, bad status)."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url


class ExtractionError(PipelineError):
    """Locators or heuristics matched nothing on fetched content."""


class ValidationError(PipelineError):
    """A candidate record failed the legitimacy heuristics."""


class StoreError(PipelineError):
    """Insert or update against the canonical store failed."""


class AuthError(PipelineError):
    """On-demand trigger invoked without a valid token."""


__all__ = [
    "AuthError",
    "ExtractionError",
    "FetchError",
    "PipelineError",
    "StoreError",
    "ValidationError",
]
