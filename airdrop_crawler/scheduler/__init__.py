"""Recurring job scheduling."""

from .apsched_adapter import APSchedulerAdapter, register_pipeline_jobs

__all__ = ["APSchedulerAdapter", "register_pipeline_jobs"]
