"""APScheduler wrapper exposing the recurring pipeline jobs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import JobsConfig, JobSchedule, ScheduleType
from ..logging_conf import configure_logging

if TYPE_CHECKING:
    from ..orchestrator import Orchestrator

JOB_PREFIX = "job::"


class APSchedulerAdapter:
    """Manage APScheduler jobs for the four pipeline run types."""

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self, wait: bool = False) -> None:
        if self.started:
            self.scheduler.shutdown(wait=wait)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_job(self, job_id: str, schedule: JobSchedule, callback: Callable[[], object]) -> bool:
        if not schedule.enabled:
            self.logger.info("job_disabled", job=job_id)
            return False
        trigger = self._build_trigger(schedule)
        self.scheduler.add_job(
            self._guard(job_id, callback),
            trigger=trigger,
            id=f"{JOB_PREFIX}{job_id}",
            name=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job=job_id, schedule=schedule.model_dump(mode="json"))
        return True

    def remove_job(self, job_id: str) -> None:
        self.scheduler.remove_job(f"{JOB_PREFIX}{job_id}")

    def _guard(self, job_id: str, callback: Callable[[], object]) -> Callable[[], None]:
        """Wrap a job so its failure is logged and the next firing still happens."""

        def run() -> None:
            self.logger.info("job_started", job=job_id)
            try:
                callback()
            except Exception as exc:  # noqa: BLE001
                self.logger.exception("job_failed", job=job_id, error=str(exc))
            else:
                self.logger.info("job_finished", job=job_id)

        return run

    def _build_trigger(self, schedule: JobSchedule):
        if schedule.type is ScheduleType.CRON:
            return CronTrigger.from_crontab(str(schedule.value))
        if schedule.type is ScheduleType.INTERVAL:
            if isinstance(schedule.value, (int, float)):
                return IntervalTrigger(seconds=float(schedule.value))
            if isinstance(schedule.value, dict):
                return IntervalTrigger(**schedule.value)
            raise ValueError("Interval schedule requires seconds or kwargs dict")
        raise ValueError(f"Unknown schedule type: {schedule.type}")

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


def register_pipeline_jobs(
    adapter: APSchedulerAdapter, orchestrator: "Orchestrator", jobs: JobsConfig | None = None
) -> list[str]:
    """Schedule full, secondary, urgent and maintenance runs; return the enabled job ids."""

    jobs = jobs or orchestrator.global_config.jobs
    plan: list[tuple[str, JobSchedule, Callable[[], object]]] = [
        ("full_cycle", jobs.full_cycle, orchestrator.run_cycle),
        ("secondary_cycle", jobs.secondary_cycle, orchestrator.run_secondary_cycle),
        ("urgent_check", jobs.urgent_check, orchestrator.urgent_check),
        ("maintenance", jobs.maintenance, orchestrator.run_maintenance),
    ]
    return [job_id for job_id, schedule, callback in plan if adapter.schedule_job(job_id, schedule, callback)]


__all__ = ["APSchedulerAdapter", "JOB_PREFIX", "register_pipeline_jobs"]
