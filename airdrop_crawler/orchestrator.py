"""Cycle orchestrator wiring collectors, normalization, dedup and run logging."""

from __future__ import annotations

import hmac
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

import structlog

from .config import ConfigRepository, GlobalConfig, SourceConfig, SourceKind
from .engine import (
    BaseCollector,
    BatchDeduplicator,
    Fetcher,
    Normalizer,
    RenderEngine,
    StoreDeduplicator,
    build_collector,
)
from .engine.dedup import name_key
from .engine.records import (
    CanonicalRecord,
    DeduplicationResult,
    RawRecord,
    RecommendedAction,
    RecordStatus,
    RunLog,
    RunStatus,
    utcnow,
)
from .errors import AuthError, ExtractionError, PipelineError, StoreError, ValidationError
from .infra import RecordStore, RunLogSink
from .logging_conf import configure_logging, source_logger

CollectorFactory = Callable[..., BaseCollector]

SECONDARY_KINDS = frozenset({SourceKind.WEBPAGE, SourceKind.SOCIAL_SEARCH})
# Empty stored fields an update_existing match may fill in from the newer candidate.
FILLABLE_FIELDS = ("website", "twitter_handle", "description", "token_symbol", "contract_address")


def verify_token(provided: str | None, expected: str | None) -> None:
    """Raise AuthError unless a token is configured and ``provided`` equals it."""

    if not expected:
        raise AuthError("api token not configured")
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise AuthError("missing or invalid api token")


@dataclass(slots=True)
class SourceOutcome:
    """What one source contributed to a cycle."""

    source_id: str
    status: RunStatus = RunStatus.SUCCESS
    items_found: int = 0
    inserted: int = 0
    duplicates: int = 0
    merges: int = 0
    updated: int = 0
    errors: int = 0
    error_message: str | None = None
    duration_seconds: float = 0.0


@dataclass(slots=True)
class CycleSummary:
    """Aggregate counts of one collection cycle."""

    success: int = 0
    duplicates: int = 0
    errors: int = 0
    merges: list[dict[str, Any]] = field(default_factory=list)
    sources: list[SourceOutcome] = field(default_factory=list)

    def add(self, outcome: SourceOutcome) -> None:
        self.sources.append(outcome)
        self.success += outcome.inserted
        self.duplicates += outcome.duplicates
        self.errors += outcome.errors
        if outcome.status is RunStatus.FAILED:
            self.errors += 1

    def as_dict(self) -> dict[str, int]:
        return {"success": self.success, "duplicates": self.duplicates, "errors": self.errors}


@dataclass(slots=True)
class MaintenanceReport:
    purged_run_logs: int = 0
    featured: int = 0
    unfeatured: int = 0
    removed_duplicates: int = 0


class Orchestrator:
    """Central coordinator for collection cycles and store maintenance."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        record_store: RecordStore,
        run_log_sink: RunLogSink,
        fetcher_factory: Callable[[GlobalConfig], Fetcher] | None = None,
        render_engine_factory: Callable[[GlobalConfig], RenderEngine] | None = None,
        collector_factory: CollectorFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.record_store = record_store
        self.run_log_sink = run_log_sink
        self.fetcher_factory = fetcher_factory or Fetcher
        self.render_engine_factory = render_engine_factory or RenderEngine
        self.collector_factory = collector_factory or build_collector
        self.normalizer = Normalizer()
        self._sleep = sleep
        self.logger = configure_logging().bind(component="orchestrator")

    # ------------------------------------------------------------------
    # Collection cycles
    # ------------------------------------------------------------------
    def run_cycle(self, kinds: Iterable[SourceKind | str] | None = None) -> CycleSummary:
        """Process every active source once, highest priority first."""

        sources = self.config_repository.list_active_by_priority_desc()
        if kinds is not None:
            wanted = {SourceKind(kind) for kind in kinds}
            sources = [source for source in sources if source.kind in wanted]
        summary = CycleSummary()
        self.logger.info("cycle_started", sources=len(sources))
        batch = BatchDeduplicator()
        store_dedup = StoreDeduplicator(self.record_store, self.logger)
        fetcher = self.fetcher_factory(self.global_config)
        try:
            with self.render_engine_factory(self.global_config) as render_engine:
                for index, source in enumerate(sources):
                    if index:
                        self._pause()
                    outcome = self._run_source(source, fetcher, render_engine, batch, store_dedup, summary)
                    summary.add(outcome)
        finally:
            fetcher.close()
        self.logger.info("cycle_finished", **summary.as_dict(), merges=len(summary.merges))
        return summary

    def run_secondary_cycle(self) -> CycleSummary:
        return self.run_cycle(kinds=SECONDARY_KINDS)

    def trigger(self, token: str | None, expected: str | None = None) -> CycleSummary:
        """Authenticated on-demand cycle used by the HTTP and CLI entry points."""

        try:
            verify_token(token, expected or self.global_config.api_token)
        except AuthError:
            self.logger.warning("trigger_rejected")
            raise
        return self.run_cycle()

    def _pause(self) -> None:
        low, high = self.global_config.delay_range
        if high <= 0:
            return
        self._sleep(random.uniform(low, high))

    def _run_source(
        self,
        source: SourceConfig,
        fetcher: Fetcher,
        render_engine: RenderEngine,
        batch: BatchDeduplicator,
        store_dedup: StoreDeduplicator,
        summary: CycleSummary,
    ) -> SourceOutcome:
        log = source_logger(source.source_id)
        outcome = SourceOutcome(source_id=source.source_id)
        started = time.perf_counter()
        log.info("source_started", kind=source.kind.value, priority=source.priority)
        try:
            collector = self.collector_factory(
                source.kind, fetcher, render_engine, self.global_config, logger=log
            )
            raw_records = collector.collect(source)
        except ExtractionError as exc:
            outcome.status = RunStatus.PARTIAL
            outcome.error_message = str(exc)
            log.warning("extraction_empty", error=str(exc))
            raw_records = []
        except Exception as exc:  # noqa: BLE001
            outcome.status = RunStatus.FAILED
            outcome.error_message = str(exc) or exc.__class__.__name__
            log.error("source_failed", error=outcome.error_message, error_type=exc.__class__.__name__)
            raw_records = []

        outcome.items_found = len(raw_records)
        try:
            for raw in raw_records:
                self._ingest_record(raw, source, batch, store_dedup, outcome, summary, log)
        finally:
            if outcome.errors and outcome.status is RunStatus.SUCCESS:
                outcome.status = RunStatus.PARTIAL
                outcome.error_message = f"{outcome.errors} store error(s)"
            outcome.duration_seconds = time.perf_counter() - started
            self._record_source_run(source, outcome, log)
        log.info(
            "source_finished",
            status=outcome.status.value,
            items=outcome.items_found,
            inserted=outcome.inserted,
            duplicates=outcome.duplicates,
            duration=round(outcome.duration_seconds, 3),
        )
        return outcome

    def _ingest_record(
        self,
        raw: RawRecord,
        source: SourceConfig,
        batch: BatchDeduplicator,
        store_dedup: StoreDeduplicator,
        outcome: SourceOutcome,
        summary: CycleSummary,
        log: structlog.BoundLogger,
    ) -> None:
        try:
            record = self.normalizer.normalize(raw, source)
        except ValidationError as exc:
            log.debug("candidate_rejected", reason=str(exc))
            return
        if not batch.admit(record):
            outcome.duplicates += 1
            log.debug("batch_duplicate", name=record.name)
            return
        try:
            result = store_dedup.check(record)
            if result.is_duplicate:
                self._apply_duplicate(record, result, outcome, summary, log)
                return
            self.record_store.insert(record)
        except PipelineError as exc:
            outcome.errors += 1
            log.error("record_failed", name=record.name, error=str(exc), error_type=exc.__class__.__name__)
            return
        outcome.inserted += 1

    def _apply_duplicate(
        self,
        record: CanonicalRecord,
        result: DeduplicationResult,
        outcome: SourceOutcome,
        summary: CycleSummary,
        log: structlog.BoundLogger,
    ) -> None:
        outcome.duplicates += 1
        match = result.match
        if result.action is RecommendedAction.MERGE and match is not None:
            outcome.merges += 1
            summary.merges.append(
                {
                    "candidate": record.name,
                    "existing": match.name,
                    "existing_id": match.record_id,
                    "match_type": match.match_type.value,
                    "similarity": round(match.similarity, 3),
                }
            )
            log.info("merge_candidate", name=record.name, existing=match.name, similarity=match.similarity)
        elif result.action is RecommendedAction.UPDATE_EXISTING and match is not None and match.record_id:
            try:
                if self._fill_existing(match.record_id, record):
                    outcome.updated += 1
            except StoreError as exc:
                outcome.errors += 1
                log.error("update_failed", record_id=match.record_id, error=str(exc))

    def _fill_existing(self, record_id: str, candidate: CanonicalRecord) -> bool:
        stored = self.record_store.select_by_filter(lambda r: r.id == record_id)
        if not stored:
            raise StoreError(f"record not found: {record_id}")
        existing = stored[0]
        fields = {
            name: getattr(candidate, name)
            for name in FILLABLE_FIELDS
            if not getattr(existing, name) and getattr(candidate, name)
        }
        if not fields:
            return False
        self.record_store.update_fields(record_id, fields)
        return True

    def _record_source_run(
        self, source: SourceConfig, outcome: SourceOutcome, log: structlog.BoundLogger
    ) -> None:
        self._append_run_log(
            RunLog(
                source_id=source.source_id,
                status=outcome.status,
                items_found=outcome.items_found,
                records_inserted=outcome.inserted,
                duration_seconds=outcome.duration_seconds,
                error_message=outcome.error_message,
            ),
            log,
        )
        try:
            self.config_repository.touch_last_run(source.source_id)
        except OSError as exc:
            log.error("touch_last_run_failed", error=str(exc))

    def _append_run_log(self, entry: RunLog, log: structlog.BoundLogger | None = None) -> None:
        try:
            self.run_log_sink.append(entry)
        except StoreError as exc:
            (log or self.logger).error("run_log_failed", source=entry.source_id, error=str(exc))

    # ------------------------------------------------------------------
    # Store-only jobs
    # ------------------------------------------------------------------
    def urgent_check(self) -> list[CanonicalRecord]:
        """Upcoming high-priority records; touches no network."""

        started = time.perf_counter()
        threshold = self.global_config.urgent_priority
        try:
            candidates = self.record_store.select_by_filter(
                lambda r: r.status is RecordStatus.UPCOMING and r.priority >= threshold
            )
        except StoreError as exc:
            self.logger.error("urgent_check_failed", error=str(exc))
            self._append_run_log(
                RunLog(
                    source_id="urgent_check",
                    status=RunStatus.FAILED,
                    duration_seconds=time.perf_counter() - started,
                    error_message=str(exc),
                )
            )
            return []
        urgent = sorted(candidates, key=lambda r: -r.priority)[: self.global_config.urgent_limit]
        self.logger.info("urgent_check", count=len(urgent), names=[r.name for r in urgent])
        self._append_run_log(
            RunLog(
                source_id="urgent_check",
                status=RunStatus.SUCCESS,
                items_found=len(urgent),
                duration_seconds=time.perf_counter() - started,
            )
        )
        return urgent

    def recompute_featured(self) -> tuple[int, int]:
        """Flag the top-K eligible records as featured and clear the rest of that set."""

        featured_cfg = self.global_config.featured
        candidates = self.record_store.select_by_filter(
            lambda r: r.priority >= featured_cfg.priority_threshold or r.status is RecordStatus.UPCOMING
        )
        ranked = sorted(candidates, key=lambda r: -r.priority)
        featured = unfeatured = 0
        for position, record in enumerate(ranked):
            flag = position < featured_cfg.top_k
            if flag:
                featured += 1
            else:
                unfeatured += 1
            if record.featured != flag and record.id:
                self.record_store.update_fields(record.id, {"featured": flag})
        self.logger.info("featured_recomputed", featured=featured, unfeatured=unfeatured)
        return featured, unfeatured

    def purge_run_logs(self, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(days=self.global_config.log_retention_days)
        removed = self.run_log_sink.purge_before(cutoff)
        self.logger.info("run_logs_purged", removed=removed, cutoff=cutoff.isoformat())
        return removed

    def cleanup_duplicates(self) -> int:
        """Delete older records sharing a normalized name with a newer one."""

        newest: dict[str, CanonicalRecord] = {}
        for record in self.record_store.select_by_filter():
            key = name_key(record.name)
            current = newest.get(key)
            if current is None or record.created_at >= current.created_at:
                newest[key] = record
        keep = {record.id for record in newest.values()}
        removed = self.record_store.delete_by_filter(lambda r: r.id not in keep)
        self.logger.info("store_duplicates_removed", removed=removed)
        return removed

    def run_maintenance(self, dedupe_store: bool = False) -> MaintenanceReport:
        started = time.perf_counter()
        report = MaintenanceReport()
        status, error_message = RunStatus.SUCCESS, None
        try:
            report.purged_run_logs = self.purge_run_logs()
            if dedupe_store:
                report.removed_duplicates = self.cleanup_duplicates()
            report.featured, report.unfeatured = self.recompute_featured()
        except PipelineError as exc:
            status, error_message = RunStatus.FAILED, str(exc)
            self.logger.error("maintenance_failed", error=error_message)
        self._append_run_log(
            RunLog(
                source_id="maintenance",
                status=status,
                items_found=report.featured + report.unfeatured,
                records_inserted=0,
                duration_seconds=time.perf_counter() - started,
                error_message=error_message,
            )
        )
        return report


__all__ = [
    "CycleSummary",
    "MaintenanceReport",
    "Orchestrator",
    "SECONDARY_KINDS",
    "SourceOutcome",
    "verify_token",
]
