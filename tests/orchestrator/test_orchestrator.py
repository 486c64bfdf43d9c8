from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import Callable

import pytest

from airdrop_crawler.config import ConfigRepository, SourceKind
from airdrop_crawler.engine.records import RawRecord, RecordStatus, RunLog, RunStatus, utcnow
from airdrop_crawler.errors import AuthError, ExtractionError, FetchError, StoreError
from airdrop_crawler.orchestrator import Orchestrator, verify_token


class ScriptedCollector:
    """Returns (or raises) whatever the test scripted for each source id."""

    def __init__(self, script: dict, calls: list[str]) -> None:
        self.script = script
        self.calls = calls

    def collect(self, source):  # noqa: ANN001
        self.calls.append(source.source_id)
        outcome = self.script.get(source.source_id, [])
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


class NullFetcher:
    def __init__(self, _config) -> None:  # noqa: ANN001
        self.closed = False

    def close(self) -> None:
        self.closed = True


class NullRenderEngine:
    instances: list["NullRenderEngine"] = []

    def __init__(self, _config) -> None:  # noqa: ANN001
        self.closed = False
        NullRenderEngine.instances.append(self)

    def __enter__(self) -> "NullRenderEngine":
        return self

    def __exit__(self, *_exc) -> None:
        self.closed = True


class FailingInsertStore:
    """Record store whose inserts fail; reads delegate to a real store."""

    def __init__(self, inner) -> None:  # noqa: ANN001
        self.inner = inner

    def insert(self, record):  # noqa: ANN001
        raise StoreError(f"disk full while inserting {record.name}")

    def select_by_filter(self, predicate=None):  # noqa: ANN001
        return self.inner.select_by_filter(predicate)

    def update_fields(self, record_id, fields):  # noqa: ANN001
        return self.inner.update_fields(record_id, fields)

    def delete_by_filter(self, predicate):  # noqa: ANN001
        return self.inner.delete_by_filter(predicate)


class LockedReadStore(FailingInsertStore):
    """Record store whose reads fail, as when SQLite reports a locked database."""

    def select_by_filter(self, predicate=None):  # noqa: ANN001
        raise StoreError("database is locked")


@pytest.fixture
def build_orchestrator(
    temp_config_repository: ConfigRepository, record_store, run_log_sink
) -> Callable[..., tuple[Orchestrator, list[str], list[float]]]:
    def _builder(script: dict, store=None) -> tuple[Orchestrator, list[str], list[float]]:
        calls: list[str] = []
        sleeps: list[float] = []
        orchestrator = Orchestrator(
            config_repository=temp_config_repository,
            record_store=store or record_store,
            run_log_sink=run_log_sink,
            fetcher_factory=NullFetcher,
            render_engine_factory=NullRenderEngine,
            collector_factory=lambda *args, **kwargs: ScriptedCollector(script, calls),
            sleep=sleeps.append,
        )
        return orchestrator, calls, sleeps

    return _builder


def _raw(source_id: str, name: str, **fields) -> RawRecord:
    return RawRecord(source_id=source_id, name=name, **fields)


def test_failed_source_is_logged_and_cycle_continues(
    build_orchestrator, temp_config_repository, sample_source_config, run_log_sink
) -> None:
    temp_config_repository.upsert_source(sample_source_config(source_id="alpha", priority=9))
    temp_config_repository.upsert_source(sample_source_config(source_id="beta", priority=5))
    orchestrator, calls, sleeps = build_orchestrator(
        {
            "alpha": FetchError("https://alpha.example.com", "timed out after 10s"),
            "beta": [_raw("beta", "Blast Airdrop", description="Layer 2 token drop")],
        }
    )
    NullRenderEngine.instances.clear()

    summary = orchestrator.run_cycle()

    assert calls == ["alpha", "beta"]
    assert len(sleeps) == 1
    assert 1.0 <= sleeps[0] <= 3.0
    alpha_log = run_log_sink.recent(source_id="alpha")[0]
    assert alpha_log.status is RunStatus.FAILED
    assert alpha_log.items_found == 0
    assert "timed out" in alpha_log.error_message
    beta_log = run_log_sink.recent(source_id="beta")[0]
    assert beta_log.status is RunStatus.SUCCESS
    assert beta_log.records_inserted == 1
    assert summary.as_dict() == {"success": 1, "duplicates": 0, "errors": 1}
    assert all(engine.closed for engine in NullRenderEngine.instances)
    assert temp_config_repository.load_source("alpha").last_run_at is not None
    assert temp_config_repository.load_source("beta").last_run_at is not None


def test_no_fingerprint_inserted_twice_in_one_run(
    build_orchestrator, temp_config_repository, sample_source_config, record_store
) -> None:
    temp_config_repository.upsert_source(sample_source_config(source_id="alpha", priority=9))
    temp_config_repository.upsert_source(sample_source_config(source_id="beta", priority=5))
    same = {"description": "Layer 2 token drop for early users"}
    orchestrator, _, _ = build_orchestrator(
        {
            "alpha": [_raw("alpha", "Blast Airdrop", **same), _raw("alpha", "blast  airdrop", **same)],
            "beta": [_raw("beta", "BLAST AIRDROP", **same), _raw("beta", "Scroll Points", description="zk quest")],
        }
    )
    summary = orchestrator.run_cycle()
    stored = record_store.select_by_filter()
    hashes = Counter(record.content_hash for record in stored)
    assert max(hashes.values()) == 1
    assert sorted(record.name for record in stored) == ["Blast Airdrop", "Scroll Points"]
    assert next(r for r in stored if r.name == "Blast Airdrop").source_id == "alpha"
    assert summary.success == 2
    assert summary.duplicates == 2


def test_exact_name_in_store_is_skipped(
    build_orchestrator, temp_config_repository, sample_source_config, record_store, make_record
) -> None:
    record_store.insert(make_record("zksync era"))
    temp_config_repository.upsert_source(sample_source_config())
    orchestrator, _, _ = build_orchestrator({"example": [_raw("example", "ZK Sync Era")]})
    summary = orchestrator.run_cycle()
    assert summary.success == 0
    assert summary.duplicates == 1
    assert len(record_store.select_by_filter()) == 1


def test_update_existing_fills_empty_fields(
    build_orchestrator, temp_config_repository, sample_source_config, record_store, make_record
) -> None:
    existing_id = record_store.insert(make_record("Blast", website="https://www.blast.io"))
    temp_config_repository.upsert_source(sample_source_config())
    orchestrator, _, _ = build_orchestrator(
        {
            "example": [
                _raw("example", "Blast Points Program", website="https://blast.io/airdrop", handle="blast_l2")
            ]
        }
    )
    summary = orchestrator.run_cycle()
    assert summary.success == 0
    assert summary.sources[0].updated == 1
    stored = record_store.get(existing_id)
    assert stored.twitter_handle == "@blast_l2"
    assert stored.website == "https://www.blast.io"
    assert len(record_store.select_by_filter()) == 1


def test_merge_candidates_are_reported_not_inserted(
    build_orchestrator, temp_config_repository, sample_source_config, record_store, make_record
) -> None:
    record_store.insert(make_record("Alpha Protocol", description="Claim your airdrop token with any wallet"))
    temp_config_repository.upsert_source(sample_source_config())
    orchestrator, _, _ = build_orchestrator(
        {
            "example": [
                _raw(
                    "example",
                    "Gamma Finance",
                    description="Stake for the airdrop, claim token rewards via wallet staking",
                )
            ]
        }
    )
    summary = orchestrator.run_cycle()
    assert len(summary.merges) == 1
    assert summary.merges[0]["existing"] == "Alpha Protocol"
    assert summary.merges[0]["match_type"] == "similar_content"
    assert len(record_store.select_by_filter()) == 1


def test_extraction_error_marks_run_partial(
    build_orchestrator, temp_config_repository, sample_source_config, run_log_sink
) -> None:
    temp_config_repository.upsert_source(sample_source_config())
    orchestrator, _, _ = build_orchestrator({"example": ExtractionError("no containers matched '.card'")})
    summary = orchestrator.run_cycle()
    entry = run_log_sink.recent(source_id="example")[0]
    assert entry.status is RunStatus.PARTIAL
    assert entry.items_found == 0
    assert "no containers" in entry.error_message
    assert summary.errors == 0


def test_store_errors_are_counted(
    build_orchestrator, temp_config_repository, sample_source_config, record_store, run_log_sink
) -> None:
    temp_config_repository.upsert_source(sample_source_config())
    orchestrator, _, _ = build_orchestrator(
        {"example": [_raw("example", "Blast Airdrop"), _raw("example", "Scroll Points")]},
        store=FailingInsertStore(record_store),
    )
    summary = orchestrator.run_cycle()
    assert summary.errors == 2
    assert summary.success == 0
    entry = run_log_sink.recent(source_id="example")[0]
    assert entry.status is RunStatus.PARTIAL
    assert entry.items_found == 2


def test_store_read_failure_does_not_abort_cycle(
    build_orchestrator, temp_config_repository, sample_source_config, record_store, run_log_sink
) -> None:
    temp_config_repository.upsert_source(sample_source_config(source_id="alpha", priority=9))
    temp_config_repository.upsert_source(sample_source_config(source_id="beta", priority=5))
    orchestrator, calls, _ = build_orchestrator(
        {
            "alpha": [_raw("alpha", "Blast Airdrop")],
            "beta": [_raw("beta", "Scroll Points")],
        },
        store=LockedReadStore(record_store),
    )

    summary = orchestrator.run_cycle()

    assert calls == ["alpha", "beta"]
    assert summary.as_dict() == {"success": 0, "duplicates": 0, "errors": 2}
    for source_id in ("alpha", "beta"):
        entry = run_log_sink.recent(source_id=source_id)[0]
        assert entry.status is RunStatus.PARTIAL
        assert entry.items_found == 1
        assert entry.error_message == "1 store error(s)"
        assert temp_config_repository.load_source(source_id).last_run_at is not None


def test_secondary_cycle_skips_structured_sources(
    build_orchestrator, temp_config_repository, sample_source_config
) -> None:
    temp_config_repository.upsert_source(sample_source_config(source_id="web", kind=SourceKind.WEBPAGE))
    temp_config_repository.upsert_source(
        sample_source_config(source_id="social", kind=SourceKind.SOCIAL_SEARCH, priority=9)
    )
    temp_config_repository.upsert_source(
        sample_source_config(source_id="api", kind=SourceKind.STRUCTURED_API, priority=10)
    )
    orchestrator, calls, _ = build_orchestrator({})
    orchestrator.run_secondary_cycle()
    assert calls == ["social", "web"]


def test_trigger_requires_configured_token(build_orchestrator) -> None:
    orchestrator, calls, _ = build_orchestrator({})
    with pytest.raises(AuthError):
        orchestrator.trigger("anything")
    orchestrator.global_config.api_token = "secret"
    with pytest.raises(AuthError):
        orchestrator.trigger("wrong")
    with pytest.raises(AuthError):
        orchestrator.trigger(None)
    summary = orchestrator.trigger("secret")
    assert summary.as_dict() == {"success": 0, "duplicates": 0, "errors": 0}


def test_verify_token() -> None:
    verify_token("abc", "abc")
    with pytest.raises(AuthError):
        verify_token("", "abc")
    with pytest.raises(AuthError):
        verify_token("abc", None)


def test_featured_recompute_marks_top_ten(build_orchestrator, record_store, make_record) -> None:
    for index in range(20):
        record_store.insert(make_record(f"Project {index:02d}", priority=8 + index % 3))
    outside = record_store.insert(
        make_record("Old Drop", priority=2, status=RecordStatus.ENDED, featured=True)
    )
    orchestrator, _, _ = build_orchestrator({})

    featured, unfeatured = orchestrator.recompute_featured()

    assert (featured, unfeatured) == (10, 10)
    evaluated = record_store.select_by_filter(lambda r: r.id != outside)
    flagged = [r for r in evaluated if r.featured]
    assert len(flagged) == 10
    assert min(r.priority for r in flagged) >= max(r.priority for r in evaluated if not r.featured)
    assert record_store.get(outside).featured is True


def test_urgent_check_reads_store_only(build_orchestrator, record_store, make_record, run_log_sink) -> None:
    for index in range(12):
        record_store.insert(make_record(f"Urgent {index}", priority=8 + index % 3))
    record_store.insert(make_record("Low", priority=5))
    record_store.insert(make_record("Confirmed", priority=10, status=RecordStatus.CONFIRMED))
    orchestrator, calls, _ = build_orchestrator({})

    urgent = orchestrator.urgent_check()

    assert calls == []
    assert len(urgent) == 10
    assert all(r.status is RecordStatus.UPCOMING and r.priority >= 8 for r in urgent)
    assert [r.priority for r in urgent] == sorted((r.priority for r in urgent), reverse=True)
    entry = run_log_sink.recent(source_id="urgent_check")[0]
    assert entry.status is RunStatus.SUCCESS
    assert entry.items_found == 10


def test_maintenance_purges_and_logs(build_orchestrator, run_log_sink, record_store, make_record) -> None:
    run_log_sink.append(
        RunLog(source_id="alpha", status=RunStatus.SUCCESS, created_at=utcnow() - timedelta(days=45))
    )
    run_log_sink.append(RunLog(source_id="alpha", status=RunStatus.SUCCESS))
    record_store.insert(make_record("Blast", priority=9))
    orchestrator, _, _ = build_orchestrator({})

    report = orchestrator.run_maintenance()

    assert report.purged_run_logs == 1
    assert report.featured == 1
    assert len(run_log_sink.recent(source_id="alpha")) == 1
    entry = run_log_sink.recent(source_id="maintenance")[0]
    assert entry.status is RunStatus.SUCCESS


def test_cleanup_duplicates_keeps_newest(build_orchestrator, record_store, make_record) -> None:
    now = utcnow()
    record_store.insert(make_record("Blast", description="old", created_at=now - timedelta(days=3)))
    newest = record_store.insert(make_record("blast", description="new", created_at=now))
    record_store.insert(make_record("Scroll"))
    orchestrator, _, _ = build_orchestrator({})

    report = orchestrator.run_maintenance(dedupe_store=True)

    assert report.removed_duplicates == 1
    names = {r.id for r in record_store.select_by_filter()}
    assert newest in names
    assert len(names) == 2
