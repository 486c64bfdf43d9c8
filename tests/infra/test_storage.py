from __future__ import annotations

from datetime import timedelta

import pytest

from airdrop_crawler.engine.records import Category, RunLog, RunStatus, utcnow
from airdrop_crawler.errors import StoreError
from airdrop_crawler.infra import SQLiteManager, build_stores


def test_sqlite_manager_initialises_schema(tmp_path) -> None:
    manager = SQLiteManager()
    conn = manager.connect(tmp_path / "airdrops.db")
    airdrop_columns = {row["name"] for row in conn.execute("PRAGMA table_info(airdrops)").fetchall()}
    run_columns = {row["name"] for row in conn.execute("PRAGMA table_info(run_logs)").fetchall()}
    assert {"name", "content_hash", "featured", "restricted", "requirements"} <= airdrop_columns
    assert {"source_id", "status", "items_found", "records_inserted", "error_message"} <= run_columns
    manager.close_all()


def test_sqlite_manager_reset(tmp_path) -> None:
    manager = SQLiteManager()
    path = tmp_path / "airdrops.db"
    manager.connect(path)
    manager.reset(path)
    assert not path.exists()
    conn = manager.connect(path)
    assert conn.execute("SELECT count(*) FROM airdrops").fetchone()[0] == 0
    manager.close_all()


def test_record_store_roundtrip(record_store, make_record) -> None:
    record = make_record(
        "Blast",
        description="Layer 2 airdrop",
        category=Category.LAYER2,
        requirements=["Follow @blast"],
        restricted=True,
    )
    record_id = record_store.insert(record)
    stored = record_store.get(record_id)
    assert stored is not None
    assert stored.name == "Blast"
    assert stored.category is Category.LAYER2
    assert stored.requirements == ["Follow @blast"]
    assert stored.restricted is True
    assert stored.featured is False
    assert stored.created_at.tzinfo is not None


def test_record_store_update_and_filter(record_store, make_record) -> None:
    first = record_store.insert(make_record("Blast", priority=9))
    record_store.insert(make_record("Scroll", priority=4))
    record_store.update_fields(first, {"featured": True, "website": "https://blast.io"})
    featured = record_store.select_by_filter(lambda r: r.featured)
    assert [r.name for r in featured] == ["Blast"]
    assert featured[0].website == "https://blast.io"
    assert featured[0].updated_at >= featured[0].created_at


def test_record_store_update_errors(record_store, make_record) -> None:
    record_id = record_store.insert(make_record("Blast"))
    with pytest.raises(StoreError):
        record_store.update_fields(record_id, {"nonexistent": 1})
    with pytest.raises(StoreError):
        record_store.update_fields("missing-id", {"featured": True})


def test_record_store_read_errors_raise_store_error(tmp_path) -> None:
    manager = SQLiteManager()
    record_store, _ = build_stores(manager, tmp_path / "closed.db")
    manager.close_all()
    with pytest.raises(StoreError):
        record_store.select_by_filter()
    with pytest.raises(StoreError):
        record_store.get("missing")


def test_record_store_duplicate_id_raises(record_store, make_record) -> None:
    record = make_record("Blast")
    record_store.insert(record)
    with pytest.raises(StoreError):
        record_store.insert(make_record("Other", id=record.id))


def test_record_store_delete_by_filter(record_store, make_record) -> None:
    for name in ("Alpha", "Beta", "Gamma"):
        record_store.insert(make_record(name))
    removed = record_store.delete_by_filter(lambda r: r.name != "Beta")
    assert removed == 2
    assert [r.name for r in record_store.select_by_filter()] == ["Beta"]


def test_run_log_store_recent_and_purge(run_log_sink) -> None:
    now = utcnow()
    run_log_sink.append(
        RunLog(source_id="alpha", status=RunStatus.SUCCESS, items_found=3, created_at=now - timedelta(days=40))
    )
    run_log_sink.append(
        RunLog(source_id="alpha", status=RunStatus.FAILED, error_message="timed out", created_at=now)
    )
    run_log_sink.append(RunLog(source_id="beta", status=RunStatus.PARTIAL, created_at=now))

    alpha = run_log_sink.recent(source_id="alpha")
    assert [entry.status for entry in alpha] == [RunStatus.FAILED, RunStatus.SUCCESS]
    assert len(run_log_sink.recent(limit=2)) == 2

    removed = run_log_sink.purge_before(now - timedelta(days=30))
    assert removed == 1
    assert {entry.source_id for entry in run_log_sink.recent()} == {"alpha", "beta"}
    assert len(run_log_sink.recent()) == 2
