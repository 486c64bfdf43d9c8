"""Shared fixtures: isolated project home, config builders and SQLite stores."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from airdrop_crawler.config import ConfigLocator, ConfigRepository, GlobalConfig, SourceConfig, SourceKind
from airdrop_crawler.engine.normalizer import content_fingerprint
from airdrop_crawler.engine.records import CanonicalRecord, RecordStatus
from airdrop_crawler.infra import SQLiteManager, SQLiteRecordStore, SQLiteRunLogStore, build_stores


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("AIRDROP_CRAWLER_HOME", str(tmp_path))
    monkeypatch.delenv("AIRDROP_CRAWLER_API_TOKEN", raising=False)
    monkeypatch.delenv("AIRDROP_CRAWLER_SOCIAL_BEARER", raising=False)
    return tmp_path


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(delay_range=(0.0, 0.0), database_path=tmp_path / "airdrops.db")


@pytest.fixture
def sample_source_config() -> Callable[..., SourceConfig]:
    def _builder(**overrides: Any) -> SourceConfig:
        base: dict[str, Any] = {
            "source_id": "example",
            "name": "Example Airdrops",
            "endpoint": "https://example.com/airdrops",
            "kind": SourceKind.WEBPAGE,
            "locale": "en",
            "priority": 5,
        }
        base.update(overrides)
        return SourceConfig(**base)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> Iterable[ConfigRepository]:
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


@pytest.fixture
def sqlite_manager() -> Iterable[SQLiteManager]:
    manager = SQLiteManager()
    yield manager
    manager.close_all()


@pytest.fixture
def stores(sqlite_manager: SQLiteManager, tmp_path: Path) -> tuple[SQLiteRecordStore, SQLiteRunLogStore]:
    return build_stores(sqlite_manager, tmp_path / "store.db")


@pytest.fixture
def record_store(stores) -> SQLiteRecordStore:
    return stores[0]


@pytest.fixture
def run_log_sink(stores) -> SQLiteRunLogStore:
    return stores[1]


@pytest.fixture
def make_record() -> Callable[..., CanonicalRecord]:
    def _builder(name: str, **overrides: Any) -> CanonicalRecord:
        description = overrides.pop("description", "")
        overrides.setdefault("status", RecordStatus.UPCOMING)
        return CanonicalRecord(
            name=name,
            description=description,
            content_hash=content_fingerprint(name, description),
            **overrides,
        )

    return _builder
