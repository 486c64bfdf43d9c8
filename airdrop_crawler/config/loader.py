"""Configuration loading helpers and the YAML-backed source registry."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

import yaml

from .models import GlobalConfig, SourceConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
SOURCE_CONFIG_SUFFIX = ".yaml"

# Built-in registry used by `seed_default_sources` on an empty sources directory.
DEFAULT_SOURCES: list[dict] = [
    {
        "source_id": "x_com_airdrops",
        "name": "X.com Airdrop Hunters",
        "endpoint": "https://x.com/search",
        "kind": "social-search",
        "locale": "en",
        "priority": 10,
        "query": "#airdrop crypto",
        "extraction_rules": {"wait_selector": "article"},
    },
    {
        "source_id": "airdrop_alert",
        "name": "Airdrop Alert",
        "endpoint": "https://airdropalert.com",
        "kind": "webpage",
        "locale": "en",
        "priority": 9,
        "extraction_rules": {
            "container": ".card-airdrop",
            "name": ".card-title",
            "description": ".card-text",
            "category": ".badge-category",
            "chain": ".badge-chain",
        },
    },
    {
        "source_id": "defi_deals",
        "name": "DeFi Deals Airdrops",
        "endpoint": "https://defi-deals.com/airdrops",
        "kind": "webpage",
        "locale": "en",
        "priority": 8,
        "extraction_rules": {
            "container": ".airdrop-card",
            "name": "h3.airdrop-title",
            "description": ".airdrop-description",
            "category": ".airdrop-category",
            "chain": ".airdrop-chain",
            "website": ".airdrop-website",
        },
    },
    {
        "source_id": "alpha_airdrops",
        "name": "Alpha Airdrops",
        "endpoint": "https://alpha.airdrops.io",
        "kind": "webpage",
        "locale": "en",
        "priority": 8,
        "extraction_rules": {
            "container": ".airdrop-item",
            "name": ".project-name",
            "description": ".project-desc",
            "category": ".project-category",
            "chain": ".project-chain",
        },
    },
    {
        "source_id": "crypto_potato",
        "name": "CryptoPotato Airdrops",
        "endpoint": "https://cryptopotato.com/crypto-airdrops/",
        "kind": "webpage",
        "locale": "en",
        "priority": 7,
        "extraction_rules": {
            "container": ".airdrop-entry",
            "name": "h3",
            "description": "p",
            "category": ".category-tag",
            "chain": ".chain-tag",
        },
    },
]


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() or ch in "_." else "-" for ch in name).strip("-.")


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from the project root."""

    project_root: Path | None = None
    data_dir: Path | None = None
    sources_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        env_root = os.environ.get("AIRDROP_CRAWLER_HOME")
        if env_root:
            root = Path(env_root).expanduser().resolve()
        else:
            root = (self.project_root or Path(__file__).resolve().parents[2]).resolve()
        self.project_root = root
        self.data_dir = (root / "data").resolve()
        self.sources_dir = (self.data_dir / "sources").resolve()
        self.logs_dir = (root / "logs").resolve()
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.sources_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


class ConfigRepository:
    """Repository encapsulating config IO, schema validation and the source registry."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration helpers
    # ------------------------------------------------------------------
    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is not None:
            return self._global_cache
        path = self.locator.global_config_path()
        if path.exists():
            global_cfg = GlobalConfig.model_validate(_read_file(path))
        else:
            global_cfg = GlobalConfig()
            self.save_global_config(global_cfg)
        self._global_cache = global_cfg
        return global_cfg

    def save_global_config(self, config: GlobalConfig) -> None:
        # Secrets picked up from the environment are not written back to disk.
        payload = config.model_dump(mode="json", exclude={"api_token": True})
        payload["social_api"].pop("bearer_token", None)
        _write_file(self.locator.global_config_path(), payload)
        self._global_cache = config

    def database_path(self) -> Path:
        return self.load_global_config().resolved_database_path(self.locator.project_root)

    # ------------------------------------------------------------------
    # Source registry
    # ------------------------------------------------------------------
    def source_path(self, source_id: str) -> Path:
        return self.locator.sources_dir / f"{_slugify(source_id)}{SOURCE_CONFIG_SUFFIX}"

    def list_source_files(self) -> Iterable[Path]:
        for path in sorted(self.locator.sources_dir.glob("*")):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def list_sources(self) -> list[SourceConfig]:
        return [self.load_source(path) for path in self.list_source_files()]

    def list_active(self) -> list[SourceConfig]:
        return [source for source in self.list_sources() if source.active]

    def list_active_by_priority_desc(self) -> list[SourceConfig]:
        """Active sources in the order the next cycle processes them."""

        return sorted(self.list_active(), key=lambda s: (-s.priority, s.source_id))

    def load_source(self, identifier: str | Path) -> SourceConfig:
        path = identifier if isinstance(identifier, Path) else self.source_path(identifier)
        if not path.exists():
            raise FileNotFoundError(f"Source configuration not found: {identifier}")
        return SourceConfig.model_validate(_read_file(path))

    def upsert_source(self, config: SourceConfig) -> Path:
        """Create or replace the source keyed by its id; repeated calls are no-ops.

        Raises ValueError when another source id already owns the same file name.
        """

        path = self.source_path(config.source_id)
        if path.exists():
            owner = _read_file(path).get("source_id")
            if owner is not None and owner != config.source_id:
                raise ValueError(
                    f"source id {config.source_id!r} collides with existing source {owner!r} at {path}"
                )
        _write_file(path, config.model_dump(mode="json"))
        return path

    def touch_last_run(self, source_id: str, when: datetime | None = None) -> SourceConfig:
        source = self.load_source(source_id)
        updated = source.model_copy(
            update={"last_run_at": when or datetime.now(timezone.utc)}
        )
        self.upsert_source(updated)
        return updated

    def seed_default_sources(self) -> list[SourceConfig]:
        """Write the built-in sources when the registry is empty."""

        if any(True for _ in self.list_source_files()):
            return []
        seeded = [SourceConfig.model_validate(payload) for payload in DEFAULT_SOURCES]
        for source in seeded:
            self.upsert_source(source)
        return seeded


__all__ = ["CONFIG_EXTENSIONS", "ConfigLocator", "ConfigRepository", "DEFAULT_SOURCES"]
