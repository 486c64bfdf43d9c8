"""Storage abstractions for canonical records and run logs."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Mapping, Protocol

from ..engine.records import CanonicalRecord, RunLog, RunStatus, utcnow
from ..errors import StoreError

RecordPredicate = Callable[[CanonicalRecord], bool]

_LIST_COLUMNS = {"eligibility_criteria", "requirements"}
_BOOL_COLUMNS = {"restricted", "featured"}
_UPDATABLE_COLUMNS = {
    "name",
    "description",
    "category",
    "status",
    "chain",
    "token_symbol",
    "estimated_value",
    "eligibility_criteria",
    "requirements",
    "website",
    "twitter_handle",
    "discord_link",
    "telegram_link",
    "contract_address",
    "priority",
    "potential_rating",
    "restricted",
    "featured",
    "content_hash",
}


class RecordStore(Protocol):
    """Canonical record store consumed by the dedup stage and the jobs."""

    def insert(self, record: CanonicalRecord) -> str: ...

    def select_by_filter(self, predicate: RecordPredicate | None = None) -> list[CanonicalRecord]: ...

    def update_fields(self, record_id: str, fields: Mapping[str, Any]) -> None: ...

    def delete_by_filter(self, predicate: RecordPredicate) -> int: ...


class RunLogSink(Protocol):
    def append(self, entry: RunLog) -> RunLog: ...

    def purge_before(self, cutoff: datetime) -> int: ...

    def recent(self, limit: int = 20, source_id: str | None = None) -> list[RunLog]: ...


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS airdrops (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                category TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'upcoming',
                chain TEXT NOT NULL,
                token_symbol TEXT,
                estimated_value TEXT,
                eligibility_criteria TEXT,
                requirements TEXT,
                website TEXT,
                twitter_handle TEXT,
                discord_link TEXT,
                telegram_link TEXT,
                contract_address TEXT,
                priority INTEGER DEFAULT 0,
                potential_rating TEXT,
                restricted INTEGER DEFAULT 0,
                featured INTEGER DEFAULT 0,
                content_hash TEXT NOT NULL,
                source_id TEXT,
                source_url TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS run_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_id TEXT NOT NULL,
                status TEXT NOT NULL,
                items_found INTEGER DEFAULT 0,
                records_inserted INTEGER DEFAULT 0,
                duration_seconds REAL DEFAULT 0,
                error_message TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_run_logs_created ON run_logs(created_at)")
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


def _to_utc_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _encode(column: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if column in _LIST_COLUMNS:
        return json.dumps(list(value or []), ensure_ascii=False)
    if column in _BOOL_COLUMNS:
        return int(bool(value))
    return value


def _decode_row(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    for column in _LIST_COLUMNS:
        data[column] = json.loads(data[column]) if data.get(column) else []
    return data


class SQLiteRecordStore:
    """Canonical record store persisted in the `airdrops` table."""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = Lock()
        self._conn = manager.connect(db_path)

    def insert(self, record: CanonicalRecord) -> str:
        record.id = record.id or uuid.uuid4().hex
        row = {key: _encode(key, value) for key, value in record.to_row().items()}
        row["created_at"] = _to_utc_text(record.created_at)
        row["updated_at"] = _to_utc_text(record.updated_at)
        columns = ", ".join(row)
        placeholders = ", ".join(f":{key}" for key in row)
        try:
            with self._lock:
                self._conn.execute(f"INSERT INTO airdrops({columns}) VALUES ({placeholders})", row)
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"insert failed for {record.name!r}: {exc}") from exc
        return record.id

    def get(self, record_id: str) -> CanonicalRecord | None:
        try:
            with self._lock:
                row = self._conn.execute("SELECT * FROM airdrops WHERE id = ?", (record_id,)).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"read failed for {record_id!r}: {exc}") from exc
        return CanonicalRecord.from_row(_decode_row(row)) if row else None

    def select_by_filter(self, predicate: RecordPredicate | None = None) -> list[CanonicalRecord]:
        try:
            with self._lock:
                rows = self._conn.execute("SELECT * FROM airdrops ORDER BY created_at").fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"select failed: {exc}") from exc
        records = [CanonicalRecord.from_row(_decode_row(row)) for row in rows]
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    def update_fields(self, record_id: str, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise StoreError(f"cannot update unknown fields: {sorted(unknown)}")
        if not fields:
            return
        values = {key: _encode(key, value) for key, value in fields.items()}
        values["updated_at"] = _to_utc_text(utcnow())
        assignments = ", ".join(f"{key} = :{key}" for key in values)
        values["_id"] = record_id
        try:
            with self._lock:
                cursor = self._conn.execute(
                    f"UPDATE airdrops SET {assignments} WHERE id = :_id", values
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"update failed for {record_id}: {exc}") from exc
        if cursor.rowcount == 0:
            raise StoreError(f"record not found: {record_id}")

    def delete_by_filter(self, predicate: RecordPredicate) -> int:
        doomed = [record.id for record in self.select_by_filter(predicate)]
        if not doomed:
            return 0
        try:
            with self._lock:
                self._conn.executemany("DELETE FROM airdrops WHERE id = ?", [(i,) for i in doomed])
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"delete failed: {exc}") from exc
        return len(doomed)


class SQLiteRunLogStore:
    """Append-only run log sink persisted in the `run_logs` table."""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._lock = Lock()
        self._conn = manager.connect(db_path)

    def append(self, entry: RunLog) -> RunLog:
        try:
            with self._lock:
                cursor = self._conn.execute(
                    """
                    INSERT INTO run_logs(
                        source_id, status, items_found, records_inserted,
                        duration_seconds, error_message, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.source_id,
                        entry.status.value,
                        entry.items_found,
                        entry.records_inserted,
                        round(entry.duration_seconds, 3),
                        entry.error_message,
                        _to_utc_text(entry.created_at),
                    ),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"run log append failed for {entry.source_id}: {exc}") from exc
        entry.id = cursor.lastrowid
        return entry

    def purge_before(self, cutoff: datetime) -> int:
        try:
            with self._lock:
                cursor = self._conn.execute(
                    "DELETE FROM run_logs WHERE created_at < ?", (_to_utc_text(cutoff),)
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"run log purge failed: {exc}") from exc
        return cursor.rowcount

    def recent(self, limit: int = 20, source_id: str | None = None) -> list[RunLog]:
        query = "SELECT * FROM run_logs"
        params: tuple[Any, ...] = ()
        if source_id:
            query += " WHERE source_id = ?"
            params = (source_id,)
        query += " ORDER BY id DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(query, (*params, limit)).fetchall()
        return [_run_log_from_row(row) for row in rows]


def _run_log_from_row(row: sqlite3.Row) -> RunLog:
    return RunLog(
        id=row["id"],
        source_id=row["source_id"],
        status=RunStatus(row["status"]),
        items_found=row["items_found"],
        records_inserted=row["records_inserted"],
        duration_seconds=row["duration_seconds"],
        error_message=row["error_message"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def build_stores(manager: SQLiteManager, db_path: Path) -> tuple[SQLiteRecordStore, SQLiteRunLogStore]:
    return SQLiteRecordStore(manager, db_path), SQLiteRunLogStore(manager, db_path)


__all__ = [
    "RecordPredicate",
    "RecordStore",
    "RunLogSink",
    "SQLiteManager",
    "SQLiteRecordStore",
    "SQLiteRunLogStore",
    "build_stores",
]
