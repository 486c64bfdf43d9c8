"""Infra layer utilities (SQLite-backed record and run-log stores)."""

from .storage import (
    RecordStore,
    RunLogSink,
    SQLiteManager,
    SQLiteRecordStore,
    SQLiteRunLogStore,
    build_stores,
)

__all__ = [
    "RecordStore",
    "RunLogSink",
    "SQLiteManager",
    "SQLiteRecordStore",
    "SQLiteRunLogStore",
    "build_stores",
]
