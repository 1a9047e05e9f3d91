from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS video_showcase (
    conversation_id TEXT PRIMARY KEY,
    demo_id TEXT NOT NULL,
    objective_name TEXT NOT NULL,
    videos_shown_json TEXT NOT NULL,
    received_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_video_showcase_demo
ON video_showcase(demo_id, received_at DESC);

CREATE TABLE IF NOT EXISTS cta_tracking (
    conversation_id TEXT PRIMARY KEY,
    demo_id TEXT NOT NULL,
    cta_url TEXT NULL,
    cta_shown_at TEXT NOT NULL
);
"""


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            _maybe_add_updated_at_column(conn)


def _maybe_add_updated_at_column(conn: sqlite3.Connection) -> None:
    # Early databases tracked only the first showcase timestamp.
    columns = _table_columns(conn, "video_showcase")
    if columns and "updated_at" not in columns:
        conn.execute("ALTER TABLE video_showcase ADD COLUMN updated_at TEXT NOT NULL DEFAULT ''")
        conn.execute("UPDATE video_showcase SET updated_at = received_at WHERE updated_at = ''")


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row["name"]) for row in rows}
