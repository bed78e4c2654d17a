from __future__ import annotations

import sqlite3

from .feedback_store import get_db_path

CV_OPTIMIZED_COUNTER = "cv_optimized_count"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS counters (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""


def _connect() -> sqlite3.Connection:
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(CREATE_TABLE_SQL)


def get_counter(name: str = CV_OPTIMIZED_COUNTER) -> int:
    with _connect() as conn:
        _ensure_schema(conn)
        row = conn.execute("SELECT value FROM counters WHERE name = ? LIMIT 1", (name,)).fetchone()

    if row is None:
        return 0
    try:
        return int(row["value"])
    except (TypeError, ValueError):
        return 0


def increment_counter(name: str = CV_OPTIMIZED_COUNTER, *, amount: int = 1) -> int:
    with _connect() as conn:
        _ensure_schema(conn)
        conn.execute(
            """
            INSERT INTO counters (name, value) VALUES (?, ?)
            ON CONFLICT(name) DO UPDATE SET
                value = value + excluded.value,
                updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
            """,
            (name, int(amount)),
        )
        conn.commit()
        row = conn.execute("SELECT value FROM counters WHERE name = ? LIMIT 1", (name,)).fetchone()

    return int(row["value"]) if row is not None else 0
