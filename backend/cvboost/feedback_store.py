from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

DEFAULT_DB_PATH = Path(__file__).resolve().parents[1] / "data" / "cvboost.sqlite3"
DEFAULT_FEEDBACK_LIST_LIMIT = 50
RATING_VALUES = (1, 2, 3, 4, 5)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    rating INTEGER NOT NULL,
    comment TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL DEFAULT 'unknown',
    user_id INTEGER,
    username TEXT
);
"""

CREATE_INDEX_SQLS = [
    """
    CREATE INDEX IF NOT EXISTS idx_feedback_created_at
    ON feedback (created_at DESC, id DESC);
    """,
]

logger = logging.getLogger("cvboost.feedback")

# Entries accepted while the database is unreachable. Process-local, lost on restart.
_LOCAL_FEEDBACK: list[dict[str, Any]] = []
_LOCAL_LOCK = Lock()


def get_db_path() -> Path:
    configured_path = os.getenv("CVBOOST_DB_PATH", "").strip()
    if configured_path:
        path = Path(configured_path)
        if not path.is_absolute():
            path = (Path(__file__).resolve().parents[1] / path).resolve()
        return path
    return DEFAULT_DB_PATH


def _connect() -> sqlite3.Connection:
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(CREATE_TABLE_SQL)
    for sql in CREATE_INDEX_SQLS:
        conn.execute(sql)


def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": str(row["id"]),
        "created_at": str(row["created_at"]),
        "rating": int(row["rating"]),
        "comment": str(row["comment"] or ""),
        "source": str(row["source"] or "unknown"),
        "user_id": int(row["user_id"]) if row["user_id"] is not None else None,
        "username": str(row["username"]) if row["username"] is not None else None,
    }


def _log_fallback(event: str, exc: Exception) -> None:
    logger.warning(
        json.dumps(
            {
                "event": event,
                "reason": str(exc),
                "exception_type": type(exc).__name__,
            },
            ensure_ascii=False,
        )
    )


def _store_locally(
    *,
    rating: int,
    comment: str,
    source: str,
    user_id: int | None,
    username: str | None,
) -> dict[str, Any]:
    entry = {
        "id": f"local_{int(time.time() * 1000)}",
        "created_at": datetime.now(timezone.utc).isoformat(),
        "rating": rating,
        "comment": comment,
        "source": source,
        "user_id": user_id,
        "username": username,
    }
    with _LOCAL_LOCK:
        _LOCAL_FEEDBACK.append(entry)
    return dict(entry)


def create_feedback(
    *,
    rating: int,
    comment: str = "",
    source: str = "unknown",
    user_id: int | None = None,
    username: str | None = None,
) -> tuple[dict[str, Any], str]:
    """Persist one feedback entry.

    Returns the stored row and where it landed: ``"database"`` normally,
    ``"local"`` when SQLite could not be reached and the entry went into the
    in-memory list instead.
    """
    safe_comment = comment or ""
    safe_source = source or "unknown"

    try:
        with _connect() as conn:
            _ensure_schema(conn)
            cursor = conn.execute(
                """
                INSERT INTO feedback (rating, comment, source, user_id, username)
                VALUES (?, ?, ?, ?, ?)
                """,
                (int(rating), safe_comment, safe_source, user_id, username),
            )
            conn.commit()
            row = conn.execute(
                """
                SELECT id, created_at, rating, comment, source, user_id, username
                FROM feedback
                WHERE id = ?
                """,
                (int(cursor.lastrowid),),
            ).fetchone()
    except (sqlite3.Error, OSError) as exc:
        _log_fallback("feedback_db_unavailable", exc)
        entry = _store_locally(
            rating=int(rating),
            comment=safe_comment,
            source=safe_source,
            user_id=user_id,
            username=username,
        )
        logger.info(json.dumps({"event": "feedback_stored_locally", "feedbackId": entry["id"]}, ensure_ascii=False))
        return entry, "local"

    entry = _row_to_dict(row)
    logger.info(json.dumps({"event": "feedback_saved", "feedbackId": entry["id"]}, ensure_ascii=False))
    return entry, "database"


def list_feedback(*, limit: int = DEFAULT_FEEDBACK_LIST_LIMIT) -> tuple[list[dict[str, Any]], str]:
    safe_limit = max(1, int(limit))
    try:
        with _connect() as conn:
            _ensure_schema(conn)
            rows = conn.execute(
                """
                SELECT id, created_at, rating, comment, source, user_id, username
                FROM feedback
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (safe_limit,),
            ).fetchall()
    except (sqlite3.Error, OSError) as exc:
        _log_fallback("feedback_list_db_unavailable", exc)
        return list_local_feedback(), "local"

    return [_row_to_dict(row) for row in rows], "database"


def list_local_feedback() -> list[dict[str, Any]]:
    with _LOCAL_LOCK:
        return [dict(item) for item in _LOCAL_FEEDBACK]


def clear_local_feedback() -> None:
    with _LOCAL_LOCK:
        _LOCAL_FEEDBACK.clear()


def summarize_feedback(rows: list[dict[str, Any]]) -> dict[str, Any]:
    total = len(rows)
    ratings = [int(row.get("rating", 0)) for row in rows]
    average = round(sum(ratings) / total, 2) if total else 0.0

    distribution: list[dict[str, Any]] = []
    for value in RATING_VALUES:
        count = sum(1 for rating in ratings if rating == value)
        distribution.append(
            {
                "rating": value,
                "count": count,
                "percentage": round(count / total * 100, 1) if total else 0.0,
            }
        )

    return {
        "total": total,
        "averageRating": average,
        "distribution": distribution,
        "withComments": sum(1 for row in rows if str(row.get("comment") or "").strip()),
    }
