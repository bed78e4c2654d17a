from __future__ import annotations

import hashlib
import os
import secrets
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any

from .feedback_store import get_db_path

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    disabled INTEGER NOT NULL DEFAULT 0,
    last_login_at INTEGER
);

CREATE TABLE IF NOT EXISTS login_tokens (
    token_hash TEXT PRIMARY KEY,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    browser_session TEXT NOT NULL,
    issued_at INTEGER NOT NULL,
    expires_at INTEGER NOT NULL,
    revoked INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_login_tokens_account ON login_tokens (account_id, issued_at);
"""

VERIFY_REASON_NOT_FOUND = "NOT_FOUND"
VERIFY_REASON_ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
VERIFY_REASON_INVALID_PASSWORD = "INVALID_PASSWORD"

MIN_PASSWORD_LENGTH = 6
MIN_TOKEN_TTL_SECONDS = 300
PASSWORD_ALGORITHM = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 120_000


def _connect() -> sqlite3.Connection:
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA_SQL)
    return conn


def _epoch_to_iso(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat()


def encode_password(password: str, *, salt: str | None = None, iterations: int = PASSWORD_ITERATIONS) -> str:
    """Return ``algorithm$iterations$salt$digest`` for storage in a single column."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations).hex()
    return f"{PASSWORD_ALGORITHM}${iterations}${salt}${digest}"


def check_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, _ = encoded.split("$", 3)
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != PASSWORD_ALGORITHM:
        return False
    return secrets.compare_digest(encoded, encode_password(password, salt=salt, iterations=rounds))


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _clean_username(username: str | None) -> str:
    return (username or "").strip().lower()


def get_default_username() -> str:
    return _clean_username(os.getenv("CVBOOST_DEFAULT_USERNAME")) or "demo"


def get_admin_usernames() -> set[str]:
    """Usernames allowed to read feedback; defaults to the bootstrap account."""
    raw = os.getenv("CVBOOST_ADMIN_USERNAMES", "").strip() or get_default_username()
    return {name for name in (_clean_username(part) for part in raw.split(",")) if name}


def is_admin_username(username: str | None) -> bool:
    name = _clean_username(username)
    return bool(name) and name in get_admin_usernames()


def upsert_local_account(*, username: str, password: str) -> dict[str, Any]:
    """Create the account, or reset its password and re-enable it when it exists."""
    name = _clean_username(username)
    secret = password.strip()
    if not name:
        raise ValueError("username is required")
    if len(secret) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")

    with _connect() as conn:
        conn.execute(
            """
            INSERT INTO accounts (username, password, disabled) VALUES (?, ?, 0)
            ON CONFLICT(username) DO UPDATE SET password = excluded.password, disabled = 0
            """,
            (name, encode_password(secret)),
        )
        account_id = conn.execute("SELECT id FROM accounts WHERE username = ?", (name,)).fetchone()["id"]

    return {"id": int(account_id), "username": name}


def set_account_active(*, username: str, active: bool) -> bool:
    with _connect() as conn:
        cursor = conn.execute(
            "UPDATE accounts SET disabled = ? WHERE username = ?",
            (0 if active else 1, _clean_username(username)),
        )
    return cursor.rowcount > 0


def ensure_default_local_account() -> dict[str, Any]:
    """Seed the demo account on an empty database; otherwise return the oldest account."""
    with _connect() as conn:
        first = conn.execute("SELECT id, username FROM accounts ORDER BY id LIMIT 1").fetchone()
    if first is not None:
        return {"id": int(first["id"]), "username": str(first["username"])}

    return upsert_local_account(
        username=get_default_username(),
        password=os.getenv("CVBOOST_DEFAULT_PASSWORD", "").strip() or "demo123456",
    )


def verify_local_account_with_reason(*, username: str, password: str) -> tuple[dict[str, Any] | None, str | None]:
    name = _clean_username(username)
    secret = password.strip()
    if not name or not secret:
        return None, VERIFY_REASON_NOT_FOUND

    with _connect() as conn:
        account = conn.execute(
            "SELECT id, username, password, disabled FROM accounts WHERE username = ?",
            (name,),
        ).fetchone()
        if account is None:
            return None, VERIFY_REASON_NOT_FOUND
        if account["disabled"]:
            return None, VERIFY_REASON_ACCOUNT_INACTIVE
        if not check_password(secret, str(account["password"])):
            return None, VERIFY_REASON_INVALID_PASSWORD
        conn.execute("UPDATE accounts SET last_login_at = ? WHERE id = ?", (int(time.time()), account["id"]))

    return {"id": int(account["id"]), "username": str(account["username"])}, None


def create_auth_session(*, user_id: int, session_id: str, ttl_seconds: int = 7 * 24 * 3600) -> dict[str, Any]:
    """Issue an opaque login token; only its sha256 digest is persisted."""
    browser_session = session_id.strip() or "anonymous"
    ttl = max(MIN_TOKEN_TTL_SECONDS, int(ttl_seconds))
    issued_at = int(time.time())
    token = secrets.token_urlsafe(48)

    with _connect() as conn:
        conn.execute(
            """
            INSERT INTO login_tokens (token_hash, account_id, browser_session, issued_at, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (_token_digest(token), int(user_id), browser_session, issued_at, issued_at + ttl),
        )

    return {
        "token": token,
        "session_id": browser_session,
        "expires_at": _epoch_to_iso(issued_at + ttl),
        "ttl_seconds": ttl,
    }


def validate_auth_session(*, token: str) -> dict[str, Any] | None:
    """Resolve a raw login token to its account, or None when unusable.

    Revoked tokens, disabled accounts and expired tokens all resolve to
    None; callers do not need to distinguish them.
    """
    if not token.strip():
        return None

    with _connect() as conn:
        row = conn.execute(
            """
            SELECT t.account_id, t.browser_session, t.expires_at, a.username
            FROM login_tokens t
            JOIN accounts a ON a.id = t.account_id
            WHERE t.token_hash = ? AND t.revoked = 0 AND a.disabled = 0 AND t.expires_at > ?
            """,
            (_token_digest(token.strip()), int(time.time())),
        ).fetchone()

    if row is None:
        return None
    return {
        "user_id": int(row["account_id"]),
        "username": str(row["username"]),
        "session_id": str(row["browser_session"]),
        "expires_at": _epoch_to_iso(int(row["expires_at"])),
    }


def revoke_auth_session(*, token: str) -> bool:
    if not token.strip():
        return False
    with _connect() as conn:
        cursor = conn.execute(
            "UPDATE login_tokens SET revoked = 1 WHERE token_hash = ? AND revoked = 0",
            (_token_digest(token.strip()),),
        )
    return cursor.rowcount > 0
