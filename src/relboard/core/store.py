"""Local persistence with SQLite.

Holds the values the dashboard restores between runs: the token, the
selected repository, user settings, and time-boxed JSON snapshots of
fetched resource lists. Every value may be absent on first run.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS snapshots (
    owner TEXT NOT NULL,
    repo TEXT NOT NULL,
    kind TEXT NOT NULL,
    data TEXT NOT NULL,
    stored_at REAL NOT NULL,
    ttl_seconds REAL NOT NULL,
    PRIMARY KEY (owner, repo, kind)
);
"""

# Setting keys
TOKEN_KEY = "github_token"
OWNER_KEY = "github_owner"
REPO_KEY = "github_repo"


class LocalStore:
    """Key-value settings and resource snapshots in SQLite."""

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time) -> None:
        self.db_path = db_path
        self._clock = clock
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # Settings
    # =========================================================================

    def get(self, key: str) -> str | None:
        """Get a stored value, or None if it was never set."""
        with self._connection() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, datetime.now().isoformat()),
            )

    def delete(self, key: str) -> None:
        """Forget a stored value."""
        with self._connection() as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    def get_token(self) -> str | None:
        return self.get(TOKEN_KEY)

    def set_token(self, token: str) -> None:
        self.set(TOKEN_KEY, token)

    def clear_token(self) -> None:
        self.delete(TOKEN_KEY)

    def get_selected_repo(self) -> tuple[str, str] | None:
        """The last selected (owner, repo), if both halves are stored."""
        owner = self.get(OWNER_KEY)
        repo = self.get(REPO_KEY)
        if owner and repo:
            return owner, repo
        return None

    def set_selected_repo(self, owner: str, repo: str) -> None:
        self.set(OWNER_KEY, owner)
        self.set(REPO_KEY, repo)

    def clear_selected_repo(self) -> None:
        self.delete(OWNER_KEY)
        self.delete(REPO_KEY)

    # =========================================================================
    # Snapshots
    # =========================================================================

    def save_snapshot(self, owner: str, repo: str, kind: str, data: Any, ttl_seconds: float) -> None:
        """Store a JSON-serializable value for one repository resource."""
        with self._connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO snapshots (owner, repo, kind, data, stored_at, ttl_seconds)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (owner, repo, kind, json.dumps(data), self._clock(), ttl_seconds),
            )

    def load_snapshot(self, owner: str, repo: str, kind: str) -> Any | None:
        """Load a snapshot, or None if absent, expired or unreadable.

        Expired and unreadable snapshots are deleted.
        """
        with self._connection() as conn:
            row = conn.execute(
                "SELECT data, stored_at, ttl_seconds FROM snapshots WHERE owner = ? AND repo = ? AND kind = ?",
                (owner, repo, kind),
            ).fetchone()

        if row is None:
            return None

        if row["stored_at"] + row["ttl_seconds"] < self._clock():
            logger.debug(f"Snapshot {owner}/{repo}:{kind} expired")
            self.delete_snapshot(owner, repo, kind)
            return None

        try:
            return json.loads(row["data"])
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding unreadable snapshot {owner}/{repo}:{kind}: {e}")
            self.delete_snapshot(owner, repo, kind)
            return None

    def snapshot_time(self, owner: str, repo: str, kind: str) -> datetime | None:
        """When a snapshot was stored, if one exists."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT stored_at FROM snapshots WHERE owner = ? AND repo = ? AND kind = ?",
                (owner, repo, kind),
            ).fetchone()
        return datetime.fromtimestamp(row["stored_at"]) if row else None

    def delete_snapshot(self, owner: str, repo: str, kind: str) -> None:
        with self._connection() as conn:
            conn.execute(
                "DELETE FROM snapshots WHERE owner = ? AND repo = ? AND kind = ?",
                (owner, repo, kind),
            )

    def delete_snapshots(self, owner: str, repo: str) -> int:
        """Delete every snapshot of one repository."""
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM snapshots WHERE owner = ? AND repo = ?", (owner, repo))
            return cursor.rowcount

    def clear_snapshots(self) -> None:
        """Delete every snapshot of every repository."""
        with self._connection() as conn:
            conn.execute("DELETE FROM snapshots")
