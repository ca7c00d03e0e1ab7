from __future__ import annotations

import datetime as dt
import sqlite3
import uuid
from pathlib import Path

from .protocols import SessionStore

DEFAULT_DB_PATH = Path.home() / ".memworker.sqlite"


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    if str(db_path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        ":memory:" if str(db_path) == ":memory:" else path,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS worker_sessions (
            id INTEGER PRIMARY KEY,
            memory_session_id TEXT UNIQUE,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
    )
    conn.commit()


class SqliteSessionStore:
    """Durable home of each session's memory-session id.

    Only the identity lives here; observation rows belong to the response
    processor's store.
    """

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = db_path
        self.conn = connect(db_path)
        initialize_schema(self.conn)

    def close(self) -> None:
        self.conn.close()

    def get_memory_session_id(self, session_db_id: int) -> str | None:
        row = self.conn.execute(
            "SELECT memory_session_id FROM worker_sessions WHERE id = ?",
            (session_db_id,),
        ).fetchone()
        if row is None or row["memory_session_id"] is None:
            return None
        return str(row["memory_session_id"])

    def update_memory_session_id(self, session_db_id: int, memory_session_id: str) -> None:
        now = dt.datetime.now(dt.UTC).isoformat()
        self.conn.execute(
            """
            INSERT INTO worker_sessions(id, memory_session_id, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                memory_session_id = excluded.memory_session_id,
                updated_at = excluded.updated_at
            """,
            (session_db_id, memory_session_id, now, now),
        )
        self.conn.commit()


def resolve_memory_session_id(store: SessionStore, session_db_id: int) -> tuple[str, bool]:
    """Return the session's memory-session id and whether it was just minted."""

    stored = store.get_memory_session_id(session_db_id)
    if stored:
        return stored, False
    minted = str(uuid.uuid4())
    store.update_memory_session_id(session_db_id, minted)
    return minted, True
