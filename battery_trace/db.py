from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterator, Optional

from .session import Session, StoreError

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    start_ts REAL NOT NULL,
    end_ts REAL,
    average_watts REAL NOT NULL DEFAULT 0,
    peak_watts REAL NOT NULL DEFAULT 0,
    delta_pct REAL NOT NULL DEFAULT 0,
    charger_label TEXT,
    notes TEXT
);
CREATE INDEX IF NOT EXISTS idx_sessions_start_ts ON sessions (start_ts);
"""


def init_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.executescript(SCHEMA)


def save_session(db_path: Path, session: Session) -> None:
    """Insert the session, or replace the stored row with the same id."""
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            INSERT INTO sessions (
                id, start_ts, end_ts, average_watts, peak_watts,
                delta_pct, charger_label, notes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                start_ts = excluded.start_ts,
                end_ts = excluded.end_ts,
                average_watts = excluded.average_watts,
                peak_watts = excluded.peak_watts,
                delta_pct = excluded.delta_pct,
                charger_label = excluded.charger_label,
                notes = excluded.notes
            """,
            (
                session.id,
                session.start_ts,
                session.end_ts,
                session.average_watts,
                session.peak_watts,
                session.delta_pct,
                session.charger_label,
                session.notes,
            ),
        )
        conn.commit()


def count_sessions(db_path: Path, *, finished_only: bool = False) -> int:
    with sqlite3.connect(db_path) as conn:
        if finished_only:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE end_ts IS NOT NULL"
            ).fetchone()
        else:
            (count,) = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()
        return int(count)


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        start_ts=row["start_ts"],
        end_ts=row["end_ts"],
        average_watts=row["average_watts"],
        peak_watts=row["peak_watts"],
        delta_pct=row["delta_pct"],
        charger_label=row["charger_label"],
        notes=row["notes"],
    )


def fetch_sessions(db_path: Path, limit: Optional[int] = None) -> Iterator[Session]:
    """Yield stored sessions oldest first; ``limit`` keeps only the newest ones."""
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        if limit is None:
            cursor = conn.execute("SELECT * FROM sessions ORDER BY start_ts")
        else:
            cursor = conn.execute(
                """
                SELECT * FROM (
                    SELECT * FROM sessions ORDER BY start_ts DESC LIMIT ?
                ) ORDER BY start_ts
                """,
                (limit,),
            )
        for row in cursor:
            yield _row_to_session(row)


def fetch_session(db_path: Path, session_id: str) -> Optional[Session]:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return _row_to_session(row) if row else None


def fetch_latest_finished_session(db_path: Path) -> Optional[Session]:
    with sqlite3.connect(db_path) as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute(
            """
            SELECT * FROM sessions WHERE end_ts IS NOT NULL
            ORDER BY end_ts DESC LIMIT 1
            """
        ).fetchone()
        return _row_to_session(row) if row else None


def delete_all_sessions(db_path: Path) -> int:
    with sqlite3.connect(db_path) as conn:
        cursor = conn.execute("DELETE FROM sessions")
        conn.commit()
        return cursor.rowcount


class SqliteSessionStore:
    """Session store for the controller, backed by the functions above."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        init_db(db_path)

    def save_session(self, session: Session) -> None:
        try:
            save_session(self.db_path, session)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not save session {session.id}: {exc}") from exc
