from __future__ import annotations

import csv
import io
from datetime import datetime
from pathlib import Path
from typing import Iterable

from .session import Session

SESSION_HEADERS = [
    "Date",
    "Start Time",
    "End Time",
    "Duration (minutes)",
    "Average Watts",
    "Peak Watts",
    "Battery Delta (%)",
    "Charger Type",
    "Notes",
]


def _session_row(session: Session) -> list[str]:
    start = datetime.fromtimestamp(session.start_ts)
    end = datetime.fromtimestamp(session.end_ts) if session.end_ts is not None else None
    duration = ""
    if session.end_ts is not None:
        duration = str(int((session.end_ts - session.start_ts) / 60))
    return [
        start.strftime("%Y-%m-%d"),
        start.strftime("%H:%M"),
        end.strftime("%H:%M") if end else "",
        duration,
        f"{session.average_watts:.2f}" if session.average_watts > 0 else "",
        f"{session.peak_watts:.2f}" if session.peak_watts > 0 else "",
        f"{session.delta_pct:.1f}" if session.delta_pct != 0 else "",
        session.charger_label or "",
        session.notes or "",
    ]


def sessions_csv(sessions: Iterable[Session]) -> str:
    """Sessions as CSV text, oldest first; zero metrics are left blank."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(SESSION_HEADERS)
    for session in sorted(sessions, key=lambda s: s.start_ts):
        writer.writerow(_session_row(session))
    return buffer.getvalue()


def write_sessions_csv(sessions: Iterable[Session], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(sessions_csv(sessions), encoding="utf-8")
    return path
