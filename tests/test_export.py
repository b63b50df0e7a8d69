import csv
import io
from datetime import datetime

from battery_trace.export import SESSION_HEADERS, sessions_csv, write_sessions_csv
from battery_trace.session import Session


def _rows(text: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(text)))


def test_sessions_csv_formats_metrics_and_sorts():
    start = datetime(2025, 3, 1, 8, 0).timestamp()
    later = Session(
        id="b",
        start_ts=start + 7200,
        end_ts=start + 7200 + 45 * 60,
        average_watts=18.456,
        peak_watts=22.1,
        delta_pct=45.0,
        charger_label="20W USB-C, braided",
        notes='said "fast"',
    )
    earlier = Session(id="a", start_ts=start)

    rows = _rows(sessions_csv([later, earlier]))

    assert rows[0] == SESSION_HEADERS
    assert rows[1] == ["2025-03-01", "08:00", "", "", "", "", "", "", ""]
    assert rows[2] == [
        "2025-03-01",
        "10:00",
        "10:45",
        "45",
        "18.46",
        "22.10",
        "45.0",
        "20W USB-C, braided",
        'said "fast"',
    ]


def test_negative_delta_is_exported(tmp_path):
    session = Session(id="a", start_ts=0.0, end_ts=60.0, delta_pct=-2.0)

    path = write_sessions_csv([session], tmp_path / "out" / "sessions.csv")

    assert _rows(path.read_text())[1][6] == "-2.0"
