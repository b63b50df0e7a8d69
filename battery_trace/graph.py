from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .session import Session

log = logging.getLogger(__name__)


def render_plot(
    sessions: Iterable[Session],
    *,
    show: bool,
    output: Optional[Path],
) -> None:
    import matplotlib

    # Skip GUI backends when we only need file output; it shortens import time.
    if not show:
        matplotlib.use("Agg", force=True)

    import matplotlib.dates as mdates
    import matplotlib.pyplot as plt

    finished = [s for s in sessions if s.end_ts is not None]
    if not finished:
        log.warning("No finished sessions to plot")
        return

    def _ts_to_num(ts: float) -> float:
        return mdates.date2num(datetime.fromtimestamp(ts, tz=timezone.utc))

    times = [_ts_to_num(s.start_ts) for s in finished]
    average = [s.average_watts for s in finished]
    peak = [s.peak_watts for s in finished]

    fig, ax = plt.subplots()
    ax.plot(times, average, "-o", label="Average W", color="tab:blue")
    ax.plot(times, peak, "--o", label="Peak W", color="tab:orange")

    ax.set_xlabel("Session start")
    ax.set_ylabel("Watts")
    ax.set_ylim(bottom=0)
    ax.xaxis.set_major_formatter(mdates.DateFormatter(_date_format(finished)))
    fig.autofmt_xdate()
    ax.grid(True, linestyle="--", alpha=0.4)
    ax.legend()
    fig.tight_layout()

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output)
        log.info("Saved plot to %s", output)
    if show:
        plt.show()
    else:
        plt.close(fig)


def _date_format(sessions: list[Session]) -> str:
    span = sessions[-1].start_ts - sessions[0].start_ts
    if span > 90 * 24 * 3600:
        return "%Y-%m-%d"
    if span > 24 * 3600:
        return "%m-%d"
    return "%m-%d %H:%M"
