from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from . import db
from .buffer import DEFAULT_WINDOW_SECONDS
from .capacity import CapacityProvider, calibrate_capacity, load_known_capacities
from .config import (
    BACKGROUND_POLICIES,
    DEFAULT_SAMPLE_INTERVAL,
    RESTART_ON_FOREGROUND,
    MonitorSettings,
    resolve_custom_capacity,
    resolve_db_path,
)
from .estimator import DEFAULT_EMA_ALPHA
from .eta import format_duration
from .export import write_sessions_csv
from .monitor import EventQueue, Ticker, install_lifecycle_signals, run_monitor
from .session import MetricsSnapshot, Session, SessionController
from .sparkline import WattsHistory
from .sysfs import SysfsBatteryObserver

log = logging.getLogger(__name__)

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()

DB_PATH_HELP = "Path to SQLite database (or set BATTERY_TRACE_DB)"
CAPACITY_HELP = "Battery capacity in mAh (or set BATTERY_TRACE_CAPACITY_MAH)"


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format="%(message)s"
    )


def _sanitize_component(value: str) -> str:
    return "".join(ch if ch.isalnum() or ch in {"-", "_"} else "_" for ch in value)


def _default_graph_path(
    *,
    base_dir: Optional[Path] = None,
    now: Optional[datetime] = None,
) -> Path:
    """Generate an informative, safe graph filename."""
    current = now or datetime.now().astimezone()
    tz_name = _sanitize_component(current.tzname() or "local")
    timestamp = current.strftime("%Y-%m-%d_%H-%M-%S")
    filename = f"battery_trace_sessions_{timestamp}_{tz_name}.png"
    return (base_dir or Path.cwd()) / filename


def _format_timestamp(ts: Optional[float]) -> str:
    if ts is None:
        return "--"
    dt = datetime.fromtimestamp(ts).astimezone()
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")


def _format_pct(value: Optional[float]) -> str:
    return f"{value:.1f}%" if value is not None else "--"


def _format_power(value: Optional[float]) -> str:
    return f"{value:.2f}W" if value else "--"


def _format_delta(value: float) -> str:
    return f"{value:+.1f}%"


def _status_line(snapshot: MetricsSnapshot, history: WattsHistory) -> str:
    level = _format_pct(snapshot.battery_level * 100)
    if snapshot.session_id is None:
        state = "charging" if snapshot.is_charging else "idle"
        return f"[dim]{state}[/dim] {level}"
    parts = [
        f"[bold green]charging[/bold green] {level}",
        f"now {_format_power(snapshot.current_watts)}",
        f"peak {_format_power(snapshot.peak_watts)}",
        f"avg {_format_power(snapshot.average_watts)}",
        f"elapsed {format_duration(snapshot.session_duration)}",
        f"full in {format_duration(snapshot.eta_to_full)}",
    ]
    trace = history.render()
    if trace:
        parts.append(trace)
    return "  ".join(parts)


def _build_provider(
    capacity_mah: Optional[float],
    capacity_table: Optional[Path],
    model: Optional[str],
    battery_path: Optional[Path],
) -> CapacityProvider:
    try:
        return CapacityProvider(
            resolve_custom_capacity(capacity_mah),
            known_capacities=load_known_capacities(capacity_table)
            if capacity_table
            else None,
            model=model,
            battery_path=battery_path,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _find_observer(battery: Optional[Path]) -> Optional[SysfsBatteryObserver]:
    if battery is not None:
        return SysfsBatteryObserver(battery)
    try:
        return SysfsBatteryObserver.discover()
    except FileNotFoundError:
        return None


@app.command("monitor")
def monitor_command(
    db_path: Optional[Path] = typer.Option(None, help=DB_PATH_HELP),
    battery: Optional[Path] = typer.Option(
        None, help="Battery sysfs directory (defaults to the first BAT* found)"
    ),
    capacity_mah: Optional[float] = typer.Option(
        None, "--capacity-mah", help=CAPACITY_HELP
    ),
    capacity_table: Optional[Path] = typer.Option(
        None, help="JSON file mapping device models to capacities in mAh"
    ),
    model: Optional[str] = typer.Option(None, help="Device model to look up"),
    interval: float = typer.Option(
        DEFAULT_SAMPLE_INTERVAL, help="Seconds between samples while charging"
    ),
    window: float = typer.Option(
        DEFAULT_WINDOW_SECONDS, help="Seconds of samples used for the rate"
    ),
    alpha: float = typer.Option(DEFAULT_EMA_ALPHA, help="Smoothing factor (0-1]"),
    background_policy: str = typer.Option(
        RESTART_ON_FOREGROUND,
        help=f"What suspension does to a session: {' or '.join(BACKGROUND_POLICIES)}",
    ),
    charger_label: Optional[str] = typer.Option(
        None, "--charger", help="Charger label recorded on new sessions"
    ),
    notes: Optional[str] = typer.Option(None, help="Notes recorded on new sessions"),
    iterations: Optional[int] = typer.Option(
        None, min=1, help="Stop after this many polling passes"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Watch the battery and record charging sessions until interrupted."""
    configure_logging(verbose)
    try:
        settings = MonitorSettings(
            sample_interval=interval,
            window_seconds=window,
            ema_alpha=alpha,
            background_policy=background_policy,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    observer = _find_observer(battery)
    if observer is None:
        console.print("No battery found in sysfs.")
        raise typer.Exit(code=1)

    provider = _build_provider(capacity_mah, capacity_table, model, observer.path)
    store = db.SqliteSessionStore(resolve_db_path(db_path))
    ticker = Ticker()
    queue = EventQueue()
    controller = SessionController(provider, store, ticker, settings)

    history = WattsHistory()
    labelled: set[str] = set()

    def on_snapshot(snapshot: MetricsSnapshot) -> None:
        session_id = snapshot.session_id
        if session_id is None:
            history.clear()
        else:
            history.add(snapshot.current_watts)
            if session_id not in labelled:
                labelled.add(session_id)
                if charger_label:
                    controller.set_charger_label(charger_label)
                if notes:
                    controller.set_notes(notes)
        console.print(_status_line(snapshot, history))

    controller.subscribe(on_snapshot)
    install_lifecycle_signals(queue)
    log.info("Monitoring %s", observer.path)
    try:
        run_monitor(controller, observer, ticker, queue, iterations=iterations)
    except KeyboardInterrupt:
        log.info("Stopping monitor")
    finally:
        result = controller.stop_session()
        if result.error is not None:
            console.print(f"[red]Session not saved:[/red] {result.error}")


def _sessions_table(sessions: list[Session]) -> Table:
    table = Table(
        title="Charging sessions",
        show_lines=False,
        box=box.SIMPLE,
        header_style="bold",
    )
    table.add_column("Started", no_wrap=True)
    table.add_column("Duration", justify="right")
    table.add_column("Avg", justify="right")
    table.add_column("Peak", justify="right")
    table.add_column("Delta", justify="right")
    table.add_column("Charger")
    table.add_column("Notes")

    for session in sessions:
        duration = (
            format_duration(session.duration_seconds())
            if session.end_ts is not None
            else "open"
        )
        table.add_row(
            datetime.fromtimestamp(session.start_ts).strftime("%m-%d %H:%M"),
            duration,
            _format_power(session.average_watts),
            _format_power(session.peak_watts),
            _format_delta(session.delta_pct),
            session.charger_label or "",
            session.notes or "",
        )
    return table


@app.command("sessions")
def sessions_command(
    db_path: Optional[Path] = typer.Option(None, help=DB_PATH_HELP),
    limit: Optional[int] = typer.Option(
        None, "--limit", "-n", min=1, help="Only show the newest N sessions"
    ),
    graph: bool = typer.Option(
        False, "--graph", "-g", help="Save a graph image with an auto-generated name"
    ),
    graph_path: Optional[Path] = typer.Option(
        None,
        "--graph-path",
        help="Custom path for the graph image (png/pdf/etc); overrides --graph name",
    ),
    csv_path: Optional[Path] = typer.Option(
        None, "--csv", help="Also export the listed sessions to this CSV file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List recorded charging sessions (optionally graph or export them)."""
    configure_logging(verbose)
    resolved = resolve_db_path(db_path)
    db.init_db(resolved)

    sessions = list(db.fetch_sessions(resolved, limit=limit))
    if not sessions:
        console.print("No sessions recorded; run the monitor while charging first.")
        raise typer.Exit(code=1)

    console.print(_sessions_table(sessions))

    output_path: Optional[Path]
    if graph_path:
        output_path = graph_path
    elif graph:
        output_path = _default_graph_path()
    else:
        output_path = None

    if output_path:
        # Import matplotlib lazily only when we actually render a graph.
        from .graph import render_plot

        render_plot(sessions, show=False, output=output_path)
    if csv_path:
        write_sessions_csv(sessions, csv_path)
        console.print(f"Exported {len(sessions)} sessions to {csv_path}")


@app.command("capacity")
def capacity_command(
    db_path: Optional[Path] = typer.Option(None, help=DB_PATH_HELP),
    battery: Optional[Path] = typer.Option(None, help="Battery sysfs directory"),
    capacity_mah: Optional[float] = typer.Option(
        None, "--capacity-mah", help=CAPACITY_HELP
    ),
    capacity_table: Optional[Path] = typer.Option(
        None, help="JSON file mapping device models to capacities in mAh"
    ),
    model: Optional[str] = typer.Option(None, help="Device model to look up"),
    calibrate: bool = typer.Option(
        False, "--calibrate", help="Estimate capacity from the latest finished session"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show the capacity used for estimates and where it comes from."""
    configure_logging(verbose)
    observer = _find_observer(battery)
    provider = _build_provider(
        capacity_mah, capacity_table, model, observer.path if observer else None
    )
    capacity = provider.capacity()

    summary = Table(box=box.SIMPLE, header_style="bold")
    summary.add_column("Field")
    summary.add_column("Value")
    summary.add_row("Capacity", f"{capacity.milliamp_hours:.0f} mAh")
    summary.add_row("Nominal voltage", f"{capacity.nominal_voltage:.2f} V")
    summary.add_row("Source", provider.source)

    if calibrate:
        resolved = resolve_db_path(db_path)
        db.init_db(resolved)
        session = db.fetch_latest_finished_session(resolved)
        estimate = calibrate_capacity(session) if session else None
        summary.add_row(
            "Calibrated", f"{estimate:.0f} mAh" if estimate is not None else "--"
        )
        if session is not None:
            summary.add_row("From session", _format_timestamp(session.start_ts))
    console.print(summary)


@app.command("clear")
def clear_command(
    db_path: Optional[Path] = typer.Option(None, help=DB_PATH_HELP),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every recorded session."""
    resolved = resolve_db_path(db_path)
    db.init_db(resolved)
    if not yes:
        typer.confirm(f"Delete all sessions in {resolved}?", abort=True)
    removed = db.delete_all_sessions(resolved)
    console.print(f"Deleted {removed} sessions.")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
