from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from typer.models import OptionInfo

from .buffer import DEFAULT_WINDOW_SECONDS
from .estimator import DEFAULT_EMA_ALPHA

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "battery-trace" / "sessions.db"
DEFAULT_SAMPLE_INTERVAL = 5.0

RESTART_ON_FOREGROUND = "restart"
RESUME_ON_FOREGROUND = "resume"
BACKGROUND_POLICIES = (RESTART_ON_FOREGROUND, RESUME_ON_FOREGROUND)


@dataclass(frozen=True)
class MonitorSettings:
    sample_interval: float = DEFAULT_SAMPLE_INTERVAL
    window_seconds: float = DEFAULT_WINDOW_SECONDS
    ema_alpha: float = DEFAULT_EMA_ALPHA
    background_policy: str = RESTART_ON_FOREGROUND

    def __post_init__(self) -> None:
        if self.sample_interval <= 0:
            raise ValueError("sample_interval must be greater than zero")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be greater than zero")
        if not 0 < self.ema_alpha <= 1:
            raise ValueError("ema_alpha must be in (0, 1]")
        if self.background_policy not in BACKGROUND_POLICIES:
            raise ValueError(
                f"background_policy must be one of {', '.join(BACKGROUND_POLICIES)}"
            )


def _unwrap_option(value):
    # Typer passes OptionInfo when a command is called as a plain function.
    if isinstance(value, OptionInfo):
        return value.default
    return value


def resolve_db_path(db_path: Optional[Path | os.PathLike | str]) -> Path:
    db_path = _unwrap_option(db_path)

    if isinstance(db_path, (str, os.PathLike)):
        db_path = Path(db_path)

    if isinstance(db_path, Path):
        return db_path
    env = os.environ.get("BATTERY_TRACE_DB")
    if env:
        return Path(env).expanduser()
    return DEFAULT_DB_PATH


def resolve_custom_capacity(capacity_mah: Optional[float]) -> Optional[float]:
    capacity_mah = _unwrap_option(capacity_mah)
    if capacity_mah is not None:
        return float(capacity_mah)
    env = os.environ.get("BATTERY_TRACE_CAPACITY_MAH")
    if not env:
        return None
    try:
        return float(env)
    except ValueError:
        raise ValueError(f"BATTERY_TRACE_CAPACITY_MAH is not a number: {env!r}") from None
