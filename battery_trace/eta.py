from __future__ import annotations

import math
from typing import Optional

from .estimator import CapacityInput


def project_eta(
    level: float, smoothed_watts: Optional[float], capacity: CapacityInput
) -> float:
    """Seconds until the battery reaches 100% at the smoothed charging rate."""
    if smoothed_watts is None or smoothed_watts <= 0 or level >= 1.0:
        return 0.0
    remaining_percent = (1 - level) * 100
    remaining_mah = capacity.milliamp_hours * (remaining_percent / 100)
    current_ma = (smoothed_watts / capacity.nominal_voltage) * 1000
    return (remaining_mah / current_ma) * 3600


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None or seconds <= 0 or math.isinf(seconds) or math.isnan(seconds):
        return "--"
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"{minutes}m{int(seconds % 60):02d}s"
    hrs, mins = divmod(minutes, 60)
    return f"{hrs}h{mins:02d}m"
