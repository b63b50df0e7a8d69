from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .buffer import Sample, SampleBuffer

if TYPE_CHECKING:
    from .session import Session

NOMINAL_VOLTAGE = 3.82
DEFAULT_EMA_ALPHA = 0.1
# Used when no device-specific capacity is known.
DEFAULT_CAPACITY_MAH = 3000.0


class CapacityError(ValueError):
    """Raised when a capacity value cannot be used for estimation."""


@dataclass(frozen=True)
class CapacityInput:
    milliamp_hours: float
    nominal_voltage: float = NOMINAL_VOLTAGE

    def __post_init__(self) -> None:
        if not math.isfinite(self.milliamp_hours) or self.milliamp_hours <= 0:
            raise CapacityError("milliamp_hours must be a positive finite number")
        if not math.isfinite(self.nominal_voltage) or self.nominal_voltage <= 0:
            raise CapacityError("nominal_voltage must be a positive finite number")


def instant_watts(
    oldest: Sample, newest: Sample, capacity: CapacityInput
) -> Optional[float]:
    """Charging power implied by the level change between two samples.

    Returns None unless both the elapsed time and the level change are
    positive; flat or falling levels are not charging evidence.
    """
    delta_percent = (newest.level - oldest.level) * 100
    delta_hours = (newest.ts - oldest.ts) / 3600
    if delta_hours <= 0 or delta_percent <= 0:
        return None
    current_ma = capacity.milliamp_hours * (delta_percent / 100) / delta_hours
    return (current_ma / 1000) * capacity.nominal_voltage


class PowerEstimator:
    """Exponentially smoothed charging power over a sample window."""

    def __init__(self, alpha: float = DEFAULT_EMA_ALPHA) -> None:
        if not 0 < alpha <= 1:
            raise ValueError("alpha must be in (0, 1]")
        self.alpha = alpha
        self.value: Optional[float] = None

    def reset(self) -> None:
        self.value = None

    def update(
        self,
        buffer: SampleBuffer,
        capacity: CapacityInput,
        session: Optional[Session] = None,
    ) -> Optional[float]:
        oldest, newest = buffer.oldest(), buffer.newest()
        if len(buffer) >= 2 and oldest is not None and newest is not None:
            instant = instant_watts(oldest, newest, capacity)
            if instant is not None:
                if self.value is None:
                    self.value = instant
                else:
                    self.value = self.alpha * instant + (1 - self.alpha) * self.value

        if session is not None and self.value is not None:
            session.peak_watts = max(session.peak_watts, self.value)
        return self.value
