from __future__ import annotations

from collections import deque
from typing import Iterable

DEFAULT_WIDTH = 24


def _downsample(values: list[float], target: int) -> list[float]:
    if len(values) <= target:
        return values
    step = len(values) / target
    return [values[int(i * step)] for i in range(target)]


def sparkline(values: Iterable[float], *, width: int = DEFAULT_WIDTH, unit: str = "W") -> str:
    """Render values as a one-line ASCII trace framed by its min and max."""
    points = _downsample(list(values), width)
    if not points:
        return ""
    chars = ".:-=+*#%@"
    min_v = min(points)
    max_v = max(points)
    span = max_v - min_v

    if span < 1e-9:
        line = "=" * len(points)
    else:
        scale = len(chars) - 1

        def to_char(val: float) -> str:
            idx = int((val - min_v) / span * scale)
            return chars[min(idx, scale)]

        line = "".join(to_char(v) for v in points)

    return f"{min_v:.1f}{unit} {line} {max_v:.1f}{unit}"


class WattsHistory:
    """Recent smoothed readings for the live console trace."""

    def __init__(self, maxlen: int = 120) -> None:
        self._values: deque[float] = deque(maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._values)

    def add(self, watts: float) -> None:
        if watts > 0:
            self._values.append(watts)

    def clear(self) -> None:
        self._values.clear()

    def render(self, width: int = DEFAULT_WIDTH) -> str:
        return sparkline(self._values, width=width)
