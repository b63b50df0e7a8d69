from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

DEFAULT_WINDOW_SECONDS = 90.0


@dataclass(frozen=True)
class Sample:
    ts: float
    level: float


class SampleBuffer:
    """Time-ordered level samples, pruned by age relative to the newest one."""

    def __init__(self, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be greater than zero")
        self.window_seconds = window_seconds
        self._samples: list[Sample] = []

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)

    def append(self, sample: Sample) -> None:
        newest = self.newest()
        if newest is not None and sample.ts < newest.ts:
            raise ValueError(
                f"Sample at {sample.ts} is older than the newest sample at {newest.ts}"
            )
        self._samples.append(sample)
        self.prune(sample.ts)

    def prune(self, now: float) -> None:
        if len(self._samples) <= 1:
            return
        # The newest sample always survives, even when it is stale.
        kept = [s for s in self._samples[:-1] if now - s.ts <= self.window_seconds]
        kept.append(self._samples[-1])
        self._samples = kept

    def oldest(self) -> Optional[Sample]:
        return self._samples[0] if self._samples else None

    def newest(self) -> Optional[Sample]:
        return self._samples[-1] if self._samples else None

    def clear(self) -> None:
        self._samples.clear()
