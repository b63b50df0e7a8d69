from __future__ import annotations

import logging
import os
import signal
import time
from collections import deque
from typing import Callable, Iterator, Optional, Protocol

from .session import (
    ChargeState,
    ChargeStateChanged,
    EnteredBackground,
    EnteredForeground,
    Event,
    SessionController,
    Tick,
)
from .sysfs import BatteryReading

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class BatteryObserver(Protocol):
    def read(self) -> BatteryReading: ...


class Ticker:
    """Fixed-cadence timer polled by the monitor loop.

    Once cancelled it never reports due, so no tick can reach a session
    that has already been torn down.
    """

    def __init__(self) -> None:
        self.session_id: Optional[str] = None
        self.interval = 0.0
        self._next_due: Optional[float] = None
        self._clock: Callable[[], float] = time.time

    def bind_clock(self, clock: Callable[[], float]) -> None:
        self._clock = clock

    @property
    def active(self) -> bool:
        return self.session_id is not None

    def start(self, session_id: str, interval: float) -> None:
        self.session_id = session_id
        self.interval = interval
        self._next_due = self._clock() + interval

    def cancel(self) -> None:
        self.session_id = None
        self._next_due = None

    def due(self, now: float) -> bool:
        return self._next_due is not None and now >= self._next_due

    def advance(self, now: float) -> None:
        if self._next_due is None:
            return
        self._next_due += self.interval
        if self._next_due <= now:
            # Missed ticks are dropped rather than replayed.
            self._next_due = now + self.interval

    def seconds_until_due(self, now: float) -> Optional[float]:
        if self._next_due is None:
            return None
        return max(0.0, self._next_due - now)


class EventQueue:
    """FIFO of pending events, drained by the monitor loop only."""

    def __init__(self) -> None:
        self._events: deque[Event] = deque()
        self.suspend_requested = False

    def __len__(self) -> int:
        return len(self._events)

    def post(self, event: Event) -> None:
        self._events.append(event)

    def drain(self) -> Iterator[Event]:
        while self._events:
            yield self._events.popleft()


def install_lifecycle_signals(
    queue: EventQueue, clock: Callable[[], float] = time.time
) -> bool:
    """Map SIGTSTP/SIGCONT to background/foreground events.

    The handlers only enqueue; the loop finalizes state and then stops the
    process itself.
    """
    if not hasattr(signal, "SIGTSTP"):
        return False

    def _on_suspend(signum, frame) -> None:
        queue.post(EnteredBackground(clock()))
        queue.suspend_requested = True

    def _on_resume(signum, frame) -> None:
        queue.post(EnteredForeground(clock()))

    signal.signal(signal.SIGTSTP, _on_suspend)
    signal.signal(signal.SIGCONT, _on_resume)
    return True


def _suspend_process() -> None:
    os.kill(os.getpid(), signal.SIGSTOP)


def run_monitor(
    controller: SessionController,
    observer: BatteryObserver,
    ticker: Ticker,
    queue: Optional[EventQueue] = None,
    *,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    iterations: Optional[int] = None,
    suspend: Callable[[], None] = _suspend_process,
) -> None:
    """Drive the controller from observer readings, queued events and ticks.

    Each pass handles, in order: a charge-state change seen by the
    observer, every queued event, then a due tick. Stop requests are
    therefore always processed before the next tick fires. The observer
    is read again after a suspension, before any queued foreground event.
    """
    queue = queue if queue is not None else EventQueue()
    ticker.bind_clock(clock)
    last_state: Optional[ChargeState] = None
    passes = 0

    while iterations is None or passes < iterations:
        now = clock()
        reading = observer.read()
        level = reading.level if reading.level is not None else controller.battery_level

        if reading.charge_state is not last_state:
            log.debug("Charge state %s -> %s", last_state, reading.charge_state)
            queue.post(ChargeStateChanged(now, reading.charge_state, level))
            last_state = reading.charge_state

        for event in queue.drain():
            controller.dispatch(event)
            if isinstance(event, EnteredBackground) and queue.suspend_requested:
                queue.suspend_requested = False
                suspend()
                # The charger may have changed while stopped; the queued
                # foreground event must see the current state.
                reading = observer.read()
                if reading.level is not None:
                    level = reading.level
                if reading.charge_state is not last_state:
                    log.debug(
                        "Charge state %s -> %s while suspended",
                        last_state,
                        reading.charge_state,
                    )
                    controller.dispatch(
                        ChargeStateChanged(clock(), reading.charge_state, level)
                    )
                    last_state = reading.charge_state

        if ticker.due(now):
            session_id = ticker.session_id
            ticker.advance(now)
            if session_id is not None:
                controller.dispatch(Tick(now, level, session_id))

        passes += 1
        if iterations is not None and passes >= iterations:
            break
        wait = poll_interval
        until_tick = ticker.seconds_until_due(clock())
        if until_tick is not None:
            wait = min(wait, until_tick)
        sleep(wait)
