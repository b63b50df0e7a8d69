from pathlib import Path

import pytest

from battery_trace.estimator import CapacityInput
from battery_trace.monitor import EventQueue, Ticker, run_monitor
from battery_trace.session import (
    ChargeState,
    EnteredBackground,
    EnteredForeground,
    SessionController,
    StopRequested,
)
from battery_trace.sysfs import BatteryReading


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class ScriptedObserver:
    """Charges at 0.1% per second until ``unplug_at``."""

    def __init__(self, clock: FakeClock, unplug_at: float = 60.0) -> None:
        self.clock = clock
        self.unplug_at = unplug_at

    def read(self) -> BatteryReading:
        now = self.clock()
        state = ChargeState.CHARGING if now < self.unplug_at else ChargeState.UNPLUGGED
        return BatteryReading(
            path=Path("BAT0"),
            level=0.5 + 0.001 * min(now, self.unplug_at),
            charge_state=state,
            design_capacity_mah=None,
            voltage_v=None,
        )


class MemoryStore:
    def __init__(self) -> None:
        self.saved = []

    def save_session(self, session) -> None:
        self.saved.append(session)


class FixedCapacity:
    def capacity(self):
        return CapacityInput(3000.0)


def _setup(clock):
    ticker = Ticker()
    store = MemoryStore()
    controller = SessionController(FixedCapacity(), store, ticker, clock=clock)
    return controller, ticker, store


def test_ticker_fires_on_cadence_and_never_after_cancel():
    clock = FakeClock()
    ticker = Ticker()
    ticker.bind_clock(clock)

    ticker.start("s1", 5.0)
    assert not ticker.due(4.9)
    assert ticker.due(5.0)
    ticker.advance(5.0)
    assert ticker.seconds_until_due(5.0) == 5.0

    ticker.advance(30.0)  # missed ticks are skipped
    assert ticker.seconds_until_due(30.0) == 5.0

    ticker.cancel()
    assert not ticker.active
    assert not ticker.due(1000.0)
    assert ticker.seconds_until_due(1000.0) is None


def test_event_queue_is_fifo():
    queue = EventQueue()
    queue.post(StopRequested(1.0))
    queue.post(StopRequested(2.0))

    assert [event.ts for event in queue.drain()] == [1.0, 2.0]
    assert len(queue) == 0


def test_run_monitor_records_a_full_session():
    clock = FakeClock()
    controller, ticker, store = _setup(clock)
    snapshots = []
    controller.subscribe(snapshots.append)

    run_monitor(
        controller,
        ScriptedObserver(clock, unplug_at=60.0),
        ticker,
        clock=clock,
        sleep=clock.sleep,
        iterations=70,
    )

    [session] = store.saved
    # 0.1%/s of 3000 mAh is 10.8 A at 3.82 V
    expected_watts = 10.8 * 3.82
    assert session.start_ts == 0.0
    assert session.end_ts == pytest.approx(60.0)
    assert session.average_watts == pytest.approx(expected_watts)
    assert session.peak_watts == pytest.approx(expected_watts)
    assert session.delta_pct == pytest.approx(5.5)
    tick_times = [s.session_duration for s in snapshots if s.current_watts > 0]
    assert tick_times[0] == pytest.approx(10.0)
    assert not ticker.active


def test_queued_background_is_handled_before_tick_and_suspends():
    clock = FakeClock()
    controller, ticker, store = _setup(clock)
    observer = ScriptedObserver(clock, unplug_at=1000.0)
    queue = EventQueue()
    run_monitor(controller, observer, ticker, queue, clock=clock, sleep=clock.sleep, iterations=1)
    assert controller.current_session is not None

    suspended = []
    clock.now = 5.0
    queue.post(EnteredBackground(5.0))
    queue.suspend_requested = True
    run_monitor(
        controller,
        observer,
        ticker,
        queue,
        clock=clock,
        sleep=clock.sleep,
        iterations=1,
        suspend=lambda: suspended.append(clock()),
    )

    assert suspended == [5.0]
    assert controller.current_session is None
    assert [s.end_ts for s in store.saved] == [5.0]


class SuspendingObserver:
    """Charges until the process is suspended at ``suspend_at``."""

    def __init__(self, clock: FakeClock, queue: EventQueue, suspend_at: float) -> None:
        self.clock = clock
        self.queue = queue
        self.suspend_at = suspend_at
        self.state = ChargeState.CHARGING
        self.suspended = False

    def read(self) -> BatteryReading:
        if not self.suspended and self.clock() >= self.suspend_at:
            self.suspended = True
            self.queue.post(EnteredBackground(self.clock()))
            self.queue.suspend_requested = True
        return BatteryReading(
            path=Path("BAT0"),
            level=0.5,
            charge_state=self.state,
            design_capacity_mah=None,
            voltage_v=None,
        )


def test_unplugged_while_suspended_does_not_open_a_session_on_resume():
    clock = FakeClock()
    controller, ticker, store = _setup(clock)
    queue = EventQueue()
    observer = SuspendingObserver(clock, queue, suspend_at=3.0)

    def suspend() -> None:
        clock.now = 600.0
        observer.state = ChargeState.UNPLUGGED
        queue.post(EnteredForeground(clock()))

    run_monitor(
        controller,
        observer,
        ticker,
        queue,
        clock=clock,
        sleep=clock.sleep,
        iterations=8,
        suspend=suspend,
    )

    assert [s.end_ts for s in store.saved] == [3.0]
    assert controller.current_session is None
    assert not ticker.active
