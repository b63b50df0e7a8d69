from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional, Protocol, Union

from .buffer import Sample, SampleBuffer
from .config import RESUME_ON_FOREGROUND, MonitorSettings
from .estimator import (
    DEFAULT_CAPACITY_MAH,
    CapacityError,
    CapacityInput,
    PowerEstimator,
)
from .eta import project_eta

log = logging.getLogger(__name__)


class ChargeState(str, Enum):
    CHARGING = "charging"
    FULL = "full"
    UNPLUGGED = "unplugged"
    UNKNOWN = "unknown"


class StoreError(RuntimeError):
    """Raised by a session store when a record could not be written."""


@dataclass
class Session:
    id: str
    start_ts: float
    end_ts: Optional[float] = None
    average_watts: float = 0.0
    peak_watts: float = 0.0
    delta_pct: float = 0.0
    charger_label: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.end_ts is None

    def duration_seconds(self, now: Optional[float] = None) -> float:
        if self.end_ts is not None:
            end = self.end_ts
        else:
            end = now if now is not None else time.time()
        return max(0.0, end - self.start_ts)


@dataclass(frozen=True)
class MetricsSnapshot:
    current_watts: float = 0.0
    peak_watts: float = 0.0
    average_watts: float = 0.0
    session_duration: float = 0.0
    eta_to_full: float = 0.0
    is_charging: bool = False
    battery_level: float = 0.0
    session_id: Optional[str] = None


@dataclass(frozen=True)
class ChargeStateChanged:
    ts: float
    state: ChargeState
    level: float


@dataclass(frozen=True)
class Tick:
    ts: float
    level: float
    session_id: str


@dataclass(frozen=True)
class EnteredBackground:
    ts: float


@dataclass(frozen=True)
class EnteredForeground:
    ts: float


@dataclass(frozen=True)
class StartRequested:
    ts: float


@dataclass(frozen=True)
class StopRequested:
    ts: float


Event = Union[
    ChargeStateChanged,
    Tick,
    EnteredBackground,
    EnteredForeground,
    StartRequested,
    StopRequested,
]


@dataclass(frozen=True)
class StartTimer:
    session_id: str
    interval: float


@dataclass(frozen=True)
class CancelTimer:
    pass


@dataclass(frozen=True)
class PersistSession:
    session: Session


@dataclass(frozen=True)
class PublishMetrics:
    snapshot: MetricsSnapshot


Effect = Union[StartTimer, CancelTimer, PersistSession, PublishMetrics]


@dataclass(frozen=True)
class DeviceStatus:
    level: float = 0.0
    charge_state: ChargeState = ChargeState.UNKNOWN
    foreground: bool = True


@dataclass(frozen=True)
class Idle:
    pass


@dataclass
class Charging:
    session: Session
    buffer: SampleBuffer
    estimator: PowerEstimator
    first_level: Optional[float] = None
    watts_total: float = 0.0
    watts_count: int = 0
    eta: float = 0.0
    sampling: bool = True

    @property
    def average_watts(self) -> float:
        return self.watts_total / self.watts_count if self.watts_count else 0.0


@dataclass(frozen=True)
class MonitorState:
    device: DeviceStatus = field(default_factory=DeviceStatus)
    phase: Union[Idle, Charging] = field(default_factory=Idle)


def _new_session_id() -> str:
    return uuid.uuid4().hex


def build_snapshot(state: MonitorState, now: float) -> MetricsSnapshot:
    device = state.device
    is_charging = device.charge_state is ChargeState.CHARGING
    phase = state.phase
    if not isinstance(phase, Charging):
        return MetricsSnapshot(is_charging=is_charging, battery_level=device.level)
    return MetricsSnapshot(
        current_watts=phase.estimator.value or 0.0,
        peak_watts=phase.session.peak_watts,
        average_watts=phase.average_watts,
        session_duration=phase.session.duration_seconds(now),
        eta_to_full=phase.eta,
        is_charging=is_charging,
        battery_level=device.level,
        session_id=phase.session.id,
    )


def _publish(state: MonitorState, now: float) -> PublishMetrics:
    return PublishMetrics(build_snapshot(state, now))


def _start(
    state: MonitorState,
    now: float,
    settings: MonitorSettings,
    new_id: Callable[[], str],
) -> tuple[MonitorState, list[Effect]]:
    if isinstance(state.phase, Charging):
        return state, []
    if state.device.charge_state is not ChargeState.CHARGING:
        return state, []
    if not state.device.foreground:
        return state, []

    session = Session(id=new_id(), start_ts=now)
    phase = Charging(
        session=session,
        buffer=SampleBuffer(settings.window_seconds),
        estimator=PowerEstimator(settings.ema_alpha),
    )
    log.info("Started charging session %s", session.id)
    state = replace(state, phase=phase)
    return state, [
        StartTimer(session.id, settings.sample_interval),
        _publish(state, now),
    ]


def _stop(state: MonitorState, now: float) -> tuple[MonitorState, list[Effect]]:
    phase = state.phase
    if not isinstance(phase, Charging):
        return state, []

    session = phase.session
    current_level = state.device.level
    first_level = phase.first_level if phase.first_level is not None else current_level
    session.end_ts = now
    session.average_watts = phase.average_watts
    session.delta_pct = (current_level - first_level) * 100
    log.info(
        "Finished charging session %s: avg=%.2fW peak=%.2fW delta=%.1f%%",
        session.id,
        session.average_watts,
        session.peak_watts,
        session.delta_pct,
    )
    state = replace(state, phase=Idle())
    return state, [CancelTimer(), PersistSession(session), _publish(state, now)]


def _tick(
    state: MonitorState, event: Tick, capacity: Optional[CapacityInput]
) -> tuple[MonitorState, list[Effect]]:
    phase = state.phase
    if not isinstance(phase, Charging) or not phase.sampling:
        return state, []
    if phase.session.id != event.session_id:
        log.debug("Ignoring tick for finished session %s", event.session_id)
        return state, []
    if capacity is None:
        raise ValueError("capacity is required to process a tick")

    state = replace(state, device=replace(state.device, level=event.level))
    newest = phase.buffer.newest()
    ts = max(event.ts, newest.ts) if newest is not None else event.ts
    phase.buffer.append(Sample(ts=ts, level=event.level))
    if phase.first_level is None:
        phase.first_level = event.level

    watts = phase.estimator.update(phase.buffer, capacity, phase.session)
    if watts is not None and event.level > 0:
        phase.watts_total += watts
        phase.watts_count += 1
    phase.session.average_watts = phase.average_watts
    phase.eta = project_eta(event.level, watts, capacity)
    log.debug(
        "Tick level=%.3f samples=%d watts=%s eta=%.0fs",
        event.level,
        len(phase.buffer),
        f"{watts:.2f}" if watts is not None else "--",
        phase.eta,
    )
    return state, [_publish(state, event.ts)]


def _background(
    state: MonitorState, event: EnteredBackground, settings: MonitorSettings
) -> tuple[MonitorState, list[Effect]]:
    state = replace(state, device=replace(state.device, foreground=False))
    phase = state.phase
    if not isinstance(phase, Charging):
        return state, []
    if settings.background_policy == RESUME_ON_FOREGROUND:
        phase.sampling = False
        log.info("Paused charging session %s", phase.session.id)
        return state, [CancelTimer(), _publish(state, event.ts)]
    return _stop(state, event.ts)


def _foreground(
    state: MonitorState,
    event: EnteredForeground,
    settings: MonitorSettings,
    new_id: Callable[[], str],
) -> tuple[MonitorState, list[Effect]]:
    state = replace(state, device=replace(state.device, foreground=True))
    phase = state.phase
    if isinstance(phase, Charging) and not phase.sampling:
        if state.device.charge_state is not ChargeState.CHARGING:
            return _stop(state, event.ts)
        phase.sampling = True
        log.info("Resumed charging session %s", phase.session.id)
        return state, [
            StartTimer(phase.session.id, settings.sample_interval),
            _publish(state, event.ts),
        ]
    return _start(state, event.ts, settings, new_id)


def transition(
    state: MonitorState,
    event: Event,
    *,
    settings: MonitorSettings,
    capacity: Optional[CapacityInput] = None,
    new_id: Callable[[], str] = _new_session_id,
) -> tuple[MonitorState, list[Effect]]:
    """Apply one event to the monitor state.

    Performs no I/O and touches no timers: everything outside the state
    (timer control, persistence, publication) is returned as effects for
    the caller to carry out. Only the objects owned by ``state`` are
    mutated. ``capacity`` is required for ``Tick`` events.
    """
    if isinstance(event, Tick):
        return _tick(state, event, capacity)

    if isinstance(event, ChargeStateChanged):
        state = replace(
            state,
            device=replace(state.device, level=event.level, charge_state=event.state),
        )
        if event.state is ChargeState.CHARGING:
            state, effects = _start(state, event.ts, settings, new_id)
        else:
            state, effects = _stop(state, event.ts)
    elif isinstance(event, EnteredBackground):
        state, effects = _background(state, event, settings)
    elif isinstance(event, EnteredForeground):
        state, effects = _foreground(state, event, settings, new_id)
    elif isinstance(event, StartRequested):
        return _start(state, event.ts, settings, new_id)
    elif isinstance(event, StopRequested):
        return _stop(state, event.ts)
    else:
        raise TypeError(f"Unsupported event: {event!r}")

    # Device-level notifications always republish so consumers see the new level.
    if not any(isinstance(effect, PublishMetrics) for effect in effects):
        effects.append(_publish(state, event.ts))
    return state, effects


class CapacitySource(Protocol):
    def capacity(self) -> CapacityInput: ...


class SessionStore(Protocol):
    def save_session(self, session: Session) -> None: ...


class Scheduler(Protocol):
    def start(self, session_id: str, interval: float) -> None: ...

    def cancel(self) -> None: ...


@dataclass(frozen=True)
class DispatchResult:
    snapshot: MetricsSnapshot
    error: Optional[StoreError] = None


class SessionController:
    """Owns the active charging session and carries out transition effects.

    Events must be delivered from a single execution context; the
    controller does no locking of its own.
    """

    def __init__(
        self,
        capacity_provider: CapacitySource,
        store: SessionStore,
        scheduler: Scheduler,
        settings: Optional[MonitorSettings] = None,
        *,
        clock: Callable[[], float] = time.time,
        session_id_factory: Callable[[], str] = _new_session_id,
    ) -> None:
        self.capacity_provider = capacity_provider
        self.store = store
        self.scheduler = scheduler
        self.settings = settings or MonitorSettings()
        self._clock = clock
        self._new_id = session_id_factory
        self._state = MonitorState()
        self._listeners: list[Callable[[MetricsSnapshot], None]] = []
        self.snapshot = MetricsSnapshot()

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def current_session(self) -> Optional[Session]:
        phase = self._state.phase
        return phase.session if isinstance(phase, Charging) else None

    @property
    def is_charging(self) -> bool:
        return self._state.device.charge_state is ChargeState.CHARGING

    @property
    def battery_level(self) -> float:
        return self._state.device.level

    def subscribe(self, callback: Callable[[MetricsSnapshot], None]) -> None:
        self._listeners.append(callback)

    def dispatch(self, event: Event) -> DispatchResult:
        capacity = self._capacity() if isinstance(event, Tick) else None
        self._state, effects = transition(
            self._state,
            event,
            settings=self.settings,
            capacity=capacity,
            new_id=self._new_id,
        )
        return self._apply(effects)

    def on_charge_state(
        self, state: ChargeState, level: float, ts: Optional[float] = None
    ) -> DispatchResult:
        return self.dispatch(ChargeStateChanged(self._now(ts), state, level))

    def on_tick(
        self, level: float, session_id: str, ts: Optional[float] = None
    ) -> DispatchResult:
        return self.dispatch(Tick(self._now(ts), level, session_id))

    def enter_background(self, ts: Optional[float] = None) -> DispatchResult:
        return self.dispatch(EnteredBackground(self._now(ts)))

    def enter_foreground(self, ts: Optional[float] = None) -> DispatchResult:
        return self.dispatch(EnteredForeground(self._now(ts)))

    def start_session(self, ts: Optional[float] = None) -> DispatchResult:
        return self.dispatch(StartRequested(self._now(ts)))

    def stop_session(self, ts: Optional[float] = None) -> DispatchResult:
        return self.dispatch(StopRequested(self._now(ts)))

    def set_charger_label(self, label: Optional[str]) -> Optional[StoreError]:
        session = self.current_session
        if session is None:
            return None
        session.charger_label = label
        return self._persist(session)

    def set_notes(self, notes: Optional[str]) -> Optional[StoreError]:
        session = self.current_session
        if session is None:
            return None
        session.notes = notes
        return self._persist(session)

    def _now(self, ts: Optional[float]) -> float:
        return ts if ts is not None else self._clock()

    def _capacity(self) -> CapacityInput:
        try:
            return self.capacity_provider.capacity()
        except CapacityError as exc:
            log.warning(
                "Capacity unavailable (%s); falling back to %.0f mAh",
                exc,
                DEFAULT_CAPACITY_MAH,
            )
            return CapacityInput(DEFAULT_CAPACITY_MAH)

    def _persist(self, session: Session) -> Optional[StoreError]:
        try:
            self.store.save_session(session)
        except StoreError as exc:
            log.warning("Failed to save session %s: %s", session.id, exc)
            return exc
        return None

    def _apply(self, effects: list[Effect]) -> DispatchResult:
        error: Optional[StoreError] = None
        for effect in effects:
            if isinstance(effect, StartTimer):
                self.scheduler.start(effect.session_id, effect.interval)
            elif isinstance(effect, CancelTimer):
                self.scheduler.cancel()
            elif isinstance(effect, PersistSession):
                error = self._persist(effect.session) or error
            elif isinstance(effect, PublishMetrics):
                self.snapshot = effect.snapshot
                for listener in self._listeners:
                    listener(effect.snapshot)
        return DispatchResult(self.snapshot, error)
