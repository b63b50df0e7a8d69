"""Battery capacity lookup with a conservative fallback.

Resolution order: an explicit custom capacity, the design capacity
reported by the battery itself, a known-model table, and finally
``DEFAULT_CAPACITY_MAH``. Missing values never stop estimation; invalid
explicit values are rejected with ``CapacityError``.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Optional

from .estimator import (
    DEFAULT_CAPACITY_MAH,
    NOMINAL_VOLTAGE,
    CapacityError,
    CapacityInput,
)
from .session import Session
from .sysfs import read_battery

log = logging.getLogger(__name__)

SOURCE_CUSTOM = "custom"
SOURCE_BATTERY = "battery"
SOURCE_MODEL = "model"
SOURCE_DEFAULT = "default"

# Sessions that moved the level less than this are too short to calibrate from.
MIN_CALIBRATION_DELTA = 0.1


def _validate_mah(value: float, name: str) -> float:
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        raise CapacityError(f"{name} must be a positive finite number, got {value}")
    return value


def load_known_capacities(path: Path) -> dict[str, float]:
    """Read a JSON object mapping model identifiers to capacities in mAh."""
    try:
        raw = json.loads(path.read_text())
    except FileNotFoundError:
        log.warning("Capacity table %s not found", path)
        return {}
    except json.JSONDecodeError as exc:
        log.warning("Failed to parse capacity table %s: %s", path, exc)
        return {}
    if not isinstance(raw, dict):
        log.warning("Capacity table %s is not a JSON object", path)
        return {}

    table: dict[str, float] = {}
    for model, value in raw.items():
        try:
            table[str(model)] = _validate_mah(value, f"capacity for {model}")
        except (TypeError, ValueError) as exc:
            log.debug("Skipping capacity entry %s: %s", model, exc)
    return table


class CapacityProvider:
    def __init__(
        self,
        custom_mah: Optional[float] = None,
        *,
        known_capacities: Optional[dict[str, float]] = None,
        model: Optional[str] = None,
        battery_path: Optional[Path] = None,
        nominal_voltage: float = NOMINAL_VOLTAGE,
    ) -> None:
        self.custom_mah: Optional[float] = None
        self.known_capacities = dict(known_capacities or {})
        self.model = model
        self.battery_path = battery_path
        self.nominal_voltage = nominal_voltage
        self.source = SOURCE_DEFAULT
        self._warned_default = False
        self.set_custom_capacity(custom_mah)

    def set_custom_capacity(self, capacity_mah: Optional[float]) -> None:
        if capacity_mah is None:
            self.custom_mah = None
            return
        self.custom_mah = _validate_mah(capacity_mah, "custom capacity")

    def _battery_capacity(self) -> Optional[CapacityInput]:
        if self.battery_path is None:
            return None
        try:
            reading = read_battery(self.battery_path)
        except OSError as exc:
            log.debug("Could not read %s: %s", self.battery_path, exc)
            return None
        if not reading.design_capacity_mah:
            return None
        # mAh read from sysfs is only meaningful at the pack's own voltage.
        voltage = reading.voltage_v or self.nominal_voltage
        try:
            return CapacityInput(reading.design_capacity_mah, voltage)
        except CapacityError as exc:
            log.debug("Ignoring design capacity of %s: %s", self.battery_path, exc)
            return None

    def capacity(self) -> CapacityInput:
        """Capacity for the current device; re-resolved on every call."""
        if self.custom_mah is not None:
            self.source = SOURCE_CUSTOM
            return CapacityInput(self.custom_mah, self.nominal_voltage)

        battery = self._battery_capacity()
        if battery is not None:
            self.source = SOURCE_BATTERY
            return battery

        if self.model is not None and self.model in self.known_capacities:
            self.source = SOURCE_MODEL
            return CapacityInput(self.known_capacities[self.model], self.nominal_voltage)

        if not self._warned_default:
            log.warning(
                "No capacity known for this device; using %.0f mAh",
                DEFAULT_CAPACITY_MAH,
            )
            self._warned_default = True
        self.source = SOURCE_DEFAULT
        return CapacityInput(DEFAULT_CAPACITY_MAH, self.nominal_voltage)


def calibrate_capacity(
    session: Session, nominal_voltage: float = NOMINAL_VOLTAGE
) -> Optional[float]:
    """Estimate battery capacity in mAh from a finished charging session."""
    if session.end_ts is None or session.average_watts <= 0:
        return None
    hours = (session.end_ts - session.start_ts) / 3600
    energy_wh = session.average_watts * hours
    delta = abs(session.delta_pct) / 100
    if delta <= MIN_CALIBRATION_DELTA:
        return None
    # Wh / V gives Ah.
    return (energy_wh / nominal_voltage) / delta * 1000
