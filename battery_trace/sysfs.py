from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .session import ChargeState

log = logging.getLogger(__name__)

SYSFS_ROOT = Path("/sys/class/power_supply")

_STATUS_MAP = {
    "charging": ChargeState.CHARGING,
    "full": ChargeState.FULL,
    "discharging": ChargeState.UNPLUGGED,
}


@dataclass
class BatteryReading:
    path: Path
    level: Optional[float]
    charge_state: ChargeState
    design_capacity_mah: Optional[float]
    voltage_v: Optional[float]


def _parse_uevent(path: Path) -> dict[str, str]:
    try:
        lines = (path / "uevent").read_text().splitlines()
    except FileNotFoundError:
        return {}
    data: dict[str, str] = {}
    for line in lines:
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key] = value
    return data


def _read_float(path: Path) -> Optional[float]:
    try:
        raw = path.read_text().strip()
    except FileNotFoundError:
        return None
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        log.debug("Non-numeric value in %s: %s", path, raw)
        return None


def _read_value(path: Path, uevent: dict[str, str], name: str) -> Optional[float]:
    """Look up ``name`` in uevent first, then in its own attribute file."""
    raw = uevent.get(f"POWER_SUPPLY_{name.upper()}")
    if raw is not None:
        try:
            return float(raw)
        except ValueError:
            log.debug("Non-numeric value for %s in uevent: %s", name, raw)
            return None
    return _read_float(path / name)


def _read_status(path: Path, uevent: dict[str, str]) -> Optional[str]:
    raw = uevent.get("POWER_SUPPLY_STATUS")
    if raw is None:
        try:
            raw = (path / "status").read_text()
        except FileNotFoundError:
            return None
    return raw.strip() or None


def parse_charge_state(status: Optional[str]) -> ChargeState:
    if status is None:
        return ChargeState.UNKNOWN
    return _STATUS_MAP.get(status.strip().lower(), ChargeState.UNKNOWN)


def _ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if numerator is None or not denominator:
        return None
    return numerator / denominator


def _read_level(path: Path, uevent: dict[str, str]) -> Optional[float]:
    capacity_pct = _read_value(path, uevent, "capacity")
    if capacity_pct is not None:
        level: Optional[float] = capacity_pct / 100.0
    else:
        level = _ratio(
            _read_value(path, uevent, "energy_now"),
            _read_value(path, uevent, "energy_full"),
        )
        if level is None:
            level = _ratio(
                _read_value(path, uevent, "charge_now"),
                _read_value(path, uevent, "charge_full"),
            )
    if level is None:
        return None
    return min(1.0, max(0.0, level))


def _read_design_voltage(path: Path, uevent: dict[str, str]) -> Optional[float]:
    for name in ("voltage_min_design", "voltage_max_design", "voltage_now"):
        value = _read_value(path, uevent, name)
        if value:
            # microvolts
            return value / 1_000_000.0
    return None


def _read_design_capacity_mah(
    path: Path, uevent: dict[str, str], voltage_v: Optional[float]
) -> Optional[float]:
    charge_design = _read_value(path, uevent, "charge_full_design")
    if charge_design:
        # microamp-hours
        return charge_design / 1000.0
    energy_design = _read_value(path, uevent, "energy_full_design")
    if energy_design and voltage_v:
        # microwatt-hours over volts gives microamp-hours
        return energy_design / voltage_v / 1000.0
    return None


def find_battery_paths(sysfs_root: Path = SYSFS_ROOT) -> Iterable[Path]:
    for candidate in sorted(sysfs_root.iterdir()):
        if candidate.name.startswith("BAT"):
            type_file = candidate / "type"
            try:
                if type_file.read_text().strip().lower() == "battery":
                    yield candidate
            except FileNotFoundError:
                continue


def read_battery(path: Path) -> BatteryReading:
    uevent = _parse_uevent(path)
    voltage_v = _read_design_voltage(path, uevent)
    return BatteryReading(
        path=path,
        level=_read_level(path, uevent),
        charge_state=parse_charge_state(_read_status(path, uevent)),
        design_capacity_mah=_read_design_capacity_mah(path, uevent, voltage_v),
        voltage_v=voltage_v,
    )


class SysfsBatteryObserver:
    """Battery observer backed by a sysfs power_supply directory."""

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def discover(cls, sysfs_root: Path = SYSFS_ROOT) -> Optional[SysfsBatteryObserver]:
        for path in find_battery_paths(sysfs_root):
            return cls(path)
        return None

    def read(self) -> BatteryReading:
        return read_battery(self.path)
