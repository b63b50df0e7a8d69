import json
from pathlib import Path

import pytest

from battery_trace.capacity import (
    SOURCE_BATTERY,
    SOURCE_CUSTOM,
    SOURCE_DEFAULT,
    SOURCE_MODEL,
    CapacityProvider,
    calibrate_capacity,
    load_known_capacities,
)
from battery_trace.buffer import Sample
from battery_trace.estimator import (
    DEFAULT_CAPACITY_MAH,
    NOMINAL_VOLTAGE,
    CapacityError,
    instant_watts,
)
from battery_trace.session import Session


def _battery(tmp_path: Path, charge_full_design: str) -> Path:
    bat = tmp_path / "BAT0"
    bat.mkdir()
    (bat / "charge_full_design").write_text(charge_full_design)
    return bat


def test_custom_capacity_wins(tmp_path: Path):
    provider = CapacityProvider(
        4200, battery_path=_battery(tmp_path, "5000000\n"), known_capacities={"x": 1}, model="x"
    )

    assert provider.capacity().milliamp_hours == 4200
    assert provider.source == SOURCE_CUSTOM


def test_battery_design_capacity_before_model_table(tmp_path: Path):
    provider = CapacityProvider(
        battery_path=_battery(tmp_path, "5000000\n"),
        known_capacities={"iPhone14,2": 3095.0},
        model="iPhone14,2",
    )

    assert provider.capacity().milliamp_hours == 5000.0
    assert provider.source == SOURCE_BATTERY


def test_energy_rated_battery_keeps_its_design_voltage(tmp_path: Path):
    bat = tmp_path / "BAT0"
    bat.mkdir()
    (bat / "energy_full_design").write_text("57000000\n")  # µWh
    (bat / "voltage_min_design").write_text("11400000\n")  # µV
    provider = CapacityProvider(battery_path=bat)

    capacity = provider.capacity()

    assert provider.source == SOURCE_BATTERY
    assert capacity.milliamp_hours == pytest.approx(5000.0)
    assert capacity.nominal_voltage == pytest.approx(11.4)
    # 1% of a 57 Wh pack per minute
    assert instant_watts(Sample(0, 0.50), Sample(60, 0.51), capacity) == pytest.approx(34.2)


def test_battery_without_design_voltage_uses_nominal(tmp_path: Path):
    provider = CapacityProvider(battery_path=_battery(tmp_path, "4000000\n"))

    assert provider.capacity().nominal_voltage == NOMINAL_VOLTAGE


def test_model_table_then_default(tmp_path: Path):
    provider = CapacityProvider(
        battery_path=tmp_path / "missing",
        known_capacities={"iPhone14,2": 3095.0},
        model="iPhone14,2",
    )
    assert provider.capacity().milliamp_hours == 3095.0
    assert provider.source == SOURCE_MODEL

    provider.model = "unknown"
    assert provider.capacity().milliamp_hours == DEFAULT_CAPACITY_MAH
    assert provider.source == SOURCE_DEFAULT


def test_custom_capacity_can_be_cleared():
    provider = CapacityProvider(4200)

    provider.set_custom_capacity(None)

    assert provider.capacity().milliamp_hours == DEFAULT_CAPACITY_MAH


@pytest.mark.parametrize("value", [0, -100, float("nan"), float("inf")])
def test_invalid_custom_capacity_is_rejected(value):
    with pytest.raises(CapacityError):
        CapacityProvider(value)


def test_load_known_capacities_skips_bad_entries(tmp_path: Path):
    path = tmp_path / "capacities.json"
    path.write_text(
        json.dumps({"iPhone15,4": 3349, "broken": -5, "text": "n/a", "nan": float("nan")})
    )

    assert load_known_capacities(path) == {"iPhone15,4": 3349.0}
    assert load_known_capacities(tmp_path / "missing.json") == {}


def test_load_known_capacities_rejects_non_object(tmp_path: Path):
    path = tmp_path / "capacities.json"
    path.write_text("[1, 2]")

    assert load_known_capacities(path) == {}


def test_calibrate_capacity_from_session():
    # 10 W for one hour moving the level 50% -> 10 Wh / 3.82 V / 0.5
    session = Session(
        id="a", start_ts=0.0, end_ts=3600.0, average_watts=10.0, delta_pct=50.0
    )

    assert calibrate_capacity(session) == pytest.approx(5235.6, abs=0.1)


def test_calibrate_capacity_needs_finished_meaningful_session():
    open_session = Session(id="a", start_ts=0.0, average_watts=10.0, delta_pct=50.0)
    short = Session(id="b", start_ts=0.0, end_ts=600.0, average_watts=10.0, delta_pct=5.0)
    no_power = Session(id="c", start_ts=0.0, end_ts=600.0, delta_pct=50.0)

    assert calibrate_capacity(open_session) is None
    assert calibrate_capacity(short) is None
    assert calibrate_capacity(no_power) is None
