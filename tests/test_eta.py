import pytest

from battery_trace.estimator import CapacityInput
from battery_trace.eta import format_duration, project_eta


def test_eta_from_smoothed_watts():
    capacity = CapacityInput(milliamp_hours=3000.0, nominal_voltage=3.82)

    # 300 mAh left at ~2617.8 mA
    assert project_eta(0.90, 10.0, capacity) == pytest.approx(412.6, abs=1.0)


@pytest.mark.parametrize("capacity_mah", [500.0, 3000.0, 12000.0])
@pytest.mark.parametrize(
    "level, watts",
    [(1.0, 10.0), (1.2, 10.0), (0.5, 0.0), (0.5, -3.0), (0.5, None)],
)
def test_degenerate_eta_is_zero(capacity_mah, level, watts):
    assert project_eta(level, watts, CapacityInput(capacity_mah)) == 0.0


def test_format_duration():
    assert format_duration(0) == "--"
    assert format_duration(None) == "--"
    assert format_duration(412.6) == "6m52s"
    assert format_duration(3900) == "1h05m"
