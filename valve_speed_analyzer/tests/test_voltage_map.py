from __future__ import annotations

import numpy as np
import pytest

from valve_speed_analyzer.analysis.voltage_map import (
    map_voltage_points,
    voltage_statistics,
    voltage_table,
    voltage_table_csv,
)
from valve_speed_analyzer.models.results import DetectionMethod, DualSlopeResult, RampSegment


def _seg(velocity: float, start: int = 0, end: int = 10) -> RampSegment:
    return RampSegment(
        start_index=start,
        end_index=end,
        velocity=velocity,
        duration=0.1 * (end - start),
        start_time=0.1 * start,
        end_time=0.1 * end,
        start_position=0.0,
        end_position=velocity * 0.1 * (end - start),
        r_squared=1.0,
    )


def _result(name: str, up: float, down: float) -> DualSlopeResult:
    return DualSlopeResult(name, _seg(up), _seg(down, 20, 30), DetectionMethod.AUTOMATIC)


@pytest.fixture
def results():
    return {
        "a.csv": _result("a.csv", 2.0, 1.9),
        "b.csv": _result("b.csv", 7.1, 6.8),
        "c.csv": _result("c.csv", 4.0, 3.7),
    }


def test_two_points_per_approved_file_sorted_descending(results) -> None:
    pts = map_voltage_points(results, {"a.csv": 1.0, "b.csv": 4.0})
    assert len(pts) == 4
    volts = [p.voltage for p in pts]
    assert volts == [4.0, 1.0, -1.0, -4.0]
    assert all(a > b for a, b in zip(volts, volts[1:]))


def test_sign_convention(results) -> None:
    pts = map_voltage_points(results, {"b.csv": 4.0})
    up = next(p for p in pts if p.ramp == "up")
    down = next(p for p in pts if p.ramp == "down")
    assert (up.voltage, up.velocity) == (4.0, 7.1)
    assert (down.voltage, down.velocity) == (-4.0, -6.8)
    assert up.file_name == down.file_name == "b.csv"


def test_unbound_files_are_excluded(results) -> None:
    pts = map_voltage_points(results, {"c.csv": 2.0})
    assert {p.file_name for p in pts} == {"c.csv"}
    assert map_voltage_points(results, {}) == []


def test_mapping_is_idempotent(results) -> None:
    bindings = {"a.csv": 0.5, "b.csv": 10.0, "c.csv": 3.0}
    assert map_voltage_points(results, bindings) == map_voltage_points(results, bindings)


def test_missing_result_for_binding_raises(results) -> None:
    with pytest.raises(KeyError):
        map_voltage_points(results, {"zzz.csv": 1.0})


def test_voltage_table_and_csv(results) -> None:
    pts = map_voltage_points(results, {"a.csv": 1.0})
    df = voltage_table(pts, results)
    assert list(df["voltage"]) == [1.0, -1.0]
    np.testing.assert_allclose(df["duration"].to_numpy(), [1.0, 1.0])

    csv = voltage_table_csv(pts, results)
    lines = csv.strip().splitlines()
    assert lines[0] == "Voltage (V),File Name,Ramp,Velocity (mm/s),Duration (s),Start Time (s),End Time (s)"
    assert lines[1].startswith("1.0,a.csv,up,2.000000,1.000")
    assert voltage_table_csv([]) == ""


def test_voltage_table_without_results_has_nan_timing(results) -> None:
    df = voltage_table(map_voltage_points(results, {"a.csv": 1.0}))
    assert df["duration"].isna().all()


def test_voltage_statistics(results) -> None:
    pts = map_voltage_points(results, {"a.csv": 1.0, "b.csv": 4.0})
    stats = voltage_statistics(pts)
    assert stats["total_points"] == 4
    assert stats["total_files"] == 2
    assert stats["voltage_min"] == -4.0
    assert stats["velocity_max"] == pytest.approx(7.1)
    assert stats["velocity_per_volt"] == pytest.approx((7.1 + 6.8) / 8.0)
    assert voltage_statistics([]) is None
