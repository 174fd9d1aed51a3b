"""Approved dual-slope results -> signed voltage/velocity points.

Sign convention
---------------
Ramp up pairs with ``+V`` and a positive velocity; ramp down pairs with ``-V``
and a negative velocity. Each approved file therefore contributes exactly two
points, one per branch of the valve characteristic.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from valve_speed_analyzer.models.results import DualSlopeResult, VoltagePoint


CSV_HEADERS = {
    "voltage": "Voltage (V)",
    "file_name": "File Name",
    "ramp": "Ramp",
    "velocity": "Velocity (mm/s)",
    "duration": "Duration (s)",
    "start_time": "Start Time (s)",
    "end_time": "End Time (s)",
}


def map_voltage_points(
    results: Mapping[str, DualSlopeResult],
    bindings: Mapping[str, float],
) -> List[VoltagePoint]:
    """Build the regression input from approved bindings.

    Parameters
    ----------
    results:
        Current dual-slope result per file name.
    bindings:
        ``file_name -> voltage magnitude`` of approved files only (see
        :meth:`AssignmentLedger.bindings`). Files without a binding are
        excluded entirely.

    Returns
    -------
    list of VoltagePoint
        ``2 * len(bindings)`` points sorted by voltage descending.
    """
    points: List[VoltagePoint] = []
    for name, voltage in bindings.items():
        try:
            res = results[name]
        except KeyError:
            raise KeyError(f"No dual-slope result for approved file '{name}'") from None
        v = abs(float(voltage))
        points.append(VoltagePoint(voltage=v, velocity=abs(res.ramp_up.velocity), file_name=name, ramp="up"))
        points.append(VoltagePoint(voltage=-v, velocity=-abs(res.ramp_down.velocity), file_name=name, ramp="down"))

    points.sort(key=lambda p: p.voltage, reverse=True)
    return points


def voltage_table(
    points: Sequence[VoltagePoint],
    results: Optional[Mapping[str, DualSlopeResult]] = None,
) -> pd.DataFrame:
    """Tabulate voltage points, with ramp timing when ``results`` is given."""
    rows: List[Dict[str, Any]] = []
    for p in points:
        row: Dict[str, Any] = {
            "voltage": p.voltage,
            "file_name": p.file_name,
            "ramp": p.ramp,
            "velocity": p.velocity,
            "duration": np.nan,
            "start_time": np.nan,
            "end_time": np.nan,
        }
        res = results.get(p.file_name) if results is not None else None
        if res is not None:
            seg = res.ramp_up if p.ramp == "up" else res.ramp_down
            row.update(duration=seg.duration, start_time=seg.start_time, end_time=seg.end_time)
        rows.append(row)
    return pd.DataFrame(rows, columns=list(CSV_HEADERS))


def voltage_table_csv(
    points: Sequence[VoltagePoint],
    results: Optional[Mapping[str, DualSlopeResult]] = None,
) -> str:
    """CSV export of :func:`voltage_table` (empty string when there are no points)."""
    if not points:
        return ""
    df = voltage_table(points, results)
    out = df.copy()
    out["velocity"] = out["velocity"].map(lambda v: f"{v:.6f}")
    for col in ("duration", "start_time", "end_time"):
        out[col] = out[col].map(lambda v: "" if pd.isna(v) else f"{v:.3f}")
    out = out.rename(columns=CSV_HEADERS)
    return out.to_csv(index=False, lineterminator="\n")


def voltage_statistics(points: Sequence[VoltagePoint]) -> Optional[Dict[str, Any]]:
    """Summary of a point set, or None when empty."""
    if not points:
        return None
    volts = np.array([p.voltage for p in points], dtype=float)
    vel = np.array([p.velocity for p in points], dtype=float)
    v_span = float(volts.max() - volts.min())
    return {
        "total_points": int(len(points)),
        "total_files": len({p.file_name for p in points}),
        "velocity_min": float(vel.min()),
        "velocity_max": float(vel.max()),
        "velocity_mean": float(vel.mean()),
        "voltage_min": float(volts.min()),
        "voltage_max": float(volts.max()),
        "velocity_per_volt": float((vel.max() - vel.min()) / v_span) if v_span > 0 else float("nan"),
    }
