"""Matplotlib helpers for waveform ramps and the speed-check chart.

Functions draw onto a caller-supplied ``Axes`` and return it; figure creation
and backend choice stay with the caller (GUI panel or script).
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
from matplotlib.patches import PathPatch
from matplotlib.path import Path

from valve_speed_analyzer.models.results import BezierSegment, DualSlopeResult, RegressionResult, VoltagePoint
from valve_speed_analyzer.models.waveform import Waveform


def plot_waveform_ramps(ax, waveform: Waveform, result: Optional[DualSlopeResult] = None):
    """Position vs. time with the detected (or manual) ramps highlighted."""
    t = waveform.t
    x = waveform.position
    ax.plot(t, x, color="0.4", linewidth=1.0, label="position")

    if result is not None:
        for seg, color, label in (
            (result.ramp_up, "tab:green", "ramp up"),
            (result.ramp_down, "tab:red", "ramp down"),
        ):
            s, e = seg.start_index, seg.end_index
            ax.plot(t[s : e + 1], x[s : e + 1], color=color, linewidth=2.0, label=f"{label} {seg.velocity:.3g} mm/s")
            ax.axvline(t[s], color=color, linestyle="dotted", linewidth=0.8)
            ax.axvline(t[e], color=color, linestyle="dotted", linewidth=0.8)
        ax.set_title(f"{waveform.file_name} ({result.detection_method.value})")
    else:
        ax.set_title(waveform.file_name)

    ax.set_xlabel("t (s)")
    ax.set_ylabel("position (mm)")
    ax.grid(True)
    ax.legend(loc="best")
    return ax


def bezier_path(segments: Sequence[BezierSegment]) -> Path:
    """Single matplotlib ``Path`` of cubic segments (CURVE4) in data space."""
    verts: List[tuple] = []
    codes: List[int] = []
    for i, s in enumerate(segments):
        if i == 0:
            verts.append((s.start.voltage, s.start.velocity))
            codes.append(Path.MOVETO)
        verts.extend([(s.cp1.voltage, s.cp1.velocity), (s.cp2.voltage, s.cp2.velocity), (s.end.voltage, s.end.velocity)])
        codes.extend([Path.CURVE4, Path.CURVE4, Path.CURVE4])
    return Path(verts, codes)


def plot_speed_check(
    ax,
    points: Sequence[VoltagePoint],
    regression: Optional[RegressionResult] = None,
    segments: Optional[Sequence[BezierSegment]] = None,
):
    """Voltage/velocity chart: points, smoothed curve, effective line and tolerance band."""
    if points:
        v = np.array([p.voltage for p in points], dtype=float)
        y = np.array([p.velocity for p in points], dtype=float)
        ax.plot(v, y, "o", color="tab:blue", label="measured")

        if segments:
            ax.add_patch(PathPatch(bezier_path(segments), facecolor="none", edgecolor="tab:blue", linewidth=1.2))
        elif len(points) >= 2:
            order = np.argsort(v)
            ax.plot(v[order], y[order], color="tab:blue", linewidth=1.2)

    if regression is not None:
        vmin, vmax = (-10.0, 10.0)
        if points:
            vmin = min(vmin, min(p.voltage for p in points))
            vmax = max(vmax, max(p.voltage for p in points))
        xs = np.array([vmin, vmax])
        slope = regression.effective_slope
        ax.plot(xs, slope * xs + regression.intercept, color="black", linestyle="--",
                label=f"slope {slope:.3f} mm/s/V")

        mp = regression.machine_params
        for bound, style in ((mp.lower, "dotted"), (mp.middle, "dashdot"), (mp.upper, "dotted")):
            ax.plot(xs, bound * xs, color="tab:orange", linestyle=style, linewidth=0.8)
        verdict = "PASS" if regression.passed else "FAIL"
        ax.set_title(f"Speed check {regression.machine_type}: {verdict}")

    ax.axhline(0.0, color="0.7", linewidth=0.6)
    ax.axvline(0.0, color="0.7", linewidth=0.6)
    ax.set_xlabel("voltage (V)")
    ax.set_ylabel("velocity (mm/s)")
    ax.grid(True)
    ax.legend(loc="best")
    return ax
