"""Voltage-to-velocity regression and machine tolerance check.

Fit model
---------
Ordinary least squares ``velocity = slope * voltage + intercept`` over the
voltage points. A :class:`SpeedCheckProfile` can restrict the fit to
``0 <= voltage <= voltage_limit`` and add the ``(0 V, 0 mm/s)`` reference point
(the legacy speed check).

The *effective slope* is the manual slope when one is set, otherwise the
calculated slope. It is the value tested against the machine tolerance band
``[lower, upper]``.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from valve_speed_analyzer.errors import InsufficientData, InvalidSlope
from valve_speed_analyzer.models.catalog import TARGET_SPEEDS, get_machine_params
from valve_speed_analyzer.models.profile import SpeedCheckProfile
from valve_speed_analyzer.models.results import (
    MachineParams,
    PointDeviation,
    RegressionResult,
    ToleranceEvaluation,
    VoltagePoint,
    is_finite_number,
)


def select_fit_points(
    points: Sequence[VoltagePoint],
    profile: SpeedCheckProfile,
) -> List[Tuple[float, float]]:
    """``(voltage, velocity)`` pairs entering the fit under ``profile``."""
    pairs = [(float(p.voltage), float(p.velocity)) for p in points]
    if profile.voltage_limit is not None:
        lim = float(profile.voltage_limit)
        pairs = [(v, y) for v, y in pairs if 0.0 <= v <= lim]
    if profile.include_origin and (0.0, 0.0) not in pairs:
        pairs.insert(0, (0.0, 0.0))
    return pairs


def least_squares_line(x: np.ndarray, y: np.ndarray) -> Tuple[float, float, float]:
    """Return ``(slope, intercept, r_squared)``. Requires two distinct x values."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    x0 = float(np.mean(x))
    y0 = float(np.mean(y))
    dx = x - x0
    dy = y - y0
    sxx = float(np.sum(dx * dx))
    if sxx <= 0.0:
        raise InsufficientData("Regression needs at least two distinct voltages")
    sxy = float(np.sum(dx * dy))
    slope = sxy / sxx
    intercept = y0 - slope * x0

    resid = y - (slope * x + intercept)
    ss_tot = float(np.sum(dy * dy))
    r2 = 1.0 - float(np.sum(resid * resid)) / ss_tot if ss_tot > 0 else 1.0
    return slope, intercept, r2


def evaluate_tolerance(slope: float, params: MachineParams) -> ToleranceEvaluation:
    """Classify a slope against a tolerance band.

    ``good``: within a quarter of the band width of ``middle``.
    ``marginal``: inside ``[lower, upper]`` but further from ``middle``.
    ``out_of_band``: outside ``[lower, upper]``.
    """
    offset = float(slope - params.middle)
    passed = bool(params.lower <= slope <= params.upper)
    if not passed:
        quality = "out_of_band"
    elif abs(offset) <= 0.25 * (params.upper - params.lower):
        quality = "good"
    else:
        quality = "marginal"
    return ToleranceEvaluation(passed=passed, quality=quality, offset_from_middle=offset)


def point_deviations(
    pairs: Sequence[Tuple[float, float]],
    slope: float,
    intercept: float,
    *,
    good_pct: float = 2.0,
    warning_pct: float = 5.0,
) -> Tuple[PointDeviation, ...]:
    """Relative deviation of each measured point from ``slope * V + intercept``.

    Points at 0 V, or where the line predicts 0, have no relative deviation
    and are skipped.
    """
    out: List[PointDeviation] = []
    for v, y in pairs:
        if v == 0.0:
            continue
        expected = slope * v + intercept
        if expected == 0.0:
            continue
        pct = (y / expected - 1.0) * 100.0
        if abs(pct) <= good_pct:
            cat = "good"
        elif abs(pct) <= warning_pct:
            cat = "warning"
        else:
            cat = "error"
        out.append(PointDeviation(voltage=v, velocity=y, expected_velocity=expected, deviation_pct=pct, category=cat))
    return tuple(out)


def fit_speed_check(
    points: Sequence[VoltagePoint],
    machine_type: Optional[str] = None,
    *,
    manual_slope_factor: Optional[float] = None,
    manual_slope: Optional[float] = None,
    profile: Optional[SpeedCheckProfile] = None,
) -> RegressionResult:
    """Fit the voltage/velocity line and evaluate it for a machine type.

    Parameters
    ----------
    points:
        Voltage points (usually from :func:`map_voltage_points`).
    machine_type:
        Key of :data:`MACHINE_TYPES`; defaults to ``profile.machine_type``.
    manual_slope_factor:
        Multiplies the calculated slope. Must lie in ``profile.slope_factor_range``.
    manual_slope:
        Replaces the calculated slope. Mutually exclusive with the factor.
    profile:
        Fit window and thresholds; defaults to :class:`SpeedCheckProfile`.

    Raises
    ------
    InsufficientData
        Fewer than two distinct voltages after filtering.
    InvalidSlope
        Effective slope not positive and finite.
    KeyError
        Unknown machine type.
    ValueError
        Slope factor out of range, or both factor and manual slope given.
    """
    prof = profile or SpeedCheckProfile()
    mtype = machine_type or prof.machine_type
    params = get_machine_params(mtype)

    if manual_slope_factor is not None and manual_slope is not None:
        raise ValueError("Give either manual_slope_factor or manual_slope, not both")
    if manual_slope_factor is not None:
        lo, hi = prof.slope_factor_range
        if not is_finite_number(manual_slope_factor) or not (lo <= manual_slope_factor <= hi):
            raise ValueError(f"Manual slope factor {manual_slope_factor!r} outside [{lo}, {hi}]")

    pairs = select_fit_points(points, prof)
    if len({v for v, _ in pairs}) < 2:
        raise InsufficientData(
            f"Regression needs at least two distinct voltages, got {len({v for v, _ in pairs})}"
        )

    x = np.array([v for v, _ in pairs], dtype=float)
    y = np.array([vel for _, vel in pairs], dtype=float)
    slope, intercept, r2 = least_squares_line(x, y)

    man: Optional[float] = None
    if manual_slope_factor is not None:
        man = slope * float(manual_slope_factor)
    elif manual_slope is not None:
        man = float(manual_slope)

    effective = man if man is not None else slope
    if not math.isfinite(effective) or effective <= 0.0:
        raise InvalidSlope(f"Effective slope {effective:.6g} mm/s/V is not positive; the valve cannot be certified")

    return RegressionResult(
        calculated_slope=slope,
        intercept=intercept,
        r_squared=r2,
        machine_type=mtype,
        machine_params=params,
        manual_slope_factor=float(manual_slope_factor) if manual_slope_factor is not None else None,
        manual_slope=man,
        points_used=len(pairs),
        voltage_range=(float(x.min()), float(x.max())),
        tolerance=evaluate_tolerance(effective, params),
        deviations=point_deviations(
            pairs,
            effective,
            intercept,
            good_pct=prof.deviation_good_pct,
            warning_pct=prof.deviation_warning_pct,
        ),
    )


def forecast_voltages(slope: float, target_speeds: Sequence[float] = TARGET_SPEEDS) -> pd.DataFrame:
    """Voltage needed to reach each target speed on a line through the origin.

    Columns: ``target_speed``, ``forecast_voltage``, ``actual_speed``,
    ``deviation_pct``.
    """
    s = float(slope)
    if not math.isfinite(s) or s <= 0.0:
        raise InvalidSlope(f"Cannot forecast with slope {s:.6g}")
    speeds = np.asarray(list(target_speeds), dtype=float)
    volts = speeds / s
    actual = s * volts
    with np.errstate(divide="ignore", invalid="ignore"):
        dev = np.where(speeds != 0.0, (actual / speeds - 1.0) * 100.0, 0.0)
    return pd.DataFrame(
        {
            "target_speed": speeds,
            "forecast_voltage": volts,
            "actual_speed": actual,
            "deviation_pct": dev,
        }
    )
