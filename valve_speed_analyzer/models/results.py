from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple

import math
import numbers


RampType = Literal["up", "down"]
Quality = Literal["good", "marginal", "out_of_band"]
DeviationCategory = Literal["good", "warning", "error"]


class DetectionMethod(str, Enum):
    """How the ramp ranges of a :class:`DualSlopeResult` were obtained."""

    AUTOMATIC = "automatic"
    FALLBACK = "fallback"
    MANUAL = "manual"


@dataclass(frozen=True)
class RampSegment:
    """One linear ramp of a waveform.

    Attributes
    ----------
    start_index, end_index:
        Inclusive sample range, ``start_index < end_index``.
    velocity:
        Unsigned least-squares slope of position over time (mm/s) on the range.
        The sign is applied later by the voltage mapper.
    duration:
        ``t[end_index] - t[start_index]`` in seconds.
    r_squared:
        Coefficient of determination of the linear fit on the range.
    """

    start_index: int
    end_index: int
    velocity: float
    duration: float
    start_time: float
    end_time: float
    start_position: float
    end_position: float
    r_squared: float

    @property
    def span(self) -> int:
        return int(self.end_index - self.start_index)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DualSlopeResult:
    """Paired ramp-up / ramp-down measurement for one waveform."""

    file_name: str
    ramp_up: RampSegment
    ramp_down: RampSegment
    detection_method: DetectionMethod
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "ramp_up": self.ramp_up.to_dict(),
            "ramp_down": self.ramp_down.to_dict(),
            "detection_method": self.detection_method.value,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class LedgerEntry:
    """Approval state of one file."""

    approved: bool = False
    manually_adjusted: bool = False
    voltage: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VoltagePoint:
    """Signed voltage/velocity sample derived from one ramp of an approved file."""

    voltage: float
    velocity: float
    file_name: str = ""
    ramp: RampType = "up"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MachineParams:
    """Tolerance band (mm/s) of a machine type."""

    lower: float
    middle: float
    upper: float
    category: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ToleranceEvaluation:
    """Pass/fail classification of an effective slope against a tolerance band."""

    passed: bool
    quality: Quality
    offset_from_middle: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PointDeviation:
    """Deviation of one measured point from the effective regression line."""

    voltage: float
    velocity: float
    expected_velocity: float
    deviation_pct: float
    category: DeviationCategory

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RegressionResult:
    """Voltage-to-velocity fit plus machine tolerance evaluation.

    ``effective_slope`` is the manual slope when one is set, otherwise the
    calculated slope. Downstream consumers (plots, export) must use it.
    """

    calculated_slope: float
    intercept: float
    r_squared: float
    machine_type: str
    machine_params: MachineParams
    manual_slope_factor: Optional[float] = None
    manual_slope: Optional[float] = None
    points_used: int = 0
    voltage_range: Optional[Tuple[float, float]] = None
    tolerance: Optional[ToleranceEvaluation] = None
    deviations: Tuple[PointDeviation, ...] = ()

    @property
    def effective_slope(self) -> float:
        return self.manual_slope if self.manual_slope is not None else self.calculated_slope

    @property
    def passed(self) -> bool:
        return bool(self.tolerance is not None and self.tolerance.passed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calculated_slope": self.calculated_slope,
            "manual_slope": self.manual_slope,
            "manual_slope_factor": self.manual_slope_factor,
            "effective_slope": self.effective_slope,
            "intercept": self.intercept,
            "r_squared": self.r_squared,
            "machine_type": self.machine_type,
            "machine_params": self.machine_params.to_dict(),
            "points_used": self.points_used,
            "voltage_range": list(self.voltage_range) if self.voltage_range is not None else None,
            "tolerance": self.tolerance.to_dict() if self.tolerance is not None else None,
            "deviations": [d.to_dict() for d in self.deviations],
        }


@dataclass(frozen=True)
class CurvePoint:
    """A ``(voltage, velocity)`` pair in data space."""

    voltage: float
    velocity: float


@dataclass(frozen=True)
class BezierSegment:
    """Cubic Bezier segment between two consecutive sorted voltage points."""

    start: CurvePoint
    cp1: CurvePoint
    cp2: CurvePoint
    end: CurvePoint

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_finite_number(value: Any) -> bool:
    """True for real, finite numbers (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(value)
