"""Analysis configuration -- detection parameters and speed-check profile.

Both configurations are frozen dataclasses. They can be:

- Used with their defaults (tuned for the standard valve test rig)
- Overridden field-by-field via ``dataclasses.replace()``
- Serialized to/from a dict for JSON provenance
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Tuple

from .catalog import DEFAULT_MACHINE_TYPE


@dataclass(frozen=True)
class DetectionConfig:
    """Parameters of the dual-ramp detector.

    min_span:
      Minimum ``end_index - start_index`` of a ramp (samples). Also enforced on
      manual recalculation.
    smoothing_window:
      Centered rolling-mean window (samples) used to derive step directions.
    max_gap_steps:
      Direction reversals of at most this many steps inside a ramp are bridged.
    min_r_squared:
      Both ramps must reach this R² for the detection to count as automatic.
    r2_tolerance:
      R² differences below this count as rounding; such windows compete on
      length (longest wins).
    min_excursion_sigma:
      A ramp must travel at least this many robust noise sigmas.
    max_window_candidates:
      Upper bound on candidate start/end indices per ramp in the window search.
    fallback_up, fallback_down:
      Fractions of the series used as fallback ramp ranges.
    """

    min_span: int = 5
    smoothing_window: int = 5
    max_gap_steps: int = 2
    min_r_squared: float = 0.95
    r2_tolerance: float = 1e-10
    min_excursion_sigma: float = 10.0
    max_window_candidates: int = 64
    fallback_up: Tuple[float, float] = (0.1, 0.4)
    fallback_down: Tuple[float, float] = (0.6, 0.9)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["fallback_up"] = list(d["fallback_up"])
        d["fallback_down"] = list(d["fallback_down"])
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> DetectionConfig:
        d = dict(d)
        for key in ("fallback_up", "fallback_down"):
            if key in d and not isinstance(d[key], tuple):
                d[key] = tuple(d[key])
        return cls(**d)


@dataclass(frozen=True)
class SpeedCheckProfile:
    """Frozen configuration for the regression and tolerance check.

    Fields
    ------
    machine_type : str
        Default machine type until the operator picks one.
    voltage_limit : float or None
        If set, only points with ``0 <= voltage <= voltage_limit`` enter the fit
        (the legacy speed-check window, typically 4.0 V).
    include_origin : bool
        Add the ``(0 V, 0 mm/s)`` reference point to the fit.
    slope_factor_range : (float, float)
        Allowed range of the manual slope factor.
    tension : float
        Catmull-Rom tension used for curve smoothing.
    deviation_good_pct, deviation_warning_pct : float
        Category thresholds for point deviations from the effective line.
    detection : DetectionConfig
        Detector parameters.
    """

    machine_type: str = DEFAULT_MACHINE_TYPE
    voltage_limit: Optional[float] = None
    include_origin: bool = False
    slope_factor_range: Tuple[float, float] = (0.5, 2.0)
    tension: float = 0.5
    deviation_good_pct: float = 2.0
    deviation_warning_pct: float = 5.0
    detection: DetectionConfig = field(default_factory=DetectionConfig)

    @classmethod
    def legacy_speed_check(cls, **overrides: Any) -> SpeedCheckProfile:
        """Profile reproducing the origin-anchored 0-4 V speed check."""
        base: Dict[str, Any] = dict(voltage_limit=4.0, include_origin=True)
        base.update(overrides)
        return cls(**base)

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-friendly dict (tuples become lists)."""
        d = asdict(self)
        d["slope_factor_range"] = list(d["slope_factor_range"])
        d["detection"] = self.detection.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> SpeedCheckProfile:
        """Reconstruct from a dict (e.g. loaded from JSON)."""
        d = dict(d)
        if "slope_factor_range" in d and not isinstance(d["slope_factor_range"], tuple):
            d["slope_factor_range"] = tuple(d["slope_factor_range"])
        if isinstance(d.get("detection"), dict):
            d["detection"] = DetectionConfig.from_dict(d["detection"])
        return cls(**d)
