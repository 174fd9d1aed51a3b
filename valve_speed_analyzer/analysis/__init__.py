"""Speed-check analysis package.

Design principle:
  - Ingest (outside this package) produces validated :class:`~valve_speed_analyzer.models.waveform.Waveform` objects.
  - Analysis consumes Waveforms and produces dual-slope results, voltage points,
    the regression and the smoothed curve.

Derived views (voltage points, regression, curve) are pure functions of the
session state and are recomputed on demand.
"""

from .ledger import AssignmentLedger
from .regression import fit_speed_check, forecast_voltages
from .session import SpeedCheckSession
from .slopes import detect_dual_slopes, recalculate_dual_slopes
from .smoothing import RenderTransform, catmull_rom_bezier
from .voltage_map import map_voltage_points

__all__ = [
    "AssignmentLedger",
    "fit_speed_check",
    "forecast_voltages",
    "SpeedCheckSession",
    "detect_dual_slopes",
    "recalculate_dual_slopes",
    "RenderTransform",
    "catmull_rom_bezier",
    "map_voltage_points",
]
