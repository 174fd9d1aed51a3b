from __future__ import annotations

import math
from typing import Dict, List, Mapping, Optional, Tuple

from .results import MachineParams


#: Voltage magnitudes (V) an approved file can be bound to. Each magnitude
#: yields a +V point (ramp up) and a -V point (ramp down).
AVAILABLE_VOLTAGES: Tuple[float, ...] = (
    0.1, 0.2, 0.3, 0.4, 0.5, 0.75, 1.0, 1.5, 2.0, 2.5, 3.0, 4.0, 5.0, 7.0, 9.0, 10.0,
)

#: Target slide speeds (mm/s) used for voltage forecasts.
TARGET_SPEEDS: Tuple[float, ...] = tuple(0.5 * k for k in range(21))

#: Tolerance bands (mm/s) per machine type.
MACHINE_TYPES: Mapping[str, MachineParams] = {
    "GAA100": MachineParams(lower=3.0, middle=3.5, upper=4.0, category="Stationary"),
    "GAAS80": MachineParams(lower=3.0, middle=3.5, upper=4.0, category="Stationary"),
    "GAA60": MachineParams(lower=3.0, middle=3.5, upper=4.0, category="Stationary"),
    "AMS60": MachineParams(lower=1.0, middle=1.5, upper=2.0, category="Mobile"),
    "AMS100": MachineParams(lower=1.0, middle=1.5, upper=2.0, category="Mobile"),
    "AMS200": MachineParams(lower=1.0, middle=1.5, upper=2.0, category="Mobile"),
}

DEFAULT_MACHINE_TYPE = "GAA100"


def catalog_voltage(voltage: float, catalog: Tuple[float, ...] = AVAILABLE_VOLTAGES) -> Optional[float]:
    """Return the catalog entry matching ``voltage`` (float tolerant), or None."""
    try:
        v = float(voltage)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v):
        return None
    for c in catalog:
        if math.isclose(v, c, rel_tol=0.0, abs_tol=1e-9):
            return c
    return None


def machine_types() -> List[str]:
    return list(MACHINE_TYPES)


def get_machine_params(machine_type: str) -> MachineParams:
    """Look up the tolerance band of a machine type.

    Raises ``KeyError`` for unknown machine types.
    """
    try:
        return MACHINE_TYPES[machine_type]
    except KeyError:
        raise KeyError(
            f"Unknown machine type '{machine_type}'. Known: {', '.join(MACHINE_TYPES)}"
        ) from None


def machines_by_category() -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for name, params in MACHINE_TYPES.items():
        out.setdefault(params.category, []).append(name)
    return out


def format_voltage(voltage: float, precision: int = 2) -> str:
    """Signed display form, e.g. ``+2.50V`` / ``-0.10V`` / ``0V``."""
    if voltage == 0:
        return "0V"
    return f"{voltage:+.{precision}f}V"
