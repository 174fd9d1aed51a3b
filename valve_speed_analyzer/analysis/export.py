"""Export package for report generation.

The report generator itself lives outside this package. It receives an
:class:`ExportPackage`, plain data only, after :func:`validate_export_package`
has accepted it.

Package layout
--------------
test_form_data : dict[str, str]
    The standard form fields (:data:`FORM_FIELDS`), missing ones as ``""``.
voltage_data : list of {"voltage", "velocity"}
    Points rounded to 2 decimals, origin included, sorted by voltage ascending.
speed_check_results : dict
    :meth:`RegressionResult.to_dict` output.
system_parameters : dict
    Slope, speed at 0.3 V and speed at 10 V, derived from the effective slope.
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from valve_speed_analyzer.errors import ValidationError
from valve_speed_analyzer.models.results import RegressionResult, VoltagePoint, is_finite_number


FORM_FIELDS = (
    "auftragsNr",
    "maschinentyp",
    "pruefer",
    "datum",
    "artNrSCH",
    "artNrParker",
    "nenndurchfluss",
    "snParker",
    "ventilOffsetOriginal",
    "ventilOffsetKorrektur",
    "ventilOffsetNachKorrektur",
    "druckVentil",
    "oeltemperatur",
)

SpeedCheckLike = Union[RegressionResult, Mapping[str, Any]]
PointLike = Union[VoltagePoint, Mapping[str, Any]]


@dataclass(frozen=True)
class ExportPackage:
    test_form_data: Dict[str, str]
    voltage_data: List[Dict[str, float]]
    speed_check_results: Dict[str, Any]
    system_parameters: Dict[str, float]
    file_name: str = ""
    timestamp: str = ""
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_form_data": dict(self.test_form_data),
            "voltage_data": [dict(p) for p in self.voltage_data],
            "speed_check_results": dict(self.speed_check_results),
            "system_parameters": dict(self.system_parameters),
            "file_name": self.file_name,
            "timestamp": self.timestamp,
            "warnings": list(self.warnings),
        }


# -------------------------
# Field helpers
# -------------------------
def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _effective_slope(results: SpeedCheckLike) -> Any:
    if isinstance(results, RegressionResult):
        return results.effective_slope
    manual = _get(results, "manual_slope")
    return manual if manual is not None else _get(results, "calculated_slope")


def _is_positive_slope(value: Any) -> bool:
    return is_finite_number(value) and float(value) > 0.0


def normalize_form_data(form: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """All :data:`FORM_FIELDS` as strings; missing or empty values become ``""``."""
    form = form or {}
    out: Dict[str, str] = {}
    for key in FORM_FIELDS:
        value = form.get(key)
        out[key] = "" if value is None else str(value)
    return out


def export_filename(form: Optional[Mapping[str, Any]], when: Optional[_dt.date] = None) -> str:
    """``{auftragsNr}_Speedcheck_{dd.mm.yyyy}.pdf`` (``UNKNOWN`` without an order number)."""
    order = (form or {}).get("auftragsNr") or "UNKNOWN"
    day = when or _dt.date.today()
    return f"{order}_Speedcheck_{day:%d.%m.%Y}.pdf"


def export_timestamp(when: Optional[_dt.date] = None) -> str:
    """Report timestamp, ``dd.mm.yyyy / HH:MM`` (date only when ``when`` is a plain date)."""
    moment = when or _dt.datetime.now()
    if isinstance(moment, _dt.datetime):
        return f"{moment:%d.%m.%Y / %H:%M}"
    return f"{moment:%d.%m.%Y}"


def system_parameters(results: SpeedCheckLike) -> Dict[str, float]:
    """Slope (2 dp), speed at 0.3 V (3 dp) and speed at 10 V (2 dp) from the effective slope."""
    slope = _effective_slope(results)
    if not _is_positive_slope(slope):
        raise ValidationError(f"Invalid slope value in speed check results: {slope!r}")
    s = float(slope)
    return {
        "slope_value": round(s, 2),
        "speed_at_0_3v": round(s * 0.3, 3),
        "max_speed_at_10v": round(s * 10.0, 2),
    }


def export_voltage_data(points: Sequence[PointLike], *, include_origin: bool = True) -> List[Dict[str, float]]:
    """Chart points for the report, rounded to 2 decimals and sorted ascending."""
    data = [
        {"voltage": round(float(_get(p, "voltage")), 2), "velocity": round(float(_get(p, "velocity")), 2)}
        for p in points
    ]
    if include_origin and not any(d["voltage"] == 0.0 and d["velocity"] == 0.0 for d in data):
        data.append({"voltage": 0.0, "velocity": 0.0})
    data.sort(key=lambda d: d["voltage"])
    return data


# -------------------------
# Validation
# -------------------------
def _check(voltage_data: Optional[Sequence[PointLike]], results: Optional[SpeedCheckLike]) -> None:
    if not voltage_data:
        raise ValidationError("No voltage/velocity data available for export")
    if results is None:
        raise ValidationError("Speed check analysis required for export")

    calculated = _get(results, "calculated_slope")
    effective = _effective_slope(results)
    for label, value in (("calculated", calculated), ("effective", effective)):
        if not _is_positive_slope(value):
            raise ValidationError(f"Invalid {label} slope in speed check results: {value!r}")

    for i, p in enumerate(voltage_data):
        v = _get(p, "voltage")
        y = _get(p, "velocity")
        if not (is_finite_number(v) and is_finite_number(y)):
            raise ValidationError(f"Invalid voltage data at index {i}: voltage={v!r}, velocity={y!r}")


def validate_export_package(package: ExportPackage) -> ExportPackage:
    """Check export preconditions; returns the package or raises :class:`ValidationError`."""
    _check(package.voltage_data, package.speed_check_results or None)
    if not package.system_parameters:
        raise ValidationError("System parameters missing from export package")
    return package


def build_export_package(
    test_form_data: Optional[Mapping[str, Any]],
    voltage_data: Sequence[PointLike],
    speed_check_results: Optional[SpeedCheckLike],
    *,
    when: Optional[_dt.date] = None,
) -> ExportPackage:
    """Validate the inputs and assemble an :class:`ExportPackage`.

    Raises
    ------
    ValidationError
        Empty ``voltage_data``, missing results, a non-positive or NaN slope,
        or a point with non-numeric voltage/velocity.
    """
    _check(voltage_data, speed_check_results)

    if isinstance(speed_check_results, RegressionResult):
        results_dict = speed_check_results.to_dict()
    else:
        results_dict = dict(speed_check_results)
        results_dict.setdefault("effective_slope", float(_effective_slope(speed_check_results)))

    warnings: List[str] = []
    form = normalize_form_data(test_form_data)
    if not form["auftragsNr"]:
        warnings.append("Order number (auftragsNr) is empty; file name uses UNKNOWN")

    pkg = ExportPackage(
        test_form_data=form,
        voltage_data=export_voltage_data(voltage_data),
        speed_check_results=results_dict,
        system_parameters=system_parameters(speed_check_results),
        file_name=export_filename(test_form_data, when),
        timestamp=export_timestamp(when),
        warnings=tuple(warnings),
    )
    return validate_export_package(pkg)

