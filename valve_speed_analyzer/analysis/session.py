"""Speed-check session: the owner of all mutable analysis state.

A session holds the ingested waveforms, one :class:`DualSlopeResult` per
waveform and the :class:`AssignmentLedger`. Every mutating operation computes
its new values first and only then replaces state, so a failing call leaves
the session untouched. Voltage points, regression and Bezier segments are
recomputed from current state on every call and never go stale.

Typical flow::

    session = SpeedCheckSession()
    session.ingest(waveforms, failures)
    session.recalculate("run_2V.csv", (12, 80), (140, 210))   # optional
    session.approve("run_2V.csv", 2.0)
    result = session.regression()
    package = session.export_package(form_data)
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from valve_speed_analyzer.analysis.export import ExportPackage, build_export_package
from valve_speed_analyzer.analysis.ledger import AssignmentLedger
from valve_speed_analyzer.analysis.regression import fit_speed_check
from valve_speed_analyzer.analysis.session_log import SessionLog
from valve_speed_analyzer.analysis.slopes import detect_dual_slopes, recalculate_dual_slopes
from valve_speed_analyzer.analysis.smoothing import catmull_rom_bezier
from valve_speed_analyzer.analysis.voltage_map import map_voltage_points
from valve_speed_analyzer.errors import InsufficientData, InvalidSlope
from valve_speed_analyzer.models.catalog import format_voltage, get_machine_params
from valve_speed_analyzer.models.profile import SpeedCheckProfile
from valve_speed_analyzer.models.results import (
    BezierSegment,
    DualSlopeResult,
    RegressionResult,
    VoltagePoint,
    is_finite_number,
)
from valve_speed_analyzer.models.waveform import IngestFailure, Waveform


class SpeedCheckSession:
    """Single-threaded state holder for one valve speed check."""

    def __init__(self, profile: Optional[SpeedCheckProfile] = None, log: Optional[SessionLog] = None) -> None:
        self.profile = profile or SpeedCheckProfile()
        self.log = log if log is not None else SessionLog()
        self.ledger = AssignmentLedger()

        self._waveforms: Dict[str, Waveform] = {}
        self._results: Dict[str, DualSlopeResult] = {}
        self._failures: List[IngestFailure] = []

        self._selected: Optional[str] = None
        self._machine_type: str = self.profile.machine_type
        self._manual_slope_factor: Optional[float] = None
        self._version = 0

    # -------------------------
    # Read-only state
    # -------------------------
    @property
    def version(self) -> int:
        return self._version

    @property
    def file_names(self) -> List[str]:
        return list(self._waveforms)

    @property
    def failures(self) -> List[IngestFailure]:
        return list(self._failures)

    @property
    def selected_file(self) -> Optional[str]:
        return self._selected

    @property
    def machine_type(self) -> str:
        return self._machine_type

    @property
    def manual_slope_factor(self) -> Optional[float]:
        return self._manual_slope_factor

    @property
    def results(self) -> Dict[str, DualSlopeResult]:
        return dict(self._results)

    def waveform(self, file_name: str) -> Waveform:
        try:
            return self._waveforms[file_name]
        except KeyError:
            raise KeyError(f"Unknown file '{file_name}'") from None

    def result(self, file_name: str) -> DualSlopeResult:
        try:
            return self._results[file_name]
        except KeyError:
            raise KeyError(f"Unknown file '{file_name}'") from None

    # -------------------------
    # Ingestion
    # -------------------------
    def add_waveform(self, waveform: Waveform) -> DualSlopeResult:
        """Detect ramps on one waveform and register it as unapproved.

        Raises ValueError if a file of the same name is already in the session.
        """
        name = waveform.file_name
        if name in self._waveforms:
            raise ValueError(f"File '{name}' is already loaded")

        result = detect_dual_slopes(waveform, self.profile.detection)

        self.ledger.register(name)
        self._waveforms[name] = waveform
        self._results[name] = result
        if self._selected is None:
            self._selected = name
        self._version += 1

        for msg in waveform.warnings:
            self.log.warning(f"WARNING: {name}: {msg}")
        for msg in result.warnings:
            self.log.warning(msg)
        self.log.info(
            f"{name}: {result.detection_method.value} detection, "
            f"up {result.ramp_up.velocity:.4g} mm/s, down {result.ramp_down.velocity:.4g} mm/s"
        )
        return result

    def ingest(self, waveforms: Iterable[Waveform], failures: Iterable[IngestFailure] = ()) -> List[str]:
        """Add a batch in arrival order; failed files are recorded and skipped.

        A duplicate file name is recorded as a failure and does not stop the
        rest of the batch. Returns the names that were added.
        """
        n_failed = len(self._failures)
        for f in failures:
            self._failures.append(f)
            self.log.error(f"ERROR: {f.file_name}: {f.error}")

        added: List[str] = []
        for wf in waveforms:
            try:
                self.add_waveform(wf)
            except ValueError as exc:
                self._failures.append(IngestFailure(file_name=wf.file_name, error=str(exc)))
                self.log.error(f"ERROR: {wf.file_name}: {exc}")
                continue
            added.append(wf.file_name)
        if len(self._failures) != n_failed:
            self._version += 1
        return added

    # -------------------------
    # Operator actions
    # -------------------------
    def select_file(self, file_name: str) -> None:
        if file_name not in self._waveforms:
            raise KeyError(f"Unknown file '{file_name}'")
        if file_name != self._selected:
            self._selected = file_name
            self._version += 1

    def recalculate(
        self,
        file_name: str,
        ramp_up: Sequence[int],
        ramp_down: Sequence[int],
    ) -> DualSlopeResult:
        """Replace a file's ramps with operator-chosen index ranges.

        The result becomes MANUAL and the ledger entry is marked as manually
        adjusted; an approved file is unapproved and its voltage freed.
        Raises :class:`InvalidIndices` (nothing changes) for bad ranges.
        """
        waveform = self.waveform(file_name)
        new = recalculate_dual_slopes(waveform, ramp_up, ramp_down, self.profile.detection)

        was = self.ledger.entry(file_name)
        self._results[file_name] = new
        self.ledger.unapprove_on_edit(file_name)
        self._version += 1

        if was.approved and was.voltage is not None:
            self.log.warning(
                f"WARNING: {file_name}: edited after approval; {format_voltage(was.voltage)} released, re-approval required"
            )
        self.log.info(
            f"{file_name}: manual ranges up {new.ramp_up.start_index}-{new.ramp_up.end_index}, "
            f"down {new.ramp_down.start_index}-{new.ramp_down.end_index}"
        )
        return new

    def approve(self, file_name: str, voltage: float) -> Optional[str]:
        """Approve a file at ``voltage``; selects and returns the next unapproved file.

        Raises :class:`InvalidVoltage` (nothing changes) if the voltage is not
        in the catalog or is held by another file.
        """
        nxt = self.ledger.approve(file_name, voltage)
        if nxt is not None:
            self._selected = nxt
        self._version += 1
        self.log.info(f"{file_name}: approved at {format_voltage(self.ledger.entry(file_name).voltage)}")
        if self.ledger.all_approved:
            self.log.info("All files approved")
        return nxt

    def set_machine_type(self, machine_type: str) -> None:
        get_machine_params(machine_type)
        if machine_type != self._machine_type:
            self._machine_type = machine_type
            self._version += 1

    def set_manual_slope_factor(self, factor: Optional[float]) -> None:
        """Set or clear (None) the manual slope factor."""
        if factor is not None:
            lo, hi = self.profile.slope_factor_range
            if not is_finite_number(factor) or not (lo <= factor <= hi):
                raise ValueError(f"Manual slope factor {factor!r} outside [{lo}, {hi}]")
            factor = float(factor)
        if factor != self._manual_slope_factor:
            self._manual_slope_factor = factor
            self._version += 1

    def update_profile(self, **changes: Any) -> None:
        """Replace profile fields (``dataclasses.replace``). Detection results are kept.

        Raises ValueError, leaving the profile unchanged, if the current manual
        slope factor falls outside the new ``slope_factor_range``.
        """
        profile = replace(self.profile, **changes)
        factor = self._manual_slope_factor
        if factor is not None:
            lo, hi = profile.slope_factor_range
            if not (lo <= factor <= hi):
                raise ValueError(
                    f"Manual slope factor {factor!r} outside new range [{lo}, {hi}]; clear or change it first"
                )
        self.profile = profile
        self._version += 1

    # -------------------------
    # Derived views
    # -------------------------
    def voltage_points(self) -> List[VoltagePoint]:
        return map_voltage_points(self._results, self.ledger.bindings())

    def regression(self) -> RegressionResult:
        """Fit over the current voltage points.

        Raises :class:`InsufficientData` or :class:`InvalidSlope` when no
        certifiable result exists.
        """
        return fit_speed_check(
            self.voltage_points(),
            self._machine_type,
            manual_slope_factor=self._manual_slope_factor,
            profile=self.profile,
        )

    def bezier_segments(self) -> Optional[List[BezierSegment]]:
        """Smoothed curve through the voltage points (None for exactly two points)."""
        return catmull_rom_bezier(self.voltage_points(), tension=self.profile.tension)

    def snapshot(self) -> Dict[str, Any]:
        """Plain, serializable view of the whole session."""
        regression: Optional[Dict[str, Any]] = None
        regression_error: Optional[str] = None
        try:
            regression = self.regression().to_dict()
        except (InsufficientData, InvalidSlope) as exc:
            regression_error = str(exc)
        segments: Optional[List[Dict[str, Any]]] = None
        try:
            segs = self.bezier_segments()
        except InsufficientData:
            segs = None
        if segs:
            segments = [s.to_dict() for s in segs]

        return {
            "version": self._version,
            "selected_file": self._selected,
            "machine_type": self._machine_type,
            "manual_slope_factor": self._manual_slope_factor,
            "results": {name: r.to_dict() for name, r in self._results.items()},
            "ledger": self.ledger.snapshot(),
            "failures": [{"file_name": f.file_name, "error": f.error} for f in self._failures],
            "voltage_points": [p.to_dict() for p in self.voltage_points()],
            "regression": regression,
            "regression_error": regression_error,
            "bezier_segments": segments,
            "profile": self.profile.to_dict(),
        }

    def export_package(
        self,
        test_form_data: Optional[Mapping[str, Any]] = None,
        *,
        when: Optional[_dt.date] = None,
    ) -> ExportPackage:
        """Assemble the export package; raises :class:`ValidationError` if preconditions fail."""
        points = self.voltage_points()
        regression: Optional[RegressionResult]
        try:
            regression = self.regression()
        except (InsufficientData, InvalidSlope) as exc:
            self.log.warning(f"WARNING: export: {exc}")
            regression = None
        return build_export_package(test_form_data, points, regression, when=when)
