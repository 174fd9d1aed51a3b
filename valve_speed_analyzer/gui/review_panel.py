"""Review panel: inspect ramps, correct them, approve files, check the fit.

Layout
------
- file selector with detection method and approval status
- ramp index boxes (start/end for ramp up and ramp down) + Recalculate
- voltage selector (only voltages not held by another file) + Approve
- machine type and optional manual slope factor
- waveform plot and speed-check chart
- session log

All state changes go through :class:`SpeedCheckSession`; the panel only
re-renders from ``session`` after each action.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import List, Optional, Tuple

import ipywidgets as w

from valve_speed_analyzer.analysis.plotting import plot_speed_check, plot_waveform_ramps
from valve_speed_analyzer.analysis.session import SpeedCheckSession
from valve_speed_analyzer.errors import InsufficientData, InvalidSlope
from valve_speed_analyzer.gui.log_view import HtmlLog
from valve_speed_analyzer.models.catalog import format_voltage, machine_types


def _get_pyplot():
    """Import pyplot lazily (backend must already be configured)."""
    import matplotlib.pyplot as plt
    return plt


@dataclass
class _PanelState:
    updating: bool = False


def _voltage_options(session: SpeedCheckSession, file_name: Optional[str]) -> List[Tuple[str, float]]:
    volts = list(session.ledger.available_voltages())
    if file_name is not None and file_name in session.ledger:
        own = session.ledger.entry(file_name).voltage
        if own is not None and own not in volts:
            volts.append(own)
    return [(format_voltage(v), v) for v in sorted(volts)]


def build_review_panel(session: SpeedCheckSession, log: Optional[HtmlLog] = None) -> w.Widget:
    """Build the ipywidgets review panel for ``session``.

    If ``log`` is None the session's own log is shown when it is an
    :class:`HtmlLog`; otherwise a new HtmlLog is created for panel messages.
    """
    if log is None:
        log = session.log if isinstance(session.log, HtmlLog) else HtmlLog(title="Log")
    state = _PanelState()

    dd_file = w.Dropdown(options=[], description="File", layout=w.Layout(width="420px"))
    lbl_status = w.HTML()

    up_start = w.IntText(description="Up start", layout=w.Layout(width="180px"))
    up_end = w.IntText(description="Up end", layout=w.Layout(width="180px"))
    dn_start = w.IntText(description="Down start", layout=w.Layout(width="180px"))
    dn_end = w.IntText(description="Down end", layout=w.Layout(width="180px"))
    btn_recalc = w.Button(description="Recalculate", button_style="warning")

    dd_voltage = w.Dropdown(options=[], description="Voltage", layout=w.Layout(width="240px"))
    btn_approve = w.Button(description="Approve", button_style="success")

    dd_machine = w.Dropdown(
        options=machine_types(),
        value=session.machine_type,
        description="Machine",
        layout=w.Layout(width="240px"),
    )
    cb_manual = w.Checkbox(value=session.manual_slope_factor is not None, description="Manual slope factor")
    lo, hi = session.profile.slope_factor_range
    sl_factor = w.FloatSlider(
        value=session.manual_slope_factor or 1.0,
        min=lo,
        max=hi,
        step=0.01,
        description="Factor",
        continuous_update=False,
    )
    lbl_fit = w.HTML()

    out_wave = w.Output(layout=w.Layout(border="1px solid #ddd", padding="6px", height="380px", overflow="auto"))
    out_chart = w.Output(layout=w.Layout(border="1px solid #ddd", padding="6px", height="380px", overflow="auto"))

    # -----------------------
    # Rendering
    # -----------------------

    def _render_waveform() -> None:
        out_wave.clear_output(wait=True)
        name = session.selected_file
        if name is None:
            return
        plt = _get_pyplot()
        with out_wave:
            fig = plt.figure(figsize=(9.0, 3.6))
            ax = fig.add_subplot(1, 1, 1)
            plot_waveform_ramps(ax, session.waveform(name), session.result(name))
            plt.show()
            plt.close(fig)

    def _render_chart() -> None:
        out_chart.clear_output(wait=True)
        points = session.voltage_points()
        regression = None
        segments = None
        msg = ""
        try:
            regression = session.regression()
            segments = session.bezier_segments()
        except (InsufficientData, InvalidSlope) as exc:
            msg = str(exc)

        if regression is not None:
            tol = regression.tolerance
            verdict = "PASS" if regression.passed else "FAIL"
            lbl_fit.value = (
                f"<b>{verdict}</b> {html.escape(regression.machine_type)}: "
                f"slope {regression.effective_slope:.3f} mm/s/V "
                f"(calculated {regression.calculated_slope:.3f}, R² {regression.r_squared:.4f}, "
                f"quality {tol.quality if tol is not None else '-'})"
            )
        else:
            lbl_fit.value = f"<span style='color:#666;'>{html.escape(msg or 'No approved files yet.')}</span>"

        if not points:
            return
        plt = _get_pyplot()
        with out_chart:
            fig = plt.figure(figsize=(9.0, 3.6))
            ax = fig.add_subplot(1, 1, 1)
            plot_speed_check(ax, points, regression, segments)
            plt.show()
            plt.close(fig)

    def _refresh(plot: bool = True) -> None:
        state.updating = True
        try:
            names = session.file_names
            dd_file.options = names
            name = session.selected_file
            dd_file.value = name if name in names else None

            if name is not None:
                res = session.result(name)
                entry = session.ledger.entry(name)
                up_start.value = res.ramp_up.start_index
                up_end.value = res.ramp_up.end_index
                dn_start.value = res.ramp_down.start_index
                dn_end.value = res.ramp_down.end_index

                opts = _voltage_options(session, name)
                dd_voltage.options = opts
                if entry.voltage is not None:
                    dd_voltage.value = entry.voltage
                elif opts:
                    dd_voltage.value = opts[0][1]

                status = "approved at " + format_voltage(entry.voltage) if entry.approved else "not approved"
                edited = ", manually adjusted" if entry.manually_adjusted else ""
                lbl_status.value = (
                    f"{html.escape(res.detection_method.value)} detection, {status}{edited}"
                    f" | {len(session.ledger.bindings())}/{len(names)} approved"
                )
            else:
                dd_voltage.options = []
                lbl_status.value = "<span style='color:#666;'>No files loaded.</span>"

            btn_approve.disabled = name is None or not dd_voltage.options
            btn_recalc.disabled = name is None
        finally:
            state.updating = False

        if plot:
            _render_waveform()
            _render_chart()

    # -----------------------
    # Callbacks
    # -----------------------

    def _on_file(change) -> None:
        if state.updating or change.get("new") is None:
            return
        try:
            session.select_file(change["new"])
        except KeyError as exc:
            log.error(f"ERROR: {exc}")
            return
        _refresh()

    def _on_recalc(_btn) -> None:
        name = session.selected_file
        if name is None:
            return
        try:
            session.recalculate(
                name,
                (int(up_start.value), int(up_end.value)),
                (int(dn_start.value), int(dn_end.value)),
            )
        except ValueError as exc:
            log.error(f"ERROR: {name}: {exc}")
        _refresh()

    def _on_approve(_btn) -> None:
        name = session.selected_file
        if name is None or dd_voltage.value is None:
            return
        try:
            session.approve(name, dd_voltage.value)
        except ValueError as exc:
            log.error(f"ERROR: {name}: {exc}")
        _refresh()

    def _on_machine(change) -> None:
        if state.updating:
            return
        session.set_machine_type(change["new"])
        _render_chart()

    def _on_factor(_change) -> None:
        if state.updating:
            return
        try:
            session.set_manual_slope_factor(float(sl_factor.value) if cb_manual.value else None)
        except ValueError as exc:
            log.error(f"ERROR: {exc}")
            return
        _render_chart()

    dd_file.observe(_on_file, names="value")
    btn_recalc.on_click(_on_recalc)
    btn_approve.on_click(_on_approve)
    dd_machine.observe(_on_machine, names="value")
    sl_factor.observe(_on_factor, names="value")
    cb_manual.observe(_on_factor, names="value")

    _refresh(plot=False)

    return w.VBox(
        [
            w.HBox([dd_file, lbl_status]),
            w.HBox([up_start, up_end, dn_start, dn_end, btn_recalc]),
            w.HBox([dd_voltage, btn_approve]),
            w.HBox([dd_machine, cb_manual, sl_factor]),
            lbl_fit,
            out_wave,
            out_chart,
            log.panel,
        ]
    )
