"""Valve Speed Analyzer -- Python tooling for proportional-valve speed checks.

Each test run drives a voltage-controlled valve with one nominal voltage and
records the slide position over time. The resulting waveform ramps up, holds,
and ramps down.

This package provides tools for:
- Locating the linear ramp-up and ramp-down segments of a waveform
- Recomputing ramp velocities from operator-corrected index ranges
- Binding approved waveforms to nominal test voltages (one file per voltage)
- Fitting velocity against voltage and checking it against machine tolerances
- Smoothing the approved voltage/velocity curve for rendering and export

Key principles:
- Detection never fails on a valid waveform: it degrades to fallback markers
- Every edit requires re-approval: derived views are recomputed, never patched
- Full traceability: warnings travel with the results that produced them

Main subpackages:
- analysis: Slope detection, ledger, voltage mapping, regression, smoothing, session
- gui: Interactive ipywidgets review panel and log view
- models: Data models (Waveform, DualSlopeResult, RegressionResult, catalogs, profile)
"""

__all__ = []
