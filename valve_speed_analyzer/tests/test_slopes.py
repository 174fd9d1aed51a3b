"""Tests for dual-ramp detection and manual recalculation."""

from __future__ import annotations

import warnings

import numpy as np
import pytest

from valve_speed_analyzer.analysis.slopes import (
    _monotonic_stretches,
    best_linear_window,
    detect_dual_slopes,
    fallback_markers,
    find_contiguous_groups,
    linear_fit,
    recalculate_dual_slopes,
    robust_noise_sigma,
)
from valve_speed_analyzer.errors import DETECTION_DEGRADED, InvalidIndices
from valve_speed_analyzer.models.profile import DetectionConfig
from valve_speed_analyzer.models.results import DetectionMethod
from valve_speed_analyzer.models.waveform import Waveform


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------


def test_linear_fit_exact_line() -> None:
    t = np.linspace(0.0, 2.0, 21)
    slope, intercept, r2 = linear_fit(t, 3.0 * t - 1.0)
    assert slope == pytest.approx(3.0)
    assert intercept == pytest.approx(-1.0)
    assert r2 == pytest.approx(1.0)


def test_linear_fit_constant_signal_has_zero_r2() -> None:
    t = np.arange(10.0)
    slope, _, r2 = linear_fit(t, np.full(10, 2.5))
    assert slope == pytest.approx(0.0)
    assert r2 == 0.0


def test_find_contiguous_groups_min_length() -> None:
    mask = np.array([1, 1, 0, 1, 1, 1, 0, 0, 1], dtype=bool)
    assert find_contiguous_groups(mask) == [(0, 1), (3, 5), (8, 8)]
    assert find_contiguous_groups(mask, min_length=3) == [(3, 5)]


def test_robust_noise_sigma_ignores_linear_trend() -> None:
    t = np.arange(200.0)
    assert robust_noise_sigma(5.0 * t + 2.0) == pytest.approx(0.0, abs=1e-9)

    rng = np.random.default_rng(3)
    noisy = 5.0 * t + rng.normal(0.0, 0.1, size=t.size)
    assert robust_noise_sigma(noisy) == pytest.approx(0.1, rel=0.25)


def test_best_linear_window_trims_plateau() -> None:
    t = np.arange(60) * 0.1
    x = np.concatenate([np.zeros(10), np.arange(40) * 0.5, np.full(10, 19.5)])
    start, end, r2 = best_linear_window(t, x, 0, 59, min_span=5, r2_tolerance=1e-6)
    assert 9 <= start <= 10
    assert 49 <= end <= 50
    assert r2 > 0.999


def test_best_linear_window_exact_bounds_by_default() -> None:
    t = np.arange(60) * 0.1
    x = np.concatenate([np.zeros(10), np.arange(40) * 0.5, np.full(10, 19.5)])
    start, end, r2 = best_linear_window(t, x, 0, 59, min_span=5)
    assert (start, end) == (10, 49)
    assert r2 == pytest.approx(1.0)


def test_best_linear_window_refines_past_coarse_grid() -> None:
    t = np.arange(400) * 0.01
    x = np.concatenate([np.zeros(101), np.arange(200) * 0.3, np.full(99, 59.7)])
    start, end, _ = best_linear_window(t, x, 0, 399, min_span=5, max_candidates=16)
    assert (start, end) == (101, 300)


# -----------------------------------------------------------------------
# Detection
# -----------------------------------------------------------------------


def test_clean_double_ramp_is_automatic(double_ramp) -> None:
    wf = double_ramp(up_velocity=5.0, down_velocity=4.0)
    res = detect_dual_slopes(wf)

    assert res.detection_method is DetectionMethod.AUTOMATIC
    assert res.warnings == ()
    assert res.ramp_up.velocity == pytest.approx(5.0, rel=1e-6)
    assert res.ramp_down.velocity == pytest.approx(4.0, rel=1e-6)
    assert res.ramp_up.end_index < res.ramp_down.start_index


@pytest.mark.parametrize("up_velocity, down_velocity", [(5.0, 4.0), (0.5, 0.3), (50.0, 20.0)])
def test_clean_ramps_recover_exact_ranges(double_ramp, up_velocity, down_velocity) -> None:
    res = detect_dual_slopes(double_ramp(up_velocity=up_velocity, down_velocity=down_velocity))
    assert (res.ramp_up.start_index, res.ramp_up.end_index) == (50, 150)
    assert (res.ramp_down.start_index, res.ramp_down.end_index) == (249, 330)
    assert res.ramp_up.velocity == pytest.approx(up_velocity, rel=1e-9)
    assert res.ramp_down.velocity == pytest.approx(down_velocity, rel=1e-9)


def test_noisy_ramp_velocity_is_unbiased(double_ramp) -> None:
    res = detect_dual_slopes(double_ramp(noise=0.01, seed=4))
    assert res.detection_method is DetectionMethod.AUTOMATIC
    assert res.ramp_up.velocity == pytest.approx(5.0, rel=0.005)
    assert res.ramp_down.velocity == pytest.approx(4.0, rel=0.005)


def test_detection_emits_no_runtime_warnings(double_ramp) -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        res = detect_dual_slopes(double_ramp())
    assert res.detection_method is DetectionMethod.AUTOMATIC


def test_clipped_stretch_travel_is_measured_after_clip() -> None:
    x = np.concatenate([
        np.linspace(100.0, 0.0, 41),
        np.zeros(19),
        np.linspace(0.0, -30.0, 31),
        np.full(20, -30.0),
    ])
    cfg = DetectionConfig()
    full = _monotonic_stretches(x, rising=False, config=cfg)
    clipped = _monotonic_stretches(x, rising=False, config=cfg, after=35)

    assert [s for s, _, _ in full] == [0, 58]
    assert [s for s, _, _ in clipped] == [35, 58]
    assert full[0][2] - clipped[0][2] == pytest.approx(97.5 - 12.5)
    # The later, longer drop now outweighs the clipped remainder.
    assert max(clipped, key=lambda r: r[2])[0] == 58

    late = _monotonic_stretches(x, rising=False, config=cfg, after=40)
    assert [s for s, _, _ in late] == [58]


def test_ramp_geometry_and_duration(double_ramp) -> None:
    wf = double_ramp()
    res = detect_dual_slopes(wf)
    for seg in (res.ramp_up, res.ramp_down):
        assert seg.span >= 5
        assert seg.duration == pytest.approx(wf.t[seg.end_index] - wf.t[seg.start_index])
        assert seg.velocity > 0.0
    # Detected ranges sit on the true ramps (50..150 up, 249..330 down).
    assert 44 <= res.ramp_up.start_index and res.ramp_up.end_index <= 156
    assert 243 <= res.ramp_down.start_index and res.ramp_down.end_index <= 336


def test_noisy_double_ramp_recovers_velocities(double_ramp) -> None:
    wf = double_ramp(up_velocity=5.0, down_velocity=4.0, noise=0.005, seed=7)
    res = detect_dual_slopes(wf)
    assert res.detection_method is DetectionMethod.AUTOMATIC
    np.testing.assert_allclose(
        [res.ramp_up.velocity, res.ramp_down.velocity], [5.0, 4.0], rtol=0.03
    )


def test_flat_noise_falls_back_without_raising(flat_noise) -> None:
    wf = flat_noise()
    res = detect_dual_slopes(wf)

    assert res.detection_method is DetectionMethod.FALLBACK
    assert len(res.warnings) == 1
    assert res.warnings[0].startswith(DETECTION_DEGRADED)
    assert wf.file_name in res.warnings[0]

    (us, ue), (ds, de) = fallback_markers(wf)
    assert (res.ramp_up.start_index, res.ramp_up.end_index) == (us, ue)
    assert (res.ramp_down.start_index, res.ramp_down.end_index) == (ds, de)
    assert (us, ue) == (30, 120)
    assert (ds, de) == (180, 270)


def test_constant_waveform_falls_back() -> None:
    wf = Waveform.from_arrays("const.csv", np.arange(50) * 0.1, np.full(50, 3.0))
    res = detect_dual_slopes(wf)
    assert res.detection_method is DetectionMethod.FALLBACK
    assert res.ramp_up.velocity == pytest.approx(0.0, abs=1e-12)


def test_minimum_length_waveform_never_raises() -> None:
    wf = Waveform.from_arrays("short.csv", np.arange(10) * 0.1, np.arange(10) * 0.2)
    res = detect_dual_slopes(wf)
    assert res.detection_method is DetectionMethod.FALLBACK
    for seg in (res.ramp_up, res.ramp_down):
        assert 0 <= seg.start_index < seg.end_index <= 9
        assert seg.span >= 5


def test_single_ramp_only_falls_back() -> None:
    t = np.arange(100) * 0.01
    x = np.concatenate([np.zeros(20), np.arange(60) * 0.05, np.full(20, 2.95)])
    res = detect_dual_slopes(Waveform.from_arrays("up_only.csv", t, x))
    assert res.detection_method is DetectionMethod.FALLBACK
    assert "falling" in res.warnings[0]


def test_stricter_config_forces_fallback(double_ramp) -> None:
    cfg = DetectionConfig(min_span=500)
    res = detect_dual_slopes(double_ramp(), cfg)
    assert res.detection_method is DetectionMethod.FALLBACK


# -----------------------------------------------------------------------
# Manual recalculation
# -----------------------------------------------------------------------


def test_recalculate_is_manual_and_exact(double_ramp) -> None:
    wf = double_ramp(up_velocity=5.0, down_velocity=4.0)
    res = recalculate_dual_slopes(wf, (60, 140), (260, 320))

    assert res.detection_method is DetectionMethod.MANUAL
    assert res.file_name == wf.file_name
    assert (res.ramp_up.start_index, res.ramp_up.end_index) == (60, 140)
    assert res.ramp_up.velocity == pytest.approx(5.0)
    assert res.ramp_down.velocity == pytest.approx(4.0)
    assert res.ramp_up.duration == pytest.approx(0.8)


def test_recalculate_is_idempotent(double_ramp) -> None:
    wf = double_ramp(noise=0.01, seed=2)
    a = recalculate_dual_slopes(wf, (55, 145), (255, 325))
    b = recalculate_dual_slopes(wf, (55, 145), (255, 325))
    assert a == b


@pytest.mark.parametrize(
    "up, down",
    [
        ((100, 100), (260, 320)),  # start == end
        ((120, 100), (260, 320)),  # start > end
        ((60, 63), (260, 320)),    # span < 5
        ((60, 140), (260, 263)),
        ((-1, 40), (260, 320)),    # out of bounds
        ((60, 140), (300, 400)),
        ((60.5, 140), (260, 320)),  # not integers
    ],
)
def test_recalculate_rejects_bad_ranges(double_ramp, up, down) -> None:
    with pytest.raises(InvalidIndices):
        recalculate_dual_slopes(double_ramp(), up, down)


def test_recalculate_accepts_numpy_integers(double_ramp) -> None:
    res = recalculate_dual_slopes(double_ramp(), (np.int64(60), np.int64(140)), (260, 320))
    assert res.ramp_up.start_index == 60
