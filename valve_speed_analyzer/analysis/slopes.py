"""Dual-ramp detection and manual recalculation.

A valve test waveform moves the slide up at constant speed, holds, and moves
it back down. This module finds the two linear ramps and measures them.

Detection (``detect_dual_slopes``)
----------------------------------
1) Smooth position with a centered rolling mean and take the sign of each
   step. Short interruptions (``max_gap_steps``) inside a monotonic stretch
   are bridged, so noisy ramps stay in one piece.
2) Contiguous rising/falling stretches with at least ``min_span`` steps are
   candidate ramps. Ramp up is the rising stretch with the largest travel;
   ramp down is the falling stretch with the largest travel after it.
3) Each stretch is refined to its most linear window: highest R², with
   length deciding only between windows equal up to rounding.
4) The detection is *automatic* only if both ramps reach ``min_r_squared``
   and travel at least ``min_excursion_sigma`` robust noise sigmas. Otherwise
   fixed fallback ranges are used and the result carries a
   ``DetectionDegraded`` warning. Detection never raises for a valid Waveform.

Velocity of a ramp is the least-squares slope of position vs. time on its
index range, stored as an unsigned magnitude. Duration is the elapsed
measured time over the range.
"""

from __future__ import annotations

import math
import operator
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from valve_speed_analyzer.errors import DETECTION_DEGRADED, InvalidIndices
from valve_speed_analyzer.models.profile import DetectionConfig
from valve_speed_analyzer.models.results import DetectionMethod, DualSlopeResult, RampSegment
from valve_speed_analyzer.models.waveform import Waveform


IndexRange = Tuple[int, int]


# =====================================================================
#  Fit helpers
# =====================================================================

def linear_fit(t: np.ndarray, x: np.ndarray) -> Tuple[float, float, float]:
    """Least-squares line ``x = slope * t + intercept``.

    Returns ``(slope, intercept, r_squared)``. Slope is NaN if the fit is not
    well-defined (fewer than two distinct times). R² is 0 for a constant signal.
    """
    t = np.asarray(t, dtype=float)
    x = np.asarray(x, dtype=float)
    if t.size < 2:
        return float("nan"), float("nan"), 0.0

    t0 = float(np.mean(t))
    x0 = float(np.mean(x))
    dt = t - t0
    dx = x - x0

    den = float(np.sum(dt * dt))
    if den <= 0.0:
        return float("nan"), float("nan"), 0.0

    slope = float(np.sum(dt * dx)) / den
    intercept = x0 - slope * t0

    syy = float(np.sum(dx * dx))
    if syy <= 0.0:
        return slope, intercept, 0.0
    r2 = (float(np.sum(dt * dx)) ** 2) / (den * syy)
    return slope, intercept, float(min(max(r2, 0.0), 1.0))


def fit_ramp(t: np.ndarray, x: np.ndarray, start: int, end: int) -> RampSegment:
    """Measure one ramp on the inclusive index range ``[start, end]``."""
    s = int(start)
    e = int(end)
    slope, _, r2 = linear_fit(t[s : e + 1], x[s : e + 1])
    return RampSegment(
        start_index=s,
        end_index=e,
        velocity=abs(slope),
        duration=float(t[e] - t[s]),
        start_time=float(t[s]),
        end_time=float(t[e]),
        start_position=float(x[s]),
        end_position=float(x[e]),
        r_squared=r2,
    )


def robust_noise_sigma(x: np.ndarray) -> float:
    """Noise sigma from the MAD of second differences.

    Second differences cancel any linear trend, so ramps do not inflate the
    estimate. For white noise, ``var(d2) = 6 sigma^2``.
    """
    d2 = np.diff(np.asarray(x, dtype=float), n=2)
    if d2.size == 0:
        return 0.0
    med = np.median(d2)
    mad = 1.4826 * float(np.median(np.abs(d2 - med)))
    return mad / math.sqrt(6.0)


# =====================================================================
#  Candidate stretches
# =====================================================================

def find_contiguous_groups(mask: np.ndarray, min_length: int = 1) -> List[Tuple[int, int]]:
    """Inclusive ``(start, end)`` index pairs of True runs with at least ``min_length`` items."""
    m = np.asarray(mask, dtype=bool)
    if m.size == 0:
        return []
    padded = np.concatenate(([False], m, [False])).astype(np.int8)
    edges = np.diff(padded)
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1) - 1
    return [(int(s), int(e)) for s, e in zip(starts, ends) if (e - s + 1) >= min_length]


def _bridge_gaps(mask: np.ndarray, max_gap: int) -> np.ndarray:
    """Fill interior False runs of length <= max_gap."""
    out = np.array(mask, dtype=bool, copy=True)
    if max_gap <= 0 or out.size == 0:
        return out
    for s, e in find_contiguous_groups(~out):
        interior = s > 0 and e < out.size - 1
        if interior and (e - s + 1) <= max_gap:
            out[s : e + 1] = True
    return out


def _step_floor(x: np.ndarray) -> float:
    """Smallest step treated as motion; rounding in the rolling mean stays below it."""
    scale = float(np.max(np.abs(x))) if np.size(x) else 0.0
    return 1e-9 * max(scale, 1.0)


def _monotonic_stretches(
    x: np.ndarray,
    *,
    rising: bool,
    config: DetectionConfig,
    after: int = 0,
) -> List[Tuple[int, int, float]]:
    """Return ``(start_sample, end_sample, travel)`` for each monotonic stretch.

    Stretches are clipped to start at sample ``after`` or later and dropped if
    fewer than ``min_span`` steps remain. Travel is measured on the smoothed
    signal over the clipped range and is always >= 0.
    """
    win = max(1, int(config.smoothing_window))
    xs = pd.Series(x).rolling(win, center=True, min_periods=1).mean().to_numpy()
    steps = np.diff(xs)
    eps = _step_floor(x)
    mask = steps > eps if rising else steps < -eps
    mask = _bridge_gaps(mask, int(config.max_gap_steps))

    out: List[Tuple[int, int, float]] = []
    for s, e in find_contiguous_groups(mask, min_length=int(config.min_span)):
        # Step k joins samples k and k+1.
        start, end = max(s, after), e + 1
        if end - start < int(config.min_span):
            continue
        travel = float(xs[end] - xs[start])
        out.append((start, end, travel if rising else -travel))
    return out


def _candidate_indices(lo: int, hi: int, k: int) -> np.ndarray:
    if hi <= lo:
        return np.array([lo], dtype=int)
    n = hi - lo + 1
    if n <= k:
        return np.arange(lo, hi + 1, dtype=int)
    return np.unique(np.round(np.linspace(lo, hi, k)).astype(int))


def best_linear_window(
    t: np.ndarray,
    x: np.ndarray,
    lo: int,
    hi: int,
    *,
    min_span: int,
    r2_tolerance: float = 1e-10,
    max_candidates: int = 64,
) -> Tuple[int, int, float]:
    """Most linear sub-window ``[start, end]`` of ``[lo, hi]``.

    Candidate windows are scored at once from prefix sums, first on a coarse
    grid of at most ``max_candidates`` starts and ends, then at full
    resolution around the coarse winner. The window with the highest R² wins.
    ``r2_tolerance`` only absorbs rounding: windows that close to the best
    count as equal and the longest (then earliest) is kept.

    Returns ``(start, end, r_squared)``. If ``[lo, hi]`` is shorter than
    ``min_span`` it is returned unchanged.
    """
    if hi - lo < min_span:
        _, _, r2 = linear_fit(t[lo : hi + 1], x[lo : hi + 1])
        return lo, hi, r2

    # Centre the data to limit cancellation in the prefix sums.
    tt = np.asarray(t[lo : hi + 1], dtype=float)
    xx = np.asarray(x[lo : hi + 1], dtype=float)
    tt = tt - tt.mean()
    xx = xx - xx.mean()

    def prefix(v: np.ndarray) -> np.ndarray:
        return np.concatenate(([0.0], np.cumsum(v)))

    c_t, c_x = prefix(tt), prefix(xx)
    c_tt, c_xx, c_tx = prefix(tt * tt), prefix(xx * xx), prefix(tt * xx)

    def pick(starts: np.ndarray, ends: np.ndarray) -> Tuple[int, int]:
        S, E = np.meshgrid(starts, ends, indexing="ij")
        valid = (E - S) >= min_span

        n = np.where(valid, E - S + 1, 1).astype(float)
        st = c_t[E + 1] - c_t[S]
        sx = c_x[E + 1] - c_x[S]
        s_tt = c_tt[E + 1] - c_tt[S] - st * st / n
        s_xx = c_xx[E + 1] - c_xx[S] - sx * sx / n
        s_tx = c_tx[E + 1] - c_tx[S] - st * sx / n

        den = s_tt * s_xx
        r2 = np.zeros_like(den)
        ok = valid & (den > 0.0)
        r2[ok] = (s_tx[ok] * s_tx[ok]) / den[ok]
        r2 = np.clip(r2, 0.0, 1.0)
        r2[~valid] = -np.inf

        best = float(np.max(r2))
        tied = valid & (r2 >= best - float(r2_tolerance))
        score = np.where(tied, n, -1.0)
        i, j = np.unravel_index(int(np.argmax(score)), score.shape)
        return int(S[i, j]), int(E[i, j])

    L = hi - lo + 1
    starts = _candidate_indices(0, L - 1 - min_span, max_candidates)
    ends = _candidate_indices(min_span, L - 1, max_candidates)
    s0, e0 = pick(starts, ends)

    # Refine around the coarse winner at full resolution.
    step = max(
        int(np.max(np.diff(starts))) if starts.size > 1 else 1,
        int(np.max(np.diff(ends))) if ends.size > 1 else 1,
    )
    if step > 1:
        near_s = np.arange(max(0, s0 - step), min(L - 1 - min_span, s0 + step) + 1)
        near_e = np.arange(max(min_span, e0 - step), min(L - 1, e0 + step) + 1)
        s0, e0 = pick(near_s, near_e)

    start, end = lo + s0, lo + e0
    # Report the exact R² of the chosen window rather than the prefix-sum estimate.
    _, _, r2_exact = linear_fit(t[start : end + 1], x[start : end + 1])
    return start, end, r2_exact


# =====================================================================
#  Detection
# =====================================================================

def _fallback_range(n: int, fractions: Tuple[float, float], min_span: int) -> IndexRange:
    start = int(math.floor(n * fractions[0]))
    end = max(int(math.floor(n * fractions[1])), start + min_span)
    end = min(end, n - 1)
    if end - start < min_span:
        start = max(0, end - min_span)
    return start, end


def fallback_markers(waveform: Waveform, config: Optional[DetectionConfig] = None) -> Tuple[IndexRange, IndexRange]:
    """Fixed fallback ranges (default 10-40 % up, 60-90 % down)."""
    cfg = config or DetectionConfig()
    n = waveform.n_samples
    return (
        _fallback_range(n, cfg.fallback_up, int(cfg.min_span)),
        _fallback_range(n, cfg.fallback_down, int(cfg.min_span)),
    )


def _locate_ramps(
    t: np.ndarray,
    x: np.ndarray,
    cfg: DetectionConfig,
) -> Tuple[Optional[IndexRange], Optional[IndexRange], List[str]]:
    """Find automatic ramp ranges. Returns ``(up, down, problems)``."""
    problems: List[str] = []
    min_span = int(cfg.min_span)

    rising = _monotonic_stretches(x, rising=True, config=cfg)
    if not rising:
        return None, None, ["no rising stretch found"]
    up_s, up_e, _ = max(rising, key=lambda r: r[2])
    a, b, r2_up = best_linear_window(
        t, x, up_s, up_e,
        min_span=min_span, r2_tolerance=cfg.r2_tolerance, max_candidates=cfg.max_window_candidates,
    )
    up: IndexRange = (a, b)

    falling = _monotonic_stretches(x, rising=False, config=cfg, after=up[1] + 1)
    if not falling:
        return up, None, ["no falling stretch found after the ramp up"]
    dn_s, dn_e, _ = max(falling, key=lambda r: r[2])
    c, d, r2_dn = best_linear_window(
        t, x, dn_s, dn_e,
        min_span=min_span, r2_tolerance=cfg.r2_tolerance, max_candidates=cfg.max_window_candidates,
    )
    down: IndexRange = (c, d)

    sigma = robust_noise_sigma(x)
    floor = max(cfg.min_excursion_sigma * sigma, _step_floor(x))
    for label, (s, e), r2 in (("ramp up", up, r2_up), ("ramp down", down, r2_dn)):
        if r2 < cfg.min_r_squared:
            problems.append(f"{label} R²={r2:.3f} below {cfg.min_r_squared:.3f}")
        slope, _, _ = linear_fit(t[s : e + 1], x[s : e + 1])
        travel = abs(slope) * float(t[e] - t[s]) if np.isfinite(slope) else 0.0
        if travel < floor:
            problems.append(
                f"{label} travel {travel:.4g} below {cfg.min_excursion_sigma:g} x noise sigma {sigma:.4g}"
            )
    return up, down, problems


def detect_dual_slopes(waveform: Waveform, config: Optional[DetectionConfig] = None) -> DualSlopeResult:
    """Detect ramp up / ramp down of a waveform.

    Parameters
    ----------
    waveform:
        Validated waveform (>= 10 samples, strictly increasing time).
    config:
        Detector parameters; defaults to :class:`DetectionConfig`.

    Returns
    -------
    DualSlopeResult
        ``detection_method`` is AUTOMATIC when the confidence criteria are met,
        FALLBACK otherwise (with a ``DetectionDegraded`` warning).
    """
    cfg = config or DetectionConfig()
    t = waveform.t
    x = waveform.position

    up, down, problems = _locate_ramps(t, x, cfg)
    if up is not None and down is not None and not problems:
        return DualSlopeResult(
            file_name=waveform.file_name,
            ramp_up=fit_ramp(t, x, *up),
            ramp_down=fit_ramp(t, x, *down),
            detection_method=DetectionMethod.AUTOMATIC,
        )

    fb_up, fb_down = fallback_markers(waveform, cfg)
    reason = "; ".join(problems) if problems else "no ramp pair found"
    msg = f"{DETECTION_DEGRADED}: {waveform.file_name}: {reason}; using fallback markers"
    return DualSlopeResult(
        file_name=waveform.file_name,
        ramp_up=fit_ramp(t, x, *fb_up),
        ramp_down=fit_ramp(t, x, *fb_down),
        detection_method=DetectionMethod.FALLBACK,
        warnings=(msg,),
    )


# =====================================================================
#  Manual recalculation
# =====================================================================

def _validate_range(label: str, rng: Sequence[int], n_samples: int, min_span: int) -> IndexRange:
    try:
        start, end = rng
        start = operator.index(start)
        end = operator.index(end)
    except (TypeError, ValueError):
        raise InvalidIndices(f"{label}: expected a (start, end) pair of integers, got {rng!r}") from None

    if start < 0 or end >= n_samples:
        raise InvalidIndices(f"{label}: indices ({start}, {end}) outside [0, {n_samples - 1}]")
    if start >= end:
        raise InvalidIndices(f"{label}: start index {start} must be below end index {end}")
    if end - start < min_span:
        raise InvalidIndices(f"{label}: span {end - start} below minimum of {min_span} samples")
    return start, end


def recalculate_dual_slopes(
    waveform: Waveform,
    ramp_up: Sequence[int],
    ramp_down: Sequence[int],
    config: Optional[DetectionConfig] = None,
) -> DualSlopeResult:
    """Recompute both ramps from operator-supplied ``(start, end)`` ranges.

    Uses the same linear-fit rule as detection. The result is marked MANUAL.
    Raises :class:`InvalidIndices` if either range is malformed, out of bounds
    or spans fewer than ``min_span`` samples.
    """
    cfg = config or DetectionConfig()
    n = waveform.n_samples
    up = _validate_range("ramp up", ramp_up, n, int(cfg.min_span))
    down = _validate_range("ramp down", ramp_down, n, int(cfg.min_span))

    t = waveform.t
    x = waveform.position
    return DualSlopeResult(
        file_name=waveform.file_name,
        ramp_up=fit_ramp(t, x, *up),
        ramp_down=fit_ramp(t, x, *down),
        detection_method=DetectionMethod.MANUAL,
    )
