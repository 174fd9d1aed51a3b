from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import pytest

from valve_speed_analyzer.models.waveform import Waveform


def make_double_ramp(
    file_name: str = "run.csv",
    *,
    up_velocity: float = 5.0,
    down_velocity: float = 4.0,
    dt: float = 0.01,
    noise: float = 0.0,
    seed: int = 0,
) -> Waveform:
    """Hold / ramp up (100 samples) / hold / ramp down (80 samples) / hold, 400 samples total."""
    n = 400
    t = np.arange(n) * dt
    x = np.zeros(n)

    up = slice(50, 150)
    x[up] = up_velocity * (t[up] - t[50])
    x[150:250] = x[149] + up_velocity * dt

    top = x[249]
    down = slice(250, 330)
    x[down] = top - down_velocity * (t[down] - t[249])
    x[330:] = x[329] - down_velocity * dt

    if noise > 0:
        x = x + np.random.default_rng(seed).normal(0.0, noise, size=n)
    return Waveform.from_arrays(file_name, t, x)


@pytest.fixture
def double_ramp() -> Callable[..., Waveform]:
    return make_double_ramp


@pytest.fixture
def flat_noise() -> Callable[..., Waveform]:
    def _make(file_name: str = "flat.csv", n: int = 300, seed: Optional[int] = 1) -> Waveform:
        rng = np.random.default_rng(seed)
        t = np.arange(n) * 0.01
        return Waveform.from_arrays(file_name, t, rng.normal(0.0, 1.0, size=n))

    return _make
