from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd


#: Minimum number of samples a waveform must carry.
MIN_SAMPLES = 10


@dataclass(frozen=True)
class Waveform:
    """
    In-memory representation of one test file (one applied voltage level)
    after ingestion.

    Notes
    - 't' is the measured time vector, strictly increasing (no synthetic time).
    - 'position' is the slide position in mm.
    - df columns are always float64 and the frame is never modified after construction.
    """
    file_name: str
    df: pd.DataFrame
    source_path: Optional[Path] = None
    warnings: Tuple[str, ...] = ()

    @property
    def n_samples(self) -> int:
        return int(len(self.df))

    @property
    def t(self) -> np.ndarray:
        return self.df["t"].to_numpy()

    @property
    def position(self) -> np.ndarray:
        return self.df["position"].to_numpy()

    @classmethod
    def from_arrays(
        cls,
        file_name: str,
        t: Sequence[float] | np.ndarray,
        position: Sequence[float] | np.ndarray,
        *,
        source_path: Optional[Path] = None,
        warnings: Iterable[str] = (),
    ) -> Waveform:
        """Build a validated waveform from time and position vectors.

        Raises ``ValueError`` when the vectors differ in length, hold fewer
        than :data:`MIN_SAMPLES` samples, contain non-finite values, or when
        time is not strictly increasing.
        """
        t_arr = np.asarray(t, dtype=np.float64)
        x_arr = np.asarray(position, dtype=np.float64)
        if t_arr.ndim != 1 or x_arr.ndim != 1:
            raise ValueError(f"{file_name}: expected 1D time/position vectors")
        if t_arr.shape != x_arr.shape:
            raise ValueError(
                f"{file_name}: time/position length mismatch ({t_arr.size} vs {x_arr.size})"
            )
        if t_arr.size < MIN_SAMPLES:
            raise ValueError(f"{file_name}: need at least {MIN_SAMPLES} samples, got {t_arr.size}")
        if not (np.all(np.isfinite(t_arr)) and np.all(np.isfinite(x_arr))):
            raise ValueError(f"{file_name}: non-finite time or position values")
        if np.any(np.diff(t_arr) <= 0.0):
            raise ValueError(f"{file_name}: time values must be strictly increasing")

        df = pd.DataFrame({"t": t_arr, "position": x_arr})
        return cls(
            file_name=str(file_name),
            df=df,
            source_path=source_path,
            warnings=tuple(warnings),
        )

    @classmethod
    def from_samples(
        cls,
        file_name: str,
        samples: Iterable[Tuple[float, float]],
        **kwargs,
    ) -> Waveform:
        """Build a waveform from ``(time, position)`` pairs."""
        pairs = [(float(a), float(b)) for a, b in samples]
        if not pairs:
            raise ValueError(f"{file_name}: no samples")
        t, x = zip(*pairs)
        return cls.from_arrays(file_name, t, x, **kwargs)


@dataclass(frozen=True)
class IngestFailure:
    """A file the ingester could not parse. Detection is never run on it."""
    file_name: str
    error: str
