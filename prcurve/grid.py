"""Prediction grid construction."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class PredictionGrid:
    x: np.ndarray
    reference_index: int

    @property
    def reference_value(self) -> float:
        return float(self.x[self.reference_index])

    def __len__(self) -> int:
        return int(self.x.shape[0])


def build_grid(x_min: float, x_max: float, n_points: int, x_ref: float) -> PredictionGrid:
    """Evenly spaced grid over [x_min, x_max] with x_ref inserted if missing."""
    x_min, x_max, x_ref = float(x_min), float(x_max), float(x_ref)
    if not all(np.isfinite([x_min, x_max, x_ref])):
        raise ValueError("Grid bounds and reference value must be finite.")
    if x_min >= x_max:
        raise ValueError(f"Grid requires x_min < x_max (got {x_min}, {x_max}).")
    if not x_min <= x_ref <= x_max:
        raise ValueError(f"Reference value {x_ref} lies outside [{x_min}, {x_max}].")
    if int(n_points) < 2:
        raise ValueError("Grid needs at least two points.")

    x = np.linspace(x_min, x_max, int(n_points))
    x = np.unique(np.append(x, x_ref))
    ref_idx = int(np.flatnonzero(x == x_ref)[0])
    return PredictionGrid(x=x, reference_index=ref_idx)


def grid_from_values(values, x_ref: float) -> PredictionGrid:
    """Wrap caller-supplied grid values; x_ref must be one of them."""
    x = np.asarray(values, dtype=float)
    if x.ndim != 1 or x.size == 0:
        raise ValueError("Grid values must be a non-empty one-dimensional sequence.")
    if not np.all(np.isfinite(x)):
        raise ValueError("Grid values must be finite.")
    if x.size > 1 and not np.all(np.diff(x) > 0):
        raise ValueError("Grid values must be strictly increasing.")
    hits = np.flatnonzero(x == float(x_ref))
    if hits.size == 0:
        raise ValueError(f"Reference value {x_ref} is not a grid point.")
    return PredictionGrid(x=x, reference_index=int(hits[0]))


def default_grid(series: pd.Series, config: dict) -> PredictionGrid:
    """Grid from config, falling back to the observed range and median of the exposure."""
    values = pd.to_numeric(series, errors="coerce").dropna()
    if values.empty:
        raise ValueError("Exposure column has no observed values to derive a grid from.")
    x_min = config.get("grid_min")
    x_max = config.get("grid_max")
    x_ref = config.get("reference_value")
    x_min = float(values.min()) if x_min is None else float(x_min)
    x_max = float(values.max()) if x_max is None else float(x_max)
    x_ref = float(values.median()) if x_ref is None else float(x_ref)
    return build_grid(x_min, x_max, int(config.get("grid_points", 100)), x_ref)
