"""Centered spline predictions with analytic standard errors for one fitted model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import pandas as pd

from .basis import TermColumnMap
from .errors import DimensionMismatch, NumericInstability


@dataclass(frozen=True)
class PredictedCurve:
    """Log-scale prediction relative to the reference row, per grid point."""

    x: np.ndarray
    pred: np.ndarray
    se: np.ndarray
    reference_index: int
    clamped_rows: tuple[int, ...] = field(default=())

    def __len__(self) -> int:
        return int(self.pred.shape[0])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"x": self.x, "pred": self.pred, "se": self.se})


def _as_array(values, label: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if not np.all(np.isfinite(arr)):
        raise NumericInstability(f"{label} contains non-finite values.")
    return arr


def _term_indices(term_columns: TermColumnMap | Sequence[int], n_cols: int) -> np.ndarray:
    cols = term_columns.columns if isinstance(term_columns, TermColumnMap) else term_columns
    idx = np.asarray(list(cols), dtype=int)
    if idx.size == 0:
        raise DimensionMismatch("No term columns selected for prediction.")
    if idx.min() < 0 or idx.max() >= n_cols:
        raise DimensionMismatch(f"Term columns {idx.tolist()} out of range for {n_cols} basis columns.")
    return idx


def get_spline_preds(
    coefficients,
    covariance,
    basis_matrix,
    term_columns: TermColumnMap | Sequence[int],
    reference_index: int,
    x=None,
    notes: list[str] | None = None,
) -> PredictedCurve:
    """Centered linear predictor and its standard error along the grid.

    Only the term columns enter: shared terms such as the intercept cancel when every
    row is differenced against the reference row. The variance of each difference uses
    the full covariance of the term coefficients, so both the prediction and the
    standard error are exactly zero at the reference row.
    """
    beta = _as_array(coefficients, "Coefficient vector").reshape(-1)
    vcov = _as_array(covariance, "Covariance matrix")
    basis = _as_array(basis_matrix, "Basis matrix")

    if basis.ndim != 2:
        raise DimensionMismatch("Basis matrix must be two-dimensional.")
    n_rows, n_cols = basis.shape
    if beta.shape[0] != n_cols:
        raise DimensionMismatch(f"Coefficient length {beta.shape[0]} does not match {n_cols} basis columns.")
    if vcov.shape != (n_cols, n_cols):
        raise DimensionMismatch(f"Covariance shape {vcov.shape} does not match {n_cols} coefficients.")
    ref = int(reference_index)
    if not 0 <= ref < n_rows:
        raise DimensionMismatch(f"Reference row {ref} out of range for {n_rows} grid rows.")

    idx = _term_indices(term_columns, n_cols)
    beta_t = beta[idx]
    vcov_t = vcov[np.ix_(idx, idx)]
    diff = basis[:, idx] - basis[ref, idx]

    pred = diff @ beta_t
    variance = np.einsum("ij,jk,ik->i", diff, vcov_t, diff)
    if not (np.all(np.isfinite(pred)) and np.all(np.isfinite(variance))):
        raise NumericInstability("Prediction produced non-finite values.")

    negative = np.flatnonzero(variance < 0)
    if negative.size:
        msg = (
            f"Clamped {negative.size} negative prediction variances to zero "
            f"(min={float(variance[negative].min()):.3g})."
        )
        logging.warning(msg)
        if notes is not None:
            notes.append(msg)
        variance = np.clip(variance, 0.0, None)

    if x is None:
        x = basis_matrix.index.to_numpy(dtype=float) if isinstance(basis_matrix, pd.DataFrame) else np.arange(n_rows, dtype=float)
    x = np.asarray(x, dtype=float)
    if x.shape[0] != n_rows:
        raise DimensionMismatch(f"Grid has {x.shape[0]} positions but the basis has {n_rows} rows.")

    return PredictedCurve(
        x=x,
        pred=pred,
        se=np.sqrt(variance),
        reference_index=ref,
        clamped_rows=tuple(int(i) for i in negative),
    )
