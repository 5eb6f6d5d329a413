"""Rubin's rules pooling of predicted curves across imputations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
from scipy.stats import norm, t as student_t

from .errors import GridMismatch
from .prediction import PredictedCurve

CI_METHODS = ("normal", "t")


@dataclass(frozen=True)
class PooledCurve:
    x: np.ndarray
    pred: np.ndarray
    se: np.ndarray
    ci_lwr: np.ndarray
    ci_upr: np.ndarray
    within: np.ndarray
    between: np.ndarray
    total: np.ndarray
    dof: np.ndarray
    m: int
    confidence_level: float
    ci_method: str
    reference_index: int

    def to_frame(self, exponentiate: bool = False) -> pd.DataFrame:
        out = pd.DataFrame(
            {
                "x": self.x,
                "pred": self.pred,
                "se": self.se,
                "ci_lwr": self.ci_lwr,
                "ci_upr": self.ci_upr,
                "within": self.within,
                "between": self.between,
                "total": self.total,
                "dof": self.dof,
            }
        )
        if exponentiate:
            out["pr"] = np.exp(self.pred)
            out["pr_lwr"] = np.exp(self.ci_lwr)
            out["pr_upr"] = np.exp(self.ci_upr)
        out["is_reference"] = False
        out.loc[self.reference_index, "is_reference"] = True
        return out


def _check_grids(curves: Sequence[PredictedCurve]) -> None:
    first = curves[0]
    for i, curve in enumerate(curves[1:], start=2):
        if len(curve) != len(first):
            raise GridMismatch(f"Curve {i} has {len(curve)} grid points; curve 1 has {len(first)}.")
        if curve.reference_index != first.reference_index:
            raise GridMismatch(
                f"Curve {i} uses reference row {curve.reference_index}; curve 1 uses {first.reference_index}."
            )
        if not np.array_equal(curve.x, first.x):
            raise GridMismatch(f"Curve {i} is defined over different grid positions than curve 1.")


def _rubin_dof(within: np.ndarray, between: np.ndarray, total: np.ndarray, m: int, complete_data_df: float | None) -> np.ndarray:
    if m < 2:
        return np.full(within.shape, np.inf)
    inflated = (1.0 + 1.0 / m) * between
    with np.errstate(divide="ignore", invalid="ignore"):
        r = np.where(within > 0, inflated / within, np.inf)
        dof = np.where(between > 0, (m - 1) * np.square(1.0 + 1.0 / r), np.inf)
        if complete_data_df is not None:
            v_com = float(complete_data_df)
            lam = np.where(total > 0, inflated / total, 0.0)
            v_obs = (v_com + 1.0) / (v_com + 3.0) * v_com * (1.0 - lam)
            adjusted = 1.0 / (1.0 / dof + 1.0 / v_obs)
            dof = np.where(v_obs > 0, adjusted, dof)
    return dof


def _t_quantile(q: float, dof: np.ndarray) -> np.ndarray:
    # infinite dof collapses to the normal quantile
    finite = np.isfinite(dof)
    out = np.full(dof.shape, norm.ppf(q))
    out[finite] = student_t.ppf(q, dof[finite])
    return out


def pool_curves(
    curves: Sequence[PredictedCurve],
    confidence_level: float = 0.95,
    ci_method: str = "normal",
    complete_data_df: float | None = None,
) -> PooledCurve:
    """Pool M per-imputation curves with Rubin's within/between decomposition.

    The default interval uses standard-normal quantiles. ``ci_method="t"`` switches to
    Student-t quantiles with Rubin degrees of freedom, adjusted by Barnard-Rubin when
    ``complete_data_df`` is supplied.
    """
    curves = list(curves)
    if not curves:
        raise ValueError("Pooling requires at least one predicted curve.")
    if not 0 < float(confidence_level) < 1:
        raise ValueError("confidence_level must fall within (0, 1).")
    if ci_method not in CI_METHODS:
        raise ValueError(f"Unknown ci_method {ci_method!r}; expected one of {CI_METHODS}.")
    if complete_data_df is not None and float(complete_data_df) <= 0:
        raise ValueError("complete_data_df must be positive.")
    _check_grids(curves)

    m = len(curves)
    preds = np.vstack([c.pred for c in curves])
    ses = np.vstack([c.se for c in curves])

    pooled = preds.mean(axis=0)
    within = np.square(ses).mean(axis=0)
    between = preds.var(axis=0, ddof=1) if m > 1 else np.zeros_like(pooled)
    total = within + between + between / m
    se = np.sqrt(total)

    alpha = 1.0 - float(confidence_level)
    if ci_method == "normal":
        dof = np.full(pooled.shape, np.inf)
        z_lower, z_upper = norm.ppf(alpha / 2.0), norm.ppf(1.0 - alpha / 2.0)
    else:
        dof = _rubin_dof(within, between, total, m, complete_data_df)
        z_lower, z_upper = _t_quantile(alpha / 2.0, dof), _t_quantile(1.0 - alpha / 2.0, dof)

    logging.info(
        "Pooled %s imputations over %s grid points (max between/total=%.3f)",
        m,
        pooled.shape[0],
        float(np.max(np.divide(between, total, out=np.zeros_like(total), where=total > 0))),
    )

    return PooledCurve(
        x=curves[0].x.copy(),
        pred=pooled,
        se=se,
        ci_lwr=pooled + z_lower * se,
        ci_upr=pooled + z_upper * se,
        within=within,
        between=between,
        total=total,
        dof=dof,
        m=m,
        confidence_level=float(confidence_level),
        ci_method=ci_method,
        reference_index=curves[0].reference_index,
    )
