"""End-to-end spline prevalence-ratio analysis over multiply-imputed data."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import numpy as np
import pandas as pd

from .fitting import SplineFit, fit_spline_model
from .grid import PredictionGrid, default_grid
from .imputation import build_imputed_datasets
from .pooling import PooledCurve, pool_curves
from .prediction import PredictedCurve, get_spline_preds
from .segments import SegmentSet, bin_segments


@dataclass
class AnalysisBundle:
    grid: PredictionGrid
    pooled: PooledCurve
    curves: list[PredictedCurve]
    fits: list[SplineFit]
    segments: SegmentSet
    notes: list[str]
    artifacts: dict[str, object]

    def pooled_table(self) -> pd.DataFrame:
        return self.pooled.to_frame(exponentiate=True)

    def imputation_table(self) -> pd.DataFrame:
        frames = []
        for i, curve in enumerate(self.curves, start=1):
            frame = curve.to_frame()
            frame.insert(0, "imputation", i)
            frames.append(frame)
        return pd.concat(frames, ignore_index=True)

    def fit_table(self) -> pd.DataFrame:
        return pd.concat([fit.coef_table() for fit in self.fits], ignore_index=True, sort=False)

    def segment_table(self) -> pd.DataFrame:
        return self.segments.to_frame()


def _safe_numeric(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    out = df.copy()
    for col in cols:
        if col in out.columns:
            out[col] = pd.to_numeric(out[col], errors="coerce")
    return out


def prepare_analysis_df(df: pd.DataFrame, config: dict, notes: list[str] | None = None) -> pd.DataFrame:
    outcome = config["outcome_col"]
    exposure = config["exposure_col"]
    for col in (outcome, exposure):
        if col not in df.columns:
            raise ValueError(f"Required column {col!r} not found in input data.")

    categorical = set(config.get("categorical_covariates", []))
    numeric_cols = [outcome, exposure, *[c for c in config.get("covariates", []) if c not in categorical]]
    out = _safe_numeric(df, numeric_cols)

    missing_outcome = int(out[outcome].isna().sum())
    if missing_outcome:
        out = out.loc[out[outcome].notna()].copy()
        msg = f"prepare_analysis_df: removed {missing_outcome} rows with missing outcome."
        logging.warning(msg)
        if notes is not None:
            notes.append(msg)
    return out


def predict_from_fit(fit: SplineFit, grid: PredictionGrid, config: dict, notes: list[str] | None = None) -> PredictedCurve:
    basis = fit.basis(config["exposure_col"])
    basis_matrix = basis.evaluate(grid, n_coefficients=len(fit.coefficients))
    return get_spline_preds(
        fit.coefficients.to_numpy(),
        fit.covariance.to_numpy(),
        basis_matrix,
        basis.term_columns,
        grid.reference_index,
        x=grid.x,
        notes=notes,
    )


def spline_fit_config(datasets: list[pd.DataFrame], grid: PredictionGrid, config: dict) -> dict:
    """Pin B-spline boundary knots so they span the grid and every completed exposure."""
    if config.get("spline_type", "cr") != "bs" or config.get("spline_bounds") is not None:
        return config
    x = config["exposure_col"]
    lo, hi = float(grid.x[0]), float(grid.x[-1])
    for imputed in datasets:
        values = pd.to_numeric(imputed[x], errors="coerce")
        if values.notna().any():
            lo, hi = min(lo, float(values.min())), max(hi, float(values.max()))
    return {**config, "spline_bounds": (lo, hi)}


def segment_source(datasets: list[pd.DataFrame], observed: pd.DataFrame, config: dict) -> tuple[pd.DataFrame, int]:
    """Rows to bin and how many completed copies of the data they stack."""
    if config.get("segments_source", "stacked") == "observed":
        cols = [config["exposure_col"], config["outcome_col"]]
        return observed.dropna(subset=cols), 1
    return pd.concat(datasets, ignore_index=True), len(datasets)


def build_segments(data: pd.DataFrame, grid: PredictionGrid, config: dict, replicates: int = 1) -> SegmentSet:
    return bin_segments(
        data[config["exposure_col"]],
        data[config["outcome_col"]],
        x_min=float(grid.x[0]),
        x_max=float(grid.x[-1]),
        bin_length=config.get("bin_length"),
        bin_count=config.get("bin_count"),
        summary=config.get("bin_summary", "rate"),
        threshold=config.get("bin_threshold"),
        positive_value=config.get("bin_positive_value", 1),
        labels=tuple(config.get("bin_labels", ("above", "below"))),
        replicates=replicates,
    )


def run_spline_analysis(df: pd.DataFrame, config: dict) -> AnalysisBundle:
    notes: list[str] = []
    data = prepare_analysis_df(df, config, notes=notes)
    grid = default_grid(data[config["exposure_col"]], config)
    logging.info(
        "Prediction grid: %s points over [%.4g, %.4g], reference=%.4g",
        len(grid),
        grid.x[0],
        grid.x[-1],
        grid.reference_value,
    )

    datasets = build_imputed_datasets(data, config, notes=notes)

    fit_config = spline_fit_config(datasets, grid, config)
    fits: list[SplineFit] = []
    curves: list[PredictedCurve] = []
    for i, imputed in enumerate(datasets, start=1):
        label = f"imputation_{i}"
        try:
            fit = fit_spline_model(imputed, fit_config, label=label, notes=notes)
        except (RuntimeError, ValueError) as exc:
            raise RuntimeError(f"Imputation {i} of {len(datasets)} could not be fitted: {exc}") from exc
        fits.append(fit)
        curves.append(predict_from_fit(fit, grid, config, notes=notes))

    pooled = pool_curves(
        curves,
        confidence_level=float(config.get("confidence_level", 0.95)),
        ci_method=config.get("ci_method", "normal"),
        complete_data_df=config.get("complete_data_df"),
    )
    if pooled.m == 1:
        notes.append("Single completed dataset: pooled variance is the within-imputation variance only.")

    segment_rows, replicates = segment_source(datasets, data, config)
    segments = build_segments(segment_rows, grid, config, replicates=replicates)
    notes.append(
        f"Bin segments: {len(segments)} non-empty bins of {len(segments.edges) - 1} "
        f"({config.get('bin_summary', 'rate')}, threshold={segments.threshold:.4g})."
    )

    peak = int(np.argmax(np.abs(pooled.pred)))
    logging.info(
        "Largest pooled log-PR %.4f at x=%.4g (se=%.4f)",
        pooled.pred[peak],
        pooled.x[peak],
        pooled.se[peak],
    )

    artifacts: dict[str, object] = {
        "datasets": {"analysis_df": data, "imputed": datasets},
        "formula": fits[0].formula if fits else "",
    }
    return AnalysisBundle(
        grid=grid,
        pooled=pooled,
        curves=curves,
        fits=fits,
        segments=segments,
        notes=notes,
        artifacts=artifacts,
    )
