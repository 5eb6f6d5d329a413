"""Configuration for spline prevalence-ratio curves over multiply-imputed data."""

from __future__ import annotations

import os
from pathlib import Path

CHANGE_LOG = [
    "2026-10-12: Added t-based pooled intervals (Rubin / Barnard-Rubin dof) as an opt-in; normal quantiles remain the default.",
    "2026-10-12: Spline term columns are resolved once into an explicit column map when the basis is built.",
    "2026-10-09: Bin segments can be computed on the stacked imputed data or on complete observed rows.",
    "2026-10-09: Added small-cell suppression for bin segment tables (disabled by default).",
    "2026-10-05: Prediction variances use the difference to the reference row so the reference has zero width.",
    "2026-10-05: Initial pipeline: iterative imputation, modified Poisson GLM with robust SEs, Rubin pooling.",
]

ASSUMPTIONS = [
    "The outcome is binary (0/1); prevalence ratios come from a log-link model on the outcome.",
    "Modified Poisson regression with sandwich (or cluster-robust) covariance is the default prevalence-ratio model.",
    "The exposure enters through a natural cubic regression spline (patsy cr) with a centering constraint.",
    "Missing covariate/exposure values are imputed M times; outcome rows with missing outcome are dropped before fitting.",
    "Curves are expressed relative to the reference exposure value (PR = 1 at the reference).",
    "Pooled intervals use standard-normal quantiles unless ci_method='t' is configured.",
]


def _env_list(name: str) -> list[str]:
    raw = os.environ.get(name, "").strip()
    return [item.strip() for item in raw.split(",") if item.strip()]


CONFIG = {
    "input_csv": os.environ.get("PRCURVE_INPUT_CSV", "").strip(),
    "output_dir": os.environ.get("PRCURVE_OUTPUT_DIR", str(Path.cwd() / "prcurve_outputs")),
    "outcome_col": os.environ.get("PRCURVE_OUTCOME", "outcome").strip(),
    "exposure_col": os.environ.get("PRCURVE_EXPOSURE", "x").strip(),
    # Cluster identifier for robust variance; empty means HC sandwich errors.
    "id_col": os.environ.get("PRCURVE_ID_COL", "").strip() or None,
    "covariates": _env_list("PRCURVE_COVARIATES"),
    "categorical_covariates": _env_list("PRCURVE_CATEGORICAL"),
    "spline_type": "cr",
    "spline_df": 4,
    # (lower, upper) boundary knots for bs; None spans the grid and the completed data.
    "spline_bounds": None,
    "grid_points": 100,
    "grid_min": None,
    "grid_max": None,
    "reference_value": None,
    "confidence_level": 0.95,
    "ci_method": "normal",
    "complete_data_df": None,
    "family": "poisson",
    "robust_cov_type": "HC0",
    "random_seed": 42,
    "mi_num_imputations": 5,
    "mi_max_iter": 20,
    # Column -> method tag ("iterative", "stochastic", "none"); unlisted columns with gaps use "iterative".
    "mi_methods": {},
    "mi_strata_columns": [],
    "bin_length": None,
    "bin_count": 10,
    "bin_summary": "rate",
    "bin_threshold": None,
    "bin_positive_value": 1,
    "bin_labels": ("above", "below"),
    "segments_source": "stacked",
    "small_cell_threshold": 0,
    "print_tables": False,
    "print_table_max_rows": 30,
}

REQUIRED_OUTPUT_FILES = [
    "pooled_curve.csv",
    "imputation_curves.csv",
    "bin_segments.csv",
    "model_fits.csv",
    "REPORT.md",
]

FAMILIES = ("poisson", "binomial")
MI_METHODS = ("iterative", "stochastic", "none")
SPLINE_TYPES = ("cr", "bs")
SEGMENT_SOURCES = ("stacked", "observed")


def validate_config(config: dict | None = None) -> None:
    cfg = CONFIG if config is None else config
    if not cfg.get("outcome_col") or not cfg.get("exposure_col"):
        raise ValueError("outcome_col and exposure_col must be set.")
    if cfg.get("family") not in FAMILIES:
        raise ValueError(f"family must be one of {FAMILIES}.")
    if cfg.get("spline_type") not in SPLINE_TYPES:
        raise ValueError(f"spline_type must be one of {SPLINE_TYPES}.")
    if int(cfg.get("spline_df", 0)) < 1:
        raise ValueError("spline_df must be at least 1.")
    if not 0 < float(cfg.get("confidence_level", 0.95)) < 1:
        raise ValueError("confidence_level must fall within (0, 1).")
    if int(cfg.get("mi_num_imputations", 1)) < 1:
        raise ValueError("mi_num_imputations must be at least 1.")
    bad = {col: tag for col, tag in dict(cfg.get("mi_methods", {})).items() if tag not in MI_METHODS}
    if bad:
        raise ValueError(f"Unknown imputation method tags: {bad}")
    if cfg.get("segments_source", "stacked") not in SEGMENT_SOURCES:
        raise ValueError(f"segments_source must be one of {SEGMENT_SOURCES}.")


def validate_run_config(config: dict | None = None) -> None:
    cfg = CONFIG if config is None else config
    validate_config(cfg)
    if not cfg.get("input_csv"):
        raise ValueError("PRCURVE_INPUT_CSV is empty. Set PRCURVE_INPUT_CSV before running.")


def ensure_output_dir(config: dict | None = None) -> Path:
    cfg = CONFIG if config is None else config
    out_dir = Path(cfg["output_dir"]).resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir
