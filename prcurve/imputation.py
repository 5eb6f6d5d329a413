"""Default multiple-imputation adapter producing M completed datasets."""

from __future__ import annotations

import logging
import warnings

import numpy as np
import pandas as pd
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer


def _winsorize_series(series: pd.Series, lower_q: float, upper_q: float) -> pd.Series:
    out = pd.to_numeric(series, errors="coerce").astype(float).copy()
    non_null = out.dropna()
    if non_null.empty:
        return out
    lo = float(non_null.quantile(lower_q))
    hi = float(non_null.quantile(upper_q))
    return out.clip(lower=lo, upper=hi)


def _model_columns(config: dict) -> list[str]:
    cols = [config["outcome_col"], config["exposure_col"], *config.get("covariates", [])]
    return list(dict.fromkeys(cols))


def _target_methods(df: pd.DataFrame, config: dict) -> dict[str, str]:
    tags = dict(config.get("mi_methods", {}))
    targets: dict[str, str] = {}
    for col in _model_columns(config):
        if col == config["outcome_col"] or col not in df.columns:
            continue
        if not df[col].isna().any():
            continue
        tag = tags.get(col, "iterative")
        if tag == "iterative" and not pd.api.types.is_numeric_dtype(df[col]):
            tag = "stochastic"
        if tag != "none":
            targets[col] = tag
    return targets


def _imputation_design(base: pd.DataFrame, config: dict) -> pd.DataFrame:
    numeric = [c for c in _model_columns(config) if c in base.columns and pd.api.types.is_numeric_dtype(base[c])]
    categorical = [c for c in _model_columns(config) if c in base.columns and c not in numeric]

    design = pd.DataFrame(index=base.index)
    for col in numeric:
        design[col] = pd.to_numeric(base[col], errors="coerce")
    if categorical:
        dummies = pd.get_dummies(base[categorical].astype("category"), prefix=categorical, dummy_na=True)
        design = pd.concat([design, dummies.astype(float)], axis=1)
    for col in design.columns:
        if design[col].notna().sum() == 0:
            design[col] = 0.0
        else:
            design[col] = _winsorize_series(design[col], 0.001, 0.999)
    return design


def _stochastic_fill(out: pd.DataFrame, col: str, strata_cols: list[str], rng: np.random.Generator) -> pd.Series:
    series = out[col].copy()
    miss = series.isna()
    if not pd.api.types.is_numeric_dtype(series):
        observed = series.dropna()
        if observed.empty:
            return series
        freq = observed.value_counts(normalize=True)
        series.loc[miss] = rng.choice(freq.index.to_numpy(), size=int(miss.sum()), p=freq.to_numpy())
        return series

    series = pd.to_numeric(series, errors="coerce")
    if strata_cols:
        mu = out.groupby(strata_cols, observed=False)[col].transform("mean").fillna(series.mean())
        sigma = out.groupby(strata_cols, observed=False)[col].transform("std").fillna(series.std(ddof=1))
    else:
        mu = pd.Series(series.mean(), index=out.index)
        sigma = pd.Series(series.std(ddof=1), index=out.index)
    sigma = sigma.fillna(0.0).clip(lower=0.0)
    draws = rng.normal(mu.to_numpy(), sigma.to_numpy())
    series.loc[miss] = draws[miss.to_numpy()]
    return series.fillna(series.median())


def build_imputed_datasets(df: pd.DataFrame, config: dict, notes: list[str] | None = None) -> list[pd.DataFrame]:
    """Return M completed copies of ``df``.

    Columns tagged "iterative" are filled from one chained-equations pass per
    imputation with posterior sampling; "stochastic" columns get stratified normal
    draws (numeric) or draws from the observed level frequencies (categorical).
    With nothing to impute a single copy is returned.
    """
    targets = _target_methods(df, config)
    if not targets:
        return [df.copy()]

    m = max(1, int(config.get("mi_num_imputations", 5)))
    max_iter = max(5, int(config.get("mi_max_iter", 20)))
    seed = int(config.get("random_seed", 42))
    strata_cols = [c for c in config.get("mi_strata_columns", []) if c in df.columns]
    iterative = [c for c, tag in targets.items() if tag == "iterative"]
    stochastic = [c for c, tag in targets.items() if tag == "stochastic"]

    base = df.copy()
    design = _imputation_design(base, config) if iterative else None

    outputs: list[pd.DataFrame] = []
    for i in range(m):
        out = base.copy()
        if design is not None:
            imputer = IterativeImputer(
                random_state=seed + i,
                sample_posterior=True,
                max_iter=max_iter,
                initial_strategy="median",
            )
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=RuntimeWarning)
                warnings.filterwarnings("ignore", category=UserWarning)
                imputed_matrix = imputer.fit_transform(design)
            imputed_df = pd.DataFrame(imputed_matrix, index=design.index, columns=design.columns)
            for col in iterative:
                # Only the gaps are replaced; winsorized observed values stay as recorded.
                out[col] = out[col].where(out[col].notna(), imputed_df[col])
        rng = np.random.default_rng(seed + i)
        for col in stochastic:
            out[col] = _stochastic_fill(out, col, strata_cols, rng)
        outputs.append(out)

    msg = f"Multiple imputation used {len(outputs)} datasets for: {', '.join(targets)}."
    logging.info(msg)
    if notes is not None:
        notes.append(msg)
    return outputs
