"""Tests for the default multiple-imputation adapter."""

from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from prcurve.imputation import build_imputed_datasets


def _config(**overrides) -> dict:
    cfg = {
        "outcome_col": "outcome",
        "exposure_col": "age",
        "covariates": ["z", "sex"],
        "mi_num_imputations": 3,
        "mi_max_iter": 5,
        "random_seed": 1,
        "mi_methods": {},
    }
    cfg.update(overrides)
    return cfg


def _frame(n: int = 200, seed: int = 2, missing: bool = True) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    df = pd.DataFrame(
        {
            "outcome": rng.integers(0, 2, size=n),
            "age": rng.uniform(20, 80, size=n),
            "z": rng.normal(size=n),
            "sex": rng.choice(["F", "M"], size=n).astype(object),
        }
    )
    if missing:
        df.loc[rng.choice(n, 30, replace=False), "age"] = np.nan
        df.loc[rng.choice(n, 20, replace=False), "z"] = np.nan
    return df


def test_complete_data_returns_single_copy() -> None:
    df = _frame(missing=False)
    notes: list[str] = []
    out = build_imputed_datasets(df, _config(), notes=notes)
    assert len(out) == 1
    pd.testing.assert_frame_equal(out[0], df)
    assert out[0] is not df
    assert notes == []


def test_iterative_imputation_fills_gaps_and_keeps_observed() -> None:
    df = _frame()
    notes: list[str] = []
    out = build_imputed_datasets(df, _config(), notes=notes)

    assert len(out) == 3
    observed = df["age"].notna()
    for imputed in out:
        assert not imputed[["age", "z"]].isna().any().any()
        pd.testing.assert_series_equal(imputed.loc[observed, "age"], df.loc[observed, "age"])
    # Posterior sampling gives different draws per imputation.
    assert not np.allclose(out[0].loc[~observed, "age"], out[1].loc[~observed, "age"])
    assert notes and "age" in notes[0]


def test_stochastic_and_skipped_columns() -> None:
    df = _frame()
    df.loc[df.index[:15], "sex"] = np.nan
    cfg = _config(mi_methods={"z": "none", "age": "stochastic"})
    out = build_imputed_datasets(df, cfg)

    for imputed in out:
        assert imputed["z"].isna().sum() == df["z"].isna().sum()
        assert not imputed["age"].isna().any()
        assert set(imputed["sex"].unique()) <= {"F", "M"}
