"""End-to-end tests for fitting, per-imputation prediction and pooling."""

from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from prcurve.analysis import AnalysisBundle, run_spline_analysis
from prcurve.config import CONFIG, validate_config
from prcurve.fitting import build_formula, fit_spline_model
from prcurve.main import main


def _synthetic_cohort(n: int = 2000, seed: int = 17, missing: bool = True) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    age = rng.uniform(20, 80, size=n)
    z = rng.normal(size=n)
    sex = rng.choice(["F", "M"], size=n)
    log_p = np.log(0.15) + 0.001 * (age - 50) ** 2 + 0.1 * z + 0.1 * (sex == "M")
    p = np.clip(np.exp(log_p), 0.0, 0.95)
    df = pd.DataFrame(
        {
            "person_id": np.repeat(np.arange(n // 2), 2),
            "outcome": rng.binomial(1, p),
            "age": age,
            "z": z,
            "sex": sex,
        }
    )
    if missing:
        df.loc[rng.choice(n, 200, replace=False), "age"] = np.nan
        df.loc[rng.choice(n, 150, replace=False), "z"] = np.nan
    return df


def _config(**overrides) -> dict:
    cfg = dict(CONFIG)
    cfg.update(
        {
            "outcome_col": "outcome",
            "exposure_col": "age",
            "id_col": None,
            "covariates": ["z", "sex"],
            "categorical_covariates": ["sex"],
            "mi_num_imputations": 3,
            "mi_max_iter": 5,
            "mi_methods": {},
            "grid_points": 25,
            "reference_value": 50.0,
            "bin_count": 6,
            "bin_length": None,
        }
    )
    cfg.update(overrides)
    return cfg


def test_build_formula() -> None:
    assert build_formula(_config()) == "outcome ~ cr(age, df=4, constraints='center') + z + C(sex)"
    assert build_formula(_config(spline_type="bs", covariates=[])) == "outcome ~ bs(age, df=4)"
    assert (
        build_formula(_config(spline_type="bs", covariates=[], spline_bounds=(10, 90)))
        == "outcome ~ bs(age, df=4, lower_bound=10.0, upper_bound=90.0)"
    )


def test_fit_returns_aligned_coefficients_and_covariance() -> None:
    df = _synthetic_cohort(missing=False)
    fit = fit_spline_model(df, _config())

    assert list(fit.covariance.index) == list(fit.coefficients.index)
    assert list(fit.covariance.columns) == list(fit.coefficients.index)
    np.testing.assert_allclose(fit.covariance.to_numpy(), fit.covariance.to_numpy().T, atol=1e-12)
    assert fit.n == len(df)
    assert fit.events == int(df["outcome"].sum())

    basis = fit.basis("age")
    assert len(basis.term_columns) == 4
    table = fit.coef_table()
    assert {"term", "coef", "std_error", "pr", "ci_low", "ci_high"}.issubset(table.columns)


def test_cluster_robust_fit() -> None:
    df = _synthetic_cohort(missing=False)
    robust = fit_spline_model(df, _config())
    clustered = fit_spline_model(df, _config(id_col="person_id"))
    np.testing.assert_allclose(robust.coefficients, clustered.coefficients, rtol=1e-8)
    assert not np.allclose(robust.covariance.to_numpy(), clustered.covariance.to_numpy())


def test_run_spline_analysis_pools_imputations() -> None:
    bundle = run_spline_analysis(_synthetic_cohort(), _config())

    assert isinstance(bundle, AnalysisBundle)
    assert bundle.pooled.m == 3
    assert len(bundle.curves) == 3
    ref = bundle.grid.reference_index
    assert bundle.grid.reference_value == 50.0
    assert bundle.pooled.pred[ref] == 0.0
    assert bundle.pooled.se[ref] == 0.0
    assert np.all(bundle.pooled.se >= 0)
    assert np.all(bundle.pooled.ci_lwr <= bundle.pooled.pred)
    assert np.all(bundle.pooled.pred <= bundle.pooled.ci_upr)
    # U-shaped truth: both ends sit above the reference.
    assert bundle.pooled.pred[0] > 0
    assert bundle.pooled.pred[-1] > 0

    assert len(bundle.imputation_table()) == 3 * len(bundle.grid)
    assert 0 < len(bundle.segments) <= 6
    assert set(bundle.segment_table()["label"]) <= {"above", "below"}
    assert len(bundle.fit_table()) == 3 * len(bundle.fits[0].coefficients)
    # Stacked imputations report counts per completed dataset, not summed over copies.
    total = sum(s.n for s in bundle.segments)
    assert 1800 <= total <= 2000 + 1e-6


def test_bspline_grid_wider_than_data() -> None:
    cfg = _config(spline_type="bs", grid_min=10.0, grid_max=90.0, grid_points=17)
    bundle = run_spline_analysis(_synthetic_cohort(), cfg)

    assert bundle.grid.x[0] == 10.0 and bundle.grid.x[-1] == 90.0
    assert np.all(np.isfinite(bundle.pooled.pred))
    assert bundle.pooled.pred[bundle.grid.reference_index] == 0.0
    assert all("lower_bound=" in fit.formula for fit in bundle.fits)


def test_observed_segments_and_complete_data() -> None:
    bundle = run_spline_analysis(_synthetic_cohort(missing=False), _config(segments_source="observed"))
    assert bundle.pooled.m == 1
    np.testing.assert_allclose(bundle.pooled.se, bundle.curves[0].se)
    assert sum(s.n for s in bundle.segments) == 2000
    assert any("Single completed dataset" in note for note in bundle.notes)


def test_validate_config_rejects_bad_settings() -> None:
    validate_config(_config())
    with pytest.raises(ValueError):
        validate_config(_config(family="gaussian"))
    with pytest.raises(ValueError):
        validate_config(_config(mi_methods={"age": "hot-deck"}))
    with pytest.raises(ValueError):
        validate_config(_config(confidence_level=1.5))


def test_main_writes_tables_and_report(tmp_path: Path) -> None:
    csv_path = tmp_path / "cohort.csv"
    _synthetic_cohort().to_csv(csv_path, index=False)
    out_dir = tmp_path / "out"

    result = main(_config(input_csv=str(csv_path), output_dir=str(out_dir), small_cell_threshold=5))

    for name in ["pooled_curve.csv", "imputation_curves.csv", "bin_segments.csv", "model_fits.csv", "REPORT.md"]:
        assert (out_dir / name).exists()
        assert name in result.generated_files
    pooled = pd.read_csv(out_dir / "pooled_curve.csv")
    assert pooled.loc[pooled["is_reference"], "pr"].item() == pytest.approx(1.0)
    report = (out_dir / "REPORT.md").read_text(encoding="utf-8")
    assert "# Spline Prevalence-Ratio Curve Report" in report
    assert not any("Missing expected output artifact" in note for note in result.notes)
