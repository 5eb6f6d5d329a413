"""Tests for fit-time spline basis re-evaluation."""

from __future__ import annotations

from pathlib import Path
import sys

import numpy as np
import pandas as pd
import patsy
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from prcurve.basis import SplineBasis, TermColumnMap, match_columns, spline_term_pattern
from prcurve.errors import DimensionMismatch
from prcurve.grid import build_grid


def _fit_data(n: int = 300, seed: int = 7) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    return pd.DataFrame(
        {
            "y": rng.integers(0, 2, size=n),
            "age": rng.uniform(20, 80, size=n),
            "bmi": rng.normal(28, 4, size=n),
            "sex": rng.choice(["F", "M"], size=n),
        }
    )


def _design(formula: str = "y ~ cr(age, df=4, constraints='center') + bmi + C(sex)"):
    data = _fit_data()
    _, X = patsy.dmatrices(formula, data, return_type="dataframe")
    return data, X


def test_term_columns_resolved_once_from_design_info() -> None:
    _, X = _design()
    basis = SplineBasis.from_design_info(X.design_info, "age")

    assert isinstance(basis.term_columns, TermColumnMap)
    assert len(basis.term_columns) == 4
    assert basis.term_columns.column_names == tuple(X.columns[i] for i in basis.term_columns.columns)
    assert all(name.startswith("cr(age") for name in basis.term_columns.column_names)
    assert "Intercept" not in basis.term_columns.column_names


def test_round_trip_reproduces_fit_time_columns() -> None:
    data, X = _design()
    basis = SplineBasis.from_design_info(X.design_info, "age")

    evaluated = basis.evaluate(data["age"].to_numpy())
    cols = list(basis.term_columns.column_names)
    np.testing.assert_allclose(evaluated[cols].to_numpy(), X[cols].to_numpy(), rtol=1e-10, atol=1e-12)


def test_evaluate_returns_full_width_in_model_order() -> None:
    _, X = _design()
    basis = SplineBasis.from_design_info(X.design_info, "age")
    grid = build_grid(20, 80, 13, 50)

    matrix = basis.evaluate(grid, n_coefficients=X.shape[1])

    assert list(matrix.columns) == list(X.columns)
    assert matrix.shape == (len(grid), X.shape[1])
    assert np.all(matrix["Intercept"] == 1.0)
    assert np.all(matrix["bmi"] == 0.0)
    np.testing.assert_allclose(matrix.index.to_numpy(), grid.x)


def test_evaluate_rejects_coefficient_count_mismatch() -> None:
    _, X = _design()
    basis = SplineBasis.from_design_info(X.design_info, "age")
    with pytest.raises(DimensionMismatch):
        basis.evaluate([30.0, 40.0], n_coefficients=X.shape[1] + 1)


def test_evaluate_rejects_non_finite_points() -> None:
    _, X = _design()
    basis = SplineBasis.from_design_info(X.design_info, "age")
    with pytest.raises(ValueError):
        basis.evaluate([30.0, np.nan])


def test_bspline_term_is_recognised() -> None:
    data, X = _design("y ~ bs(age, df=5) + bmi")
    basis = SplineBasis.from_design_info(X.design_info, "age")
    assert len(basis.term_columns) == 5
    evaluated = basis.evaluate(np.sort(data["age"].to_numpy()))
    assert evaluated.shape[1] == X.shape[1]


def test_missing_spline_term_raises() -> None:
    _, X = _design("y ~ age + bmi")
    with pytest.raises(DimensionMismatch):
        SplineBasis.from_design_info(X.design_info, "age")


def test_match_columns_by_pattern() -> None:
    names = ["Intercept", "cr(age, df=3)[0]", "cr(age, df=3)[1]", "bmi", "cr(agegroup, df=3)[0]"]
    assert match_columns(names, spline_term_pattern("age")) == (1, 2)
    assert match_columns(names, r"^bmi$") == (3,)
    assert match_columns(names, r"^nothing") == ()


def test_natural_spline_extends_past_fit_range() -> None:
    _, X = _design()
    basis = SplineBasis.from_design_info(X.design_info, "age")
    matrix = basis.evaluate([10.0, 50.0, 90.0])
    assert matrix.shape == (3, X.shape[1])
    assert np.all(np.isfinite(matrix.to_numpy()))


def test_bspline_outside_boundary_knots_raises_value_error() -> None:
    _, X = _design("y ~ bs(age, df=4) + bmi")
    basis = SplineBasis.from_design_info(X.design_info, "age")
    with pytest.raises(ValueError, match="boundary knots"):
        basis.evaluate([10.0, 50.0, 90.0])


def test_bspline_with_wide_bounds_covers_grid() -> None:
    _, X = _design("y ~ bs(age, df=4, lower_bound=10.0, upper_bound=90.0) + bmi")
    basis = SplineBasis.from_design_info(X.design_info, "age")
    assert len(basis.term_columns) == 4
    matrix = basis.evaluate(build_grid(10, 90, 9, 50))
    assert matrix.shape == (9, X.shape[1])
    assert np.all(np.isfinite(matrix.to_numpy()))
