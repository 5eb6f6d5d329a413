"""Default fitter: log-link GLM with a spline on the exposure and robust covariance."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
from statsmodels.tools.sm_exceptions import ConvergenceWarning, PerfectSeparationError, PerfectSeparationWarning

from .basis import SplineBasis


@dataclass
class SplineFit:
    label: str
    formula: str
    coefficients: pd.Series
    covariance: pd.DataFrame
    design_info: patsy.DesignInfo
    n: int
    events: int
    result: object

    def basis(self, variable: str, pattern: str | None = None) -> SplineBasis:
        return SplineBasis.from_design_info(self.design_info, variable, pattern=pattern)

    def coef_table(self) -> pd.DataFrame:
        se = np.sqrt(np.clip(np.diag(self.covariance.to_numpy()), 0.0, None))
        coef = self.coefficients.to_numpy()
        pvalues = getattr(self.result, "pvalues", None)
        return pd.DataFrame(
            {
                "model": self.label,
                "term": self.coefficients.index,
                "coef": coef,
                "std_error": se,
                "pr": np.exp(coef),
                "ci_low": np.exp(coef - 1.96 * se),
                "ci_high": np.exp(coef + 1.96 * se),
                "p_value": pvalues.to_numpy() if pvalues is not None else np.nan,
                "n_total": self.n,
                "events": self.events,
            }
        )


def spline_term(config: dict) -> str:
    x = config["exposure_col"]
    df = int(config.get("spline_df", 4))
    if config.get("spline_type", "cr") == "bs":
        bounds = config.get("spline_bounds")
        if bounds is None:
            return f"bs({x}, df={df})"
        lo, hi = (float(b) for b in bounds)
        return f"bs({x}, df={df}, lower_bound={lo!r}, upper_bound={hi!r})"
    return f"cr({x}, df={df}, constraints='center')"


def build_formula(config: dict) -> str:
    terms = [spline_term(config)]
    categorical = set(config.get("categorical_covariates", []))
    for col in config.get("covariates", []):
        terms.append(f"C({col})" if col in categorical else col)
    return f"{config['outcome_col']} ~ " + " + ".join(terms)


def prepare_model_df(df: pd.DataFrame, config: dict, notes: list[str] | None = None) -> pd.DataFrame:
    outcome = config["outcome_col"]
    cols = [outcome, config["exposure_col"], *config.get("covariates", [])]
    if config.get("id_col"):
        cols.append(config["id_col"])
    cols = list(dict.fromkeys(cols))
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"Model columns missing from data: {', '.join(missing)}")

    out = df[cols].copy()
    out[outcome] = pd.to_numeric(out[outcome], errors="coerce")
    dropped = int(out.isna().any(axis=1).sum())
    out = out.dropna()
    if dropped:
        msg = f"prepare_model_df: dropped {dropped} rows with missing model values."
        logging.warning(msg)
        if notes is not None:
            notes.append(msg)
    out[outcome] = out[outcome].astype(int)
    return out


def _family(config: dict):
    if config.get("family", "poisson") == "binomial":
        return sm.families.Binomial(link=sm.families.links.Log())
    return sm.families.Poisson()


def fit_spline_model(
    df: pd.DataFrame,
    config: dict,
    *,
    label: str = "spline_model",
    notes: list[str] | None = None,
) -> SplineFit:
    """Fit ``outcome ~ spline(exposure) + covariates`` and return coefficients + covariance."""
    data = prepare_model_df(df, config, notes=notes)
    formula = build_formula(config)
    y, X = patsy.dmatrices(formula, data, return_type="dataframe")
    y = y.iloc[:, 0]
    aligned = data.loc[y.index]

    n = int(len(y))
    events = int(y.sum())
    logging.info(
        "%s: n=%s events=%s event_rate=%.4f parameters=%s",
        label,
        n,
        events,
        events / n if n else 0.0,
        X.shape[1],
    )
    if n == 0 or events == 0:
        raise ValueError(f"{label}: no events to model (n={n}, events={events}).")

    id_col = config.get("id_col")
    model = sm.GLM(y, X, family=_family(config))
    try:
        with warnings.catch_warnings():
            warnings.filterwarnings("error", category=ConvergenceWarning)
            warnings.filterwarnings("error", category=PerfectSeparationWarning)
            if id_col:
                groups = aligned[id_col].astype("category").cat.codes.to_numpy()
                fit = model.fit(cov_type="cluster", cov_kwds={"groups": groups})
            else:
                fit = model.fit(cov_type=str(config.get("robust_cov_type", "HC0")))
    except (ConvergenceWarning, PerfectSeparationError, PerfectSeparationWarning, np.linalg.LinAlgError) as exc:
        logging.exception("%s: model fit failed", label)
        raise RuntimeError(f"{label}: model fit failed ({exc})") from exc

    covariance = pd.DataFrame(
        np.asarray(fit.cov_params(), dtype=float),
        index=X.columns,
        columns=X.columns,
    )
    return SplineFit(
        label=label,
        formula=formula,
        coefficients=pd.Series(np.asarray(fit.params, dtype=float), index=X.columns),
        covariance=covariance,
        design_info=X.design_info,
        n=n,
        events=events,
        result=fit,
    )
