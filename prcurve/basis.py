"""Re-evaluation of a fit-time patsy spline basis on a prediction grid."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

import numpy as np
import pandas as pd
import patsy
from patsy import build_design_matrices

from .errors import DimensionMismatch
from .grid import PredictionGrid

SPLINE_CALLS = ("cr", "cc", "bs")
INTERCEPT_COLUMN = "Intercept"


@dataclass(frozen=True)
class TermColumnMap:
    """Positions of one term's columns within the model design."""

    term: str
    columns: tuple[int, ...]
    column_names: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.columns)


def spline_term_pattern(variable: str) -> str:
    calls = "|".join(SPLINE_CALLS)
    return rf"^(?:\w+\.)?(?:{calls})\(\s*{re.escape(variable)}\s*[,)]"


def match_columns(column_names: Sequence[str], pattern: str) -> tuple[int, ...]:
    """Indices of columns whose name matches ``pattern`` (regular expression search)."""
    rx = re.compile(pattern)
    return tuple(i for i, name in enumerate(column_names) if rx.search(str(name)))


def _resolve_term(design_info: patsy.DesignInfo, pattern: str) -> TermColumnMap:
    terms = list(design_info.term_name_slices)
    hits = [terms[i] for i in match_columns(terms, pattern)]
    if not hits:
        raise DimensionMismatch(f"No model term matches pattern {pattern!r}; terms={list(design_info.term_names)}")
    if len(hits) > 1:
        raise DimensionMismatch(f"Pattern {pattern!r} matches several terms: {hits}")
    term = hits[0]
    sl = design_info.term_name_slices[term]
    columns = tuple(range(sl.start, sl.stop))
    names = tuple(design_info.column_names[i] for i in columns)
    return TermColumnMap(term=term, columns=columns, column_names=names)


class SplineBasis:
    """Fit-time spline basis that can be evaluated at new x values.

    Knots, degree, boundary handling and any centering constraint live inside the
    stateful transform stored in ``design_info``; evaluation reuses that state and never
    re-derives it from the new points.
    """

    def __init__(self, design_info: patsy.DesignInfo, variable: str, term_columns: TermColumnMap) -> None:
        self.design_info = design_info
        self.variable = variable
        self.term_columns = term_columns
        self._term_info = design_info.subset([term_columns.term])

    @classmethod
    def from_design_info(
        cls,
        design_info: patsy.DesignInfo,
        variable: str,
        pattern: str | None = None,
    ) -> "SplineBasis":
        term_map = _resolve_term(design_info, pattern or spline_term_pattern(variable))
        logging.debug("Spline term %s -> columns %s", term_map.term, term_map.columns)
        return cls(design_info, variable, term_map)

    @property
    def column_names(self) -> list[str]:
        return list(self.design_info.column_names)

    def spline_values(self, x) -> np.ndarray:
        """Spline columns only, evaluated at ``x``."""
        values = np.asarray(x, dtype=float).reshape(-1)
        if not np.all(np.isfinite(values)):
            raise ValueError("Basis evaluation points must be finite.")
        data = pd.DataFrame({self.variable: values})
        try:
            matrix = np.asarray(build_design_matrices([self._term_info], data)[0], dtype=float)
        except (patsy.PatsyError, NotImplementedError) as exc:
            raise ValueError(
                f"Spline term {self.term_columns.term} cannot be evaluated over "
                f"[{values.min():.4g}, {values.max():.4g}]; points may lie outside its fit-time boundary knots."
            ) from exc
        if matrix.shape != (values.shape[0], len(self.term_columns)):
            raise DimensionMismatch(
                f"Spline term evaluated to shape {matrix.shape}; expected "
                f"({values.shape[0]}, {len(self.term_columns)})."
            )
        return matrix

    def evaluate(self, grid: PredictionGrid | Sequence[float], n_coefficients: int | None = None) -> pd.DataFrame:
        """Full-width basis matrix over the grid in fit-time column order.

        Spline columns carry the basis, the intercept column is 1 and every other
        covariate column is held at 0.
        """
        x = grid.x if isinstance(grid, PredictionGrid) else np.asarray(grid, dtype=float)
        names = self.column_names
        if n_coefficients is not None and int(n_coefficients) != len(names):
            raise DimensionMismatch(
                f"Basis has {len(names)} columns but the coefficient vector has {n_coefficients} entries."
            )
        out = np.zeros((x.shape[0], len(names)), dtype=float)
        if INTERCEPT_COLUMN in names:
            out[:, names.index(INTERCEPT_COLUMN)] = 1.0
        out[:, list(self.term_columns.columns)] = self.spline_values(x)
        return pd.DataFrame(out, columns=names, index=pd.Index(x, name=self.variable))
