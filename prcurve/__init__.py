"""Spline prevalence-ratio curves pooled across multiply-imputed datasets."""

from .basis import SplineBasis, TermColumnMap, match_columns
from .errors import DimensionMismatch, GridMismatch, InvalidBinningParameters, NumericInstability, PrCurveError
from .grid import PredictionGrid, build_grid, grid_from_values
from .pooling import PooledCurve, pool_curves
from .prediction import PredictedCurve, get_spline_preds
from .segments import Segment, SegmentSet, bin_segments

__all__ = [
    "DimensionMismatch",
    "GridMismatch",
    "InvalidBinningParameters",
    "NumericInstability",
    "PooledCurve",
    "PrCurveError",
    "PredictedCurve",
    "PredictionGrid",
    "Segment",
    "SegmentSet",
    "SplineBasis",
    "TermColumnMap",
    "bin_segments",
    "build_grid",
    "get_spline_preds",
    "grid_from_values",
    "match_columns",
    "pool_curves",
]
