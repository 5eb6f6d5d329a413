"""Exception taxonomy for curve prediction, pooling and binning."""

from __future__ import annotations


class PrCurveError(Exception):
    """Base class for all prcurve errors."""


class DimensionMismatch(PrCurveError, ValueError):
    """Coefficient, covariance and basis shapes disagree."""


class GridMismatch(PrCurveError, ValueError):
    """Curves passed to pooling are defined over different grids."""


class InvalidBinningParameters(PrCurveError, ValueError):
    """Bin width/count or domain bounds are unusable."""


class NumericInstability(PrCurveError, ArithmeticError):
    """Non-finite inputs or results in a numerical step."""
