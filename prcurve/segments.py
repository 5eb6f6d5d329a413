"""Empirical binned summaries rendered as horizontal segments."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .errors import InvalidBinningParameters

SUMMARY_MODES = ("mean", "rate", "count")
DEFAULT_LABELS = ("above", "below")


@dataclass(frozen=True)
class Segment:
    bin_start: float
    bin_end: float
    value: float
    n: float
    label: str


@dataclass(frozen=True)
class SegmentSet:
    segments: tuple[Segment, ...]
    edges: np.ndarray
    x_min: float
    x_max: float
    summary: str
    threshold: float

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self):
        return iter(self.segments)

    def to_frame(self) -> pd.DataFrame:
        columns = ["bin_start", "bin_end", "value", "n", "label"]
        return pd.DataFrame([s.__dict__ for s in self.segments], columns=columns)


def bin_edges(x_min: float, x_max: float, bin_length: float | None = None, bin_count: int | None = None) -> np.ndarray:
    """Edges over [x_min, x_max]; bin_count wins when both are given."""
    try:
        lo, hi = float(x_min), float(x_max)
    except (TypeError, ValueError) as exc:
        raise InvalidBinningParameters(f"Domain bounds must be numeric ({exc}).") from exc
    if not (math.isfinite(lo) and math.isfinite(hi)):
        raise InvalidBinningParameters("Domain bounds must be finite.")
    if lo >= hi:
        raise InvalidBinningParameters(f"x_min must be below x_max (got {lo}, {hi}).")

    if bin_count is not None:
        if isinstance(bin_count, bool) or int(bin_count) != bin_count or int(bin_count) <= 0:
            raise InvalidBinningParameters(f"bin_count must be a positive integer (got {bin_count}).")
        return np.linspace(lo, hi, int(bin_count) + 1)

    if bin_length is None:
        raise InvalidBinningParameters("One of bin_length or bin_count is required.")
    width = float(bin_length)
    if not math.isfinite(width) or width <= 0:
        raise InvalidBinningParameters(f"bin_length must be positive (got {bin_length}).")
    n_bins = max(1, int(math.ceil((hi - lo) / width - 1e-9)))
    edges = lo + width * np.arange(n_bins + 1, dtype=float)
    edges[-1] = hi
    return edges


def _summarize(values: pd.Series, summary: str, positive_value, replicates: int = 1) -> float:
    if summary == "count":
        return len(values) / replicates
    if summary == "rate":
        return float((values == positive_value).mean())
    return float(pd.to_numeric(values, errors="coerce").mean())


def bin_segments(
    x,
    y,
    x_min: float,
    x_max: float,
    bin_length: float | None = None,
    bin_count: int | None = None,
    summary: str = "mean",
    threshold: float | None = None,
    positive_value=1,
    labels: tuple[str, str] = DEFAULT_LABELS,
    replicates: int = 1,
) -> SegmentSet:
    """Per-bin outcome summaries as horizontal segments labelled against ``threshold``.

    Bins are half-open ``[lo, hi)`` except the last, which also includes ``x_max``.
    Bins without observations yield no segment. When ``x``/``y`` stack ``replicates``
    completed copies of one dataset, counts are reported per copy.
    """
    if summary not in SUMMARY_MODES:
        raise ValueError(f"Unknown summary {summary!r}; expected one of {SUMMARY_MODES}.")
    if len(labels) != 2:
        raise ValueError("labels must hold exactly two entries (at/above, below).")
    if isinstance(replicates, bool) or int(replicates) != replicates or int(replicates) < 1:
        raise ValueError(f"replicates must be a positive integer (got {replicates}).")
    replicates = int(replicates)
    edges = bin_edges(x_min, x_max, bin_length=bin_length, bin_count=bin_count)

    xs = pd.to_numeric(pd.Series(np.asarray(x)), errors="coerce")
    ys = pd.Series(np.asarray(y, dtype=object))
    if len(xs) != len(ys):
        raise ValueError(f"x and y lengths differ ({len(xs)} vs {len(ys)}).")
    if summary == "mean":
        ys = pd.to_numeric(ys, errors="coerce")

    keep = xs.notna() & ys.notna() & xs.between(edges[0], edges[-1])
    xs = xs[keep].to_numpy(dtype=float)
    ys = ys[keep].reset_index(drop=True)

    n_bins = len(edges) - 1
    bin_idx = np.searchsorted(edges, xs, side="right") - 1
    bin_idx[bin_idx >= n_bins] = n_bins - 1

    if threshold is None:
        threshold = _summarize(ys, summary, positive_value, replicates) if len(ys) else 0.0
    threshold = float(threshold)

    segments: list[Segment] = []
    for b in range(n_bins):
        members = ys[bin_idx == b]
        if members.empty:
            continue
        value = _summarize(members, summary, positive_value, replicates)
        segments.append(
            Segment(
                bin_start=float(edges[b]),
                bin_end=float(edges[b + 1]),
                value=value,
                n=int(len(members)) if replicates == 1 else len(members) / replicates,
                label=labels[0] if value >= threshold else labels[1],
            )
        )

    logging.info(
        "Binned %s observations (%s stacked copies) into %s bins (%s emitted, %s empty); threshold=%.4f",
        len(ys),
        replicates,
        n_bins,
        len(segments),
        n_bins - len(segments),
        threshold,
    )
    return SegmentSet(
        segments=tuple(segments),
        edges=edges,
        x_min=float(edges[0]),
        x_max=float(edges[-1]),
        summary=summary,
        threshold=threshold,
    )
