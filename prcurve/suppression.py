"""Small-cell suppression helpers for count-bearing output tables."""

from __future__ import annotations

import logging
from typing import Iterable

import pandas as pd

POLICY_NOTE_TEMPLATE = "Excluded due to small-cell policy (n<{threshold})."


def suppress_small_cells(
    df: pd.DataFrame,
    threshold: int = 0,
    count_columns: Iterable[str] = ("n",),
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Return (kept_rows, excluded_rows); a threshold of 0 keeps everything."""
    empty_excluded = pd.DataFrame(columns=[*df.columns, "policy_note", "suppression_columns"])
    if df.empty or threshold <= 0:
        return df.copy(), empty_excluded

    cols = [c for c in count_columns if c in df.columns]
    if not cols:
        return df.copy(), empty_excluded

    mask = pd.Series(False, index=df.index)
    for col in cols:
        mask = mask | (df[col].fillna(0) < threshold)

    kept = df.loc[~mask].copy()
    excluded = df.loc[mask].copy()
    if not excluded.empty:
        excluded["policy_note"] = POLICY_NOTE_TEMPLATE.format(threshold=threshold)
        excluded["suppression_columns"] = ",".join(cols)
        logging.warning(
            "Suppressed %s rows due to n<%s policy. columns=%s",
            len(excluded),
            threshold,
            cols,
        )
    return kept, excluded
