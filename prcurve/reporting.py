"""Markdown report for a spline prevalence-ratio run."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from .analysis import AnalysisBundle


def _fmt_pr(x: float | None) -> str:
    if x is None or pd.isna(x):
        return "NA"
    return f"{float(x):.3f}"


def _curve_highlights(pooled: pd.DataFrame, n_points: int = 5) -> list[str]:
    lines: list[str] = []
    positions = np.unique(np.linspace(0, len(pooled) - 1, n_points).round().astype(int))
    for pos in positions:
        row = pooled.iloc[int(pos)]
        lines.append(
            f"- x={row['x']:.4g}: PR {_fmt_pr(row['pr'])} "
            f"({_fmt_pr(row['pr_lwr'])}, {_fmt_pr(row['pr_upr'])})"
        )
    return lines


def write_report(
    *,
    output_dir: Path,
    change_log: list[str],
    assumptions: list[str],
    analyses: AnalysisBundle,
    config: dict,
    generated_files: list[str],
    notes: list[str],
    suppression_log: pd.DataFrame,
) -> Path:
    report_path = output_dir / "REPORT.md"
    pooled = analyses.pooled_table()

    lines: list[str] = []
    lines.append("# Spline Prevalence-Ratio Curve Report")
    lines.append("")

    lines.append("## Change Log")
    for entry in change_log:
        lines.append(f"- {entry}")
    lines.append("")

    lines.append("## Assumptions")
    for entry in assumptions:
        lines.append(f"- {entry}")
    lines.append("")

    lines.append("## Model")
    lines.append(f"- Formula: `{analyses.artifacts.get('formula', '')}`")
    lines.append(f"- Family: {config.get('family', 'poisson')} (log link)")
    lines.append(f"- Imputations pooled: {analyses.pooled.m}")
    lines.append(
        f"- Reference {config['exposure_col']} = {analyses.grid.reference_value:.4g}; "
        f"{int(analyses.pooled.confidence_level * 100)}% intervals ({analyses.pooled.ci_method})"
    )
    for fit in analyses.fits:
        lines.append(f"- {fit.label}: n={fit.n}, events={fit.events}")
    lines.append("")

    lines.append("## Curve Highlights")
    if pooled.empty:
        lines.append("- Pooled curve unavailable.")
    else:
        lines.extend(_curve_highlights(pooled))
    lines.append("")

    lines.append("## Generated Artifacts")
    for fp in sorted(generated_files):
        lines.append(f"- `{fp}`")
    lines.append("")

    lines.append("## Small-Cell Exclusions")
    if suppression_log.empty:
        lines.append("- No table rows were removed by suppression checks.")
    else:
        for _, row in suppression_log.iterrows():
            file_name = row.get("file", "unknown")
            policy_note = row.get("policy_note", "")
            lines.append(f"- `{file_name}`: {policy_note}")
    lines.append("")

    lines.append("## Notes")
    if not notes:
        lines.append("- None.")
    else:
        for note in notes:
            lines.append(f"- {note}")
    lines.append("")

    lines.append("## Interpretation Guardrails")
    lines.append("- Prevalence ratios are relative to the reference exposure value, not absolute prevalences.")
    lines.append("- Bin segments are unadjusted empirical summaries and only benchmark the shape of the curve.")
    lines.append("- Empty bins are omitted; gaps in the segments mean no observations, not a zero rate.")

    report_path.write_text("\n".join(lines), encoding="utf-8")
    return report_path
