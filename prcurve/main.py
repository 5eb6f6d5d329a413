"""Main entrypoint for the spline prevalence-ratio pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path

import pandas as pd

from .analysis import AnalysisBundle, run_spline_analysis
from .config import ASSUMPTIONS, CHANGE_LOG, CONFIG, REQUIRED_OUTPUT_FILES, ensure_output_dir, validate_run_config
from .reporting import write_report
from .suppression import suppress_small_cells


@dataclass
class PipelineRunResult:
    output_dir: Path
    generated_files: list[str]
    analyses: AnalysisBundle
    notes: list[str]
    suppression_log: pd.DataFrame


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def _print_df(label: str, df: pd.DataFrame, max_rows: int = 30) -> None:
    print(f"\n===== {label} =====")
    if df.empty:
        print("[empty]")
        return
    if len(df) > max_rows:
        print(df.head(max_rows).to_string(index=False))
        print(f"... ({len(df)} rows total)")
    else:
        print(df.to_string(index=False))


def _save_with_policy(
    *,
    file_name: str,
    df: pd.DataFrame,
    output_dir: Path,
    threshold: int,
    suppression_rows: list[pd.DataFrame],
    count_columns: list[str],
    print_tables: bool = False,
    print_max_rows: int = 30,
) -> Path:
    kept, excluded = suppress_small_cells(df, threshold=threshold, count_columns=count_columns)
    out_path = output_dir / file_name
    kept.to_csv(out_path, index=False)

    if not excluded.empty:
        tmp = excluded.copy()
        tmp["file"] = file_name
        suppression_rows.append(tmp)

    logging.info("Saved %s (%s rows)", file_name, len(kept))
    if logging.getLogger().isEnabledFor(logging.DEBUG) and not kept.empty:
        logging.debug("%s preview:\n%s", file_name, kept.head(20).to_string(index=False))
    if print_tables:
        _print_df(file_name, kept, max_rows=print_max_rows)
    return out_path


def _verify_outputs(output_dir: Path, notes: list[str], skip: tuple[str, ...] = ()) -> None:
    for file_name in REQUIRED_OUTPUT_FILES:
        if file_name in skip:
            continue
        if not (output_dir / file_name).exists():
            notes.append(f"Missing expected output artifact: {file_name}")


def main(config: dict | None = None) -> PipelineRunResult:
    _configure_logging()
    cfg = dict(CONFIG if config is None else config)
    validate_run_config(cfg)

    output_dir = ensure_output_dir(cfg)
    threshold = int(cfg.get("small_cell_threshold", 0))
    print_tables = bool(cfg.get("print_tables", False))
    print_max_rows = int(cfg.get("print_table_max_rows", 30))

    logging.info("Starting spline PR pipeline. input=%s", cfg["input_csv"])
    logging.info("Output directory: %s", output_dir)

    raw_df = pd.read_csv(cfg["input_csv"])
    analyses = run_spline_analysis(raw_df, cfg)

    suppression_rows: list[pd.DataFrame] = []
    generated_files: list[str] = []

    output_map: list[tuple[str, pd.DataFrame, list[str]]] = [
        ("pooled_curve.csv", analyses.pooled_table(), []),
        ("imputation_curves.csv", analyses.imputation_table(), []),
        ("bin_segments.csv", analyses.segment_table(), ["n"]),
        ("model_fits.csv", analyses.fit_table(), ["n_total", "events"]),
    ]
    for file_name, df, count_cols in output_map:
        path = _save_with_policy(
            file_name=file_name,
            df=df,
            output_dir=output_dir,
            threshold=threshold,
            suppression_rows=suppression_rows,
            count_columns=count_cols,
            print_tables=print_tables,
            print_max_rows=print_max_rows,
        )
        generated_files.append(path.name)

    suppression_log = (
        pd.concat(suppression_rows, ignore_index=True, sort=False)
        if suppression_rows
        else pd.DataFrame(columns=["file", "policy_note", "suppression_columns"])
    )
    if suppression_log.empty:
        logging.info("No rows suppressed under small-cell threshold n<%s", threshold)
    else:
        logging.warning("Suppression applied to %s rows total.", len(suppression_log))

    notes = list(analyses.notes)
    # REPORT.md is written last, so only the tables are checked here.
    _verify_outputs(output_dir, notes, skip=("REPORT.md",))

    report_path = write_report(
        output_dir=output_dir,
        change_log=CHANGE_LOG,
        assumptions=ASSUMPTIONS,
        analyses=analyses,
        config=cfg,
        generated_files=generated_files,
        notes=notes,
        suppression_log=suppression_log[[c for c in ["file", "policy_note", "suppression_columns"] if c in suppression_log.columns]],
    )
    generated_files.append(report_path.name)

    logging.info("Pipeline complete. Generated files:")
    for fp in sorted(generated_files):
        logging.info("- %s", fp)

    return PipelineRunResult(
        output_dir=output_dir,
        generated_files=sorted(generated_files),
        analyses=analyses,
        notes=notes,
        suppression_log=suppression_log,
    )


if __name__ == "__main__":
    main()
