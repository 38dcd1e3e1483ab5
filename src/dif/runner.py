"""
Batch CMH DIF runner — one engine per item of a test.

Takes person-level item responses, matches examinees on a stratum column
(or on the sum-score over the analysed items when none is given), builds a
CmhEngine per item, and exports the result table and the frequency tables.

Usage (from project root):
    python -m src.dif.runner

Or programmatically:
    from src.dif.runner import run_dif_analysis
    results = run_dif_analysis(responses_df, focal_code="F", reference_code="M")
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from .cmh import CmhEngine, parse_stratum
from .config import (
    FOCAL_CODE,
    FREQUENCY_COLUMNS,
    FREQUENCY_TABLES_FILENAME,
    GROUP_COLUMN,
    ITEM_PREFIX,
    REFERENCE_CODE,
    RESPONSES_PATH,
    RESULTS_DIR,
    RESULTS_FILENAME,
    SUMMARY_COLUMNS,
)


# ---------------------------------------------------------------------------
# Data loading
# ---------------------------------------------------------------------------

def load_responses(path: Path = RESPONSES_PATH) -> pd.DataFrame:
    """
    Load person-level item responses (one row per examinee).

    Raises:
        FileNotFoundError: The response file does not exist.
    """
    if not path.exists():
        raise FileNotFoundError(f"Item response file not found: {path}")
    df = pd.read_csv(path)
    print(f"Loaded {len(df):,} examinees from {path.name}")
    return df


def detect_items(responses_df: pd.DataFrame, prefix: str = ITEM_PREFIX) -> list[str]:
    """Item columns, in file order, identified by their name prefix."""
    items = [c for c in responses_df.columns if str(c).startswith(prefix)]
    if not items:
        raise ValueError(f"No item columns with prefix {prefix!r} found.")
    return items


def sum_scores(responses_df: pd.DataFrame, items: list[str]) -> pd.Series:
    """Raw sum-score matching variable; missing responses count as zero."""
    return responses_df[items].sum(axis=1, skipna=True)


# ---------------------------------------------------------------------------
# Engine construction
# ---------------------------------------------------------------------------

def build_engines(
    responses_df: pd.DataFrame,
    items: list[str],
    group_column: str = GROUP_COLUMN,
    focal_code: str = FOCAL_CODE,
    reference_code: str = REFERENCE_CODE,
    stratum_column: str | None = None,
    weight_column: str | None = None,
    continuity_correction: bool = False,
    report_delta: bool = False,
) -> dict[str, CmhEngine]:
    """
    Build one CmhEngine per item.

    Examinees outside the focal/reference pair and missing item responses
    are dropped.  Responses are aggregated per (stratum, group, score) cell
    before they reach the engine, so each cell is one increment.

    Args:
        responses_df: One row per examinee.
        items: Item columns to analyse (binary 0/1 scores).
        group_column: Column holding group labels.
        focal_code: Focal group label.
        reference_code: Reference group label.
        stratum_column: Matching variable; defaults to the sum-score over
            ``items``.
        weight_column: Optional frequency weights; defaults to 1 per row.
        continuity_correction: Passed to each engine.
        report_delta: Passed to each engine.

    Returns:
        Dict of item name → engine, in ``items`` order.
    """
    df = responses_df.copy()
    df["_group"] = df[group_column].astype(str)
    df = df[df["_group"].isin([str(focal_code), str(reference_code)])].copy()

    df["_stratum"] = (
        df[stratum_column] if stratum_column is not None else sum_scores(df, items)
    )
    df["_weight"] = df[weight_column] if weight_column is not None else 1.0
    df = df[df["_stratum"].notna()]

    engines: dict[str, CmhEngine] = {}
    for item in items:
        engine = CmhEngine(
            focal_code,
            reference_code,
            item_name=item,
            continuity_correction=continuity_correction,
            report_delta=report_delta,
        )
        answered = df[df[item].notna()]
        cells = (
            answered.groupby(["_stratum", "_group", item], sort=True)["_weight"]
            .sum()
            .reset_index()
        )
        for stratum, group, score, frequency in cells.itertuples(index=False, name=None):
            engine.increment(stratum, group, float(score), float(frequency))
        engines[item] = engine

    return engines


# ---------------------------------------------------------------------------
# Tabulation
# ---------------------------------------------------------------------------

def cmh_dif_table(engines: dict[str, CmhEngine]) -> pd.DataFrame:
    """One summary row per item; undefined statistics are NaN."""
    records = [engine.summary() for engine in engines.values()]
    return pd.DataFrame(records, columns=SUMMARY_COLUMNS)


def frequency_tables_frame(engines: dict[str, CmhEngine]) -> pd.DataFrame:
    """Concatenated frequency export of every engine."""
    frames = [engine.frequency_frame() for engine in engines.values()]
    if not frames:
        return pd.DataFrame(columns=FREQUENCY_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def load_frequency_tables(
    path: Path,
    focal_code: str = FOCAL_CODE,
    reference_code: str = REFERENCE_CODE,
    stratum_type=parse_stratum,
    **kwargs,
) -> dict[str, CmhEngine]:
    """
    Rebuild engines from a frequency table CSV written by
    :func:`run_dif_analysis`.

    Raises:
        FileNotFoundError: The CSV does not exist.
    """
    if not path.exists():
        raise FileNotFoundError(f"Frequency table file not found: {path}")

    table = pd.read_csv(path, dtype=str, keep_default_na=False)
    engines: dict[str, CmhEngine] = {}
    for item, rows in table.groupby("item_name", sort=False):
        engines[item] = CmhEngine.from_frequency_tables(
            rows[FREQUENCY_COLUMNS].itertuples(index=False, name=None),
            focal_code,
            reference_code,
            stratum_type=stratum_type,
            **kwargs,
        )
    return engines


# ---------------------------------------------------------------------------
# Master runner
# ---------------------------------------------------------------------------

def _fmt(value, spec: str = ".2f") -> str:
    """Format a possibly-missing statistic for the progress lines."""
    return "—" if value is None or pd.isna(value) else format(value, spec)


def run_dif_analysis(
    responses_df: pd.DataFrame | None = None,
    items: list[str] | None = None,
    group_column: str = GROUP_COLUMN,
    focal_code: str = FOCAL_CODE,
    reference_code: str = REFERENCE_CODE,
    stratum_column: str | None = None,
    weight_column: str | None = None,
    continuity_correction: bool = False,
    report_delta: bool = False,
    output_dir: Path = RESULTS_DIR,
) -> pd.DataFrame:
    """
    Run CMH DIF for every item and export the results.

    Args:
        responses_df: Person-level responses; loaded from RESPONSES_PATH
            when None.
        items: Item columns; detected by ITEM_PREFIX when None.
        output_dir: Directory for the results and frequency table CSVs.

    Returns:
        The per-item results DataFrame.
    """
    sep = "=" * 70
    print(f"\n{sep}")
    print(f"CMH DIF ANALYSIS  (focal={focal_code}, reference={reference_code})")
    print(f"{sep}\n")

    if responses_df is None:
        responses_df = load_responses()
    if items is None:
        items = detect_items(responses_df)

    engines = build_engines(
        responses_df,
        items,
        group_column=group_column,
        focal_code=focal_code,
        reference_code=reference_code,
        stratum_column=stratum_column,
        weight_column=weight_column,
        continuity_correction=continuity_correction,
        report_delta=report_delta,
    )
    results = cmh_dif_table(engines)

    for row in results.itertuples(index=False):
        if pd.isna(row.chi_square):
            print(f"  {row.item_name}: insufficient data")
            continue
        print(f"  {row.item_name}: χ²={_fmt(row.chi_square)}, p={_fmt(row.p_value, '.4f')}, "
              f"N={_fmt(row.valid_n, '.0f')}, ES={_fmt(row.effect_size)}, "
              f"class={row.ets_class if isinstance(row.ets_class, str) else '—'}")

    flagged = results[results["ets_class"].isin(["C+", "C-"])]
    print(f"\nItems analysed: {len(results)}, category C: {len(flagged)}")

    output_dir.mkdir(parents=True, exist_ok=True)
    results_path = output_dir / RESULTS_FILENAME
    frequency_path = output_dir / FREQUENCY_TABLES_FILENAME
    results.to_csv(results_path, index=False)
    frequency_tables_frame(engines).to_csv(frequency_path, index=False)

    print(f"\nExported results to {results_path}")
    print(f"Exported frequency tables to {frequency_path}")
    return results


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    run_dif_analysis()
