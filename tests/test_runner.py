"""
Unit tests for src/dif/runner.py.

Covers:
- build_engines: weighted stratum column reproduces the SAS reference,
  sum-score matching, dropping of other groups and missing responses.
- cmh_dif_table: one row per item, NaN for undefined statistics.
- run_dif_analysis: CSV export and reload of the frequency tables.
"""

from __future__ import annotations

import math

import numpy as np
import pandas as pd
import pytest

from src.dif.config import FREQUENCY_TABLES_FILENAME, RESULTS_FILENAME, SUMMARY_COLUMNS
from src.dif.runner import (
    build_engines,
    cmh_dif_table,
    detect_items,
    frequency_tables_frame,
    load_frequency_tables,
    run_dif_analysis,
    sum_scores,
)

from .conftest import (
    SAS_CHI_SQUARE,
    SAS_FOCAL_TOTAL,
    SAS_FREQUENCY,
    SAS_ODDS_RATIO,
    SAS_REFERENCE_TOTAL,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _small_responses() -> pd.DataFrame:
    """Five examinees, one outside the focal/reference pair."""
    return pd.DataFrame({
        "group":  ["F", "F", "M", "M", "X"],
        "item1":  [1, 0, 1, 0, 1],
        "item2":  [1, 1, 0, 0, 1],
        "gender": ["f", "f", "m", "m", "x"],
    })


def _build_sas(sas_responses_df, **kwargs):
    return build_engines(
        sas_responses_df,
        ["item1"],
        group_column="group",
        focal_code="foc",
        reference_code="ref",
        stratum_column="stratum",
        weight_column="weight",
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Class: item detection and matching
# ---------------------------------------------------------------------------

class TestMatching:

    def test_detect_items_by_prefix(self):
        assert detect_items(_small_responses()) == ["item1", "item2"]

    def test_detect_items_none_found(self):
        with pytest.raises(ValueError):
            detect_items(pd.DataFrame({"group": ["F"]}))

    def test_sum_scores_treat_missing_as_zero(self):
        df = pd.DataFrame({"item1": [1, np.nan], "item2": [1, 1]})
        assert sum_scores(df, ["item1", "item2"]).tolist() == [2.0, 1.0]


# ---------------------------------------------------------------------------
# Class: build_engines
# ---------------------------------------------------------------------------

class TestBuildEngines:

    def test_weighted_frame_reproduces_sas(self, sas_responses_df):
        engine = _build_sas(sas_responses_df)["item1"]
        assert engine.cochran_mantel_haenszel() == pytest.approx(SAS_CHI_SQUARE, abs=1e-8)
        assert engine.common_odds_ratio() == pytest.approx(SAS_ODDS_RATIO, abs=1e-8)
        assert engine.total_focal_size() == SAS_FOCAL_TOTAL
        assert engine.total_reference_size() == SAS_REFERENCE_TOTAL
        assert engine.ets_classification() == "B-"

    def test_engine_options_are_passed_through(self, sas_responses_df):
        engine = _build_sas(sas_responses_df, continuity_correction=True, report_delta=True)["item1"]
        assert engine.continuity_correction is True
        assert engine.effect_size() == pytest.approx(-2.35 * math.log(SAS_ODDS_RATIO), abs=1e-7)

    def test_sum_score_strata(self):
        engines = build_engines(_small_responses(), ["item1", "item2"], focal_code="F", reference_code="M")
        item1 = engines["item1"]

        assert list(engines) == ["item1", "item2"]
        assert set(item1.strata()) == {0.0, 1.0, 2.0}
        # F with item1 = 0 and M with item1 = 1 both have sum-score 1
        assert item1.stratum(1.0).focal_wrong == 1
        assert item1.stratum(1.0).reference_right == 1

    def test_other_groups_are_dropped(self):
        engines = build_engines(_small_responses(), ["item1"], focal_code="F", reference_code="M")
        item1 = engines["item1"]
        assert item1.total_focal_size() + item1.total_reference_size() == 4

    def test_missing_responses_are_dropped(self):
        df = _small_responses()
        df.loc[0, "item1"] = np.nan
        engines = build_engines(df, ["item1"], focal_code="F", reference_code="M")
        assert engines["item1"].total_focal_size() == 1

    def test_explicit_group_column(self):
        engines = build_engines(
            _small_responses(), ["item1"], group_column="gender", focal_code="f", reference_code="m"
        )
        assert engines["item1"].focal_code == "f"
        assert engines["item1"].total_reference_size() == 2


# ---------------------------------------------------------------------------
# Class: tabulation
# ---------------------------------------------------------------------------

class TestTables:

    def test_dif_table_columns_and_values(self, sas_responses_df):
        table = cmh_dif_table(_build_sas(sas_responses_df))
        assert list(table.columns) == SUMMARY_COLUMNS
        assert len(table) == 1
        assert table.loc[0, "ets_class"] == "B-"
        assert table.loc[0, "chi_square"] == pytest.approx(SAS_CHI_SQUARE, abs=1e-8)

    def test_undefined_item_has_missing_statistics(self):
        df = pd.DataFrame({"group": ["F", "M"], "item1": [1, 1]})
        table = cmh_dif_table(build_engines(df, ["item1"], focal_code="F", reference_code="M"))
        assert pd.isna(table.loc[0, "chi_square"])
        assert pd.isna(table.loc[0, "ets_class"])
        assert table.loc[0, "valid_n"] == 0.0

    def test_frequency_frame_concatenates_items(self):
        engines = build_engines(_small_responses(), ["item1", "item2"], focal_code="F", reference_code="M")
        frame = frequency_tables_frame(engines)
        # 3 strata × 2 groups × 2 scores per item
        assert len(frame) == 24
        assert set(frame["item_name"]) == {"item1", "item2"}

    def test_frequency_frame_empty(self):
        assert frequency_tables_frame({}).empty


# ---------------------------------------------------------------------------
# Class: run_dif_analysis
# ---------------------------------------------------------------------------

class TestRunDifAnalysis:

    def test_exports_and_reloads(self, sas_responses_df, tmp_path):
        results = run_dif_analysis(
            sas_responses_df,
            items=["item1"],
            focal_code="foc",
            reference_code="ref",
            stratum_column="stratum",
            weight_column="weight",
            output_dir=tmp_path,
        )
        assert results.loc[0, "ets_class"] == "B-"
        assert (tmp_path / RESULTS_FILENAME).exists()

        exported = pd.read_csv(tmp_path / FREQUENCY_TABLES_FILENAME)
        assert exported["frequency"].sum() == pytest.approx(sum(SAS_FREQUENCY))

        reloaded = load_frequency_tables(tmp_path / FREQUENCY_TABLES_FILENAME, "foc", "ref")
        engine = reloaded["item1"]
        assert engine.cochran_mantel_haenszel() == pytest.approx(SAS_CHI_SQUARE, abs=1e-8)
        assert engine.common_odds_ratio() == pytest.approx(SAS_ODDS_RATIO, abs=1e-8)
        assert engine.ets_classification() == "B-"

    def test_string_strata_export_and_reload(self, tmp_path):
        df = pd.DataFrame({
            "group": ["F", "F", "M", "M", "F", "M"],
            "band":  ["low", "low", "low", "high", "high", "high"],
            "item1": [1, 0, 0, 1, 1, 0],
        })
        run_dif_analysis(
            df, items=["item1"], focal_code="F", reference_code="M",
            stratum_column="band", output_dir=tmp_path,
        )
        original = build_engines(
            df, ["item1"], focal_code="F", reference_code="M", stratum_column="band"
        )["item1"]

        reloaded = load_frequency_tables(tmp_path / FREQUENCY_TABLES_FILENAME, "F", "M")["item1"]
        assert set(reloaded.strata()) == {"low", "high"}
        assert reloaded.strata() == original.strata()

    def test_detects_items_when_not_given(self, tmp_path):
        results = run_dif_analysis(
            _small_responses(), focal_code="F", reference_code="M", output_dir=tmp_path
        )
        assert results["item_name"].tolist() == ["item1", "item2"]

    def test_progress_is_printed(self, sas_responses_df, tmp_path, capsys):
        run_dif_analysis(
            sas_responses_df,
            items=["item1"],
            focal_code="foc",
            reference_code="ref",
            stratum_column="stratum",
            weight_column="weight",
            output_dir=tmp_path,
        )
        out = capsys.readouterr().out
        assert "CMH DIF ANALYSIS" in out
        assert "class=B-" in out

    def test_missing_frequency_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_frequency_tables(tmp_path / "absent.csv")
