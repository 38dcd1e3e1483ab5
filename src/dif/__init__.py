"""
src/dif — Cochran–Mantel–Haenszel differential item functioning.

Module layout
-------------
config.py          — ETS cut points, test parameters, export schema, paths
errors.py          — DifError and its UnknownGroup / InsufficientData /
                     InvalidInput subclasses
tables.py          — Group enum, per-stratum 2×2 StratumTable, StratumCounts
classification.py  — DifClass enum, ETS delta, ETS A/B/C rule
cmh.py             — CmhEngine: stratified accumulation, chi-square,
                     common odds ratio + CI, STD P-DIF, frequency export
runner.py          — Per-item batch analysis over a response DataFrame

Public interface
----------------
Single item:
    engine = CmhEngine(focal_code, reference_code, item_name)
    engine.increment(stratum, group, item_score, frequency)
    engine.cochran_mantel_haenszel(), engine.p_value()
    engine.common_odds_ratio(), engine.common_odds_ratio_confidence_interval()
    engine.ets_classification()
    engine.frequency_tables() / CmhEngine.from_frequency_tables(rows, ...)

Whole test:
    run_dif_analysis(responses_df, items, ...)
    build_engines(...), cmh_dif_table(engines), load_frequency_tables(path)
"""

from .classification import DifClass, classify_ets, ets_delta
from .cmh import CmhEngine
from .errors import (
    DifError,
    InsufficientDataError,
    InvalidInputError,
    UnknownGroupError,
)
from .runner import (
    build_engines,
    cmh_dif_table,
    frequency_tables_frame,
    load_frequency_tables,
    run_dif_analysis,
)
from .tables import Group, StratumCounts, StratumTable

__all__ = [
    # Engine
    "CmhEngine",
    "StratumTable",
    "StratumCounts",
    "Group",
    # Classification
    "DifClass",
    "classify_ets",
    "ets_delta",
    # Errors
    "DifError",
    "UnknownGroupError",
    "InsufficientDataError",
    "InvalidInputError",
    # Batch
    "build_engines",
    "cmh_dif_table",
    "frequency_tables_frame",
    "load_frequency_tables",
    "run_dif_analysis",
]
