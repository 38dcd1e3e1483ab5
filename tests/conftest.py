"""
Shared pytest fixtures for CMH DIF tests.

SAS_* constants are a 19-cell stratified data set whose CMH results were
computed with SAS PROC FREQ; they are the reference values for the engine.
Stratum 9 (everyone right) and stratum 10 (reference only) have zero
variance and must drop out of the chi-square.
"""

from __future__ import annotations

import pandas as pd
import pytest

from src.dif.cmh import CmhEngine


# ---------------------------------------------------------------------------
# SAS reference data (focal = "foc", reference = "ref")
# ---------------------------------------------------------------------------

SAS_GROUP = [
    "foc", "foc", "foc", "foc", "foc", "foc", "foc", "foc", "foc", "foc",
    "foc", "foc", "foc", "foc", "foc", "foc", "ref", "ref", "ref", "ref",
    "ref", "ref", "ref", "ref", "ref", "ref", "ref", "ref", "ref", "ref",
    "ref", "ref", "ref", "ref",
]

SAS_STRATUM = [
    1, 1, 2, 2, 3, 3, 4, 4, 5, 5,
    6, 6, 7, 7, 8, 9, 1, 1, 2, 2,
    3, 3, 4, 4, 5, 5, 6, 6, 7, 7,
    8, 8, 9, 10,
]

SAS_ITEM_SCORE = [
    0, 1, 0, 1, 0, 1, 0, 1, 0, 1,
    0, 1, 0, 1, 1, 1, 0, 1, 0, 1,
    0, 1, 0, 1, 0, 1, 0, 1, 0, 1,
    0, 1, 1, 1,
]

SAS_FREQUENCY = [
    57, 10, 1503, 432, 1859, 1736, 563, 1383, 124, 541,
    26, 175, 8, 73, 22, 9, 53, 10, 2054, 866,
    2647, 3856, 884, 3316, 188, 1301, 50, 474, 13, 193,
    3, 71, 17, 3,
]

SAS_CHI_SQUARE = 205.2952852813
SAS_P_VALUE = 1.46000887157466e-46
SAS_ODDS_RATIO = 1.53011608995743
SAS_CI_LOWER = 1.44335984061157
SAS_CI_UPPER = 1.62208701037061
SAS_FOCAL_TOTAL = 8521
SAS_REFERENCE_TOTAL = 15999


def sas_increments() -> list[tuple[float, str, float, float]]:
    """SAS data as (stratum, group, item_score, frequency) tuples."""
    return [
        (float(s), g, float(x), float(f))
        for s, g, x, f in zip(SAS_STRATUM, SAS_GROUP, SAS_ITEM_SCORE, SAS_FREQUENCY)
    ]


def make_engine(
    increments: list[tuple],
    focal_code: str = "foc",
    reference_code: str = "ref",
    item_name: str = "example1",
    **kwargs,
) -> CmhEngine:
    """Build an engine and replay (stratum, group, score, frequency) tuples."""
    engine = CmhEngine(focal_code, reference_code, item_name=item_name, **kwargs)
    for stratum, group, score, frequency in increments:
        engine.increment(stratum, group, score, frequency)
    return engine


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sas_engine() -> CmhEngine:
    """Engine loaded with the SAS reference data."""
    return make_engine(sas_increments())


@pytest.fixture
def single_stratum_engine() -> CmhEngine:
    """
    One stratum, focal 10 right / 20 wrong, reference 30 right / 40 wrong.

    n = 100, E = 12, V = 30·70·40·60 / (100²·99), OR = 30·20 / (40·10) = 1.5
    """
    return make_engine(
        [
            (1.0, "M", 0.0, 40),
            (1.0, "M", 1.0, 30),
            (1.0, "F", 0.0, 20),
            (1.0, "F", 1.0, 10),
        ],
        focal_code="F",
        reference_code="M",
        item_name="item1",
    )


@pytest.fixture
def sas_responses_df() -> pd.DataFrame:
    """SAS data as a weighted response DataFrame for the batch runner."""
    return pd.DataFrame({
        "group": SAS_GROUP,
        "stratum": SAS_STRATUM,
        "item1": SAS_ITEM_SCORE,
        "weight": SAS_FREQUENCY,
    })
