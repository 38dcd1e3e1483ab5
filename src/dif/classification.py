"""
ETS DIF categories for binary items.

The rule combines the CMH significance test with the size of the common
odds ratio and its confidence interval:

    A   not significant at ALPHA, or 0.65 < OR < 1.53
    C+  OR < 0.53 and the CI upper bound < 0.65      (favours focal)
    C-  OR > 1.89 and the CI lower bound > 1.53      (favours reference)
    B+  everything else with OR < 1                  (favours focal)
    B-  everything else with OR >= 1                 (favours reference)

The odds ratio is oriented reference-over-focal, so OR > 1 means the
reference group has the higher odds of answering right at matched
ability.  On the ETS delta scale (-2.35 · ln OR) that is a negative delta,
hence the "-" suffix.
"""

from __future__ import annotations

import math
from enum import Enum

from .config import (
    ALPHA,
    ETS_A_LOWER,
    ETS_A_UPPER,
    ETS_C_LOWER,
    ETS_C_UPPER,
    ETS_DELTA_SCALE,
)
from .errors import InvalidInputError
from .tables import Group


class DifClass(str, Enum):
    """ETS DIF category label.  Compares equal to its string value."""

    A = "A"
    B_PLUS = "B+"
    B_MINUS = "B-"
    B = "B"
    C_PLUS = "C+"
    C_MINUS = "C-"
    C = "C"

    @property
    def severity(self) -> DifClass:
        """The unsigned category (A, B or C)."""
        return DifClass(self.value[0])

    @property
    def favours(self) -> Group | None:
        """Group the item favours, or None for A and unsigned labels."""
        if self.value.endswith("+"):
            return Group.FOCAL
        if self.value.endswith("-"):
            return Group.REFERENCE
        return None

    def __str__(self) -> str:
        return self.value


def ets_delta(odds_ratio: float) -> float:
    """MH D-DIF: the common odds ratio on the ETS delta scale."""
    if not math.isfinite(odds_ratio) or odds_ratio <= 0:
        raise InvalidInputError(
            f"Odds ratio must be positive and finite, got {odds_ratio!r}"
        )
    return ETS_DELTA_SCALE * math.log(odds_ratio)


def classify_ets(
    p_value: float,
    odds_ratio: float,
    confidence_interval: tuple[float, float],
    alpha: float = ALPHA,
) -> DifClass:
    """
    Assign the ETS category for a binary item.

    Args:
        p_value: Upper-tail probability of the CMH chi-square.
        odds_ratio: Mantel–Haenszel common odds ratio (reference / focal).
        confidence_interval: (lower, upper) bounds for the odds ratio.
        alpha: Significance level for the chi-square test.

    Returns:
        One of A, B+, B-, C+, C-.  The unsigned B and C members are never
        returned here; they come from :attr:`DifClass.severity`.
    """
    if math.isnan(p_value) or math.isnan(odds_ratio):
        raise InvalidInputError("p-value and odds ratio must not be NaN")
    ci_lower, ci_upper = confidence_interval

    if p_value > alpha or ETS_A_LOWER < odds_ratio < ETS_A_UPPER:
        return DifClass.A
    if odds_ratio < ETS_C_LOWER and ci_upper < ETS_A_LOWER:
        return DifClass.C_PLUS
    if odds_ratio > ETS_C_UPPER and ci_lower > ETS_A_UPPER:
        return DifClass.C_MINUS
    if odds_ratio < 1.0:
        return DifClass.B_PLUS
    return DifClass.B_MINUS
