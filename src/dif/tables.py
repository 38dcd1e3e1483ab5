"""
Per-stratum 2×2 accumulator for Mantel–Haenszel DIF statistics.

Each stratum (one level of the matching variable, usually a sum-score)
holds four weighted counts:

                 right            wrong
    focal        focal_right      focal_wrong
    reference    reference_right  reference_wrong

Counts only ever increase.  The per-stratum quantities the engine pools
(expected value, hypergeometric variance, MH odds-ratio terms) are exposed
here so cmh.py reads as a sum over strata.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from .config import RIGHT_SCORE
from .errors import InvalidInputError


class Group(str, Enum):
    """Internal group identity, resolved once from the caller's label."""

    FOCAL = "focal"
    REFERENCE = "reference"


@dataclass(frozen=True)
class StratumCounts:
    """Read-only snapshot of one stratum's four cells."""

    focal_right: float
    focal_wrong: float
    reference_right: float
    reference_wrong: float

    @property
    def focal_size(self) -> float:
        return self.focal_right + self.focal_wrong

    @property
    def reference_size(self) -> float:
        return self.reference_right + self.reference_wrong

    @property
    def total(self) -> float:
        return self.focal_size + self.reference_size


class StratumTable:
    """Weighted focal/reference × right/wrong counts for one stratum."""

    __slots__ = ("_focal_right", "_focal_wrong", "_reference_right", "_reference_wrong")

    def __init__(self) -> None:
        self._focal_right = 0.0
        self._focal_wrong = 0.0
        self._reference_right = 0.0
        self._reference_wrong = 0.0

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def increment(self, group: Group, item_score: float, frequency: float = 1.0) -> None:
        """
        Add ``frequency`` to the cell selected by group and item score.

        Args:
            group: Group.FOCAL or Group.REFERENCE.
            item_score: 1.0 counts as right; any other finite value as wrong.
            frequency: Non-negative finite weight.

        Raises:
            InvalidInputError: Negative or non-finite frequency, or a
                non-finite item score.
        """
        frequency = float(frequency)
        item_score = float(item_score)
        if not math.isfinite(frequency) or frequency < 0:
            raise InvalidInputError(
                f"Frequency must be finite and non-negative, got {frequency!r}"
            )
        if not math.isfinite(item_score):
            raise InvalidInputError(f"Item score must be finite, got {item_score!r}")

        right = item_score == RIGHT_SCORE
        if group is Group.FOCAL:
            if right:
                self._focal_right += frequency
            else:
                self._focal_wrong += frequency
        elif group is Group.REFERENCE:
            if right:
                self._reference_right += frequency
            else:
                self._reference_wrong += frequency
        else:
            raise InvalidInputError(f"Expected a Group member, got {group!r}")

    # ------------------------------------------------------------------
    # Cells and margins
    # ------------------------------------------------------------------

    @property
    def focal_right(self) -> float:
        return self._focal_right

    @property
    def focal_wrong(self) -> float:
        return self._focal_wrong

    @property
    def reference_right(self) -> float:
        return self._reference_right

    @property
    def reference_wrong(self) -> float:
        return self._reference_wrong

    @property
    def focal_size(self) -> float:
        return self._focal_right + self._focal_wrong

    @property
    def reference_size(self) -> float:
        return self._reference_right + self._reference_wrong

    @property
    def right_total(self) -> float:
        return self._focal_right + self._reference_right

    @property
    def wrong_total(self) -> float:
        return self._focal_wrong + self._reference_wrong

    @property
    def total(self) -> float:
        return self.focal_size + self.reference_size

    def cell(self, group: Group, right: bool) -> float:
        """Count in one cell; used by the frequency export."""
        if group is Group.FOCAL:
            return self._focal_right if right else self._focal_wrong
        return self._reference_right if right else self._reference_wrong

    def snapshot(self) -> StratumCounts:
        return StratumCounts(
            focal_right=self._focal_right,
            focal_wrong=self._focal_wrong,
            reference_right=self._reference_right,
            reference_wrong=self._reference_wrong,
        )

    # ------------------------------------------------------------------
    # Per-stratum terms pooled by the engine
    # ------------------------------------------------------------------

    def expected_focal_right(self) -> float:
        """E(focal_right) under independence; 0.0 for an empty stratum."""
        n = self.total
        if n == 0:
            return 0.0
        return self.focal_size * self.right_total / n

    def variance(self) -> float:
        """
        Hypergeometric variance of focal_right given the margins.

        Returns 0.0 when the stratum has one observation or fewer, which
        drops it from the pooled chi-square.
        """
        n = self.total
        if n <= 1:
            return 0.0
        return (
            self.focal_size * self.reference_size * self.right_total * self.wrong_total
            / (n * n * (n - 1.0))
        )

    def odds_ratio_numerator(self) -> float:
        """reference_right · focal_wrong / n."""
        n = self.total
        if n == 0:
            return 0.0
        return self._reference_right * self._focal_wrong / n

    def odds_ratio_denominator(self) -> float:
        """reference_wrong · focal_right / n."""
        n = self.total
        if n == 0:
            return 0.0
        return self._reference_wrong * self._focal_right / n

    def __repr__(self) -> str:
        return (
            f"StratumTable(focal_right={self._focal_right}, focal_wrong={self._focal_wrong}, "
            f"reference_right={self._reference_right}, reference_wrong={self._reference_wrong})"
        )
