"""
Cochran–Mantel–Haenszel DIF statistics for a single binary item.

The engine accumulates one 2×2 table per level of the matching variable
(see tables.py) and pools them on demand:

- CMH chi-square (1 df), optionally with the 0.5 continuity correction
- p-value from the upper tail of chi-square(1)
- Mantel–Haenszel common odds ratio, reference odds over focal odds
- Robins–Breslow–Greenland variance of ln(OR) and a Wald-type CI
- ETS delta (MH D-DIF) and the ETS A/B/C category
- Dorans–Kulick standardized p-difference with the Zwick & Thayer (1996)
  variance, as a companion effect size

Strata whose hypergeometric variance is zero are excluded from the
chi-square and the valid sample size.  Statistics are recomputed from the
tables on every call, so further increments are always reflected.

Example:
    engine = CmhEngine("F", "M", item_name="item1")
    engine.increment(1, "F", 1.0, 10)
    engine.increment(1, "F", 0.0, 20)
    engine.increment(1, "M", 1.0, 30)
    engine.increment(1, "M", 0.0, 40)
    engine.common_odds_ratio()   # 1.5
"""

from __future__ import annotations

import math
from collections.abc import Callable, Hashable, Iterable, Sequence
from operator import attrgetter

import numpy as np
import pandas as pd
from scipy import stats

from .classification import DifClass, classify_ets, ets_delta
from .config import (
    ALPHA,
    CONFIDENCE_LEVEL,
    CONTINUITY_CORRECTION,
    FREQUENCY_COLUMNS,
    RIGHT_SCORE,
    WRONG_SCORE,
)
from .errors import DifError, InsufficientDataError, InvalidInputError, UnknownGroupError
from .tables import Group, StratumCounts, StratumTable

FrequencyRow = tuple[str, str, str, str, str]


def _z_critical(confidence: float) -> float:
    """Two-sided standard normal critical value."""
    if not 0.0 < confidence < 1.0:
        raise InvalidInputError(f"Confidence must lie in (0, 1), got {confidence!r}")
    return float(stats.norm.ppf((1 + confidence) / 2))


def parse_stratum(text: str) -> Hashable:
    """Exported stratum key back to a float, or the string itself if not numeric."""
    try:
        return float(text)
    except ValueError:
        return text


class CmhEngine:
    """
    Stratified focal/reference × right/wrong tables for one item.

    Args:
        focal_code: Group label of the focal group.
        reference_code: Group label of the reference group.  Labels are
            compared as strings.
        item_name: Identifier written into the frequency export.
        continuity_correction: Subtract 0.5 from |Σ(a - E)| before squaring.
        report_delta: Report effect sizes on the ETS delta scale instead of
            the odds-ratio scale.
    """

    def __init__(
        self,
        focal_code: str,
        reference_code: str,
        item_name: str = "",
        continuity_correction: bool = False,
        report_delta: bool = False,
    ) -> None:
        focal_code, reference_code = str(focal_code), str(reference_code)
        if focal_code == reference_code:
            raise UnknownGroupError(
                f"Focal and reference codes must differ (both are {focal_code!r})"
            )
        self._focal_code = focal_code
        self._reference_code = reference_code
        self._item_name = str(item_name)
        self._continuity_correction = bool(continuity_correction)
        self._report_delta = bool(report_delta)
        self._strata: dict[Hashable, StratumTable] = {}

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def focal_code(self) -> str:
        return self._focal_code

    @property
    def reference_code(self) -> str:
        return self._reference_code

    @property
    def item_name(self) -> str:
        return self._item_name

    @property
    def continuity_correction(self) -> bool:
        return self._continuity_correction

    @property
    def report_delta(self) -> bool:
        return self._report_delta

    def __len__(self) -> int:
        return len(self._strata)

    def __repr__(self) -> str:
        return (
            f"CmhEngine(item_name={self._item_name!r}, focal_code={self._focal_code!r}, "
            f"reference_code={self._reference_code!r}, strata={len(self._strata)})"
        )

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def _resolve_group(self, label: object) -> Group:
        if label is not None:
            label = str(label)
            if label == self._focal_code:
                return Group.FOCAL
            if label == self._reference_code:
                return Group.REFERENCE
        raise UnknownGroupError(
            f"Group {label!r} is neither focal ({self._focal_code!r}) "
            f"nor reference ({self._reference_code!r})"
        )

    def increment(
        self,
        stratum: Hashable,
        group: str,
        item_score: float,
        frequency: float = 1.0,
    ) -> None:
        """
        Add a weighted response to the table for ``stratum``.

        The table is created on first sight of a stratum.  Invalid input
        raises before anything is stored.

        Raises:
            UnknownGroupError: ``group`` matches neither code.
            InvalidInputError: NaN stratum, negative or non-finite
                frequency, non-finite item score.
        """
        resolved = self._resolve_group(group)
        if isinstance(stratum, float) and math.isnan(stratum):
            raise InvalidInputError("Stratum must not be NaN")

        table = self._strata.get(stratum)
        if table is None:
            table = StratumTable()
            table.increment(resolved, item_score, frequency)
            self._strata[stratum] = table
        else:
            table.increment(resolved, item_score, frequency)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def stratum(self, key: Hashable) -> StratumCounts:
        """Snapshot of one stratum.  Raises KeyError for an unseen key."""
        return self._strata[key].snapshot()

    def strata(self) -> dict[Hashable, StratumCounts]:
        """Snapshots of all strata in insertion order."""
        return {key: table.snapshot() for key, table in self._strata.items()}

    def _per_stratum(self, term: Callable[[StratumTable], float]) -> np.ndarray:
        return np.fromiter(
            (term(table) for table in self._strata.values()),
            dtype=float,
            count=len(self._strata),
        )

    # ------------------------------------------------------------------
    # Sample sizes
    # ------------------------------------------------------------------

    def total_focal_size(self) -> float:
        return float(self._per_stratum(attrgetter("focal_size")).sum())

    def total_reference_size(self) -> float:
        return float(self._per_stratum(attrgetter("reference_size")).sum())

    def _valid_mask(self) -> np.ndarray:
        return self._per_stratum(StratumTable.variance) > 0

    def valid_strata(self) -> int:
        """Number of strata that contribute to the chi-square."""
        return int(self._valid_mask().sum())

    def valid_sample_size(self) -> float:
        return float(self._per_stratum(attrgetter("total"))[self._valid_mask()].sum())

    def valid_focal_size(self) -> float:
        return float(self._per_stratum(attrgetter("focal_size"))[self._valid_mask()].sum())

    def valid_reference_size(self) -> float:
        return float(self._per_stratum(attrgetter("reference_size"))[self._valid_mask()].sum())

    # ------------------------------------------------------------------
    # Chi-square test
    # ------------------------------------------------------------------

    def cochran_mantel_haenszel(self) -> float:
        """
        CMH chi-square statistic with one degree of freedom.

        (|Σ(a_i - E_i)| - c)² / Σ V_i over strata with V_i > 0, where a_i is
        the focal right count and c is 0.5 with continuity correction.

        Raises:
            InsufficientDataError: Every stratum has zero variance.
        """
        variance = self._per_stratum(StratumTable.variance)
        valid = variance > 0
        if not valid.any():
            raise InsufficientDataError(
                f"Item {self._item_name!r}: no stratum has non-zero variance"
            )
        observed = self._per_stratum(attrgetter("focal_right"))[valid].sum()
        expected = self._per_stratum(StratumTable.expected_focal_right)[valid].sum()

        correction = CONTINUITY_CORRECTION if self._continuity_correction else 0.0
        numerator = max(abs(observed - expected) - correction, 0.0)
        return float(numerator**2 / variance[valid].sum())

    def p_value(self) -> float:
        """Upper-tail probability of the CMH statistic under chi-square(1)."""
        return float(stats.chi2.sf(self.cochran_mantel_haenszel(), df=1))

    # ------------------------------------------------------------------
    # Common odds ratio
    # ------------------------------------------------------------------

    def common_odds_ratio(self) -> float:
        """
        Mantel–Haenszel common odds ratio, reference odds over focal odds.

        Σ(reference_right · focal_wrong / n) / Σ(reference_wrong · focal_right / n)

        Raises:
            InsufficientDataError: The denominator sum is zero.
        """
        numerator = self._per_stratum(StratumTable.odds_ratio_numerator).sum()
        denominator = self._per_stratum(StratumTable.odds_ratio_denominator).sum()
        if denominator == 0:
            raise InsufficientDataError(
                f"Item {self._item_name!r}: common odds ratio denominator is zero"
            )
        return float(numerator / denominator)

    def common_odds_ratio_variance(self) -> float:
        """
        Robins–Breslow–Greenland variance of ln(common odds ratio).

        With A = reference_right, B = reference_wrong, C = focal_right,
        D = focal_wrong and n the stratum total:

            P = (A + D)/n   Q = (B + C)/n   R = AD/n   S = BC/n

            Var = ΣPR / 2(ΣR)² + Σ(PS + QR) / 2ΣRΣS + ΣQS / 2(ΣS)²
        """
        a = self._per_stratum(attrgetter("reference_right"))
        b = self._per_stratum(attrgetter("reference_wrong"))
        c = self._per_stratum(attrgetter("focal_right"))
        d = self._per_stratum(attrgetter("focal_wrong"))
        n = a + b + c + d

        used = n > 0
        a, b, c, d, n = a[used], b[used], c[used], d[used], n[used]

        p = (a + d) / n
        q = (b + c) / n
        r = a * d / n
        s = b * c / n
        sum_r, sum_s = r.sum(), s.sum()
        if sum_r == 0 or sum_s == 0:
            raise InsufficientDataError(
                f"Item {self._item_name!r}: odds ratio variance is undefined"
            )

        return float(
            (p * r).sum() / (2.0 * sum_r**2)
            + (p * s + q * r).sum() / (2.0 * sum_r * sum_s)
            + (q * s).sum() / (2.0 * sum_s**2)
        )

    def common_odds_ratio_confidence_interval(
        self,
        odds_ratio: float | None = None,
        confidence: float = CONFIDENCE_LEVEL,
    ) -> tuple[float, float]:
        """
        Log-scale Wald interval for the common odds ratio.

        Args:
            odds_ratio: Point estimate; defaults to :meth:`common_odds_ratio`.
            confidence: Two-sided confidence level.

        Returns:
            Tuple of (lower, upper).
        """
        if odds_ratio is None:
            odds_ratio = self.common_odds_ratio()
        z = _z_critical(confidence)
        sigma = math.sqrt(self.common_odds_ratio_variance())
        return (odds_ratio * math.exp(-z * sigma), odds_ratio * math.exp(z * sigma))

    def ets_delta(self, odds_ratio: float | None = None) -> float:
        """MH D-DIF, -2.35 · ln(OR).  Negative values favour the reference group."""
        if odds_ratio is None:
            odds_ratio = self.common_odds_ratio()
        return ets_delta(odds_ratio)

    # ------------------------------------------------------------------
    # Standardized p-difference
    # ------------------------------------------------------------------

    def _group_sizes(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        n_focal = self._per_stratum(attrgetter("focal_size"))
        n_reference = self._per_stratum(attrgetter("reference_size"))
        both = (n_focal > 0) & (n_reference > 0)
        if not both.any():
            raise InsufficientDataError(
                f"Item {self._item_name!r}: no stratum contains both groups"
            )
        return n_focal, n_reference, both

    def standardized_p_difference(self) -> float:
        """
        STD P-DIF (Dorans & Kulick, 1986): focal-weighted mean of
        p_focal - p_reference over strata where both groups appear.
        """
        n_focal, n_reference, both = self._group_sizes()
        focal_right = self._per_stratum(attrgetter("focal_right"))[both]
        reference_right = self._per_stratum(attrgetter("reference_right"))[both]

        weight = n_focal[both] / n_focal.sum()
        difference = focal_right / n_focal[both] - reference_right / n_reference[both]
        return float((weight * difference).sum())

    def standardized_p_difference_variance(self) -> float:
        """Zwick & Thayer (1996), eq. 7."""
        n_focal, n_reference, both = self._group_sizes()
        variance = self._per_stratum(StratumTable.variance)[both]

        weight = n_focal[both] / n_focal.sum()
        inner = 1.0 / n_focal[both] + 1.0 / n_reference[both]
        return float((weight**2 * inner**2 * variance).sum())

    def standardized_p_difference_z(self) -> float:
        variance = self.standardized_p_difference_variance()
        if variance == 0:
            raise InsufficientDataError(
                f"Item {self._item_name!r}: standardized p-difference has zero variance"
            )
        return self.standardized_p_difference() / math.sqrt(variance)

    def standardized_p_difference_confidence_interval(
        self,
        confidence: float = CONFIDENCE_LEVEL,
    ) -> tuple[float, float]:
        smd = self.standardized_p_difference()
        margin = _z_critical(confidence) * math.sqrt(self.standardized_p_difference_variance())
        return (smd - margin, smd + margin)

    # ------------------------------------------------------------------
    # Effect size and classification
    # ------------------------------------------------------------------

    def effect_size(self) -> float:
        """Common odds ratio, or its ETS delta when report_delta is set."""
        odds_ratio = self.common_odds_ratio()
        return ets_delta(odds_ratio) if self._report_delta else odds_ratio

    def effect_size_confidence_interval(
        self,
        confidence: float = CONFIDENCE_LEVEL,
    ) -> tuple[float, float]:
        """CI matching :meth:`effect_size`, always ordered (lower, upper)."""
        lower, upper = self.common_odds_ratio_confidence_interval(confidence=confidence)
        if not self._report_delta:
            return (lower, upper)
        # delta is decreasing in OR
        return (ets_delta(upper), ets_delta(lower))

    def ets_classification(self, alpha: float = ALPHA) -> DifClass:
        """
        ETS DIF category (A, B+, B-, C+ or C-).

        When the odds ratio is 0 its variance is undefined; the interval is
        then taken as unbounded, so the item is at most B+.

        Raises:
            InsufficientDataError: The chi-square or odds ratio is undefined.
        """
        odds_ratio = self.common_odds_ratio()
        try:
            interval = self.common_odds_ratio_confidence_interval(odds_ratio)
        except InsufficientDataError:
            interval = (0.0, math.inf)
        return classify_ets(self.p_value(), odds_ratio, interval, alpha=alpha)

    def summary(self) -> dict:
        """
        One flat result row for this item.

        Statistics that cannot be computed are None rather than raising,
        so a batch of items can be tabulated in one DataFrame.
        """
        row: dict = {
            "item_name": self._item_name,
            "focal_code": self._focal_code,
            "reference_code": self._reference_code,
            "chi_square": None,
            "p_value": None,
            "valid_n": self.valid_sample_size(),
            "effect_size": None,
            "ci_lower": None,
            "ci_upper": None,
            "ets_class": None,
        }
        try:
            row["chi_square"] = self.cochran_mantel_haenszel()
            row["p_value"] = self.p_value()
        except InsufficientDataError:
            return row

        try:
            row["ets_class"] = self.ets_classification().value
        except InsufficientDataError:
            return row

        # OR = 0 has no delta and no interval
        try:
            row["effect_size"] = self.effect_size()
            row["ci_lower"], row["ci_upper"] = self.effect_size_confidence_interval()
        except DifError:
            pass
        return row

    # ------------------------------------------------------------------
    # Frequency export / replay
    # ------------------------------------------------------------------

    def frequency_tables(self) -> list[FrequencyRow]:
        """
        Cell counts as rows of strings:
        (item_name, group, stratum, item_score, frequency).

        Focal rows for every stratum come first, then reference rows.
        Within a stratum the wrong cell (0.0) precedes the right cell (1.0).
        Zero cells are included so a replay recreates every stratum.
        """
        rows: list[FrequencyRow] = []
        for group, code in (
            (Group.FOCAL, self._focal_code),
            (Group.REFERENCE, self._reference_code),
        ):
            for stratum, table in self._strata.items():
                for score, right in ((WRONG_SCORE, False), (RIGHT_SCORE, True)):
                    rows.append((
                        self._item_name,
                        code,
                        str(stratum),
                        repr(score),
                        repr(table.cell(group, right)),
                    ))
        return rows

    def frequency_frame(self) -> pd.DataFrame:
        """frequency_tables() as a DataFrame with numeric score and frequency."""
        frame = pd.DataFrame(self.frequency_tables(), columns=FREQUENCY_COLUMNS)
        return frame.astype({"item_score": float, "frequency": float})

    @classmethod
    def from_frequency_tables(
        cls,
        rows: Iterable[Sequence[str]],
        focal_code: str,
        reference_code: str,
        item_name: str | None = None,
        stratum_type: Callable[[str], Hashable] = parse_stratum,
        **kwargs,
    ) -> CmhEngine:
        """
        Rebuild an engine by replaying exported frequency rows.

        Args:
            rows: Rows shaped like :meth:`frequency_tables` output.
            focal_code: Focal group label.
            reference_code: Reference group label.
            item_name: Item to replay; rows for other items are skipped.
                When None, the first row's item is used and every row must
                belong to it.
            stratum_type: Parser for the stratum column.  The default reads
                numeric keys as floats and keeps any other key as a string.
            **kwargs: Passed to the constructor.

        Raises:
            InvalidInputError: item_name is None and the rows mix items.
        """
        engine: CmhEngine | None = None
        for row_item, group, stratum, item_score, frequency in rows:
            if item_name is not None and row_item != item_name:
                continue
            if engine is None:
                engine = cls(focal_code, reference_code, item_name=row_item, **kwargs)
            elif row_item != engine.item_name:
                raise InvalidInputError(
                    f"Row for item {row_item!r} in tables for {engine.item_name!r}"
                )
            engine.increment(stratum_type(stratum), group, float(item_score), float(frequency))

        if engine is None:
            engine = cls(focal_code, reference_code, item_name=item_name or "", **kwargs)
        return engine
