"""
DIF-layer configuration: ETS cut points, test parameters, export schema,
and output paths.

The ETS constants are published values and are not re-derived anywhere in
the package; change them here only if the classification standard changes.
"""

from pathlib import Path

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parents[2]

DATA_DIR    = PROJECT_ROOT / "data"
RESULTS_DIR = PROJECT_ROOT / "results"

# Person-level item responses read by the batch runner
RESPONSES_PATH = DATA_DIR / "item_responses.csv"

# Exported tables (written by runner.run_dif_analysis)
RESULTS_FILENAME          = "cmh_dif_results.csv"
FREQUENCY_TABLES_FILENAME = "cmh_frequency_tables.csv"

# ---------------------------------------------------------------------------
# Response file layout (batch runner defaults)
# ---------------------------------------------------------------------------

GROUP_COLUMN: str = "group"
ITEM_PREFIX: str = "item"      # item columns are detected by this prefix

FOCAL_CODE: str = "F"
REFERENCE_CODE: str = "M"

# ---------------------------------------------------------------------------
# Item scoring
# ---------------------------------------------------------------------------

# Binary items only: exactly 1.0 is a right answer, anything else is wrong.
RIGHT_SCORE: float = 1.0
WRONG_SCORE: float = 0.0

# ---------------------------------------------------------------------------
# Statistical test parameters
# ---------------------------------------------------------------------------

ALPHA: float = 0.05
CONFIDENCE_LEVEL: float = 0.95

# Yates-style correction subtracted from |Σ(a - E)| when enabled.
CONTINUITY_CORRECTION: float = 0.5

# ---------------------------------------------------------------------------
# ETS DIF classification (Zwick & Ercikan, 1989; Dorans & Holland, 1993)
#
# Cut points on the common odds ratio scale.  They are the images of
# |MH D-DIF| = 1.0 and 1.5 under OR = exp(-delta / 2.35), rounded the
# way ETS publishes them.
# ---------------------------------------------------------------------------

ETS_DELTA_SCALE: float = -2.35

ETS_A_LOWER: float = 0.65   # OR in (0.65, 1.53) → |delta| < 1.0 → A
ETS_A_UPPER: float = 1.53

ETS_C_LOWER: float = 0.53   # OR < 0.53 → delta > 1.5, favours focal group
ETS_C_UPPER: float = 1.89   # OR > 1.89 → delta < -1.5, favours reference group

# ---------------------------------------------------------------------------
# Frequency table export schema
# ---------------------------------------------------------------------------

FREQUENCY_COLUMNS: list[str] = [
    "item_name", "group", "stratum", "item_score", "frequency",
]

SUMMARY_COLUMNS: list[str] = [
    "item_name", "focal_code", "reference_code",
    "chi_square", "p_value", "valid_n",
    "effect_size", "ci_lower", "ci_upper",
    "ets_class",
]
