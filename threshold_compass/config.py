"""
Threshold Compass configuration.
All settings via environment variables with sensible defaults.
"""

import os
from pathlib import Path
from types import MappingProxyType

# --- Paths ---
BASE_DIR = Path(os.getenv("COMPASS_DATA_DIR", "/data"))
DB_PATH = BASE_DIR / "compass.db"

# --- Auth ---
API_KEY = os.getenv("COMPASS_API_KEY", "")
DEFAULT_USER_ID = os.getenv("COMPASS_DEFAULT_USER", "local")

# --- Logging ---
LOG_LEVEL = os.getenv("COMPASS_LOG_LEVEL", "INFO").upper()

# --- Carryover (exponential tolerance decay) ---
# Elimination half-life of the tolerance signal, in hours.
HALF_LIFE_HOURS = MappingProxyType({
    "psilocybin": 288.0,  # 12 days
    "lsd": 192.0,         # 8 days
})
DEFAULT_SUBSTANCE = "psilocybin"

# Doses older than this many half-lives are treated as fully decayed.
TOLERANCE_CUTOFF_HALF_LIVES = 3

# Initial tolerance per dose = min(100, amount * SCALE); gram-scale units.
INITIAL_TOLERANCE_SCALE = 1000.0

# (upper bound inclusive, tier, message), ascending
CARRYOVER_TIERS = (
    (15, "clear", "Full sensitivity expected."),
    (30, "mild", "Slight tolerance, minor adjustment."),
    (50, "moderate", "Consider a rest day."),
    (100, "elevated", "Rest recommended."),
)
CLEAR_THRESHOLD = CARRYOVER_TIERS[0][0]

# No dose suggestion in these tiers, only rest.
REST_TIERS = frozenset({"moderate", "elevated"})

# LSD amounts at or above this are microgram figures, not gram-equivalents.
LSD_GRAM_EQUIVALENT_LIMIT = 1.0

# Decay chart defaults
CARRYOVER_CURVE_DAYS = int(os.getenv("CARRYOVER_CURVE_DAYS", "14"))
CARRYOVER_CURVE_STEP_HOURS = int(os.getenv("CARRYOVER_CURVE_STEP_HOURS", "6"))
ACTIVE_DOSE_WINDOW_HOURS = 48

# --- Threshold range calibration ---
THRESHOLD_ZONES = ("sub", "low", "sweet_spot", "high", "over")

# Self-report -> zone. Nothing maps to "high".
FEEL_TO_ZONE = MappingProxyType({
    "nothing": "sub",
    "under": "low",
    "sweetspot": "sweet_spot",
    "over": "over",
})

CONFIDENCE_SATURATION_DOSES = 10
ZONE_COVERAGE_POINTS = 10
CONSISTENCY_BONUS_POINTS = 10
CONSISTENCY_MAX_STDDEV = 0.02

# (exclusive upper bound, qualifier), ascending; None = no bound
CONFIDENCE_BANDS = (
    (30, "Need more data."),
    (50, "Preliminary range. Keep logging."),
    (70, "Working range. Refine with more doses."),
    (None, "Calibrated range."),
)

# Batch potency comparison (sweet-spot ratio)
POTENCY_RATIO_HIGH = 1.3
POTENCY_RATIO_LOW = 0.7

# --- Drift ---
# Most recent doses averaged against the range. Fixed, not tunable.
DRIFT_WINDOW = 3

# --- Course corrections ---
CORRECTION_RECENT_HOURS = int(os.getenv("CORRECTION_RECENT_HOURS", "48"))
CALMING_CATEGORIES = frozenset({"grounding", "breath"})

# --- Dose ranges (harm-reduction limits per substance) ---
DOSE_RANGES = MappingProxyType({
    "psilocybin": MappingProxyType({
        "min": 0.01,
        "typical_low": 0.05,
        "typical_high": 0.2,
        "max": 0.3,
        "danger": 0.5,
        "unit": "g",
        "unit_label": "grams",
        "step": 0.01,
        "default_dose": 0.1,
    }),
    "lsd": MappingProxyType({
        "min": 5,
        "typical_low": 10,
        "typical_high": 20,
        "max": 25,
        "danger": 50,
        "unit": "µg",
        "unit_label": "micrograms",
        "step": 1,
        "default_dose": 10,
    }),
})

SUBSTANCE_LABELS = MappingProxyType({
    "psilocybin": "Psilocybin",
    "lsd": "LSD",
    "other": "Other",
})

# --- Pattern detection ---
# Check-in signal weights (1-5 scale each), scored onto 0-100.
SIGNAL_WEIGHTS = MappingProxyType({
    "clarity": 0.4,
    "energy": 0.3,
    "stability": 0.3,
})

PATTERN_MIN_SAMPLES = MappingProxyType({
    "day_clustering": 10,
    "feel_correlation": 8,
    "anti_pattern": 5,
})
PATTERN_MIN_CONFIDENCE = 40
PATTERN_MAX_RESULTS = 5
# A check-in belongs to a dose when linked by id or logged within this window.
CHECK_IN_MATCH_HOURS = 8
EVENING_HOUR = 18
