"""
Carryover engine: residual tolerance from recent doses.

Each dose contributes an initial tolerance that decays exponentially with
the substance half-life:

  k            = ln(2) / t_half
  C_i(t)       = min(100, amount_i * 1000) * e^(-k * (t - tau_i))
  carryover(t) = clamp(SUM_i C_i(t) * H(t - tau_i) * [t - tau_i <= 3 * t_half], 0, 100)

Half-lives: psilocybin 288h (12 days), LSD 192h (8 days). Unknown substances
use the psilocybin half-life.

The 3 half-life cutoff bounds the summation (treated as fully decayed), it is
not a physical claim. The amount * 1000 scaling assumes gram-scale amounts.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from threshold_compass.config import (
    ACTIVE_DOSE_WINDOW_HOURS,
    CARRYOVER_CURVE_DAYS,
    CARRYOVER_CURVE_STEP_HOURS,
    CARRYOVER_TIERS,
    CLEAR_THRESHOLD,
    DEFAULT_SUBSTANCE,
    HALF_LIFE_HOURS,
    INITIAL_TOLERANCE_SCALE,
    LSD_GRAM_EQUIVALENT_LIMIT,
    TOLERANCE_CUTOFF_HALF_LIVES,
)

log = logging.getLogger("compass.carryover")


def round_half_up(value: float, digits: int = 0) -> float:
    """Round half away from zero for non-negative values (not banker's rounding)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def half_life_hours(substance: Optional[str]) -> float:
    return HALF_LIFE_HOURS.get(substance or "", HALF_LIFE_HOURS[DEFAULT_SUBSTANCE])


def decay_rate(substance: Optional[str]) -> float:
    """k = ln(2) / t_half, per hour."""
    return math.log(2) / half_life_hours(substance)


_unit_warning_logged = False


def _check_unit_contract(doses: list[dict], substance: Optional[str]) -> None:
    # Callers must pass gram-equivalent LSD amounts; we warn, never convert.
    # WARNING once per process, DEBUG afterwards.
    global _unit_warning_logged
    if substance != "lsd":
        return
    suspicious = [d["amount"] for d in doses if d.get("amount", 0) >= LSD_GRAM_EQUIVALENT_LIMIT]
    if suspicious:
        level = logging.DEBUG if _unit_warning_logged else logging.WARNING
        _unit_warning_logged = True
        log.log(
            level,
            "LSD carryover got %d amount(s) >= %.1f (largest %.1f); "
            "expected gram-equivalent units, computing as-is",
            len(suspicious), LSD_GRAM_EQUIVALENT_LIMIT, max(suspicious),
        )


# ── Raw carryover sum ────────────────────────────────────────────────

def carryover_percentage(doses: list[dict], substance: Optional[str], at: datetime) -> float:
    """
    Unrounded carryover at `at`, clamped to [0, 100].
    Future doses and doses older than 3 half-lives contribute 0.
    """
    t_half = half_life_hours(substance)
    k = math.log(2) / t_half
    cutoff = t_half * TOLERANCE_CUTOFF_HALF_LIVES

    total = 0.0
    for dose in doses:
        hours_since = (at - _as_datetime(dose["dosed_at"])).total_seconds() / 3600.0
        if hours_since < 0 or hours_since > cutoff:
            continue
        initial = min(100.0, dose["amount"] * INITIAL_TOLERANCE_SCALE)
        total += initial * math.exp(-k * hours_since)

    return max(0.0, min(100.0, total))


def classify_tier(percentage: float) -> tuple[str, str]:
    """Map percentage to (tier, message). Boundaries fall into the lower tier."""
    for upper, tier, message in CARRYOVER_TIERS:
        if percentage <= upper:
            return tier, message
    _, tier, message = CARRYOVER_TIERS[-1]
    return tier, message


def hours_to_clear(percentage: int, substance: Optional[str]) -> Optional[int]:
    """
    Projected hours until carryover decays back to the clear boundary.
    Solves percentage * e^(-k*h) = 15 for h. None when already clear.
    """
    if percentage <= CLEAR_THRESHOLD:
        return None
    k = decay_rate(substance)
    return int(round_half_up(-math.log(CLEAR_THRESHOLD / percentage) / k))


# ── Carryover result ─────────────────────────────────────────────────

def compute_carryover(doses: list[dict], substance: Optional[str], now: datetime) -> dict:
    """
    Current tolerance estimate from dose history.

    Returns dict with percentage (0-100 int), tier, effective_multiplier
    (0-1, 2 dp), hours_to_clear (int or None) and message.
    Empty history yields 0 / clear / 1.0 / None.
    """
    _check_unit_contract(doses, substance)

    percentage = int(round_half_up(carryover_percentage(doses, substance, now)))
    tier, message = classify_tier(percentage)
    multiplier = round_half_up((1 - percentage / 100) * 100) / 100

    return {
        "percentage": percentage,
        "tier": tier,
        "effective_multiplier": multiplier,
        "hours_to_clear": hours_to_clear(percentage, substance),
        "message": message,
    }


def effective_dose(amount: float, carryover: dict) -> float:
    """Dose felt after carryover: amount * effective_multiplier."""
    return round(amount * carryover["effective_multiplier"], 3)


def next_clear_time(carryover: dict, now: datetime) -> Optional[datetime]:
    """When carryover is projected back in the clear tier (None if already clear)."""
    hours = carryover.get("hours_to_clear")
    if hours is None:
        return None
    return now + timedelta(hours=hours)


def carryover_curve(
    doses: list[dict],
    substance: Optional[str],
    now: datetime,
    days: int = CARRYOVER_CURVE_DAYS,
    step_hours: int = CARRYOVER_CURVE_STEP_HOURS,
) -> list[dict]:
    """
    Carryover decay series from `now - days` up to `now`, one point every
    `step_hours`. Each point counts doses taken in the 48h before it.
    """
    points = []
    total_hours = days * 24
    for offset in range(total_hours, -1, -step_hours):
        t = now - timedelta(hours=offset)
        active = 0
        for dose in doses:
            since = (t - _as_datetime(dose["dosed_at"])).total_seconds() / 3600.0
            if 0 <= since <= ACTIVE_DOSE_WINDOW_HOURS:
                active += 1
        points.append({
            "timestamp": t.isoformat(),
            "percentage": round(carryover_percentage(doses, substance, t), 1),
            "active_doses": active,
        })
    return points
