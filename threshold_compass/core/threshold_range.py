"""
Threshold range calibration per batch.

Turns self-reported zones (sub < low < sweet_spot < high < over) into a
floor / sweet spot / ceiling estimate with a 0-100 confidence:

  floor      = max(max(sub), min(low))     highest no-effect vs lowest effect
  sweet_spot = median(sweet_spot)          else midpoint(max(low), min(high))
  ceiling    = min(min(over), max(high))   lowest too-strong vs highest tolerable

  confidence = min(100, round(n/10 * 100)) + 10 * zones_covered
               + 10 if >= 2 sweet spots with population stddev < 0.02
               clamped to 100

The calibration is static and deterministic; no learning involved.
"""

import statistics
from typing import Optional

from threshold_compass.config import (
    CONFIDENCE_BANDS,
    CONFIDENCE_SATURATION_DOSES,
    CONSISTENCY_BONUS_POINTS,
    CONSISTENCY_MAX_STDDEV,
    FEEL_TO_ZONE,
    POTENCY_RATIO_HIGH,
    POTENCY_RATIO_LOW,
    REST_TIERS,
    THRESHOLD_ZONES,
    ZONE_COVERAGE_POINTS,
)
from threshold_compass.core.carryover import round_half_up


def feel_to_zone(feel: Optional[str]) -> Optional[str]:
    """Map a plain-language threshold feel onto a zone (None if unmapped)."""
    return FEEL_TO_ZONE.get(feel) if feel else None


def _group_by_zone(doses: list[dict]) -> dict[str, list[float]]:
    buckets: dict[str, list[float]] = {zone: [] for zone in THRESHOLD_ZONES}
    for dose in doses:
        zone = dose.get("threshold_zone")
        if zone in buckets:
            buckets[zone].append(dose["amount"])
    return buckets


def _bound(lower_side: list[float], upper_side: list[float], combine) -> Optional[float]:
    candidates = []
    if lower_side:
        candidates.append(max(lower_side))
    if upper_side:
        candidates.append(min(upper_side))
    if not candidates:
        return None
    return combine(candidates)


def _sweet_spot(buckets: dict[str, list[float]]) -> Optional[float]:
    if buckets["sweet_spot"]:
        return statistics.median(buckets["sweet_spot"])
    if buckets["low"] and buckets["high"]:
        return (max(buckets["low"]) + min(buckets["high"])) / 2
    return None


def _confidence(buckets: dict[str, list[float]]) -> int:
    zoned = sum(len(v) for v in buckets.values())
    base = min(100, int(round_half_up(zoned / CONFIDENCE_SATURATION_DOSES * 100)))
    coverage = ZONE_COVERAGE_POINTS * sum(1 for v in buckets.values() if v)

    sweet = buckets["sweet_spot"]
    consistency = 0
    # Fewer than two sweet spots: variance undefined, never earns the bonus
    if len(sweet) >= 2 and statistics.pstdev(sweet) < CONSISTENCY_MAX_STDDEV:
        consistency = CONSISTENCY_BONUS_POINTS

    return min(100, base + coverage + consistency)


def qualifier_for(confidence: int) -> str:
    for upper, text in CONFIDENCE_BANDS:
        if upper is None or confidence < upper:
            return text
    return CONFIDENCE_BANDS[-1][1]


def calculate_threshold_range(doses: list[dict], batch_id) -> dict:
    """
    Calibrate floor / sweet spot / ceiling from {amount, threshold_zone} pairs.

    Entries with no or unknown zone are ignored for the bounds but still
    counted in doses_used. Empty input gives all-null bounds and confidence 0;
    callers treat that as insufficient data.
    """
    buckets = _group_by_zone(doses)
    confidence = _confidence(buckets)

    return {
        "floor": _bound(buckets["sub"], buckets["low"], max),
        "sweet_spot": _sweet_spot(buckets),
        "ceiling": _bound(buckets["high"], buckets["over"], min),
        "confidence": confidence,
        "qualifier": qualifier_for(confidence),
        "doses_used": len(doses),
        "batch_id": batch_id,
    }


# ── Using a calibrated range ─────────────────────────────────────────

def round_dose(dose: float) -> float:
    """0.01 precision at 1 and above, 0.001 below."""
    if dose >= 1:
        return round_half_up(dose, 2)
    return round_half_up(dose, 3)


def compare_batch_ranges(range_a: dict, range_b: dict,
                         name_a: str, name_b: str) -> Optional[str]:
    """Relative potency of two batches from their sweet spots."""
    sweet_a = range_a.get("sweet_spot")
    sweet_b = range_b.get("sweet_spot")
    if not sweet_a or not sweet_b:
        return None

    ratio = sweet_a / sweet_b
    if ratio > POTENCY_RATIO_HIGH:
        pct = int(round_half_up((ratio - 1) * 100))
        return f"{name_b} appears {pct}% more potent than {name_a}. Your sweet spot is lower."
    if ratio < POTENCY_RATIO_LOW:
        pct = int(round_half_up((1 - ratio) * 100))
        return f"{name_a} appears {pct}% more potent than {name_b}. Your sweet spot is lower."
    return f"{name_a} and {name_b} have similar potency. Your threshold range is consistent."


_INTENTIONS = {
    "subtle": ("floor", "Low end of your range for subtle support."),
    "standard": ("sweet_spot", "Your sweet spot for balanced effects."),
    "strong": ("ceiling", "Upper end of your range for stronger effects."),
}


def suggest_dose(threshold_range: dict, carryover: dict,
                 intention: str = "standard",
                 max_dose: Optional[float] = None) -> Optional[dict]:
    """
    Dose for an intention (subtle/standard/strong), scaled up by carryover.

    Returns {dose, rationale, rest}, or None when the needed bound is missing.
    In the moderate and elevated tiers no dose is suggested (dose None,
    rest True). The carryover adjustment never goes past max_dose.
    """
    key, rationale = _INTENTIONS.get(intention, _INTENTIONS["standard"])
    base = threshold_range.get(key)
    if base is None:
        return None

    if carryover["tier"] in REST_TIERS:
        return {
            "dose": None,
            "rationale": f"Carryover is {carryover['percentage']}% ({carryover['tier']}). "
                         f"{carryover['message']}",
            "rest": True,
        }

    dose = base
    multiplier = carryover["effective_multiplier"]
    if 0 < multiplier < 1:
        dose = base / multiplier
        pct = int(round_half_up((1 - multiplier) * 100))
        rationale += f" Adjusted up slightly to account for {pct}% carryover."

    if max_dose is not None and dose > max_dose:
        dose = max_dose
        rationale += f" Capped at the {max_dose} maximum."

    return {"dose": round_dose(dose), "rationale": rationale, "rest": False}
