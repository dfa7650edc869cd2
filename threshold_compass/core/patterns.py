"""
Rule-based pattern detection over dose history and check-ins.

Detectors, each returning one pattern dict or None:
  day_clustering    doses concentrate on one or two weekdays
  feel_correlation  check-in signal differs by how the dose felt
  anti_pattern      difficult experiences (stability and clarity <= 2) share a factor

Check-ins are scored with the weighted signal score:

  score = ((0.4 * clarity + 0.3 * energy + 0.3 * stability) - 1) / 4 * 100

Patterns under confidence 40 are dropped; the top 5 by confidence are kept.
"""

from datetime import datetime
from typing import Optional

from threshold_compass.config import (
    CHECK_IN_MATCH_HOURS,
    DOSE_RANGES,
    EVENING_HOUR,
    PATTERN_MAX_RESULTS,
    PATTERN_MIN_CONFIDENCE,
    PATTERN_MIN_SAMPLES,
    SIGNAL_WEIGHTS,
)
from threshold_compass.core.carryover import round_half_up

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

FEEL_LABELS = {
    "nothing": "like nothing",
    "under": "under threshold",
    "sweetspot": "like your sweet spot",
    "over": "over threshold",
}

FACTOR_LABELS = {
    "evening": "evening timing",
    "upper_range": "doses above the typical range",
}


def _ts(value) -> datetime:
    return value if isinstance(value, datetime) else datetime.fromisoformat(value)


def _pattern(type_, title, description, confidence, dose_ids, check_in_ids=()) -> dict:
    return {
        "type": type_,
        "title": title,
        "description": description,
        "confidence": confidence,
        "evidence_dose_ids": list(dose_ids),
        "evidence_check_in_ids": list(check_in_ids),
    }


def _weighted_signal(check_in: dict) -> float:
    return sum(check_in[key] * weight for key, weight in SIGNAL_WEIGHTS.items())


def signal_score(check_in: dict) -> float:
    """Weighted energy/clarity/stability (1-5 each) mapped onto 0-100."""
    return (_weighted_signal(check_in) - 1) / 4 * 100


def match_check_ins(doses: list[dict], check_ins: list[dict]) -> list[tuple[dict, Optional[dict]]]:
    """Pair each dose with its check-in: linked by dose_id, else the first within 8h."""
    window = CHECK_IN_MATCH_HOURS * 3600

    def belongs(check_in, dose, dosed_at):
        if check_in.get("dose_id") == dose["id"]:
            return True
        return abs((_ts(check_in["timestamp"]) - dosed_at).total_seconds()) < window

    pairs = []
    for dose in doses:
        dosed_at = _ts(dose["dosed_at"])
        match = next((c for c in check_ins if belongs(c, dose, dosed_at)), None)
        pairs.append((dose, match))
    return pairs


# ── Detectors ────────────────────────────────────────────────────────

def detect_day_clustering(doses: list[dict], check_ins: list[dict]) -> Optional[dict]:
    if len(doses) < PATTERN_MIN_SAMPLES["day_clustering"]:
        return None

    by_day = [0] * 7
    for dose in doses:
        by_day[_ts(dose["dosed_at"]).weekday()] += 1

    total = len(doses)
    ranked = sorted(
        ((day, count) for day, count in enumerate(by_day) if count),
        key=lambda item: item[1],
        reverse=True,
    )
    top_day, top_count = ranked[0]
    top_pct = top_count / total
    if top_pct < 0.3:
        return None

    confidence = min(90, int(round_half_up(top_pct * 100 + 20)))

    if len(ranked) >= 2 and ranked[1][1] / total > 0.2:
        second_day, second_count = ranked[1]
        days = {top_day, second_day}
        both_pct = int(round_half_up((top_count + second_count) / total * 100))
        return _pattern(
            "day_clustering",
            f"Your {DAY_NAMES[top_day]} and {DAY_NAMES[second_day]} pattern",
            f"{both_pct}% of your doses happen on these two days. Is this intentional?",
            confidence,
            [d["id"] for d in doses if _ts(d["dosed_at"]).weekday() in days],
        )

    return _pattern(
        "day_clustering",
        f"{DAY_NAMES[top_day]}s are your day",
        f"{int(round_half_up(top_pct * 100))}% of your doses happen on "
        f"{DAY_NAMES[top_day]}s. Your practice has a rhythm.",
        confidence,
        [d["id"] for d in doses if _ts(d["dosed_at"]).weekday() == top_day],
    )


def detect_feel_correlation(doses: list[dict], check_ins: list[dict]) -> Optional[dict]:
    """Best-scoring threshold feel, when it beats the worst by >= 0.8 signal points."""
    reported = [d for d in doses if d.get("threshold_feel")]
    if len(reported) < PATTERN_MIN_SAMPLES["feel_correlation"]:
        return None

    groups: dict[str, list[tuple[dict, dict]]] = {}
    for dose, check_in in match_check_ins(reported, check_ins):
        if check_in:
            groups.setdefault(dose["threshold_feel"], []).append((dose, check_in))

    averages = {
        feel: sum(_weighted_signal(c) for _, c in pairs) / len(pairs)
        for feel, pairs in groups.items()
        if len(pairs) >= 2
    }
    if len(averages) < 2:
        return None

    ranked = sorted(averages, key=averages.get, reverse=True)
    best = ranked[0]
    diff = averages[best] - averages[ranked[-1]]
    if diff < 0.8:
        return None

    confidence = min(95, int(round_half_up(50 + diff * 15 + len(groups[best]) * 3)))
    return _pattern(
        "feel_correlation",
        "How a dose feels predicts your day",
        f"Your highest check-in scores follow doses that felt {FEEL_LABELS[best]}.",
        confidence,
        [d["id"] for d, _ in groups[best]],
        [c["id"] for _, c in groups[best]],
    )


def detect_anti_patterns(doses: list[dict], check_ins: list[dict],
                         substance: Optional[str] = None) -> Optional[dict]:
    difficult = [
        (dose, check_in) for dose, check_in in match_check_ins(doses, check_ins)
        if check_in and check_in["stability"] <= 2 and check_in["clarity"] <= 2
    ]
    if len(difficult) < PATTERN_MIN_SAMPLES["anti_pattern"]:
        return None

    limits = DOSE_RANGES.get(substance)
    factors = {"evening": 0, "upper_range": 0}
    for dose, _ in difficult:
        if _ts(dose["dosed_at"]).hour >= EVENING_HOUR:
            factors["evening"] += 1
        if limits and dose["amount"] > limits["typical_high"]:
            factors["upper_range"] += 1

    ranked = sorted(
        ((factor, count) for factor, count in factors.items() if count >= 2),
        key=lambda item: item[1],
        reverse=True,
    )
    if not ranked:
        return None
    factor, count = ranked[0]
    pct = count / len(difficult)
    if pct < 0.5:
        return None

    confidence = min(80, int(round_half_up(pct * 80 + 20)))
    return _pattern(
        "anti_pattern",
        "Difficult experiences share this",
        f"{int(round_half_up(pct * 100))}% of your difficult experiences involved "
        f"{FACTOR_LABELS[factor]}. This might be worth avoiding.",
        confidence,
        [d["id"] for d, _ in difficult],
        [c["id"] for _, c in difficult],
    )


def detect_patterns(doses: list[dict], check_ins: list[dict],
                    substance: Optional[str] = None) -> list[dict]:
    """Run every detector; keep confident ones, highest confidence first."""
    found = [
        detect_day_clustering(doses, check_ins),
        detect_feel_correlation(doses, check_ins),
        detect_anti_patterns(doses, check_ins, substance),
    ]
    kept = [p for p in found if p and p["confidence"] >= PATTERN_MIN_CONFIDENCE]
    kept.sort(key=lambda p: p["confidence"], reverse=True)
    return kept[:PATTERN_MAX_RESULTS]
