"""
Course corrections: small, physical, time-bounded actions.

Selection is a filter funnel over the static pool, each step narrowing the
previous one:
  1. goal match            4. zone "over" -> grounding only (never to empty)
  2. no contraindications  5. not recently shown
  3. elevated tier -> grounding/breath only
Fallback: the whole pool minus recently shown. Final pick is uniform random
through an injectable random source.
"""

import random
from typing import Iterable, Optional

from threshold_compass.config import CALMING_CATEGORIES

CATEGORIES = ("breath", "movement", "grounding", "environment", "attention", "social")
GOALS = ("stability", "clarity", "creativity", "presence", "recovery", "exploration")


def _correction(id, title, instruction, duration_sec, category, goals, contraindications=()):
    return {
        "id": id,
        "title": title,
        "instruction": instruction,
        "duration_sec": duration_sec,
        "category": category,
        "goals": tuple(goals),
        "contraindications": tuple(contraindications),
    }


COURSE_CORRECTIONS = (
    _correction(
        "breath-478", "Four-seven-eight breath",
        "Breathe in for 4, hold for 7, breathe out for 8. Repeat four rounds.",
        90, "breath", ["stability", "recovery", "presence"],
    ),
    _correction(
        "breath-box", "Box breathing",
        "In for 4, hold for 4, out for 4, hold for 4. Keep it up for two minutes.",
        120, "breath", ["clarity", "stability"],
    ),
    _correction(
        "breath-sigh", "Physiological sigh",
        "Two short inhales through the nose, one long exhale through the mouth. Three times.",
        30, "breath", ["stability", "presence", "recovery"],
        ["respiratory_issue"],
    ),
    _correction(
        "ground-54321", "Five senses check",
        "Name 5 things you see, 4 you can touch, 3 you hear, 2 you smell, 1 you taste.",
        120, "grounding", ["stability", "presence", "recovery"],
    ),
    _correction(
        "ground-feet", "Feet on the floor",
        "Press both feet into the floor for 60 seconds. Notice the weight of your body.",
        60, "grounding", ["stability", "clarity", "presence"],
    ),
    _correction(
        "ground-cold-water", "Cold water on wrists",
        "Run cold water over your wrists for 30 seconds, then dry your hands slowly.",
        45, "grounding", ["stability", "recovery"],
        ["no_water_access"],
    ),
    _correction(
        "move-walk", "Ten-minute walk",
        "Walk outside for ten minutes without your phone in hand.",
        600, "movement", ["clarity", "creativity", "exploration"],
        ["injury", "busy_schedule"],
    ),
    _correction(
        "move-shake", "Shake it out",
        "Stand up and shake your hands, arms and legs for 60 seconds.",
        60, "movement", ["recovery", "creativity"],
        ["injury"],
    ),
    _correction(
        "move-stretch", "Slow neck stretch",
        "Drop each ear toward its shoulder and hold 20 seconds a side.",
        60, "movement", ["stability", "clarity", "recovery"],
    ),
    _correction(
        "env-light", "Change the light",
        "Open a window or step into daylight for two minutes.",
        120, "environment", ["clarity", "presence", "exploration"],
    ),
    _correction(
        "env-declutter", "Clear one surface",
        "Clear the surface in front of you. Put away five things.",
        180, "environment", ["clarity", "creativity"],
        ["busy_schedule"],
    ),
    _correction(
        "attn-single-task", "One thing only",
        "Close every tab but one. Work on that single task for 10 minutes.",
        600, "attention", ["clarity", "creativity"],
    ),
    _correction(
        "attn-notice", "Notice three colours",
        "Find three distinct colours around you and hold your attention on each for 10 seconds.",
        45, "attention", ["presence", "exploration", "creativity"],
    ),
    _correction(
        "social-text", "Reach out",
        "Send a short message to someone you trust. No agenda.",
        60, "social", ["stability", "recovery", "exploration"],
        ["social_anxiety"],
    ),
)

_CORRECTIONS_BY_ID = {c["id"]: c for c in COURSE_CORRECTIONS}

_rng = random.Random()


def get_correction(correction_id: str) -> Optional[dict]:
    return _CORRECTIONS_BY_ID.get(correction_id)


def select_correction(
    goal: str,
    conditions: Iterable[str],
    tier: str,
    zone: Optional[str],
    recently_shown: Iterable[str],
    pool: Optional[Iterable[dict]] = None,
    rng: Optional[random.Random] = None,
) -> Optional[dict]:
    """Pick one course correction for the current state, or None."""
    pool = list(COURSE_CORRECTIONS if pool is None else pool)
    conditions = set(conditions)
    recent = set(recently_shown)
    rng = rng or _rng

    candidates = [c for c in pool if goal in c["goals"]]
    candidates = [c for c in candidates if not conditions.intersection(c["contraindications"])]

    if tier == "elevated":
        candidates = [c for c in candidates if c["category"] in CALMING_CATEGORIES]

    if zone == "over":
        grounding = [c for c in candidates if c["category"] == "grounding"]
        if grounding:
            candidates = grounding

    candidates = [c for c in candidates if c["id"] not in recent]

    if not candidates:
        candidates = [c for c in pool if c["id"] not in recent]
    if not candidates:
        return None

    return rng.choice(candidates)


def corrections_by_category(pool: Optional[Iterable[dict]] = None) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = {}
    for correction in (COURSE_CORRECTIONS if pool is None else pool):
        grouped.setdefault(correction["category"], []).append(correction)
    return grouped


def correction_effectiveness(logs: list[dict], correction_id: str) -> dict:
    """
    Completion and helpfulness rates for one correction.
    helpful_rate only counts logs where feedback was given.
    """
    relevant = [l for l in logs if l.get("correction_id") == correction_id]
    if not relevant:
        return {"completion_rate": 0.0, "helpful_rate": 0.0, "samples": 0}

    completed = sum(1 for l in relevant if l.get("response") == "completed")
    with_feedback = [l for l in relevant if l.get("helpful") is not None]
    helpful = sum(1 for l in with_feedback if l["helpful"])

    return {
        "completion_rate": round(completed / len(relevant), 3),
        "helpful_rate": round(helpful / len(with_feedback), 3) if with_feedback else 0.0,
        "samples": len(relevant),
    }
