"""Tests for course correction selection."""

import pytest

from threshold_compass.core.corrections import (
    CATEGORIES,
    COURSE_CORRECTIONS,
    GOALS,
    correction_effectiveness,
    corrections_by_category,
    get_correction,
    select_correction,
)


class FirstChoice:
    """Deterministic stand-in for random.Random."""

    def __init__(self):
        self.seen = None

    def choice(self, seq):
        self.seen = list(seq)
        return seq[0]


def item(id, category, goals, contraindications=()):
    return {
        "id": id,
        "title": id,
        "instruction": "",
        "duration_sec": 60,
        "category": category,
        "goals": tuple(goals),
        "contraindications": tuple(contraindications),
    }


POOL = [
    item("walk", "movement", ["clarity"], ["injury"]),
    item("box", "breath", ["clarity", "stability"]),
    item("feet", "grounding", ["clarity", "stability"]),
    item("light", "environment", ["creativity"]),
]


def ids(seq):
    return [c["id"] for c in seq]


def test_goal_filter():
    rng = FirstChoice()
    select_correction("clarity", [], "clear", None, [], pool=POOL, rng=rng)
    assert ids(rng.seen) == ["walk", "box", "feet"]


def test_contraindications_exclude():
    rng = FirstChoice()
    select_correction("clarity", ["injury"], "clear", None, [], pool=POOL, rng=rng)
    assert ids(rng.seen) == ["box", "feet"]


def test_elevated_tier_keeps_calming_categories():
    rng = FirstChoice()
    select_correction("clarity", [], "elevated", None, [], pool=POOL, rng=rng)
    assert ids(rng.seen) == ["box", "feet"]


def test_over_zone_prefers_grounding():
    rng = FirstChoice()
    result = select_correction("clarity", [], "clear", "over", [], pool=POOL, rng=rng)
    assert result["id"] == "feet"
    assert ids(rng.seen) == ["feet"]


def test_over_zone_without_grounding_keeps_candidates():
    pool = [c for c in POOL if c["category"] != "grounding"]
    rng = FirstChoice()
    select_correction("clarity", [], "clear", "over", [], pool=pool, rng=rng)
    assert ids(rng.seen) == ["walk", "box"]


def test_recently_shown_are_skipped():
    rng = FirstChoice()
    select_correction("clarity", [], "clear", None, ["walk", "box"], pool=POOL, rng=rng)
    assert ids(rng.seen) == ["feet"]


def test_falls_back_to_pool_minus_recent():
    rng = FirstChoice()
    result = select_correction("presence", [], "clear", None, ["walk"], pool=POOL, rng=rng)
    assert ids(rng.seen) == ["box", "feet", "light"]
    assert result["id"] == "box"


def test_fallback_when_filters_empty_everything():
    rng = FirstChoice()
    select_correction("clarity", [], "clear", None, ["box", "feet", "walk"], pool=POOL, rng=rng)
    assert ids(rng.seen) == ["light"]


def test_nothing_left_returns_none():
    assert select_correction("clarity", [], "clear", None, ids(POOL), pool=POOL) is None
    assert select_correction("clarity", [], "clear", None, [], pool=[]) is None


def test_default_pool_always_yields_a_fresh_correction():
    for goal in GOALS:
        for tier in ("clear", "mild", "moderate", "elevated"):
            result = select_correction(goal, ["injury"], tier, "over", ["breath-478"])
            assert result is not None
            assert result["id"] != "breath-478"


@pytest.mark.parametrize("correction", COURSE_CORRECTIONS, ids=lambda c: c["id"])
def test_default_pool_is_well_formed(correction):
    assert correction["category"] in CATEGORIES
    assert correction["goals"]
    assert set(correction["goals"]) <= set(GOALS)
    assert correction["duration_sec"] > 0
    assert correction["instruction"]


def test_default_pool_ids_are_unique():
    assert len({c["id"] for c in COURSE_CORRECTIONS}) == len(COURSE_CORRECTIONS)


def test_get_correction():
    assert get_correction("breath-478")["category"] == "breath"
    assert get_correction("nope") is None


def test_corrections_by_category():
    grouped = corrections_by_category(POOL)
    assert ids(grouped["grounding"]) == ["feet"]
    assert set(grouped) == {"movement", "breath", "grounding", "environment"}


def test_correction_effectiveness():
    logs = [
        {"correction_id": "box", "response": "completed", "helpful": True},
        {"correction_id": "box", "response": "completed", "helpful": False},
        {"correction_id": "box", "response": "skipped", "helpful": None},
        {"correction_id": "box", "response": None, "helpful": None},
        {"correction_id": "feet", "response": "completed", "helpful": True},
    ]
    assert correction_effectiveness(logs, "box") == {
        "completion_rate": 0.5,
        "helpful_rate": 0.5,
        "samples": 4,
    }
    assert correction_effectiveness(logs, "walk") == {
        "completion_rate": 0.0,
        "helpful_rate": 0.0,
        "samples": 0,
    }
