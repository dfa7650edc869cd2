"""Tests for the carryover (tolerance decay) engine."""

import logging
from datetime import datetime, timedelta

import pytest

from threshold_compass.core import carryover
from threshold_compass.core.carryover import (
    carryover_curve,
    classify_tier,
    compute_carryover,
    effective_dose,
    hours_to_clear,
    next_clear_time,
    round_half_up,
)

NOW = datetime(2026, 3, 1, 9, 0)


def dose(amount, hours_ago):
    return {"amount": amount, "dosed_at": (NOW - timedelta(hours=hours_ago)).isoformat()}


def test_empty_history_is_clear():
    result = compute_carryover([], "psilocybin", NOW)
    assert result == {
        "percentage": 0,
        "tier": "clear",
        "effective_multiplier": 1.0,
        "hours_to_clear": None,
        "message": "Full sensitivity expected.",
    }


def test_fresh_dose_saturates():
    result = compute_carryover([dose(0.1, 0)], "psilocybin", NOW)
    assert result["percentage"] == 100
    assert result["tier"] == "elevated"
    assert result["effective_multiplier"] == 0.0
    assert result["message"] == "Rest recommended."
    assert result["hours_to_clear"] == 788


def test_one_half_life_halves_carryover():
    result = compute_carryover([dose(0.1, 288)], "psilocybin", NOW)
    assert result["percentage"] == 50
    assert result["tier"] == "moderate"
    assert result["effective_multiplier"] == 0.5
    assert result["hours_to_clear"] == 500


def test_lsd_uses_shorter_half_life():
    result = compute_carryover([dose(0.1, 192)], "lsd", NOW)
    assert result["percentage"] == 50


def test_unknown_substance_falls_back_to_psilocybin():
    assert compute_carryover([dose(0.1, 288)], "other", NOW)["percentage"] == 50
    assert compute_carryover([dose(0.1, 288)], None, NOW)["percentage"] == 50


def test_future_doses_are_ignored():
    result = compute_carryover([dose(0.1, -5)], "psilocybin", NOW)
    assert result["percentage"] == 0


def test_doses_older_than_three_half_lives_are_ignored():
    result = compute_carryover([dose(0.1, 288 * 3 + 1)], "psilocybin", NOW)
    assert result["percentage"] == 0
    assert result["tier"] == "clear"


def test_small_dose_initial_tolerance_scales_with_amount():
    # 0.02g -> 20 initial points
    result = compute_carryover([dose(0.02, 0)], "psilocybin", NOW)
    assert result["percentage"] == 20
    assert result["tier"] == "mild"
    assert result["effective_multiplier"] == 0.8


def test_contributions_sum_and_clamp():
    doses = [dose(0.05, 0), dose(0.05, 0), dose(0.05, 0)]
    assert compute_carryover(doses, "psilocybin", NOW)["percentage"] == 100


def test_datetime_inputs_are_accepted():
    doses = [{"amount": 0.1, "dosed_at": NOW - timedelta(hours=288)}]
    assert compute_carryover(doses, "psilocybin", NOW)["percentage"] == 50


@pytest.mark.parametrize("percentage,tier", [
    (0, "clear"), (15, "clear"), (16, "mild"), (30, "mild"),
    (31, "moderate"), (50, "moderate"), (51, "elevated"), (100, "elevated"),
])
def test_tier_boundaries_fall_into_lower_tier(percentage, tier):
    assert classify_tier(percentage)[0] == tier


def test_hours_to_clear_null_exactly_when_clear():
    for pct in range(0, 101):
        assert (hours_to_clear(pct, "psilocybin") is None) == (pct <= 15)


@pytest.mark.parametrize("substance", ["psilocybin", "lsd", "other"])
def test_outputs_stay_in_bounds(substance):
    history = [dose(a, h) for a, h in [(0.3, 1), (0.25, 20), (0.01, 100), (0.2, 400), (0.15, 700)]]
    for offset in range(0, 1200, 37):
        result = compute_carryover(history, substance, NOW + timedelta(hours=offset))
        assert 0 <= result["percentage"] <= 100
        assert 0.0 <= result["effective_multiplier"] <= 1.0
        assert (result["hours_to_clear"] is None) == (result["percentage"] <= 15)


def test_same_inputs_same_result():
    history = [dose(0.12, 30), dose(0.08, 90)]
    assert compute_carryover(history, "psilocybin", NOW) == compute_carryover(history, "psilocybin", NOW)


def test_round_half_up():
    assert round_half_up(12.5) == 13
    assert round_half_up(0.5) == 1
    assert round_half_up(2.4) == 2


def test_effective_dose_and_clear_time():
    carryover = compute_carryover([dose(0.1, 288)], "psilocybin", NOW)
    assert effective_dose(0.2, carryover) == 0.1
    assert next_clear_time(carryover, NOW) == NOW + timedelta(hours=500)
    assert next_clear_time(compute_carryover([], "psilocybin", NOW), NOW) is None


def test_curve_points_and_active_doses():
    points = carryover_curve([dose(0.1, 1)], "psilocybin", NOW, days=1, step_hours=6)
    assert len(points) == 5
    assert points[-1]["timestamp"] == NOW.isoformat()
    assert points[0]["percentage"] == 0
    assert points[0]["active_doses"] == 0
    assert points[-1]["active_doses"] == 1
    assert points[-1]["percentage"] > 99


def test_lsd_microgram_amounts_log_a_warning(caplog, monkeypatch):
    monkeypatch.setattr(carryover, "_unit_warning_logged", False)
    with caplog.at_level(logging.WARNING, logger="compass.carryover"):
        result = compute_carryover([dose(10, 2)], "lsd", NOW)
    assert result["percentage"] == 99
    assert any("gram-equivalent" in r.message for r in caplog.records)


def test_gram_equivalent_lsd_amounts_do_not_warn(caplog):
    with caplog.at_level(logging.WARNING, logger="compass.carryover"):
        compute_carryover([dose(0.00001, 2)], "lsd", NOW)
    assert not caplog.records


def test_lsd_unit_warning_is_logged_once(caplog, monkeypatch):
    monkeypatch.setattr(carryover, "_unit_warning_logged", False)
    with caplog.at_level(logging.DEBUG, logger="compass.carryover"):
        for _ in range(3):
            compute_carryover([dose(10, 2)], "lsd", NOW)
    levels = [r.levelno for r in caplog.records if "gram-equivalent" in r.message]
    assert levels == [logging.WARNING, logging.DEBUG, logging.DEBUG]
