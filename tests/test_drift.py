"""Tests for drift detection."""

from threshold_compass.core.drift import detect_drift

RANGE = {"floor": 0.05, "sweet_spot": 0.1, "ceiling": 0.15}


def recent(*amounts):
    return [{"amount": a, "dosed_at": "2026-03-01T09:00:00"} for a in amounts]


def test_above_ceiling_is_a_warning():
    result = detect_drift(recent(0.2, 0.18, 0.19), RANGE)
    assert result["is_drifting"] is True
    assert result["direction"] == "above"
    assert result["severity"] == "warning"
    assert result["message"] == "Recent doses averaging 0.2, above your ceiling of 0.15"


def test_below_floor_is_info():
    result = detect_drift(recent(0.01, 0.02, 0.03), RANGE)
    assert result["is_drifting"] is True
    assert result["direction"] == "below"
    assert result["severity"] == "info"
    assert "below your floor of 0.05" in result["message"]


def test_within_range_no_drift():
    result = detect_drift(recent(0.1, 0.12, 0.08), RANGE)
    assert result == {"is_drifting": False, "direction": None, "message": "", "severity": "info"}


def test_fewer_than_three_doses_never_drift():
    assert detect_drift(recent(5.0, 5.0), RANGE)["is_drifting"] is False
    assert detect_drift([], RANGE)["is_drifting"] is False


def test_missing_range_or_bounds():
    assert detect_drift(recent(1, 1, 1), None)["is_drifting"] is False
    for key in ("floor", "sweet_spot", "ceiling"):
        partial = {**RANGE, key: None}
        assert detect_drift(recent(1, 1, 1), partial)["is_drifting"] is False


def test_only_three_most_recent_doses_count():
    assert detect_drift(recent(0.1, 0.1, 0.1, 5.0, 5.0), RANGE)["is_drifting"] is False
