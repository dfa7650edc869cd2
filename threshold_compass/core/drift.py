"""
Drift detection: are recent doses leaving the calibrated range?

Averages the most recent doses (caller sorts most-recent-first) and compares
against floor/ceiling. Above the ceiling is a warning, below the floor info.
"""

from typing import Optional

from threshold_compass.config import DRIFT_WINDOW


def _no_drift() -> dict:
    return {"is_drifting": False, "direction": None, "message": "", "severity": "info"}


def detect_drift(recent_doses: list[dict], threshold_range: Optional[dict]) -> dict:
    if not threshold_range:
        return _no_drift()

    floor = threshold_range.get("floor")
    ceiling = threshold_range.get("ceiling")
    if threshold_range.get("sweet_spot") is None or floor is None or ceiling is None:
        return _no_drift()

    if len(recent_doses) < DRIFT_WINDOW:
        return _no_drift()

    window = recent_doses[:DRIFT_WINDOW]
    avg = sum(d["amount"] for d in window) / len(window)

    if avg > ceiling:
        return {
            "is_drifting": True,
            "direction": "above",
            "message": f"Recent doses averaging {avg:.1f}, above your ceiling of {ceiling}",
            "severity": "warning",
        }
    if avg < floor:
        return {
            "is_drifting": True,
            "direction": "below",
            "message": f"Recent doses averaging {avg:.1f}, below your floor of {floor}",
            "severity": "info",
        }
    return _no_drift()
