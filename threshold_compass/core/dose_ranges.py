"""
Dose validation against harm-reduction ranges.

psilocybin (g):  min 0.01, typical 0.05-0.2, max 0.3, danger 0.5
lsd (µg):        min 5,    typical 10-20,    max 25,  danger 50
"""

from typing import Optional

from threshold_compass.config import DOSE_RANGES


def _warning(level: str, title: str, message: str, allow_continue: bool) -> dict:
    return {"level": level, "title": title, "message": message, "allow_continue": allow_continue}


def validate_dose(substance: str, amount: float) -> Optional[dict]:
    """
    Check a dose against the substance range.
    Returns a warning dict {level, title, message, allow_continue} or None.
    Substances without a range are not validated.
    """
    limits = DOSE_RANGES.get(substance)
    if limits is None:
        return None
    unit = limits["unit"]
    typical = f"{limits['typical_low']}-{limits['typical_high']}{unit}"

    if amount <= 0:
        return _warning("info", "Invalid Dose", "Please enter a positive dose amount.", False)

    if amount < limits["min"]:
        return _warning(
            "info", "Very Low Dose",
            f"{amount}{unit} is below the typical microdose range ({typical}). "
            "This dose may not produce noticeable effects.",
            True,
        )

    if amount >= limits["danger"]:
        return _warning(
            "critical", "Dangerous Dose",
            f"{amount}{unit} exceeds safe microdosing limits. This is a full psychedelic "
            f"dose and not suitable for microdosing. Doses above {limits['max']}{unit} "
            "are not supported.",
            False,
        )

    if amount > limits["max"]:
        return _warning(
            "warning", "High Dose Warning",
            f"{amount}{unit} is above the recommended microdose range ({typical}). "
            "This may cause perceptual effects beyond the threshold range.",
            True,
        )

    if amount > limits["typical_high"]:
        return _warning(
            "info", "Upper Range",
            f"{amount}{unit} is at the upper end of the microdose range. "
            "Consider starting lower if this is your first dose.",
            True,
        )

    return None


def dose_tier(substance: str, amount: float) -> str:
    """danger | above | threshold | sub"""
    limits = DOSE_RANGES[substance]
    if amount >= limits["danger"]:
        return "danger"
    if amount > limits["max"]:
        return "above"
    if limits["typical_low"] <= amount <= limits["typical_high"]:
        return "threshold"
    return "sub"


def format_dose(substance: str, amount: float) -> str:
    limits = DOSE_RANGES.get(substance)
    return f"{amount}{limits['unit']}" if limits else f"{amount}"
