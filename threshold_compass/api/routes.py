"""
FastAPI API routes for Threshold Compass.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field

from threshold_compass.config import (
    API_KEY,
    CORRECTION_RECENT_HOURS,
    DEFAULT_USER_ID,
    DOSE_RANGES,
    DRIFT_WINDOW,
    SUBSTANCE_LABELS,
    TOLERANCE_CUTOFF_HALF_LIVES,
)
from threshold_compass.core.database import (
    insert_batch,
    get_batch,
    query_batches,
    set_batch_calibration_status,
    insert_dose,
    set_dose_feel,
    get_dose,
    query_doses,
    query_doses_for_substance,
    get_recent_doses,
    get_completed_doses,
    delete_dose,
    insert_check_in,
    query_check_ins,
    upsert_threshold_range,
    get_threshold_range,
    log_correction_shown,
    update_correction_response,
    get_recently_shown,
    query_correction_logs,
)
from threshold_compass.core.carryover import (
    compute_carryover,
    carryover_curve,
    effective_dose,
    half_life_hours,
    next_clear_time,
)
from threshold_compass.core.threshold_range import (
    calculate_threshold_range,
    compare_batch_ranges,
    feel_to_zone,
    suggest_dose,
)
from threshold_compass.core.drift import detect_drift
from threshold_compass.core.corrections import (
    GOALS,
    correction_effectiveness,
    corrections_by_category,
    get_correction,
    select_correction,
)
from threshold_compass.core.dose_ranges import dose_tier, format_dose, validate_dose
from threshold_compass.core.patterns import detect_patterns, signal_score

log = logging.getLogger("compass.api")

router = APIRouter(prefix="/api")


# --- Auth ---

def verify_api_key(x_api_key: str = Header(default="")):
    if API_KEY and x_api_key != API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def current_user(x_user_id: str = Header(default=DEFAULT_USER_ID)) -> str:
    return x_user_id or DEFAULT_USER_ID


# --- Models ---

class BatchRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    substance_type: str = Field(..., pattern="^(psilocybin|lsd|other)$")
    dose_unit: Optional[str] = Field(None, pattern="^(g|mg|µg|ug)$")
    notes: str = ""


class DoseRequest(BaseModel):
    batch_id: int
    amount: float = Field(..., gt=0)
    dosed_at: Optional[str] = None
    notes: str = ""


class FeelRequest(BaseModel):
    threshold_feel: str = Field(..., pattern="^(nothing|under|sweetspot|over)$")


class CheckInRequest(BaseModel):
    dose_id: Optional[int] = None
    energy: int = Field(..., ge=1, le=5)
    clarity: int = Field(..., ge=1, le=5)
    stability: int = Field(..., ge=1, le=5)
    notes: str = ""
    timestamp: Optional[str] = None


class CalibrateRequest(BaseModel):
    batch_id: int


class CorrectionResponseRequest(BaseModel):
    response: str = Field(..., pattern="^(completed|postponed|skipped)$")
    helpful: Optional[bool] = None


# --- Helpers ---

def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now()
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid timestamp: {value}") from None
    # Stored timestamps are naive local time
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _require_batch(user_id: str, batch_id: int) -> dict:
    batch = get_batch(user_id, batch_id)
    if not batch:
        raise HTTPException(status_code=404, detail="Batch not found")
    return batch


def _carryover_for(user_id: str, substance: str, at: datetime) -> dict:
    lookback = timedelta(hours=half_life_hours(substance) * TOLERANCE_CUTOFF_HALF_LIVES)
    doses = query_doses_for_substance(user_id, substance, (at - lookback).isoformat())
    return compute_carryover(doses, substance, at)


# --- Batches ---

@router.post("/batches", dependencies=[Depends(verify_api_key)])
def create_batch(req: BatchRequest, user_id: str = Depends(current_user)):
    """Start tracking a new batch."""
    unit = req.dose_unit
    if unit is None:
        unit = DOSE_RANGES[req.substance_type]["unit"] if req.substance_type in DOSE_RANGES else "g"
    row_id = insert_batch(user_id, req.name, req.substance_type, unit, req.notes)
    return {"id": row_id, "name": req.name, "substance_type": req.substance_type,
            "dose_unit": unit, "status": "ok"}


@router.get("/batches", dependencies=[Depends(verify_api_key)])
def list_batches(active_only: bool = False, user_id: str = Depends(current_user)):
    return query_batches(user_id, active_only)


@router.get("/batches/{batch_id}", dependencies=[Depends(verify_api_key)])
def get_batch_route(batch_id: int, user_id: str = Depends(current_user)):
    return _require_batch(user_id, batch_id)


@router.get("/dose-ranges", dependencies=[Depends(verify_api_key)])
def get_dose_ranges():
    """Harm-reduction limits per substance, with display labels."""
    return {
        substance: {
            **limits,
            "label": SUBSTANCE_LABELS[substance],
            "typical": f"{format_dose(substance, limits['typical_low'])}"
                       f" - {format_dose(substance, limits['typical_high'])}",
        }
        for substance, limits in DOSE_RANGES.items()
    }


# --- Doses ---

@router.post("/doses", dependencies=[Depends(verify_api_key)])
def log_dose(req: DoseRequest, user_id: str = Depends(current_user)):
    """
    Log a dose. Blocked amounts (invalid or dangerous) are rejected; other
    range warnings are attached to the response along with the carryover at
    log time and the resulting effective dose.
    """
    batch = _require_batch(user_id, req.batch_id)
    substance = batch["substance_type"]

    warning = validate_dose(substance, req.amount)
    if warning and not warning["allow_continue"]:
        raise HTTPException(status_code=422, detail=warning)

    dosed_at = _parse_time(req.dosed_at)
    carryover = _carryover_for(user_id, substance, dosed_at)
    row_id = insert_dose(user_id, req.batch_id, req.amount, dosed_at.isoformat(), req.notes)
    log.info("Dose logged: %s %s in batch #%d (#%d)", req.amount, batch["dose_unit"], req.batch_id, row_id)

    result = {
        "id": row_id,
        "batch_id": req.batch_id,
        "amount": req.amount,
        "display": format_dose(substance, req.amount),
        "dose_tier": dose_tier(substance, req.amount) if substance in DOSE_RANGES else None,
        "dosed_at": dosed_at.isoformat(),
        "carryover": carryover,
        "effective_dose": effective_dose(req.amount, carryover),
        "status": "ok",
    }
    if warning:
        result["warning"] = warning
    return result


@router.get("/doses", dependencies=[Depends(verify_api_key)])
def get_doses(
    start: Optional[str] = None,
    end: Optional[str] = None,
    batch_id: Optional[int] = None,
    days: int = Query(default=30, ge=1, le=365),
    user_id: str = Depends(current_user),
):
    """Query dose logs. Default: last `days` days."""
    if not (start and end):
        now = datetime.now()
        start = (now - timedelta(days=days)).isoformat()
        end = now.isoformat()
    return query_doses(user_id, start, end, batch_id)


@router.patch("/doses/{dose_id}/feel", dependencies=[Depends(verify_api_key)])
def complete_dose(dose_id: int, req: FeelRequest, user_id: str = Depends(current_user)):
    """Record how a dose felt, completing its post-dose report."""
    if not set_dose_feel(user_id, dose_id, req.threshold_feel):
        raise HTTPException(status_code=404, detail="Dose not found")
    return {"id": dose_id, "threshold_feel": req.threshold_feel,
            "threshold_zone": feel_to_zone(req.threshold_feel), "status": "ok"}


@router.delete("/doses/{dose_id}", dependencies=[Depends(verify_api_key)])
def delete_dose_route(dose_id: int, user_id: str = Depends(current_user)):
    if not delete_dose(user_id, dose_id):
        raise HTTPException(status_code=404, detail="Dose not found")
    return {"deleted": dose_id, "status": "ok"}


# --- Check-ins ---

@router.post("/check-ins", dependencies=[Depends(verify_api_key)])
def log_check_in(req: CheckInRequest, user_id: str = Depends(current_user)):
    """Log a subjective check-in (energy, clarity, stability on 1-5)."""
    if req.dose_id is not None and not get_dose(user_id, req.dose_id):
        raise HTTPException(status_code=404, detail="Dose not found")
    row_id = insert_check_in(user_id, req.energy, req.clarity, req.stability,
                             req.dose_id, req.notes, req.timestamp)
    score = signal_score({"energy": req.energy, "clarity": req.clarity, "stability": req.stability})
    return {"id": row_id, "signal_score": round(score, 1), "status": "ok"}


@router.get("/check-ins", dependencies=[Depends(verify_api_key)])
def get_check_ins(
    start: Optional[str] = None,
    end: Optional[str] = None,
    user_id: str = Depends(current_user),
):
    if not (start and end):
        now = datetime.now()
        start = (now - timedelta(days=7)).isoformat()
        end = now.isoformat()
    rows = query_check_ins(user_id, start, end)
    for row in rows:
        row["signal_score"] = round(signal_score(row), 1)
    return rows


# --- Carryover ---

@router.get("/carryover", dependencies=[Depends(verify_api_key)])
def get_carryover(
    substance: str = Query(default="psilocybin", pattern="^(psilocybin|lsd|other)$"),
    at: Optional[str] = None,
    user_id: str = Depends(current_user),
):
    """Current carryover (default: now) across all batches of a substance."""
    target = _parse_time(at)
    result = _carryover_for(user_id, substance, target)
    clear_at = next_clear_time(result, target)
    return {
        **result,
        "substance": substance,
        "timestamp": target.isoformat(),
        "clear_at": clear_at.isoformat() if clear_at else None,
    }


@router.get("/carryover/curve", dependencies=[Depends(verify_api_key)])
def get_carryover_curve(
    substance: str = Query(default="psilocybin", pattern="^(psilocybin|lsd|other)$"),
    days: int = Query(default=14, ge=1, le=60),
    step_hours: int = Query(default=6, ge=1, le=24),
    user_id: str = Depends(current_user),
):
    """Carryover decay series for the last `days` days."""
    now = datetime.now()
    # Doses before the window still carry into its first points
    lookback = timedelta(days=days, hours=half_life_hours(substance) * TOLERANCE_CUTOFF_HALF_LIVES)
    doses = query_doses_for_substance(user_id, substance, (now - lookback).isoformat())
    points = carryover_curve(doses, substance, now, days, step_hours)
    return {"substance": substance, "days": days, "step_hours": step_hours, "points": points}


# --- Threshold range ---

@router.post("/threshold-range", dependencies=[Depends(verify_api_key)])
def calibrate_threshold_range(req: CalibrateRequest, user_id: str = Depends(current_user)):
    """
    Recalculate a batch's threshold range from its completed dose reports,
    store it and mark the batch calibrated.
    """
    _require_batch(user_id, req.batch_id)

    mapped = []
    for dose in get_completed_doses(user_id, req.batch_id):
        zone = feel_to_zone(dose["threshold_feel"])
        if zone is not None:
            mapped.append({"amount": dose["amount"], "threshold_zone": zone})

    if not mapped:
        raise HTTPException(status_code=400, detail="No completed doses found for this batch")

    result = calculate_threshold_range(mapped, req.batch_id)
    upsert_threshold_range(user_id, result)
    set_batch_calibration_status(user_id, req.batch_id, "calibrated")
    log.info(
        "Calibrated batch #%d: floor=%s sweet=%s ceiling=%s confidence=%d (%d doses)",
        req.batch_id, result["floor"], result["sweet_spot"], result["ceiling"],
        result["confidence"], result["doses_used"],
    )
    return result


@router.get("/threshold-range/compare", dependencies=[Depends(verify_api_key)])
def compare_ranges(batch_a: int, batch_b: int, user_id: str = Depends(current_user)):
    """Relative potency of two calibrated batches."""
    a = _require_batch(user_id, batch_a)
    b = _require_batch(user_id, batch_b)
    range_a = get_threshold_range(user_id, batch_a)
    range_b = get_threshold_range(user_id, batch_b)
    if not range_a or not range_b:
        raise HTTPException(status_code=404, detail="Both batches need a threshold range")
    message = compare_batch_ranges(range_a, range_b, a["name"], b["name"])
    return {"batch_a": batch_a, "batch_b": batch_b, "message": message}


@router.get("/threshold-range/{batch_id}", dependencies=[Depends(verify_api_key)])
def get_threshold_range_route(batch_id: int, user_id: str = Depends(current_user)):
    _require_batch(user_id, batch_id)
    result = get_threshold_range(user_id, batch_id)
    if not result:
        return {"found": False}
    return {"found": True, **result}


@router.get("/dose-suggestion", dependencies=[Depends(verify_api_key)])
def get_dose_suggestion(
    batch_id: int,
    intention: str = Query(default="standard", pattern="^(subtle|standard|strong)$"),
    user_id: str = Depends(current_user),
):
    """Dose for an intention from the batch range, adjusted for current carryover."""
    batch = _require_batch(user_id, batch_id)
    threshold_range = get_threshold_range(user_id, batch_id)
    if not threshold_range:
        raise HTTPException(status_code=404, detail="Batch has no threshold range yet")

    substance = batch["substance_type"]
    carryover = _carryover_for(user_id, substance, datetime.now())
    max_dose = DOSE_RANGES[substance]["max"] if substance in DOSE_RANGES else None
    suggestion = suggest_dose(threshold_range, carryover, intention, max_dose)
    if suggestion is None:
        return {"found": False, "carryover": carryover}
    return {"found": True, **suggestion, "unit": batch["dose_unit"], "carryover": carryover}


# --- Drift ---

@router.get("/drift", dependencies=[Depends(verify_api_key)])
def get_drift(batch_id: int, user_id: str = Depends(current_user)):
    """Compare the most recent doses of a batch against its calibrated range."""
    _require_batch(user_id, batch_id)
    recent = get_recent_doses(user_id, batch_id, limit=DRIFT_WINDOW)
    return detect_drift(recent, get_threshold_range(user_id, batch_id))


# --- Patterns ---

@router.get("/patterns", dependencies=[Depends(verify_api_key)])
def get_patterns(
    substance: str = Query(default="psilocybin", pattern="^(psilocybin|lsd|other)$"),
    days: int = Query(default=90, ge=7, le=365),
    user_id: str = Depends(current_user),
):
    """Rule-based patterns in the last `days` days of doses and check-ins."""
    now = datetime.now()
    start = (now - timedelta(days=days)).isoformat()
    doses = query_doses_for_substance(user_id, substance, start)
    check_ins = query_check_ins(user_id, start, now.isoformat())
    patterns = detect_patterns(doses, check_ins, substance)
    log.debug("Patterns for %s: %d found over %d doses", user_id, len(patterns), len(doses))
    return {"substance": substance, "days": days, "doses": len(doses), "patterns": patterns}


# --- Course corrections ---

@router.get("/corrections", dependencies=[Depends(verify_api_key)])
def list_corrections():
    """The full course-correction library grouped by category."""
    return corrections_by_category()


@router.get("/corrections/suggest", dependencies=[Depends(verify_api_key)])
def suggest_correction(
    goal: str = Query(..., pattern="^(" + "|".join(GOALS) + ")$"),
    conditions: list[str] = Query(default=[]),
    substance: str = Query(default="psilocybin", pattern="^(psilocybin|lsd|other)$"),
    zone: Optional[str] = Query(default=None, pattern="^(sub|low|sweet_spot|high|over)$"),
    user_id: str = Depends(current_user),
):
    """
    Pick a course correction for the current state and record it as shown.
    Tier comes from the current carryover of `substance`.
    """
    carryover = _carryover_for(user_id, substance, datetime.now())
    recent = get_recently_shown(user_id, CORRECTION_RECENT_HOURS)
    correction = select_correction(goal, conditions, carryover["tier"], zone, recent)
    if correction is None:
        return {"found": False, "tier": carryover["tier"]}

    log_id = log_correction_shown(user_id, correction["id"])
    return {"found": True, "log_id": log_id, "tier": carryover["tier"], "correction": correction}


@router.post("/corrections/{log_id}/response", dependencies=[Depends(verify_api_key)])
def respond_to_correction(log_id: int, req: CorrectionResponseRequest,
                          user_id: str = Depends(current_user)):
    if not update_correction_response(user_id, log_id, req.response, req.helpful):
        raise HTTPException(status_code=404, detail="Correction log not found")
    return {"id": log_id, "response": req.response, "status": "ok"}


@router.get("/corrections/{correction_id}/effectiveness", dependencies=[Depends(verify_api_key)])
def get_correction_effectiveness(correction_id: str, user_id: str = Depends(current_user)):
    correction = get_correction(correction_id)
    if not correction:
        raise HTTPException(status_code=404, detail="Correction not found")
    logs = query_correction_logs(user_id, correction_id)
    return {"correction": correction, **correction_effectiveness(logs, correction_id)}


@router.get("/status")
def status():
    """Health check endpoint."""
    return {
        "service": "threshold-compass",
        "status": "ok",
        "version": "0.1.0",
        "timestamp": datetime.now().isoformat(),
        "model": "exp-decay-carryover+zone-calibration",
    }
