import sqlite3

import pytest


def test_batch_lifecycle(db):
    batch_id = db.insert_batch("u1", "Blue Meanie #3", "psilocybin")
    batch = db.get_batch("u1", batch_id)
    assert batch["calibration_status"] == "uncalibrated"
    assert batch["dose_unit"] == "g"
    assert batch["is_active"] == 1

    db.insert_dose("u1", batch_id, 0.1, "2026-03-01T09:00:00")
    assert db.get_batch("u1", batch_id)["calibration_status"] == "calibrating"

    assert db.set_batch_calibration_status("u1", batch_id, "calibrated")
    db.insert_dose("u1", batch_id, 0.1, "2026-03-02T09:00:00")
    assert db.get_batch("u1", batch_id)["calibration_status"] == "calibrated"


def test_batches_are_scoped_per_user(db):
    batch_id = db.insert_batch("u1", "A", "lsd", "µg")
    assert db.get_batch("u2", batch_id) is None
    assert db.query_batches("u2") == []
    assert [b["id"] for b in db.query_batches("u1")] == [batch_id]


def test_invalid_substance_rejected(db):
    with pytest.raises(sqlite3.IntegrityError):
        db.insert_batch("u1", "X", "ketamine")


def test_completed_doses_only(db):
    batch_id = db.insert_batch("u1", "A", "psilocybin")
    d1 = db.insert_dose("u1", batch_id, 0.15, "2026-03-01T09:00:00")
    db.insert_dose("u1", batch_id, 0.1, "2026-03-02T09:00:00")
    d3 = db.insert_dose("u1", batch_id, 0.05, "2026-03-03T09:00:00")
    assert db.set_dose_feel("u1", d1, "sweetspot")
    assert db.set_dose_feel("u1", d3, "nothing")
    assert not db.set_dose_feel("u2", d1, "over")

    completed = db.get_completed_doses("u1", batch_id)
    assert completed == [
        {"amount": 0.05, "threshold_feel": "nothing"},
        {"amount": 0.15, "threshold_feel": "sweetspot"},
    ]


def test_recent_doses_newest_first(db):
    batch_id = db.insert_batch("u1", "A", "psilocybin")
    for day in range(1, 6):
        db.insert_dose("u1", batch_id, day / 100, f"2026-03-0{day}T09:00:00")
    recent = db.get_recent_doses("u1", batch_id, limit=3)
    assert [d["amount"] for d in recent] == [0.05, 0.04, 0.03]


def test_doses_for_substance_span_batches(db):
    psi_a = db.insert_batch("u1", "A", "psilocybin")
    psi_b = db.insert_batch("u1", "B", "psilocybin")
    lsd = db.insert_batch("u1", "C", "lsd", "µg")
    db.insert_dose("u1", psi_a, 0.1, "2026-03-01T09:00:00")
    db.insert_dose("u1", psi_b, 0.2, "2026-03-02T09:00:00")
    db.insert_dose("u1", lsd, 10, "2026-03-02T10:00:00")
    db.insert_dose("u1", psi_a, 0.3, "2026-02-01T09:00:00")

    doses = db.query_doses_for_substance("u1", "psilocybin", "2026-02-15T00:00:00")
    assert [d["amount"] for d in doses] == [0.1, 0.2]


def test_delete_dose(db):
    batch_id = db.insert_batch("u1", "A", "psilocybin")
    dose_id = db.insert_dose("u1", batch_id, 0.1)
    assert not db.delete_dose("u2", dose_id)
    assert db.delete_dose("u1", dose_id)
    assert db.get_dose("u1", dose_id) is None


def test_threshold_range_upsert(db):
    batch_id = db.insert_batch("u1", "A", "psilocybin")
    first = {"floor": 0.05, "sweet_spot": 0.1, "ceiling": 0.2, "confidence": 40,
             "qualifier": "Preliminary range. Keep logging.", "doses_used": 3,
             "batch_id": batch_id}
    db.upsert_threshold_range("u1", first)
    db.upsert_threshold_range("u1", {**first, "sweet_spot": 0.12, "confidence": 80})

    stored = db.get_threshold_range("u1", batch_id)
    assert stored["sweet_spot"] == 0.12
    assert stored["confidence"] == 80
    assert stored["floor"] == 0.05
    assert db.get_threshold_range("u2", batch_id) is None
    with db.db_cursor() as cur:
        cur.execute("SELECT COUNT(*) FROM threshold_ranges")
        assert cur.fetchone()[0] == 1


def test_check_ins(db):
    db.insert_check_in("u1", 3, 4, 5, timestamp="2026-03-01T12:00:00")
    rows = db.query_check_ins("u1", "2026-03-01T00:00:00", "2026-03-02T00:00:00")
    assert [(r["energy"], r["clarity"], r["stability"]) for r in rows] == [(3, 4, 5)]
    with pytest.raises(sqlite3.IntegrityError):
        db.insert_check_in("u1", 6, 1, 1)


def test_correction_log(db):
    log_id = db.log_correction_shown("u1", "breath-478")
    db.log_correction_shown("u1", "ground-feet", "2020-01-01T00:00:00")
    assert db.get_recently_shown("u1", 48) == ["breath-478"]

    assert db.update_correction_response("u1", log_id, "completed", True)
    assert not db.update_correction_response("u2", log_id, "skipped")
    logs = db.query_correction_logs("u1", "breath-478")
    assert logs[0]["response"] == "completed"
    assert logs[0]["helpful"] is True


def test_rollback_on_error(db):
    with pytest.raises(RuntimeError):
        with db.db_cursor() as cur:
            cur.execute(
                "INSERT INTO batches (user_id, name, substance_type, created_at) VALUES (?,?,?,?)",
                ("u1", "ghost", "lsd", "2026-03-01T00:00:00"),
            )
            raise RuntimeError("boom")
    assert db.query_batches("u1") == []


def test_init_db_is_idempotent(db):
    db.init_db()
    db.init_db()
    assert db.query_batches("u1") == []
