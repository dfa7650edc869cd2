"""
SQLite database setup and access layer.
Schema: batches, dose_logs, check_ins, threshold_ranges, correction_logs.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional

from threshold_compass.config import DB_PATH

log = logging.getLogger("compass.db")

_local = threading.local()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS batches (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             TEXT    NOT NULL,
    name                TEXT    NOT NULL,
    substance_type      TEXT    NOT NULL CHECK(substance_type IN ('psilocybin','lsd','other')),
    dose_unit           TEXT    NOT NULL DEFAULT 'g',
    calibration_status  TEXT    NOT NULL DEFAULT 'uncalibrated'
                        CHECK(calibration_status IN ('uncalibrated','calibrating','calibrated')),
    notes               TEXT    DEFAULT '',
    is_active           INTEGER NOT NULL DEFAULT 1 CHECK(is_active IN (0, 1)),
    created_at          TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_batches_user ON batches(user_id);

CREATE TABLE IF NOT EXISTS dose_logs (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id             TEXT    NOT NULL,
    batch_id            INTEGER NOT NULL REFERENCES batches(id) ON DELETE CASCADE,
    amount              REAL    NOT NULL CHECK(amount > 0),
    dosed_at            TEXT    NOT NULL,
    threshold_feel      TEXT    CHECK(threshold_feel IN ('nothing','under','sweetspot','over')),
    post_dose_completed INTEGER NOT NULL DEFAULT 0 CHECK(post_dose_completed IN (0, 1)),
    notes               TEXT    DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_dose_user_ts ON dose_logs(user_id, dosed_at);
CREATE INDEX IF NOT EXISTS idx_dose_batch ON dose_logs(batch_id);

CREATE TABLE IF NOT EXISTS check_ins (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT    NOT NULL,
    dose_id     INTEGER REFERENCES dose_logs(id) ON DELETE SET NULL,
    timestamp   TEXT    NOT NULL,
    energy      INTEGER CHECK(energy BETWEEN 1 AND 5),
    clarity     INTEGER CHECK(clarity BETWEEN 1 AND 5),
    stability   INTEGER CHECK(stability BETWEEN 1 AND 5),
    notes       TEXT    DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_checkin_user_ts ON check_ins(user_id, timestamp);

CREATE TABLE IF NOT EXISTS threshold_ranges (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    batch_id        INTEGER NOT NULL REFERENCES batches(id) ON DELETE CASCADE,
    floor_dose      REAL,
    sweet_spot      REAL,
    ceiling_dose    REAL,
    confidence      INTEGER NOT NULL DEFAULT 0,
    qualifier       TEXT    NOT NULL DEFAULT '',
    doses_used      INTEGER NOT NULL DEFAULT 0,
    calculated_at   TEXT    NOT NULL,
    UNIQUE(user_id, batch_id)
);

CREATE TABLE IF NOT EXISTS correction_logs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    correction_id   TEXT    NOT NULL,
    shown_at        TEXT    NOT NULL,
    response        TEXT    CHECK(response IN ('completed','postponed','skipped')),
    helpful         INTEGER CHECK(helpful IN (0, 1))
);

CREATE INDEX IF NOT EXISTS idx_correction_user_ts ON correction_logs(user_id, shown_at);
"""

# Columns added after the first schema; older databases get them via ALTER TABLE.
_ADDED_COLUMNS = {
    "batches": [
        ("dose_unit", "TEXT NOT NULL DEFAULT 'g'"),
        ("is_active", "INTEGER NOT NULL DEFAULT 1"),
    ],
    "dose_logs": [
        ("post_dose_completed", "INTEGER NOT NULL DEFAULT 0"),
    ],
}


def get_connection() -> sqlite3.Connection:
    """Thread-local SQLite connection with WAL mode."""
    if not hasattr(_local, "conn") or _local.conn is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        _local.conn = conn
    return _local.conn


@contextmanager
def db_cursor():
    """Yield a cursor, auto-commit on success, rollback on error."""
    conn = get_connection()
    cur = conn.cursor()
    try:
        yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migrate_tables():
    """Add columns missing from tables created by an older schema."""
    conn = get_connection()
    cur = conn.cursor()
    for table, columns in _ADDED_COLUMNS.items():
        cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
        if not cur.fetchone():
            continue
        existing = {row["name"] for row in cur.execute(f"PRAGMA table_info({table})")}
        for column, ddl in columns:
            if column in existing:
                continue
            log.info("Migrating %s: adding %s", table, column)
            cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
    conn.commit()


def init_db():
    """Create tables if they don't exist, run migrations."""
    _migrate_tables()
    with db_cursor() as cur:
        cur.executescript(SCHEMA_SQL)
    log.info("Database initialized at %s", DB_PATH)


def _now() -> str:
    return datetime.now().isoformat()


# --- Batches ---

def insert_batch(user_id: str, name: str, substance_type: str,
                 dose_unit: str = "g", notes: str = "") -> int:
    with db_cursor() as cur:
        cur.execute(
            """INSERT INTO batches (user_id, name, substance_type, dose_unit, notes, created_at)
               VALUES (?,?,?,?,?,?)""",
            (user_id, name, substance_type, dose_unit, notes, _now()),
        )
        return cur.lastrowid


def get_batch(user_id: str, batch_id: int) -> Optional[dict]:
    with db_cursor() as cur:
        cur.execute("SELECT * FROM batches WHERE id=? AND user_id=?", (batch_id, user_id))
        row = cur.fetchone()
        return dict(row) if row else None


def query_batches(user_id: str, active_only: bool = False) -> list[dict]:
    sql = "SELECT * FROM batches WHERE user_id=?"
    if active_only:
        sql += " AND is_active=1"
    with db_cursor() as cur:
        cur.execute(sql + " ORDER BY created_at DESC", (user_id,))
        return [dict(r) for r in cur.fetchall()]


def set_batch_calibration_status(user_id: str, batch_id: int, status: str) -> bool:
    with db_cursor() as cur:
        cur.execute(
            "UPDATE batches SET calibration_status=? WHERE id=? AND user_id=?",
            (status, batch_id, user_id),
        )
        return cur.rowcount > 0


# --- Dose logs ---

def insert_dose(user_id: str, batch_id: int, amount: float,
                dosed_at: Optional[str] = None, notes: str = "") -> int:
    ts = dosed_at or _now()
    with db_cursor() as cur:
        cur.execute(
            "INSERT INTO dose_logs (user_id, batch_id, amount, dosed_at, notes) VALUES (?,?,?,?,?)",
            (user_id, batch_id, amount, ts, notes),
        )
        row_id = cur.lastrowid
        cur.execute(
            """UPDATE batches SET calibration_status='calibrating'
               WHERE id=? AND user_id=? AND calibration_status='uncalibrated'""",
            (batch_id, user_id),
        )
        return row_id


def set_dose_feel(user_id: str, dose_id: int, threshold_feel: str) -> bool:
    """Complete the post-dose report for a dose."""
    with db_cursor() as cur:
        cur.execute(
            """UPDATE dose_logs SET threshold_feel=?, post_dose_completed=1
               WHERE id=? AND user_id=?""",
            (threshold_feel, dose_id, user_id),
        )
        return cur.rowcount > 0


def get_dose(user_id: str, dose_id: int) -> Optional[dict]:
    with db_cursor() as cur:
        cur.execute("SELECT * FROM dose_logs WHERE id=? AND user_id=?", (dose_id, user_id))
        row = cur.fetchone()
        return dict(row) if row else None


def query_doses(user_id: str, start: str, end: str,
                batch_id: Optional[int] = None) -> list[dict]:
    sql = "SELECT * FROM dose_logs WHERE user_id=? AND dosed_at BETWEEN ? AND ?"
    params: list = [user_id, start, end]
    if batch_id is not None:
        sql += " AND batch_id=?"
        params.append(batch_id)
    with db_cursor() as cur:
        cur.execute(sql + " ORDER BY dosed_at", params)
        return [dict(r) for r in cur.fetchall()]


def query_doses_for_substance(user_id: str, substance_type: str, since: str) -> list[dict]:
    """Doses across all batches of one substance since a timestamp."""
    with db_cursor() as cur:
        cur.execute(
            """SELECT d.* FROM dose_logs d JOIN batches b ON b.id = d.batch_id
               WHERE d.user_id=? AND b.substance_type=? AND d.dosed_at >= ?
               ORDER BY d.dosed_at""",
            (user_id, substance_type, since),
        )
        return [dict(r) for r in cur.fetchall()]


def get_recent_doses(user_id: str, batch_id: Optional[int] = None, limit: int = 3) -> list[dict]:
    """Most-recent-first."""
    sql = "SELECT * FROM dose_logs WHERE user_id=?"
    params: list = [user_id]
    if batch_id is not None:
        sql += " AND batch_id=?"
        params.append(batch_id)
    with db_cursor() as cur:
        cur.execute(sql + " ORDER BY dosed_at DESC LIMIT ?", (*params, limit))
        return [dict(r) for r in cur.fetchall()]


def get_completed_doses(user_id: str, batch_id: int) -> list[dict]:
    """Doses with a finished post-dose report, ascending by amount."""
    with db_cursor() as cur:
        cur.execute(
            """SELECT amount, threshold_feel FROM dose_logs
               WHERE user_id=? AND batch_id=? AND post_dose_completed=1
               ORDER BY amount""",
            (user_id, batch_id),
        )
        return [dict(r) for r in cur.fetchall()]


def delete_dose(user_id: str, dose_id: int) -> bool:
    with db_cursor() as cur:
        cur.execute("DELETE FROM dose_logs WHERE id=? AND user_id=?", (dose_id, user_id))
        return cur.rowcount > 0


# --- Check-ins ---

def insert_check_in(user_id: str, energy: int, clarity: int, stability: int,
                    dose_id: Optional[int] = None, notes: str = "",
                    timestamp: Optional[str] = None) -> int:
    ts = timestamp or _now()
    with db_cursor() as cur:
        cur.execute(
            """INSERT INTO check_ins (user_id, dose_id, timestamp, energy, clarity, stability, notes)
               VALUES (?,?,?,?,?,?,?)""",
            (user_id, dose_id, ts, energy, clarity, stability, notes),
        )
        return cur.lastrowid


def query_check_ins(user_id: str, start: str, end: str) -> list[dict]:
    with db_cursor() as cur:
        cur.execute(
            "SELECT * FROM check_ins WHERE user_id=? AND timestamp BETWEEN ? AND ? ORDER BY timestamp",
            (user_id, start, end),
        )
        return [dict(r) for r in cur.fetchall()]


# --- Threshold ranges ---

def upsert_threshold_range(user_id: str, result: dict) -> int:
    with db_cursor() as cur:
        cur.execute(
            """INSERT INTO threshold_ranges (user_id, batch_id, floor_dose, sweet_spot,
                   ceiling_dose, confidence, qualifier, doses_used, calculated_at)
               VALUES (?,?,?,?,?,?,?,?,?)
               ON CONFLICT(user_id, batch_id) DO UPDATE SET
                   floor_dose=excluded.floor_dose, sweet_spot=excluded.sweet_spot,
                   ceiling_dose=excluded.ceiling_dose, confidence=excluded.confidence,
                   qualifier=excluded.qualifier, doses_used=excluded.doses_used,
                   calculated_at=excluded.calculated_at""",
            (
                user_id,
                result["batch_id"],
                result["floor"],
                result["sweet_spot"],
                result["ceiling"],
                result["confidence"],
                result["qualifier"],
                result["doses_used"],
                _now(),
            ),
        )
        return cur.lastrowid


def get_threshold_range(user_id: str, batch_id: int) -> Optional[dict]:
    """Stored range, keys renamed to the calibrator's result shape."""
    with db_cursor() as cur:
        cur.execute(
            "SELECT * FROM threshold_ranges WHERE user_id=? AND batch_id=?",
            (user_id, batch_id),
        )
        row = cur.fetchone()
    if not row:
        return None
    return {
        "floor": row["floor_dose"],
        "sweet_spot": row["sweet_spot"],
        "ceiling": row["ceiling_dose"],
        "confidence": row["confidence"],
        "qualifier": row["qualifier"],
        "doses_used": row["doses_used"],
        "batch_id": row["batch_id"],
        "calculated_at": row["calculated_at"],
    }


# --- Course correction log ---

def log_correction_shown(user_id: str, correction_id: str,
                         timestamp: Optional[str] = None) -> int:
    ts = timestamp or _now()
    with db_cursor() as cur:
        cur.execute(
            "INSERT INTO correction_logs (user_id, correction_id, shown_at) VALUES (?,?,?)",
            (user_id, correction_id, ts),
        )
        return cur.lastrowid


def update_correction_response(user_id: str, log_id: int, response: str,
                               helpful: Optional[bool] = None) -> bool:
    with db_cursor() as cur:
        cur.execute(
            "UPDATE correction_logs SET response=?, helpful=? WHERE id=? AND user_id=?",
            (response, None if helpful is None else int(helpful), log_id, user_id),
        )
        return cur.rowcount > 0


def get_recently_shown(user_id: str, hours: int) -> list[str]:
    since = (datetime.now() - timedelta(hours=hours)).isoformat()
    with db_cursor() as cur:
        cur.execute(
            "SELECT DISTINCT correction_id FROM correction_logs WHERE user_id=? AND shown_at >= ?",
            (user_id, since),
        )
        return [r["correction_id"] for r in cur.fetchall()]


def query_correction_logs(user_id: str, correction_id: Optional[str] = None) -> list[dict]:
    sql = "SELECT * FROM correction_logs WHERE user_id=?"
    params: list = [user_id]
    if correction_id is not None:
        sql += " AND correction_id=?"
        params.append(correction_id)
    with db_cursor() as cur:
        cur.execute(sql + " ORDER BY shown_at", params)
        rows = [dict(r) for r in cur.fetchall()]
    for row in rows:
        if row["helpful"] is not None:
            row["helpful"] = bool(row["helpful"])
    return rows
