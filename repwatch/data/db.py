from __future__ import annotations
import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from repwatch.common.settings import DEFAULT_SETTINGS, WorkoutSettings
from repwatch.counter.analysis import LimbGroup
from repwatch.counter.stats import Rep, WorkoutSession

logger = logging.getLogger(__name__)

_DB_PATH = Path("./repwatch.db")
SETTINGS_KEY = "workout_settings"

SCHEMA = r"""
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  started_at REAL NOT NULL,
  saved_at REAL NOT NULL,
  duration_s REAL NOT NULL,
  total_reps INTEGER NOT NULL,
  reps_per_minute REAL NOT NULL,
  estimated_reps_per_minute REAL NOT NULL,
  video_size INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS reps (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id TEXT NOT NULL,
  rep_index INTEGER NOT NULL,
  ts REAL NOT NULL,
  arm_type TEXT NOT NULL,
  FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS settings (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""

_conn: Optional[sqlite3.Connection] = None


@dataclass
class WorkoutMetadata:
    id: str
    started_at: float
    duration_s: float
    total_reps: int
    reps_per_minute: float
    video_size: int


def configure(path: Path | str):
    """Point the module at another database file (closes the current one)."""
    global _DB_PATH, _conn
    if _conn is not None:
        _conn.close()
        _conn = None
    _DB_PATH = Path(path)


def get_conn() -> sqlite3.Connection:
    global _conn
    if _conn is None:
        _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        _conn = sqlite3.connect(_DB_PATH.as_posix(), check_same_thread=False)
        _conn.execute("PRAGMA foreign_keys=ON;")
        _conn.executescript(SCHEMA)
        _conn.commit()
    return _conn

# Session writes


def _duration(session: WorkoutSession) -> float:
    if session.reps:
        return session.reps[-1].timestamp - session.start_time
    return time.time() - session.start_time


def save_session(workout_id: str, session: WorkoutSession, size_bytes: int):
    conn = get_conn()
    with conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO sessions (
              id, started_at, saved_at, duration_s, total_reps,
              reps_per_minute, estimated_reps_per_minute, video_size
            ) VALUES (?,?,?,?,?,?,?,?)
            """,
            (
                workout_id,
                session.start_time,
                time.time(),
                max(0.0, _duration(session)),
                session.total_reps,
                session.reps_per_minute,
                session.estimated_reps_per_minute,
                int(size_bytes),
            ),
        )
        conn.execute("DELETE FROM reps WHERE session_id=?", (workout_id,))
        conn.executemany(
            "INSERT INTO reps (session_id, rep_index, ts, arm_type) VALUES (?,?,?,?)",
            [(workout_id, i + 1, r.timestamp, LimbGroup(r.arm_type).value) for i, r in enumerate(session.reps)],
        )
    logger.info("saved session %s (%d reps)", workout_id, session.total_reps)

# Session reads


def list_sessions() -> List[WorkoutMetadata]:
    rows = get_conn().execute(
        "SELECT id, started_at, duration_s, total_reps, reps_per_minute, video_size "
        "FROM sessions ORDER BY started_at DESC"
    ).fetchall()
    return [WorkoutMetadata(*row) for row in rows]


def get_session(workout_id: str) -> Optional[WorkoutSession]:
    conn = get_conn()
    row = conn.execute(
        "SELECT started_at, total_reps, reps_per_minute, estimated_reps_per_minute FROM sessions WHERE id=?",
        (workout_id,),
    ).fetchone()
    if row is None:
        return None
    reps = conn.execute(
        "SELECT ts, arm_type FROM reps WHERE session_id=? ORDER BY rep_index",
        (workout_id,),
    ).fetchall()
    return WorkoutSession(
        start_time=row[0],
        reps=[Rep(timestamp=ts, arm_type=LimbGroup(arm)) for ts, arm in reps],
        total_reps=row[1],
        reps_per_minute=row[2],
        estimated_reps_per_minute=row[3],
    )


def delete_session(workout_id: str) -> bool:
    conn = get_conn()
    with conn:
        cur = conn.execute("DELETE FROM sessions WHERE id=?", (workout_id,))
    return cur.rowcount > 0

# Settings


def save_settings(settings: WorkoutSettings):
    conn = get_conn()
    with conn:
        conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?,?)",
            (SETTINGS_KEY, settings.model_dump_json()),
        )


def load_settings() -> Optional[WorkoutSettings]:
    row = get_conn().execute("SELECT value FROM settings WHERE key=?", (SETTINGS_KEY,)).fetchone()
    if row is None:
        return None
    try:
        stored = json.loads(row[0])
        return WorkoutSettings.model_validate({**DEFAULT_SETTINGS.model_dump(), **stored})
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning("failed to load settings: %s", e)
        return None


def clear_settings():
    conn = get_conn()
    with conn:
        conn.execute("DELETE FROM settings WHERE key=?", (SETTINGS_KEY,))
