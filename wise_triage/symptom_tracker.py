"""
Symptom Tracker Module
======================
Daily symptom logs and menstrual cycle history for a user, stored in the
same SQLite database as survey results.

Two tables:
  - symptom_logs: one row per logged day (pain, flow, symptoms, mood, sleep)
  - cycles: one row per period, with the length filled in when the next
    period starts

Dates are ISO ``YYYY-MM-DD`` strings. Methods that depend on the current
date accept ``today`` so callers and tests can pin it.
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
import uuid
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from wise_triage.result_store import default_db_path

logger = logging.getLogger(__name__)

FLOW_LEVELS = ("none", "spotting", "light", "moderate", "heavy", "very_heavy")
CLOT_SIZES = ("none", "small", "quarter", "golf ball", "larger")

DEFAULT_CYCLE_LENGTH = 28
MIN_CYCLE_LENGTH = 21
MAX_CYCLE_LENGTH = 45
AVERAGE_OVER_CYCLES = 6
TREND_WINDOW_DAYS = 30

_LIST_FIELDS = (
    "pain_location",
    "pain_character",
    "symptoms",
    "mood",
    "activities_affected",
    "medications_taken",
)
_SCALAR_FIELDS = (
    "log_time",
    "pain_level",
    "flow_level",
    "flow_color",
    "clot_size",
    "pad_changes_count",
    "energy_level",
    "sleep_quality",
    "sleep_hours",
    "missed_work_school",
    "notes",
)
# Inclusive bounds for numeric fields.
_RANGES = {"pain_level": (0, 10), "energy_level": (1, 5), "sleep_quality": (1, 5)}


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _validate_log(log: dict) -> None:
    """Raise ValueError for out-of-range or unknown values."""
    _parse_date(log.get("log_date"))
    for field, (low, high) in _RANGES.items():
        value = log.get(field)
        if value is not None and not low <= value <= high:
            raise ValueError(f"{field} must be between {low} and {high}, got {value}")
    if log.get("flow_level") not in (None, *FLOW_LEVELS):
        raise ValueError(f"Unknown flow_level: {log['flow_level']}")
    if log.get("clot_size") not in (None, *CLOT_SIZES):
        raise ValueError(f"Unknown clot_size: {log['clot_size']}")


class SymptomTracker:
    """Stores symptom logs and cycle history per anonymous user.

    Like ResultStore, database errors are logged and turned into a
    neutral return value.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = Path(db_path) if db_path else default_db_path()
        self._create_tables()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _create_tables(self) -> None:
        try:
            conn = self._get_connection()
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS symptom_logs (
                    log_id TEXT PRIMARY KEY,
                    anonymous_id TEXT NOT NULL,
                    log_date TEXT NOT NULL,
                    log_time TEXT,
                    pain_level INTEGER,
                    pain_location TEXT,
                    pain_character TEXT,
                    flow_level TEXT,
                    flow_color TEXT,
                    clot_size TEXT,
                    pad_changes_count INTEGER,
                    symptoms TEXT,
                    mood TEXT,
                    energy_level INTEGER,
                    sleep_quality INTEGER,
                    sleep_hours REAL,
                    activities_affected TEXT,
                    missed_work_school INTEGER DEFAULT 0,
                    medications_taken TEXT,
                    notes TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cycles (
                    cycle_id TEXT PRIMARY KEY,
                    anonymous_id TEXT NOT NULL,
                    period_start_date TEXT NOT NULL,
                    period_end_date TEXT,
                    cycle_length_days INTEGER,
                    cycle_number INTEGER NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.commit()
            conn.close()
        except Exception as exc:
            logger.error("Failed to create tracker tables: %s", exc)

    @staticmethod
    def _row_to_log(row: sqlite3.Row) -> dict:
        log = dict(row)
        for field in _LIST_FIELDS:
            try:
                log[field] = json.loads(log[field]) if log.get(field) else []
            except (json.JSONDecodeError, TypeError):
                log[field] = []
        log["missed_work_school"] = bool(log.get("missed_work_school"))
        return log

    def clear(self) -> bool:
        """Delete all logs and cycles. Used for testing."""
        try:
            conn = self._get_connection()
            with conn:
                conn.execute("DELETE FROM symptom_logs")
                conn.execute("DELETE FROM cycles")
            conn.close()
            return True
        except Exception as exc:
            logger.error("Failed to clear tracker: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Symptom logs
    # ------------------------------------------------------------------

    def add_symptom_log(self, anonymous_id: str, log: dict) -> Optional[str]:
        """Store one day's log.

        Args:
            anonymous_id: Opaque id of the user.
            log: Must contain ``log_date``; every other field is optional.

        Returns:
            The new log id, or None if the log was invalid or not saved.
        """
        try:
            _validate_log(log)
        except (TypeError, ValueError) as exc:
            logger.warning("Rejected symptom log for %s: %s", anonymous_id, exc)
            return None

        log_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        row = {field: log.get(field) for field in _SCALAR_FIELDS}
        row["log_time"] = row["log_time"] or now.strftime("%H:%M:%S")
        row["missed_work_school"] = int(bool(row["missed_work_school"]))
        row.update({field: json.dumps(list(log.get(field) or [])) for field in _LIST_FIELDS})
        row.update(
            log_id=log_id,
            anonymous_id=anonymous_id,
            log_date=_parse_date(log["log_date"]).isoformat(),
            created_at=now.isoformat(),
        )

        try:
            conn = self._get_connection()
            with conn:
                columns = ", ".join(row)
                placeholders = ", ".join("?" for _ in row)
                conn.execute(
                    f"INSERT INTO symptom_logs ({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
            conn.close()
            logger.info("Logged symptoms for %s on %s.", anonymous_id, row["log_date"])
            return log_id
        except Exception as exc:
            logger.error("Failed to add symptom log: %s", exc)
            return None

    def get_symptom_logs(
        self,
        anonymous_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[dict]:
        """Logs in an optional inclusive date range, newest first."""
        query = "SELECT * FROM symptom_logs WHERE anonymous_id = ?"
        params: list[Any] = [anonymous_id]
        if start_date:
            query += " AND log_date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND log_date <= ?"
            params.append(end_date)
        query += " ORDER BY log_date DESC, rowid DESC"

        try:
            conn = self._get_connection()
            rows = conn.execute(query, params).fetchall()
            conn.close()
            return [self._row_to_log(row) for row in rows]
        except Exception as exc:
            logger.error("Failed to fetch symptom logs for %s: %s", anonymous_id, exc)
            return []

    def get_symptom_log_for_date(self, anonymous_id: str, log_date: str) -> Optional[dict]:
        logs = self.get_symptom_logs(anonymous_id, log_date, log_date)
        return logs[0] if logs else None

    def update_symptom_log(self, log_id: str, updates: dict) -> bool:
        """Change fields of an existing log. Unknown fields are ignored."""
        fields = {k: v for k, v in updates.items() if k in _SCALAR_FIELDS or k in _LIST_FIELDS or k == "log_date"}
        if not fields:
            return False
        try:
            _validate_log({"log_date": fields.get("log_date", date.min.isoformat()), **fields})
        except (TypeError, ValueError) as exc:
            logger.warning("Rejected update to symptom log %s: %s", log_id, exc)
            return False

        for field in _LIST_FIELDS:
            if field in fields:
                fields[field] = json.dumps(list(fields[field] or []))
        if "missed_work_school" in fields:
            fields["missed_work_school"] = int(bool(fields["missed_work_school"]))

        try:
            conn = self._get_connection()
            with conn:
                assignments = ", ".join(f"{k} = ?" for k in fields)
                cursor = conn.execute(
                    f"UPDATE symptom_logs SET {assignments} WHERE log_id = ?",
                    (*fields.values(), log_id),
                )
            conn.close()
            return cursor.rowcount > 0
        except Exception as exc:
            logger.error("Failed to update symptom log %s: %s", log_id, exc)
            return False

    def delete_symptom_log(self, log_id: str) -> bool:
        try:
            conn = self._get_connection()
            with conn:
                cursor = conn.execute("DELETE FROM symptom_logs WHERE log_id = ?", (log_id,))
            conn.close()
            return cursor.rowcount > 0
        except Exception as exc:
            logger.error("Failed to delete symptom log %s: %s", log_id, exc)
            return False

    def get_symptom_trends(
        self,
        anonymous_id: str,
        days_back: int = TREND_WINDOW_DAYS,
        today: Optional[date] = None,
    ) -> list[dict]:
        """Symptom occurrence counts with the average pain on those days.

        Only days with pain above zero count toward the average, which is
        rounded to one decimal (0 when no such day exists). Most common
        symptoms come first; ties keep first-seen order.
        """
        start = (today or date.today()) - timedelta(days=days_back)
        counts: dict[str, dict[str, int]] = {}
        for log in self.get_symptom_logs(anonymous_id, start.isoformat()):
            pain = log.get("pain_level") or 0
            for symptom in log["symptoms"]:
                entry = counts.setdefault(symptom, {"count": 0, "total_pain": 0, "pain_days": 0})
                entry["count"] += 1
                if pain > 0:
                    entry["total_pain"] += pain
                    entry["pain_days"] += 1

        trends = [
            {
                "symptom": symptom,
                "occurrence_count": entry["count"],
                "avg_pain_level": (
                    math.floor(entry["total_pain"] / entry["pain_days"] * 10 + 0.5) / 10
                    if entry["pain_days"]
                    else 0
                ),
            }
            for symptom, entry in counts.items()
        ]
        return sorted(trends, key=lambda t: -t["occurrence_count"])

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def start_cycle(self, anonymous_id: str, period_start_date: str) -> Optional[dict]:
        """Record the first day of a period.

        The previous cycle, if any, gets its length set to the number of
        days between the two start dates.

        Returns:
            The new cycle record, or None on failure.
        """
        try:
            start = _parse_date(period_start_date)
        except (TypeError, ValueError) as exc:
            logger.warning("Rejected cycle start for %s: %s", anonymous_id, exc)
            return None

        history = self.get_cycle_history(anonymous_id, limit=1)
        previous = history[0] if history else None
        cycle = {
            "cycle_id": str(uuid.uuid4()),
            "anonymous_id": anonymous_id,
            "period_start_date": start.isoformat(),
            "period_end_date": None,
            "cycle_length_days": None,
            "cycle_number": (previous["cycle_number"] or 0) + 1 if previous else 1,
            "notes": None,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            conn = self._get_connection()
            with conn:
                if previous:
                    length = abs((start - _parse_date(previous["period_start_date"])).days)
                    conn.execute(
                        "UPDATE cycles SET cycle_length_days = ? WHERE cycle_id = ?",
                        (length, previous["cycle_id"]),
                    )
                conn.execute(
                    """
                    INSERT INTO cycles (
                        cycle_id, anonymous_id, period_start_date, period_end_date,
                        cycle_length_days, cycle_number, notes, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    tuple(cycle.values()),
                )
            conn.close()
            logger.info("Cycle %d started for %s on %s.", cycle["cycle_number"], anonymous_id, cycle["period_start_date"])
            return cycle
        except Exception as exc:
            logger.error("Failed to start cycle for %s: %s", anonymous_id, exc)
            return None

    def end_cycle(self, anonymous_id: str, period_end_date: str) -> bool:
        """Set the end date on the most recent open cycle.

        Returns:
            False when there is no open cycle or the update failed.
        """
        try:
            end = _parse_date(period_end_date).isoformat()
            conn = self._get_connection()
            row = conn.execute(
                """
                SELECT cycle_id FROM cycles
                WHERE anonymous_id = ? AND period_end_date IS NULL
                ORDER BY period_start_date DESC LIMIT 1
                """,
                (anonymous_id,),
            ).fetchone()
            if row is None:
                conn.close()
                logger.warning("No active cycle found for %s.", anonymous_id)
                return False
            with conn:
                conn.execute("UPDATE cycles SET period_end_date = ? WHERE cycle_id = ?", (end, row["cycle_id"]))
            conn.close()
            return True
        except Exception as exc:
            logger.error("Failed to end cycle for %s: %s", anonymous_id, exc)
            return False

    def get_cycle_history(self, anonymous_id: str, limit: int = 12) -> list[dict]:
        """Cycles newest first."""
        try:
            conn = self._get_connection()
            rows = conn.execute(
                "SELECT * FROM cycles WHERE anonymous_id = ? ORDER BY period_start_date DESC LIMIT ?",
                (anonymous_id, limit),
            ).fetchall()
            conn.close()
            return [dict(row) for row in rows]
        except Exception as exc:
            logger.error("Failed to fetch cycle history for %s: %s", anonymous_id, exc)
            return []

    def get_average_cycle_length(self, anonymous_id: str) -> int:
        """Mean length of the last six cycles, ignoring lengths outside 21-45 days.

        Defaults to 28 when no cycle qualifies.
        """
        lengths = [
            c["cycle_length_days"]
            for c in self.get_cycle_history(anonymous_id, limit=AVERAGE_OVER_CYCLES)
            if c["cycle_length_days"] and MIN_CYCLE_LENGTH <= c["cycle_length_days"] <= MAX_CYCLE_LENGTH
        ]
        if not lengths:
            return DEFAULT_CYCLE_LENGTH
        return math.floor(sum(lengths) / len(lengths) + 0.5)

    def predict_next_period(self, anonymous_id: str, today: Optional[date] = None) -> Optional[dict]:
        """Expected next start date and days until it (negative when overdue)."""
        history = self.get_cycle_history(anonymous_id, limit=1)
        if not history:
            return None
        next_start = _parse_date(history[0]["period_start_date"]) + timedelta(
            days=self.get_average_cycle_length(anonymous_id)
        )
        return {
            "date": next_start.isoformat(),
            "days_until": (next_start - (today or date.today())).days,
        }

    def get_current_cycle_day(self, anonymous_id: str, today: Optional[date] = None) -> Optional[int]:
        """Day of the current cycle; the period start date is day 1."""
        history = self.get_cycle_history(anonymous_id, limit=1)
        if not history:
            return None
        return ((today or date.today()) - _parse_date(history[0]["period_start_date"])).days + 1
