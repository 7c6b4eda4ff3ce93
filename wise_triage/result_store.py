"""
Result Store Module
===================
Persists completed surveys and their analysis results so a user can come
back to earlier reports. Uses SQLite for local storage.

Two tables, one row each per completed survey:
  - survey_responses: the raw answers, keyed by a generated response id
  - analysis_results: the engine output linked to that response
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from wise_triage.analysis_engine import AnalysisResult, Profile

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "survey_results.db"


def default_db_path() -> Path:
    """RESULTS_DB_PATH if set, read at call time, else survey_results.db in the repo root."""
    return Path(os.getenv("RESULTS_DB_PATH", str(DEFAULT_DB_PATH)))


# Stored as JSON text; value is the empty default when missing or unreadable.
_JSON_FIELDS = {"answers": dict, "profile": dict, "ranked_conditions": list, "red_flag_messages": list}


class ResultStore:
    """Stores survey responses and analysis results.

    Every public method catches database errors, logs them and returns a
    neutral value (None, False, [] or empty stats).

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
                CREATE TABLE IF NOT EXISTS survey_responses (
                    response_id TEXT PRIMARY KEY,
                    anonymous_id TEXT NOT NULL,
                    profile_id TEXT,
                    answers TEXT NOT NULL,
                    profile TEXT,
                    selected_date TEXT,
                    completed_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS analysis_results (
                    result_id TEXT PRIMARY KEY,
                    response_id TEXT NOT NULL REFERENCES survey_responses(response_id),
                    triage_status TEXT NOT NULL,
                    ranked_conditions TEXT,
                    red_flag_messages TEXT,
                    summary TEXT,
                    report_date TEXT,
                    age_is_estimated INTEGER DEFAULT 0,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.commit()
            conn.close()
            logger.info("Result store tables ready at %s.", self.db_path)
        except Exception as exc:
            logger.error("Failed to create result store tables: %s", exc)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_survey_and_analysis(
        self,
        anonymous_id: str,
        answers: dict,
        selected_date: str,
        result: AnalysisResult,
        profile_id: Optional[str] = None,
        profile: Optional[Profile] = None,
    ) -> Optional[str]:
        """Save one completed survey together with its analysis.

        Both rows are written in a single transaction.

        Args:
            anonymous_id: Opaque id of the (anonymous) user.
            answers: The raw survey answers.
            selected_date: The date the user picked for the report.
            result: Output of the analysis engine.
            profile_id: Optional id of the profile the survey was taken for.
            profile: Optional profile facts used for the analysis.

        Returns:
            The new response id, or None if saving failed.
        """
        response_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        data = result.to_dict()

        try:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    """
                    INSERT INTO survey_responses (
                        response_id, anonymous_id, profile_id, answers, profile,
                        selected_date, completed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        response_id,
                        anonymous_id,
                        profile_id,
                        json.dumps(answers),
                        json.dumps(asdict(profile)) if profile else None,
                        selected_date,
                        now,
                    ),
                )
                conn.execute(
                    """
                    INSERT INTO analysis_results (
                        result_id, response_id, triage_status, ranked_conditions,
                        red_flag_messages, summary, report_date, age_is_estimated,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(uuid.uuid4()),
                        response_id,
                        data["triage_status"],
                        json.dumps(data["ranked_conditions"]),
                        json.dumps(data["red_flag_messages"]),
                        data["summary"],
                        data["report_date"],
                        int(data["age_is_estimated"]),
                        now,
                    ),
                )
            conn.close()
            logger.info(
                "Saved survey %s for %s (triage=%s).",
                response_id,
                anonymous_id,
                data["triage_status"],
            )
            return response_id

        except Exception as exc:
            logger.error("Failed to save survey and analysis: %s", exc)
            return None

    def clear(self) -> bool:
        """Delete every stored survey and result. Used for testing."""
        try:
            conn = self._get_connection()
            with conn:
                conn.execute("DELETE FROM analysis_results")
                conn.execute("DELETE FROM survey_responses")
            conn.close()
            logger.info("Result store cleared.")
            return True
        except Exception as exc:
            logger.error("Failed to clear result store: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    _SELECT = """
        SELECT
            s.response_id, s.anonymous_id, s.profile_id, s.answers, s.profile,
            s.selected_date, s.completed_at,
            a.triage_status, a.ranked_conditions, a.red_flag_messages,
            a.summary, a.report_date, a.age_is_estimated
        FROM survey_responses s
        JOIN analysis_results a ON a.response_id = s.response_id
    """

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> dict:
        record = dict(row)
        for name, empty in _JSON_FIELDS.items():
            try:
                record[name] = json.loads(record[name]) if record.get(name) else empty()
            except (json.JSONDecodeError, TypeError):
                record[name] = empty()
        record["age_is_estimated"] = bool(record.get("age_is_estimated"))
        return record

    def get_result(self, response_id: str) -> Optional[dict]:
        """Fetch one stored survey with its analysis.

        Returns:
            Record dict, or None if it does not exist or the read failed.
        """
        try:
            conn = self._get_connection()
            row = conn.execute(self._SELECT + " WHERE s.response_id = ?", (response_id,)).fetchone()
            conn.close()
            return self._row_to_record(row) if row else None

        except Exception as exc:
            logger.error("Failed to get result %s: %s", response_id, exc)
            return None

    def get_results_for_user(self, anonymous_id: str, limit: int = 20) -> list[dict]:
        """Stored results for one user, newest first."""
        try:
            conn = self._get_connection()
            rows = conn.execute(
                self._SELECT
                + " WHERE s.anonymous_id = ? ORDER BY s.completed_at DESC, s.rowid DESC LIMIT ?",
                (anonymous_id, limit),
            ).fetchall()
            conn.close()
            return [self._row_to_record(row) for row in rows]

        except Exception as exc:
            logger.error("Failed to get results for %s: %s", anonymous_id, exc)
            return []

    def get_triage_stats(self) -> dict:
        """Counts of stored results by triage status.

        Returns:
            Dict with ``total`` and ``by_status``.
        """
        try:
            conn = self._get_connection()
            cursor = conn.execute(
                """
                SELECT triage_status, COUNT(*) as count
                FROM analysis_results
                GROUP BY triage_status
                """
            )
            by_status = {row["triage_status"]: row["count"] for row in cursor.fetchall()}
            conn.close()

            return {"total": sum(by_status.values()), "by_status": by_status}

        except Exception as exc:
            logger.error("Failed to get triage stats: %s", exc)
            return {"total": 0, "by_status": {}}
