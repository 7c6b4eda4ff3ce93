"""
WISE Triage — Survey Analysis Server
====================================
FastAPI backend that runs completed gynecological surveys through the
analysis engine, stores the results and serves them back.

Run:
    pip install -e .
    python survey_server.py

Then open: http://localhost:8002/docs
"""
from __future__ import annotations

import logging
import os
from typing import Any, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from wise_triage.analysis_engine import AnalysisEngine, Profile
from wise_triage.assessment_explainer import AssessmentExplainer
from wise_triage.conditions import (
    CONDITIONS_DB,
    TRIAGE_COLORS,
    TRIAGE_DESCRIPTIONS,
    TriageStatus,
    get_condition_by_id,
)
from wise_triage.result_store import ResultStore
from wise_triage.survey_questions import SURVEY_QUESTIONS
from wise_triage.symptom_tracker import SymptomTracker

load_dotenv()
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

PORT = int(os.getenv("SURVEY_SERVER_PORT", "8002"))


# ── request models ────────────────────────────────────────────────────────────

class AnalyzeRequest(BaseModel):
    answers: dict[str, Any] = Field(default_factory=dict)
    profile: Optional[dict[str, Any]] = None
    report_date: str = ""
    # When set, the survey and its result are stored for this user.
    anonymous_id: Optional[str] = None
    selected_date: Optional[str] = None
    profile_id: Optional[str] = None


class SymptomLogRequest(BaseModel):
    log_date: str
    log_time: Optional[str] = None
    pain_level: Optional[int] = None
    pain_location: list[str] = Field(default_factory=list)
    pain_character: list[str] = Field(default_factory=list)
    flow_level: Optional[str] = None
    flow_color: Optional[str] = None
    clot_size: Optional[str] = None
    pad_changes_count: Optional[int] = None
    symptoms: list[str] = Field(default_factory=list)
    mood: list[str] = Field(default_factory=list)
    energy_level: Optional[int] = None
    sleep_quality: Optional[int] = None
    sleep_hours: Optional[float] = None
    activities_affected: list[str] = Field(default_factory=list)
    missed_work_school: bool = False
    medications_taken: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class CycleDateRequest(BaseModel):
    date: str


# ── app factory ───────────────────────────────────────────────────────────────

def create_app(
    store: Optional[ResultStore] = None,
    explainer: Optional[AssessmentExplainer] = None,
    engine: Optional[AnalysisEngine] = None,
    tracker: Optional[SymptomTracker] = None,
) -> FastAPI:
    """Build the API. Collaborators can be injected for tests."""
    store = store or ResultStore()
    explainer = explainer or AssessmentExplainer()
    engine = engine or AnalysisEngine()
    tracker = tracker or SymptomTracker(str(store.db_path))

    app = FastAPI(title="WISE Triage API", version="1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/conditions")
    def api_conditions():
        """Full condition catalog."""
        return [c.to_dict() for c in CONDITIONS_DB]

    @app.get("/api/conditions/{condition_id}")
    def api_condition_detail(condition_id: str):
        condition = get_condition_by_id(condition_id)
        if condition is None:
            raise HTTPException(404, "Condition not found")
        return condition.to_dict()

    @app.get("/api/questions")
    def api_questions():
        return SURVEY_QUESTIONS

    @app.post("/api/analyze")
    def api_analyze(body: AnalyzeRequest):
        """Analyze one completed survey, optionally storing the result."""
        try:
            profile = Profile.from_dict(body.profile)
        except (TypeError, ValueError) as exc:
            raise HTTPException(400, f"Invalid profile: {exc}")

        result = engine.analyze(body.answers, profile, body.report_date)

        response_id = None
        if body.anonymous_id:
            response_id = store.save_survey_and_analysis(
                body.anonymous_id,
                body.answers,
                body.selected_date or result.report_date,
                result,
                profile_id=body.profile_id,
                profile=profile,
            )
            if response_id is None:
                logger.warning("Result for %s was not stored.", body.anonymous_id)

        payload = result.to_dict()
        payload["response_id"] = response_id
        payload["triage_color"] = TRIAGE_COLORS[result.triage_status]
        payload["triage_description"] = TRIAGE_DESCRIPTIONS[result.triage_status]
        return payload

    @app.get("/api/results/{response_id}")
    def api_result(response_id: str):
        record = store.get_result(response_id)
        if record is None:
            raise HTTPException(404, "Result not found")
        return record

    @app.get("/api/users/{anonymous_id}/results")
    def api_user_results(anonymous_id: str, limit: int = 20):
        """Stored results for one user, newest first."""
        if limit < 1:
            raise HTTPException(400, "limit must be positive")
        return store.get_results_for_user(anonymous_id, limit=limit)

    @app.get("/api/results/{response_id}/explanation")
    def api_result_explanation(response_id: str, user_age: Optional[int] = None):
        """Plain-language explanation and provider questions for a stored result."""
        record = store.get_result(response_id)
        if record is None:
            raise HTTPException(404, "Result not found")
        return {
            "response_id": response_id,
            "explanation": explainer.explain_results(record, user_age),
            "doctor_questions": explainer.generate_doctor_questions(record, user_age),
            "ai_generated": explainer.is_available,
        }

    @app.get("/api/results/{response_id}/appointment-summary")
    def api_appointment_summary(response_id: str, user_age: Optional[int] = None):
        """Doctor-facing summary of a stored result plus the user's recent logs."""
        record = store.get_result(response_id)
        if record is None:
            raise HTTPException(404, "Result not found")
        logs = tracker.get_symptom_logs(record["anonymous_id"])
        return {
            "response_id": response_id,
            "summary": explainer.create_appointment_summary(record, logs, user_age),
            "ai_generated": explainer.is_available,
        }

    # ── symptom and cycle tracking ────────────────────────────────────────────

    @app.post("/api/users/{anonymous_id}/symptoms")
    def api_add_symptom_log(anonymous_id: str, body: SymptomLogRequest):
        log_id = tracker.add_symptom_log(anonymous_id, body.model_dump())
        if log_id is None:
            raise HTTPException(400, "Invalid symptom log")
        return {"log_id": log_id}

    @app.get("/api/users/{anonymous_id}/symptoms")
    def api_symptom_logs(anonymous_id: str, start_date: Optional[str] = None, end_date: Optional[str] = None):
        return tracker.get_symptom_logs(anonymous_id, start_date, end_date)

    @app.get("/api/users/{anonymous_id}/symptoms/trends")
    def api_symptom_trends(anonymous_id: str, days_back: int = 30):
        return tracker.get_symptom_trends(anonymous_id, days_back)

    @app.get("/api/users/{anonymous_id}/symptoms/insights")
    def api_symptom_insights(anonymous_id: str, user_age: Optional[int] = None):
        logs = tracker.get_symptom_logs(anonymous_id)
        return {
            "insights": explainer.analyze_symptom_patterns(logs, user_age),
            "ai_generated": explainer.is_available,
        }

    @app.post("/api/users/{anonymous_id}/cycles/start")
    def api_start_cycle(anonymous_id: str, body: CycleDateRequest):
        cycle = tracker.start_cycle(anonymous_id, body.date)
        if cycle is None:
            raise HTTPException(400, "Could not start cycle")
        return cycle

    @app.post("/api/users/{anonymous_id}/cycles/end")
    def api_end_cycle(anonymous_id: str, body: CycleDateRequest):
        if not tracker.end_cycle(anonymous_id, body.date):
            raise HTTPException(404, "No active cycle found")
        return {"ended": True}

    @app.get("/api/users/{anonymous_id}/cycles")
    def api_cycles(anonymous_id: str, limit: int = 12):
        """Cycle history plus average length, prediction and current day."""
        return {
            "cycles": tracker.get_cycle_history(anonymous_id, limit),
            "average_length": tracker.get_average_cycle_length(anonymous_id),
            "next_period": tracker.predict_next_period(anonymous_id),
            "current_cycle_day": tracker.get_current_cycle_day(anonymous_id),
        }

    @app.get("/api/stats")
    def api_stats():
        """Stored result counts by triage status."""
        stats = store.get_triage_stats()
        by_status = stats.get("by_status", {})
        return {
            "total": stats.get("total", 0),
            **{status.value: by_status.get(status.value, 0) for status in TriageStatus},
        }

    return app


app = create_app()


# ── Entry point ───────────────────────────────────────────────────────────────
if __name__ == "__main__":
    print("\n" + "═" * 58)
    print("  🩺  WISE Triage — Survey Analysis Server")
    print("═" * 58)
    print(f"  ➜  API docs:   http://localhost:{PORT}/docs")
    print("═" * 58 + "\n")
    uvicorn.run(app, host="0.0.0.0", port=PORT, reload=False, log_level="warning")
