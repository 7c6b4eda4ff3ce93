"""
Assessment Explainer Module
===========================
Plain-language explanations of analysis results using Azure OpenAI.

The engine result is passed in as read-only context; nothing generated
here flows back into scoring or triage. When Azure OpenAI is not
configured, or a call fails, every method returns deterministic text
built from the condition catalog instead.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Optional, Union

from dotenv import load_dotenv

from wise_triage.analysis_engine import AnalysisResult, PatientContext, Profile
from wise_triage.conditions import TRIAGE_DESCRIPTIONS, Condition, TriageStatus

load_dotenv()
logger = logging.getLogger(__name__)

DEFAULT_DOCTOR_QUESTIONS = [
    "What tests do you recommend to confirm the diagnosis?",
    "What are my treatment options?",
    "What can I do at home to manage symptoms?",
    "When should I follow up?",
    "Are there any lifestyle changes that could help?",
]

_NUMBERED_LINE = re.compile(r"^\s*\d+[.)]\s*(.+)$")

ResultLike = Union[AnalysisResult, dict]


def _as_dict(result: ResultLike) -> dict:
    """Accept a live AnalysisResult or its stored dict form."""
    if isinstance(result, AnalysisResult):
        return result.to_dict()
    return result


def _patient_age(data: dict, user_age: Optional[int] = None) -> Optional[int]:
    """Caller-supplied age, else the age stored with the survey, else None."""
    if user_age is not None:
        return user_age
    context = PatientContext.build(data.get("answers"), Profile.from_dict(data.get("profile")))
    return None if context.age_is_estimated else context.age


def _age_text(age: Optional[int]) -> str:
    return str(age) if age is not None else "not provided"


def _most_common(logs: list[dict], field: str, limit: int) -> list[str]:
    """Most frequent values of a list field across logs, ties in first-seen order."""
    counts: dict[str, int] = {}
    for log in logs:
        for value in log.get(field) or []:
            counts[value] = counts.get(value, 0) + 1
    return sorted(counts, key=lambda value: -counts[value])[:limit]


def _average(logs: list[dict], field: str, default: float) -> float:
    if not logs:
        return 0.0
    values = [log.get(field) if log.get(field) is not None else default for log in logs]
    return sum(values) / len(logs)


class AssessmentExplainer:
    """Generates patient-facing explanations for analysis results.

    Attributes:
        openai_client: Azure OpenAI client instance, or None in mock mode.
        deployment: GPT model deployment name.
    """

    def __init__(self) -> None:
        self.openai_client = None
        self.deployment: str = os.getenv("GPT_DEPLOYMENT", "gpt-4")
        self._initialized = False
        self._init_openai()

    @property
    def is_available(self) -> bool:
        return self._initialized

    def _init_openai(self) -> None:
        endpoint = os.getenv("AZURE_OPENAI_ENDPOINT", "")
        key = os.getenv("AZURE_OPENAI_KEY", "")
        api_version = os.getenv("AZURE_OPENAI_API_VERSION", "2024-12-01-preview")

        if not endpoint or not key or key == "your-key":
            logger.warning(
                "Azure OpenAI credentials not configured. "
                "Using template explanations."
            )
            return

        try:
            from openai import AzureOpenAI

            try:
                self.openai_client = AzureOpenAI(
                    azure_endpoint=endpoint,
                    api_key=key,
                    api_version=api_version,
                )
            except TypeError:
                import httpx

                self.openai_client = AzureOpenAI(
                    azure_endpoint=endpoint,
                    api_key=key,
                    api_version=api_version,
                    http_client=httpx.Client(),
                )

            self._initialized = True
            logger.info("Azure OpenAI client initialized (deployment=%s).", self.deployment)
        except Exception as exc:
            logger.error("Failed to init Azure OpenAI client: %s", exc)

    def _complete(self, operation: str, prompt: str, max_tokens: int) -> str:
        """Single-turn chat completion. Raises on failure; callers fall back."""
        response = self.openai_client.chat.completions.create(
            model=self.deployment,
            messages=[{"role": "user", "content": prompt}],
            max_completion_tokens=max_tokens,
        )

        usage = getattr(response, "usage", None)
        if usage:
            logger.info(
                "%s — tokens used: prompt=%d completion=%d total=%d",
                operation,
                usage.prompt_tokens,
                usage.completion_tokens,
                usage.total_tokens,
            )
        return (response.choices[0].message.content or "").strip()

    # ------------------------------------------------------------------
    # Result explanation
    # ------------------------------------------------------------------

    def explain_results(self, result: ResultLike, user_age: Optional[int] = None) -> str:
        """Explain an analysis result in warm, jargon-free language.

        Args:
            result: AnalysisResult or its ``to_dict()`` form.
            user_age: Age to mention in the prompt. Without it the age stored
                with the survey is used; if there is none the prompt says so.

        Returns:
            Explanation text (never empty).
        """
        data = _as_dict(result)
        ranked = data.get("ranked_conditions", [])
        if not ranked:
            return self._mock_results_explanation(data)

        age = _age_text(_patient_age(data, user_age))
        top = ranked[0]
        others = ", ".join(rc["condition"]["name"] for rc in ranked[1:3]) or "none"
        red_flags = "; ".join(data.get("red_flag_messages", [])) or "none"

        prompt = f"""You are a compassionate women's health educator explaining medical assessment results.

USER'S ASSESSMENT RESULTS:
- Triage Level: {data.get("triage_status")}
- Top Condition: {top["condition"]["name"]} ({top["probability"]}% match)
- Other Possibilities: {others}
- Red Flags: {red_flags}
- User Age: {age}

TASK: Explain these results in clear, empathetic language that:
1. Helps the patient understand what these findings mean
2. Explains why this condition is suspected (based on symptoms)
3. Reassures while being honest
4. Clarifies next steps based on triage level
5. Avoids medical jargon or explains terms simply

This is not a diagnosis. Keep response under 250 words. Be warm and supportive."""

        if not self._initialized:
            return self._mock_results_explanation(data)

        try:
            text = self._complete("explain_results", prompt, max_tokens=500)
            if not text:
                return self._mock_results_explanation(data)
            logger.info("Generated results explanation (%d chars).", len(text))
            return text
        except Exception as exc:
            logger.error("Results explanation error: %s", exc)
            return self._mock_results_explanation(data)

    def explain_condition(
        self,
        condition: Condition,
        user_age: Optional[int] = None,
        user_context: Optional[str] = None,
    ) -> str:
        """Patient-friendly overview of one catalog condition."""
        age = _age_text(user_age)
        context_line = f"USER CONTEXT: {user_context}\n" if user_context else ""

        prompt = f"""You are a patient educator explaining a gynecological condition.

CONDITION: {condition.name}
DESCRIPTION: {condition.description}
SEVERITY LEVEL: {condition.severity.value}
USER AGE: {age}
{context_line}
TASK: Explain this condition in patient-friendly language:
1. What it is (simple definition)
2. Common symptoms
3. Why it happens (causes)
4. How it's diagnosed
5. Treatment options available
6. What to expect

Use simple language, short paragraphs, and be reassuring. Under 300 words."""

        if not self._initialized:
            return self._mock_condition_explanation(condition)

        try:
            text = self._complete("explain_condition", prompt, max_tokens=600)
            return text or self._mock_condition_explanation(condition)
        except Exception as exc:
            logger.error("Condition explanation error: %s", exc)
            return self._mock_condition_explanation(condition)

    # ------------------------------------------------------------------
    # Appointment preparation
    # ------------------------------------------------------------------

    def generate_doctor_questions(self, result: ResultLike, user_age: Optional[int] = None) -> list[str]:
        """Questions the user can bring to their provider.

        Returns:
            List of question strings, numbering stripped.
        """
        data = _as_dict(result)
        ranked = data.get("ranked_conditions", [])
        if not ranked:
            return list(DEFAULT_DOCTOR_QUESTIONS)

        top = ranked[0]["condition"]
        age = _age_text(_patient_age(data, user_age))

        prompt = f"""You are helping a patient prepare for their gynecology appointment.

PATIENT SITUATION:
- Suspected Condition: {top["name"]}
- Triage Level: {data.get("triage_status")}
- Age: {age}

TASK: Generate 6-8 specific, actionable questions this patient should ask their doctor.
Questions should be direct, help with diagnosis, cover treatment options and
lifestyle management, and be appropriate for this triage level.

Format: Return ONLY the questions, one per line, numbered."""

        if not self._initialized:
            return self._mock_doctor_questions(top)

        try:
            text = self._complete("generate_doctor_questions", prompt, max_tokens=400)
            questions = [
                match.group(1).strip()
                for match in (_NUMBERED_LINE.match(line) for line in text.splitlines())
                if match
            ]
            if not questions:
                return self._mock_doctor_questions(top)
            logger.info("Generated %d doctor questions for %s.", len(questions), top["id"])
            return questions
        except Exception as exc:
            logger.error("Doctor question generation error: %s", exc)
            return self._mock_doctor_questions(top)

    def create_appointment_summary(
        self,
        result: ResultLike,
        symptom_logs: list[dict],
        user_age: Optional[int] = None,
    ) -> str:
        """Short clinical summary combining a result with recent tracker logs.

        Args:
            result: AnalysisResult or its stored dict form.
            symptom_logs: Tracker logs, newest first. Only the first 30 are read.
            user_age: Overrides the age stored with the survey.
        """
        data = _as_dict(result)
        recent = list(symptom_logs)[:30]
        ranked = data.get("ranked_conditions", [])
        facts = {
            "condition": ranked[0]["condition"]["name"] if ranked else "none identified",
            "pain_days": sum(1 for log in recent if (log.get("pain_level") or 0) >= 5),
            "symptoms": _most_common(recent, "symptoms", 5),
            "red_flags": bool(data.get("red_flag_messages")),
        }

        prompt = f"""You are helping create a concise summary for a patient to bring to their doctor.

PATIENT DATA:
- Age: {_age_text(_patient_age(data, user_age))}
- Suspected Condition: {facts["condition"]}
- Days with Significant Pain (>=5/10) in last month: {facts["pain_days"]}
- Most Common Symptoms: {", ".join(facts["symptoms"]) or "none logged"}
- Red Flags: {"Yes" if facts["red_flags"] else "No"}

TASK: Create a brief, professional summary (3-4 bullet points) that:
- Highlights key concerns
- Quantifies symptom patterns
- Notes impact on daily life if mentioned
- Mentions relevant medical history if provided

Keep it concise and clinical. This will be shown to a doctor."""

        if not self._initialized:
            return self._mock_appointment_summary(facts)

        try:
            text = self._complete("create_appointment_summary", prompt, max_tokens=300)
            return text or self._mock_appointment_summary(facts)
        except Exception as exc:
            logger.error("Appointment summary error: %s", exc)
            return self._mock_appointment_summary(facts)

    # ------------------------------------------------------------------
    # Tracker insights
    # ------------------------------------------------------------------

    def analyze_symptom_patterns(self, symptom_logs: list[dict], user_age: Optional[int] = None) -> str:
        """Insights about trends in tracked symptoms, pain, energy and sleep."""
        logs = list(symptom_logs)
        if not logs:
            return "Insufficient data for pattern analysis."

        facts = {
            "days": len(logs),
            "avg_pain": _average(logs, "pain_level", 0),
            "avg_energy": _average(logs, "energy_level", 3),
            "avg_sleep": _average(logs, "sleep_quality", 3),
            "flow_days": sum(1 for log in logs if log.get("flow_level") not in (None, "", "none", "spotting")),
            "symptoms": _most_common(logs, "symptoms", 5),
            "moods": _most_common(logs, "mood", 3),
        }

        prompt = f"""You are analyzing a patient's symptom tracking data to provide helpful insights.

TRACKED DATA (last {facts["days"]} days):
- Average Pain: {facts["avg_pain"]:.1f}/10
- Average Energy: {facts["avg_energy"]:.1f}/5
- Average Sleep Quality: {facts["avg_sleep"]:.1f}/5
- Days with Flow: {facts["flow_days"]}
- Common Symptoms: {", ".join(facts["symptoms"]) or "none logged"}
- Common Moods: {", ".join(facts["moods"]) or "none logged"}
- Age: {_age_text(user_age)}

TASK: Provide 2-3 helpful insights about patterns you notice:
- What trends stand out
- Correlations between symptoms (e.g., pain and sleep)
- Suggestions for what to track more carefully
- Lifestyle recommendations if patterns suggest them

Be specific, actionable, and encouraging. Under 200 words."""

        if not self._initialized:
            return self._mock_symptom_patterns(facts)

        try:
            text = self._complete("analyze_symptom_patterns", prompt, max_tokens=400)
            return text or self._mock_symptom_patterns(facts)
        except Exception as exc:
            logger.error("Pattern analysis error: %s", exc)
            return self._mock_symptom_patterns(facts)

    # ------------------------------------------------------------------
    # Template fallbacks
    # ------------------------------------------------------------------

    def _mock_results_explanation(self, data: dict) -> str:
        ranked = data.get("ranked_conditions", [])
        if not ranked:
            return data.get("summary") or (
                "Your answers did not point to a specific condition. If you have "
                "concerns, please talk with a healthcare provider."
            )

        top = ranked[0]
        condition = top["condition"]
        status = data.get("triage_status", TriageStatus.ROUTINE.value)
        try:
            guidance = TRIAGE_DESCRIPTIONS[TriageStatus(status)]
        except ValueError:
            guidance = ""

        parts = [
            f"Your answers most closely match {condition['name']} ({top['probability']}% match).",
            condition.get("description", ""),
            guidance,
        ]
        if condition.get("next_steps"):
            steps = "; ".join(step.rstrip(". ") for step in condition["next_steps"])
            parts.append(f"Suggested next steps: {steps}.")
        parts.append("This is not a diagnosis. A healthcare provider can confirm what is going on.")
        return " ".join(p for p in parts if p)

    def _mock_condition_explanation(self, condition: Condition) -> str:
        text = f"{condition.name}: {condition.description}"
        if condition.relevant_tests:
            text += " Tests often used: " + ", ".join(condition.relevant_tests) + "."
        return text

    def _mock_doctor_questions(self, condition: dict[str, Any]) -> list[str]:
        questions = list(condition.get("provider_questions") or [])
        return questions or list(DEFAULT_DOCTOR_QUESTIONS)

    def _mock_appointment_summary(self, facts: dict) -> str:
        lines = [
            f"- Suspected condition: {facts['condition']}",
            f"- Days with significant pain (5/10 or more) in the last month: {facts['pain_days']}",
        ]
        if facts["symptoms"]:
            lines.append("- Most common symptoms: " + ", ".join(facts["symptoms"]))
        lines.append("- Red flags reported: " + ("yes" if facts["red_flags"] else "no"))
        return "\n".join(lines)

    def _mock_symptom_patterns(self, facts: dict) -> str:
        parts = [
            f"Over {facts['days']} logged days your average pain was {facts['avg_pain']:.1f}/10, "
            f"energy {facts['avg_energy']:.1f}/5 and sleep quality {facts['avg_sleep']:.1f}/5."
        ]
        if facts["symptoms"]:
            parts.append("Your most frequent symptoms were " + ", ".join(facts["symptoms"]) + ".")
        parts.append("Keep logging daily so patterns across your cycle become clearer.")
        return " ".join(parts)
