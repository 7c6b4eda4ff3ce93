"""
Analysis Engine Module
======================
Deterministic differential scoring and triage for completed surveys.
Turns a map of survey answers plus the user's profile into a ranked
shortlist of candidate conditions, the safety alerts that apply, and one
of five routing priorities.

Pipeline (single pass, no state kept between calls):
  1. Emergency detection  -- may return early with an Emergency result
  2. Red-flag scan        -- every catalog red flag, independent of scoring
  3. Condition scoring    -- trigger weights x age and risk-factor multipliers
  4. Normalization        -- bounded, rank-consistent percentages
  5. Explanation text     -- advisory, never feeds back into scoring
  6. Triage               -- first-match decision table
  7. Summary              -- templated synopsis keyed on the triage status

The engine does not diagnose. Probabilities are a "plausible candidate"
signal in a fixed 15-95 band, not measured likelihoods, and every weight
is static authored data.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from wise_triage.conditions import (
    CONDITIONS_DB,
    EMERGENCY_CONDITION_IDS,
    Condition,
    RedFlagLevel,
    TriageStatus,
)

logger = logging.getLogger(__name__)

EMERGENCY_SCORE_THRESHOLD = 100
EMERGENCY_PROBABILITY = 95

MIN_PROBABILITY = 15
MAX_PROBABILITY = 95
CONFIDENCE_NUDGE = 10
HIGH_CONFIDENCE_TRIGGER_COUNT = 5
LOW_CONFIDENCE_TRIGGER_COUNT = 2
MAX_RANKED_CONDITIONS = 5

# Used when neither the survey nor the profile gives an age. Results built
# on it carry age_is_estimated=True.
DEFAULT_AGE = 28

AGE_QUESTION_ID = "age_selection"
PARITY_QUESTION_ID = "number_of_births"
SYMPTOMS_QUESTION_ID = "pelvic_symptoms_current"

GENERIC_EMERGENCY_MESSAGE = (
    "🚨 EMERGENCY: Based on your symptoms, you need immediate medical attention. "
    "Go to the ER or call 911."
)
NO_FINDINGS_SUMMARY = (
    "Based on your responses, no specific conditions were identified. Please "
    "consult with a healthcare provider if you have concerns."
)

AnswerSet = Mapping[str, Union[str, Sequence[str]]]

_LEADING_INT = re.compile(r"\s*(\d+)")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Profile:
    """The part of the user profile the engine reads."""

    age: Optional[int] = None
    live_births: Optional[str] = None
    known_conditions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = self.known_conditions
        if isinstance(known, str):
            known = (known,)
        object.__setattr__(self, "known_conditions", tuple(str(k) for k in (known or ())))
        if self.live_births is not None and not isinstance(self.live_births, str):
            object.__setattr__(self, "live_births", str(self.live_births))

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Profile":
        """Build a Profile from a loose dict (API payloads, stored profiles)."""
        if not data:
            return cls()
        return cls(
            age=_parse_int(data.get("age")),
            live_births=data.get("live_births"),
            known_conditions=data.get("known_conditions") or (),
        )


def _parse_int(value: Any) -> Optional[int]:
    """Leading integer of ``value`` ("5+" -> 5), or None when there is none."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def selected_values(answer: Any) -> tuple[str, ...]:
    """Normalize one answer to the tuple of values the user selected.

    None, empty strings and empty sequences all mean "unanswered" and give
    an empty tuple.
    """
    if answer is None:
        return ()
    if isinstance(answer, str):
        return (answer,) if answer else ()
    if isinstance(answer, (list, tuple, set, frozenset)):
        return tuple(str(v) for v in answer if v is not None and v != "")
    return (str(answer),)


def answer_matches(answer: Any, accepted: Union[str, Sequence[str]]) -> bool:
    """Shared match rule for triggers and red flags.

    A set of accepted values matches when it intersects the answer; a
    single accepted value matches on equality, or on membership when the
    answer is multi-select. Unanswered questions never match.
    """
    chosen = selected_values(answer)
    if not chosen:
        return False
    if isinstance(accepted, str):
        return accepted in chosen
    return any(value in chosen for value in accepted)


@dataclass(frozen=True)
class PatientContext:
    """Answers and profile facts resolved once per analysis."""

    answers: Mapping[str, Any]
    profile: Profile
    age: int
    age_is_estimated: bool
    parity: Optional[int]

    @classmethod
    def build(cls, answers: Optional[AnswerSet], profile: Optional[Profile]) -> "PatientContext":
        answers = answers or {}
        profile = profile or Profile()

        age_answer = selected_values(answers.get(AGE_QUESTION_ID))
        age = _parse_int(age_answer[0]) if age_answer else None
        if age is None:
            age = profile.age
        age_is_estimated = age is None
        if age is None:
            age = DEFAULT_AGE

        parity_answer = selected_values(answers.get(PARITY_QUESTION_ID))
        parity = _parse_int(parity_answer[0]) if parity_answer else _parse_int(profile.live_births)

        return cls(
            answers=answers,
            profile=profile,
            age=age,
            age_is_estimated=age_is_estimated,
            parity=parity,
        )

    def mentions(self, question_id: str, fragment: str) -> bool:
        """True when any selected value of ``question_id`` contains ``fragment``."""
        return any(fragment in value for value in selected_values(self.answers.get(question_id)))


# ---------------------------------------------------------------------------
# Adjustment tables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AgeBracket:
    """Inclusive age range and the multiplier applied inside it."""

    low: Optional[int]
    high: Optional[int]
    multiplier: float

    def contains(self, age: int) -> bool:
        if self.low is not None and age < self.low:
            return False
        if self.high is not None and age > self.high:
            return False
        return True


# First matching bracket wins; ages outside every bracket keep x1.0.
AGE_ADJUSTMENTS: dict[str, tuple[AgeBracket, ...]] = {
    "endometriosis_wise": (
        AgeBracket(25, 40, 1.2),
        AgeBracket(None, 19, 0.8),
        AgeBracket(46, None, 0.8),
    ),
    "pcos_wise": (
        AgeBracket(15, 35, 1.2),
        AgeBracket(41, None, 0.7),
    ),
    "uterine_fibroids": (
        AgeBracket(30, 50, 1.3),
        AgeBracket(None, 24, 0.5),
    ),
    "adenomyosis_wise": (
        AgeBracket(40, 50, 1.3),
        AgeBracket(None, 29, 0.6),
    ),
    # Defined as onset before 40.
    "premature_ovarian_insufficiency": (
        AgeBracket(None, 39, 1.5),
        AgeBracket(40, None, 0.1),
    ),
    "primary_dysmenorrhea": (
        AgeBracket(15, 25, 1.3),
        AgeBracket(36, None, 0.8),
    ),
}


def age_multiplier(condition_id: str, age: int) -> float:
    """Age multiplier for a condition; 1.0 when it has no age table."""
    for bracket in AGE_ADJUSTMENTS.get(condition_id, ()):
        if bracket.contains(age):
            return bracket.multiplier
    return 1.0


def _is_nulliparous(ctx: PatientContext) -> bool:
    return ctx.parity == 0


def _has_given_birth(ctx: PatientContext) -> bool:
    return ctx.parity is not None and ctx.parity > 0


def _has_multiple_births(ctx: PatientContext) -> bool:
    return ctx.parity is not None and ctx.parity >= 2


def _is_obese(ctx: PatientContext) -> bool:
    return ctx.mentions("obesity_status", "Obese")


def _has_diabetes(ctx: PatientContext) -> bool:
    status = selected_values(ctx.answers.get("diabetes_status"))
    if status and status[0] != "No diabetes":
        return True
    history = selected_values(ctx.answers.get("chronic_conditions")) + ctx.profile.known_conditions
    return any("diabetes" in item.lower() and "gestational" not in item.lower() for item in history)


def _took_recent_antibiotics(ctx: PatientContext) -> bool:
    return ctx.mentions("recent_antibiotics", "Yes")


@dataclass(frozen=True)
class RiskFactorRule:
    """Multiplier applied to the listed conditions when ``applies`` holds."""

    name: str
    condition_ids: tuple[str, ...]
    applies: Callable[[PatientContext], bool]
    multiplier: float


RISK_FACTOR_RULES: tuple[RiskFactorRule, ...] = (
    RiskFactorRule("nulliparity", ("endometriosis_wise",), _is_nulliparous, 1.2),
    RiskFactorRule("parity", ("adenomyosis_wise",), _has_given_birth, 1.3),
    RiskFactorRule("multiparity", ("pelvic_organ_prolapse",), _has_multiple_births, 1.4),
    RiskFactorRule("obesity", ("pcos_wise", "endometrial_hyperplasia"), _is_obese, 1.3),
    RiskFactorRule("diabetes", ("vulvovaginal_candidiasis",), _has_diabetes, 1.5),
    RiskFactorRule("recent_antibiotics", ("vulvovaginal_candidiasis",), _took_recent_antibiotics, 1.4),
    # Antibiotics may already have treated BV.
    RiskFactorRule("recent_antibiotics", ("bacterial_vaginosis",), _took_recent_antibiotics, 0.7),
)


def risk_factor_multiplier(condition_id: str, ctx: PatientContext) -> float:
    """Product of every risk-factor rule that applies to ``condition_id``.

    Each rule is evaluated against the same context, so the product does
    not depend on rule order.
    """
    multiplier = 1.0
    for rule in RISK_FACTOR_RULES:
        if condition_id in rule.condition_ids and rule.applies(ctx):
            multiplier *= rule.multiplier
    return multiplier


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RedFlagHit:
    """A red flag that matched the answers."""

    message: str
    level: RedFlagLevel
    condition_id: str


@dataclass
class ScoredCondition:
    """Intermediate per-condition score. Lives for one analysis only."""

    condition: Condition
    total_score: float
    base_score: float
    matched_triggers: list[str] = field(default_factory=list)
    trigger_count: int = 0
    multiplier: float = 1.0


@dataclass(frozen=True)
class RankedCondition:
    condition: Condition
    probability: int
    explanation: str

    def to_dict(self) -> dict:
        return {
            "condition": self.condition.to_dict(),
            "probability": self.probability,
            "explanation": self.explanation,
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Final, immutable outcome of one analysis. Owned by the caller."""

    triage_status: TriageStatus
    ranked_conditions: tuple[RankedCondition, ...]
    red_flag_messages: tuple[str, ...]
    summary: str
    report_date: str
    age_is_estimated: bool = False

    @property
    def top_condition(self) -> Optional[RankedCondition]:
        return self.ranked_conditions[0] if self.ranked_conditions else None

    def to_dict(self) -> dict:
        return {
            "triage_status": self.triage_status.value,
            "ranked_conditions": [rc.to_dict() for rc in self.ranked_conditions],
            "red_flag_messages": list(self.red_flag_messages),
            "summary": self.summary,
            "report_date": self.report_date,
            "age_is_estimated": self.age_is_estimated,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _dedupe(messages: Sequence[str]) -> tuple[str, ...]:
    """Drop repeated messages, keeping first-seen order."""
    return tuple(dict.fromkeys(messages))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class AnalysisEngine:
    """Scores survey answers against a condition catalog and assigns triage.

    The engine holds only read-only configuration, so one instance can
    serve concurrent callers.

    Attributes:
        conditions: Catalog entries, in declaration order.
        emergency_ids: Ids allowed to short-circuit to an Emergency result.
        emergency_threshold: Adjusted score an emergency entry must exceed.
    """

    def __init__(
        self,
        conditions: Optional[Sequence[Condition]] = None,
        emergency_ids: Optional[Sequence[str]] = None,
        emergency_threshold: float = EMERGENCY_SCORE_THRESHOLD,
    ) -> None:
        self.conditions: tuple[Condition, ...] = (
            tuple(conditions) if conditions is not None else CONDITIONS_DB
        )
        self.emergency_ids: tuple[str, ...] = (
            tuple(emergency_ids) if emergency_ids is not None else EMERGENCY_CONDITION_IDS
        )
        self.emergency_threshold = emergency_threshold

    def analyze(
        self,
        answers: Optional[AnswerSet],
        profile: Union[Profile, Mapping[str, Any], None] = None,
        report_date: str = "",
    ) -> AnalysisResult:
        """Run the full pipeline for one completed survey.

        Args:
            answers: Question id -> selected value or list of values.
            profile: Profile (or a dict accepted by Profile.from_dict).
            report_date: Caller-supplied display date, passed through as-is.
                Today's ISO date is used only when it is empty.

        Returns:
            AnalysisResult with at most five ranked conditions.
        """
        if not isinstance(profile, Profile):
            profile = Profile.from_dict(profile)
        context = PatientContext.build(answers, profile)
        report_date = report_date or date.today().isoformat()

        emergency = self.check_for_emergencies(context, report_date)
        if emergency is not None:
            return emergency

        red_flags = self.check_red_flags(context.answers)
        scored = self.score_all_conditions(context)
        ranked = self.calculate_probabilities(scored, context)
        triage_status = determine_triage_status(ranked, red_flags)
        summary = generate_summary(ranked, triage_status, context.age_is_estimated)

        logger.info(
            "Analysis complete: triage=%s top=%s candidates=%d red_flags=%d age_estimated=%s",
            triage_status.value,
            ranked[0].condition.id if ranked else None,
            len(ranked),
            len(red_flags),
            context.age_is_estimated,
        )

        return AnalysisResult(
            triage_status=triage_status,
            ranked_conditions=tuple(ranked[:MAX_RANKED_CONDITIONS]),
            red_flag_messages=_dedupe([hit.message for hit in red_flags]),
            summary=summary,
            report_date=report_date,
            age_is_estimated=context.age_is_estimated,
        )

    # ------------------------------------------------------------------
    # Step 1: emergency detection
    # ------------------------------------------------------------------

    def check_for_emergencies(
        self,
        context: PatientContext,
        report_date: str,
    ) -> Optional[AnalysisResult]:
        """Return a terminal Emergency result, or None to continue normally.

        Only allow-listed catalog entries are checked, in allow-list order;
        the first whose adjusted score exceeds the threshold wins.
        """
        by_id = {c.id: c for c in self.conditions}
        for condition_id in self.emergency_ids:
            condition = by_id.get(condition_id)
            if condition is None:
                continue

            scored = self.score_condition(condition, context)
            if scored.total_score <= self.emergency_threshold:
                continue

            own_flags = [hit.message for hit in red_flags_for_condition(condition, context.answers)]
            logger.info(
                "Emergency short-circuit: %s (score=%.1f, threshold=%s)",
                condition.id,
                scored.total_score,
                self.emergency_threshold,
            )
            return AnalysisResult(
                triage_status=TriageStatus.EMERGENCY,
                ranked_conditions=(
                    RankedCondition(
                        condition=condition,
                        probability=EMERGENCY_PROBABILITY,
                        explanation="; ".join(scored.matched_triggers),
                    ),
                ),
                red_flag_messages=_dedupe(own_flags) if own_flags else (GENERIC_EMERGENCY_MESSAGE,),
                summary=(
                    f"EMERGENCY ASSESSMENT: Your symptoms are concerning for {condition.name}. "
                    "This is a medical emergency requiring immediate evaluation. Do not delay - "
                    "seek emergency care now."
                ),
                report_date=report_date,
                age_is_estimated=context.age_is_estimated,
            )

        return None

    # ------------------------------------------------------------------
    # Step 2: red flags
    # ------------------------------------------------------------------

    def check_red_flags(self, answers: Mapping[str, Any]) -> list[RedFlagHit]:
        """Every matching red flag across the catalog, duplicates kept."""
        hits: list[RedFlagHit] = []
        for condition in self.conditions:
            hits.extend(red_flags_for_condition(condition, answers))
        logger.debug("Red-flag scan: %d hit(s).", len(hits))
        return hits

    # ------------------------------------------------------------------
    # Step 3: scoring
    # ------------------------------------------------------------------

    def score_condition(self, condition: Condition, context: PatientContext) -> ScoredCondition:
        """Sum matched trigger weights and apply the age and risk multipliers.

        Missing answers add nothing. Both multipliers are computed from the
        same context and applied once to the trigger sum.
        """
        base_score = 0.0
        matched: list[str] = []
        for trigger in condition.triggers:
            if answer_matches(context.answers.get(trigger.question_id), trigger.answer_value):
                base_score += trigger.weight
                matched.append(trigger.describe())

        multiplier = age_multiplier(condition.id, context.age) * risk_factor_multiplier(
            condition.id, context
        )
        return ScoredCondition(
            condition=condition,
            total_score=base_score * multiplier,
            base_score=base_score,
            matched_triggers=matched,
            trigger_count=len(matched),
            multiplier=multiplier,
        )

    def score_all_conditions(self, context: PatientContext) -> list[ScoredCondition]:
        """Score the catalog, keep positive scores, highest first.

        The sort is stable, so equal scores keep catalog order.
        """
        scored = [self.score_condition(c, context) for c in self.conditions]
        survivors = [s for s in scored if s.total_score > 0]
        survivors.sort(key=lambda s: s.total_score, reverse=True)
        logger.debug("Scored %d condition(s), %d with evidence.", len(scored), len(survivors))
        return survivors

    # ------------------------------------------------------------------
    # Step 4: probabilities
    # ------------------------------------------------------------------

    def calculate_probabilities(
        self,
        scored: Sequence[ScoredCondition],
        context: PatientContext,
    ) -> list[RankedCondition]:
        """Map sorted scores into the 15-95 band.

        The percentage of the top score is clamped, nudged by how many
        triggers matched, then capped by the entry ranked above so the
        list stays ordered by probability as well as by score.
        """
        if not scored:
            return []

        max_score = scored[0].total_score
        ranked: list[RankedCondition] = []
        ceiling = MAX_PROBABILITY

        for item in scored:
            probability = _round_half_up(item.total_score / max_score * 100)
            probability = max(MIN_PROBABILITY, min(probability, MAX_PROBABILITY))

            if item.trigger_count >= HIGH_CONFIDENCE_TRIGGER_COUNT:
                probability = min(probability + CONFIDENCE_NUDGE, MAX_PROBABILITY)
            elif item.trigger_count <= LOW_CONFIDENCE_TRIGGER_COUNT:
                probability = max(probability - CONFIDENCE_NUDGE, MIN_PROBABILITY)

            probability = min(probability, ceiling)
            ceiling = probability

            ranked.append(
                RankedCondition(
                    condition=item.condition,
                    probability=probability,
                    explanation=self.build_explanation(item, context),
                )
            )

        return ranked

    # ------------------------------------------------------------------
    # Step 5: explanation text
    # ------------------------------------------------------------------

    def build_explanation(self, scored: ScoredCondition, context: PatientContext) -> str:
        parts: list[str] = []

        symptoms = selected_values(context.answers.get(SYMPTOMS_QUESTION_ID))
        if symptoms:
            parts.append(f"Symptoms: {', '.join(symptoms[:3])}")

        if context.age_is_estimated:
            parts.append(f"Age: not provided (assumed {DEFAULT_AGE})")
        else:
            parts.append(f"Age: {context.age}")

        births = selected_values(context.answers.get(PARITY_QUESTION_ID))
        if births:
            parts.append(f"Births: {births[0]}")
        elif context.profile.live_births:
            parts.append(f"Births: {context.profile.live_births}")

        parts.append(f"Matched {scored.trigger_count} clinical criteria")
        return " | ".join(parts)


def red_flags_for_condition(condition: Condition, answers: Mapping[str, Any]) -> list[RedFlagHit]:
    """Red flags of one condition that match the answers, in declaration order."""
    return [
        RedFlagHit(message=flag.message, level=flag.level, condition_id=condition.id)
        for flag in condition.red_flags
        if answer_matches(answers.get(flag.question_id), flag.answer_value)
    ]


# ---------------------------------------------------------------------------
# Step 6: triage
# ---------------------------------------------------------------------------

def determine_triage_status(
    ranked: Sequence[RankedCondition],
    red_flags: Sequence[RedFlagHit],
) -> TriageStatus:
    """Resolve the routing priority. Rules are checked in order; first match wins."""
    if not ranked:
        return TriageStatus.ROUTINE

    top = ranked[0].condition
    if top.severity == TriageStatus.EMERGENCY:
        return TriageStatus.EMERGENCY
    if top.severity == TriageStatus.URGENT:
        return TriageStatus.URGENT

    levels = {hit.level for hit in red_flags}
    if RedFlagLevel.EMERGENCY in levels:
        return TriageStatus.EMERGENCY
    if RedFlagLevel.URGENT in levels:
        return TriageStatus.URGENT
    if levels:
        return TriageStatus.SOON

    # A co-occurring urgent differential escalates an otherwise calm top pick.
    if len(ranked) > 1 and ranked[1].condition.severity == TriageStatus.URGENT:
        return TriageStatus.SOON

    if top.severity == TriageStatus.SOON:
        return TriageStatus.SOON
    if top.severity == TriageStatus.ROUTINE:
        return TriageStatus.ROUTINE
    return TriageStatus.SELF_CARE


# ---------------------------------------------------------------------------
# Step 7: summary
# ---------------------------------------------------------------------------

def generate_summary(
    ranked: Sequence[RankedCondition],
    triage_status: TriageStatus,
    age_is_estimated: bool = False,
) -> str:
    """Templated synopsis for the final triage status."""
    if not ranked:
        return NO_FINDINGS_SUMMARY

    top = ranked[0]
    name = top.condition.name

    if triage_status == TriageStatus.EMERGENCY:
        summary = (
            f"🚨 EMERGENCY: Your symptoms are most consistent with {name}. This requires "
            "immediate medical attention. Go to the emergency room or call 911 now. Do not wait."
        )
    elif triage_status == TriageStatus.URGENT:
        summary = (
            f"⚠️ URGENT: Your symptoms suggest {name} ({top.probability}% match). You should "
            "seek medical care today - call your provider, go to urgent care, or visit the ER. "
            "Early treatment is important to prevent complications."
        )
    elif triage_status == TriageStatus.SOON:
        summary = f"Your symptoms are most consistent with {name} ({top.probability}% match). "
        if len(ranked) > 1:
            summary += f"Other possibilities include {ranked[1].condition.name}. "
        summary += (
            "Schedule an appointment with your healthcare provider within the next 1-2 weeks "
            "for evaluation."
        )
    elif triage_status == TriageStatus.ROUTINE:
        summary = f"Your symptoms may be related to {name} ({top.probability}% match). "
        others = [rc.condition.name for rc in ranked[1:3]]
        if others:
            summary += f"Other considerations: {', '.join(others)}. "
        summary += "Discuss these findings with your healthcare provider at your next visit."
    else:
        summary = (
            f"Your symptoms may be managed with self-care measures for {name}. However, if "
            "symptoms persist or worsen, consult a healthcare provider."
        )

    if age_is_estimated:
        summary += (
            f" Your age was not provided, so age-related adjustments assumed {DEFAULT_AGE}."
        )
    return summary


_default_engine = AnalysisEngine()


def analyze_symptoms(
    answers: Optional[AnswerSet],
    profile: Union[Profile, Mapping[str, Any], None] = None,
    report_date: str = "",
) -> AnalysisResult:
    """Analyze one survey against the built-in condition catalog."""
    return _default_engine.analyze(answers, profile, report_date)
