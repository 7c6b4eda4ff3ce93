"""
Analysis Engine Tests
=====================
Unit tests for scoring, normalization, triage and summary behavior of
the analysis engine, using both the built-in catalog and small
hand-built catalogs.

Run with: python -m pytest tests/test_analysis_engine.py -v
"""

from __future__ import annotations

import sys
import unittest
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from wise_triage import analysis_engine
from wise_triage.analysis_engine import (
    DEFAULT_AGE,
    GENERIC_EMERGENCY_MESSAGE,
    MAX_PROBABILITY,
    MIN_PROBABILITY,
    NO_FINDINGS_SUMMARY,
    AnalysisEngine,
    PatientContext,
    Profile,
    RankedCondition,
    RedFlagHit,
    age_multiplier,
    answer_matches,
    determine_triage_status,
    generate_summary,
)
from wise_triage.conditions import (
    CONDITIONS_DB,
    EMERGENCY_CONDITION_IDS,
    Condition,
    RedFlag,
    RedFlagLevel,
    Trigger,
    TriageStatus,
    get_condition_by_id,
    get_emergency_conditions,
)
from wise_triage.survey_questions import answer_options, question_ids

REPORT_DATE = "2026-10-18"


def _condition(cid: str, severity: TriageStatus, *triggers: Trigger, red_flags=()) -> Condition:
    return Condition(
        id=cid,
        name=cid.replace("_", " ").title(),
        description="",
        severity=severity,
        triggers=tuple(triggers),
        red_flags=tuple(red_flags),
    )


def _ranked(*severities: TriageStatus) -> list[RankedCondition]:
    return [
        RankedCondition(_condition(f"c{i}", sev), probability=50, explanation="")
        for i, sev in enumerate(severities)
    ]


def _hit(level: RedFlagLevel) -> RedFlagHit:
    return RedFlagHit(message=f"{level.value} flag", level=level, condition_id="c0")


class TestAnswerMatching(unittest.TestCase):
    """The shared match rule used by triggers and red flags."""

    def test_scalar_equality(self):
        self.assertTrue(answer_matches("Yes", "Yes"))
        self.assertFalse(answer_matches("No", "Yes"))

    def test_multi_select_contains_scalar(self):
        self.assertTrue(answer_matches(["Hot flashes", "Night sweats"], "Night sweats"))
        self.assertFalse(answer_matches(["Hot flashes"], "Night sweats"))

    def test_accepted_set_intersects_answer(self):
        self.assertTrue(answer_matches("2", ("2", "3", "4")))
        self.assertTrue(answer_matches(["Lower back pain", "Urinary leakage"], ("Lower back pain",)))
        self.assertFalse(answer_matches(["Urinary leakage"], ("Lower back pain", "Severe menstrual cramps")))

    def test_unanswered_never_matches(self):
        self.assertFalse(answer_matches(None, "Yes"))
        self.assertFalse(answer_matches("", ""))
        self.assertFalse(answer_matches([], ("Yes",)))


class TestCatalogIntegrity(unittest.TestCase):
    """Every trigger and red flag must reference a real question and option."""

    def test_condition_ids_unique(self):
        ids = [c.id for c in CONDITIONS_DB]
        self.assertEqual(len(ids), len(set(ids)))

    def test_triggers_reference_existing_questions(self):
        known = question_ids()
        for condition in CONDITIONS_DB:
            for trigger in condition.triggers:
                self.assertIn(trigger.question_id, known, f"{condition.id}: {trigger.question_id}")
            for flag in condition.red_flags:
                self.assertIn(flag.question_id, known, f"{condition.id}: {flag.question_id}")

    def test_trigger_values_are_selectable_options(self):
        for condition in CONDITIONS_DB:
            rules = [(t.question_id, t.answer_value) for t in condition.triggers]
            rules += [(f.question_id, f.answer_value) for f in condition.red_flags]
            for question_id, accepted in rules:
                options = answer_options(question_id)
                values = accepted if isinstance(accepted, tuple) else (accepted,)
                for value in values:
                    self.assertIn(value, options, f"{condition.id}: {question_id}={value}")

    def test_emergency_allow_list_in_catalog(self):
        for cid in EMERGENCY_CONDITION_IDS:
            self.assertIsNotNone(get_condition_by_id(cid))

    def test_emergency_conditions_filtered_by_severity(self):
        emergency = get_emergency_conditions()
        self.assertTrue(emergency)
        self.assertTrue(all(c.severity == TriageStatus.EMERGENCY for c in emergency))
        # PID is allow-listed but has Urgent severity
        self.assertNotIn("pelvic_inflammatory_disease", [c.id for c in emergency])

    def test_unknown_condition_id(self):
        self.assertIsNone(get_condition_by_id("not_a_condition"))


class TestScoring(unittest.TestCase):
    """Trigger sums and the age and risk-factor multipliers."""

    @classmethod
    def setUpClass(cls):
        cls.engine = AnalysisEngine()

    def _score(self, condition_id: str, answers: dict, profile: Profile = None) -> float:
        context = PatientContext.build(answers, profile)
        return self.engine.score_condition(get_condition_by_id(condition_id), context).total_score

    def test_missing_answers_add_nothing(self):
        self.assertEqual(self._score("ectopic_pregnancy", {}), 0)

    def test_negative_weight_subtracts(self):
        score = self._score(
            "ectopic_pregnancy",
            {"pregnancy_test_recent": "Negative", "pain_location": ["Shoulder pain"]},
        )
        self.assertEqual(score, -60)

    def test_age_multiplier_table(self):
        self.assertEqual(age_multiplier("premature_ovarian_insufficiency", 39), 1.5)
        self.assertEqual(age_multiplier("premature_ovarian_insufficiency", 40), 0.1)
        self.assertEqual(age_multiplier("endometriosis_wise", 19), 0.8)
        self.assertEqual(age_multiplier("endometriosis_wise", 22), 1.0)
        self.assertEqual(age_multiplier("bacterial_vaginosis", 70), 1.0)

    def test_age_from_profile_when_not_answered(self):
        score = self._score(
            "premature_ovarian_insufficiency",
            {"cycle_length": "More than 40 days"},
            Profile(age=45),
        )
        self.assertAlmostEqual(score, 3.0)

    def test_answered_age_wins_over_profile(self):
        context = PatientContext.build({"age_selection": "33"}, Profile(age=45))
        self.assertEqual(context.age, 33)
        self.assertFalse(context.age_is_estimated)

    def test_default_age_is_flagged(self):
        context = PatientContext.build({}, None)
        self.assertEqual(context.age, DEFAULT_AGE)
        self.assertTrue(context.age_is_estimated)

    def test_parity_parsing(self):
        self.assertEqual(PatientContext.build({"number_of_births": "5+"}, None).parity, 5)
        self.assertEqual(PatientContext.build({}, Profile(live_births="2")).parity, 2)
        self.assertIsNone(PatientContext.build({}, None).parity)

    def test_multiparity_boosts_prolapse(self):
        answers = {"pelvic_symptoms_current": ["Pelvic pressure or bulging"], "number_of_births": "3"}
        self.assertAlmostEqual(self._score("pelvic_organ_prolapse", answers), 70.0)

    def test_diabetes_and_antibiotics_stack(self):
        answers = {
            "pelvic_symptoms_current": ["Vaginal itching or burning"],
            "diabetes_status": "Type 1 diabetes",
            "recent_antibiotics": "Yes",
        }
        self.assertAlmostEqual(self._score("vulvovaginal_candidiasis", answers), 84.0)

    def test_risk_rule_order_does_not_matter(self):
        answers = {
            "pelvic_symptoms_current": ["Vaginal itching or burning", "Thick white discharge"],
            "recent_antibiotics": "Yes",
        }
        profile = Profile(known_conditions=("Type 2 Diabetes",))
        forward = self._score("vulvovaginal_candidiasis", answers, profile)
        with mock.patch.object(
            analysis_engine,
            "RISK_FACTOR_RULES",
            tuple(reversed(analysis_engine.RISK_FACTOR_RULES)),
        ):
            backward = self._score("vulvovaginal_candidiasis", answers, profile)
        self.assertAlmostEqual(forward, backward)
        self.assertAlmostEqual(forward, 75 * 1.5 * 1.4)

    def test_gestational_diabetes_history_is_not_diabetes(self):
        answers = {"pelvic_symptoms_current": ["Vaginal itching or burning"]}
        profile = Profile(known_conditions=("Gestational Diabetes (history of)",))
        self.assertAlmostEqual(self._score("vulvovaginal_candidiasis", answers, profile), 40.0)

    def test_known_conditions_accepts_a_list(self):
        answers = {"pelvic_symptoms_current": ["Vaginal itching or burning"]}
        profile = Profile(known_conditions=["Type 2 Diabetes"])
        self.assertEqual(profile.known_conditions, ("Type 2 Diabetes",))
        self.assertAlmostEqual(self._score("vulvovaginal_candidiasis", answers, profile), 60.0)

        result = AnalysisEngine().analyze(answers, profile, REPORT_DATE)
        self.assertEqual(result.ranked_conditions[0].condition.id, "vulvovaginal_candidiasis")

    def test_profile_fields_normalized(self):
        self.assertEqual(Profile(live_births=2).live_births, "2")
        self.assertEqual(Profile(known_conditions="Type 1 Diabetes").known_conditions, ("Type 1 Diabetes",))
        self.assertEqual(Profile(known_conditions=None).known_conditions, ())

    def test_antibiotics_dampen_bacterial_vaginosis(self):
        answers = {"pelvic_symptoms_current": ["Fishy vaginal odor"], "recent_antibiotics": "Yes"}
        self.assertAlmostEqual(self._score("bacterial_vaginosis", answers), 28.0)

    def test_adding_a_matched_trigger_never_lowers_score(self):
        base = {"cycle_length": "More than 40 days", "age_selection": "24"}
        more = dict(base, family_history_pcos="Yes")
        self.assertGreater(self._score("pcos_wise", more), self._score("pcos_wise", base))


class TestProbabilities(unittest.TestCase):
    """Normalization into the bounded, rank-consistent band."""

    def _analyze(self, conditions, answers, emergency_ids=()):
        engine = AnalysisEngine(conditions=conditions, emergency_ids=emergency_ids)
        return engine.analyze(answers, Profile(age=30), REPORT_DATE)

    def test_half_up_rounding(self):
        top = _condition("top", TriageStatus.ROUTINE, Trigger("q1", "a", 8))
        other = _condition(
            "other",
            TriageStatus.ROUTINE,
            Trigger("q2", "a", 2),
            Trigger("q3", "a", 2),
            Trigger("q4", "a", 1),
        )
        result = self._analyze([top, other], {"q1": "a", "q2": "a", "q3": "a", "q4": "a"})
        # 5 / 8 * 100 = 62.5
        self.assertEqual(result.ranked_conditions[1].probability, 63)

    def test_confidence_nudges(self):
        few = _condition("few", TriageStatus.ROUTINE, Trigger("q1", "a", 100))
        many = _condition(
            "many", TriageStatus.ROUTINE, *[Trigger(f"m{i}", "a", 10) for i in range(5)]
        )
        answers = {"q1": "a", **{f"m{i}": "a" for i in range(5)}}
        result = self._analyze([few, many], answers)
        probs = {rc.condition.id: rc.probability for rc in result.ranked_conditions}
        self.assertEqual(probs["few"], 85)
        # 50 + 10, not capped by the 85 above it
        self.assertEqual(probs["many"], 60)

    def test_lower_rank_never_exceeds_higher_rank(self):
        top = _condition("top", TriageStatus.ROUTINE, Trigger("q1", "a", 100))
        runner_up = _condition(
            "runner_up", TriageStatus.ROUTINE, *[Trigger(f"r{i}", "a", 19) for i in range(5)]
        )
        answers = {"q1": "a", **{f"r{i}": "a" for i in range(5)}}
        result = self._analyze([top, runner_up], answers)
        self.assertEqual(result.ranked_conditions[0].probability, 85)
        self.assertEqual(result.ranked_conditions[1].probability, 85)

    def test_ties_keep_catalog_order(self):
        first = _condition("first", TriageStatus.ROUTINE, Trigger("q1", "a", 40))
        second = _condition("second", TriageStatus.ROUTINE, Trigger("q1", "a", 40))
        result = self._analyze([first, second], {"q1": "a"})
        self.assertEqual([rc.condition.id for rc in result.ranked_conditions], ["first", "second"])

    def test_non_positive_scores_are_dropped(self):
        pos = _condition("pos", TriageStatus.ROUTINE, Trigger("q1", "a", 10))
        neg = _condition("neg", TriageStatus.ROUTINE, Trigger("q1", "a", -10))
        result = self._analyze([pos, neg], {"q1": "a"})
        self.assertEqual([rc.condition.id for rc in result.ranked_conditions], ["pos"])

    def test_bounds_and_top_five(self):
        conditions = [
            _condition(f"c{i}", TriageStatus.ROUTINE, Trigger("q1", "a", 100 - i * 15))
            for i in range(7)
        ]
        result = self._analyze(conditions, {"q1": "a"})
        self.assertEqual(len(result.ranked_conditions), 5)
        probs = [rc.probability for rc in result.ranked_conditions]
        self.assertTrue(all(MIN_PROBABILITY <= p <= MAX_PROBABILITY for p in probs))
        self.assertEqual(probs, sorted(probs, reverse=True))

    def test_raising_a_weight_never_lowers_rank_or_probability(self):
        top = _condition("top", TriageStatus.ROUTINE, Trigger("q1", "a", 100))
        answers = {"q1": "a", **{f"b{i}": "a" for i in range(5)}}
        previous_rank, previous_probability = None, None
        for weight in (5, 10, 15, 18, 19, 20, 21, 30):
            climber = _condition(
                "climber", TriageStatus.ROUTINE, *[Trigger(f"b{i}", "a", weight) for i in range(5)]
            )
            result = self._analyze([top, climber], answers)
            ids = [rc.condition.id for rc in result.ranked_conditions]
            rank = ids.index("climber")
            probability = result.ranked_conditions[rank].probability
            with self.subTest(weight=weight):
                if previous_rank is not None:
                    self.assertLessEqual(rank, previous_rank)
                    self.assertGreaterEqual(probability, previous_probability)
            previous_rank, previous_probability = rank, probability
        # Capped at 85 by the entry above until it takes the top spot.
        self.assertEqual(previous_probability, 95)


class TestEmergencyDetection(unittest.TestCase):
    """Short-circuit behavior with small hand-built catalogs."""

    def test_threshold_is_exclusive(self):
        at = _condition("x", TriageStatus.EMERGENCY, Trigger("q1", "a", 100))
        above = _condition("x", TriageStatus.EMERGENCY, Trigger("q1", "a", 101))

        at_result = AnalysisEngine([at], ["x"]).analyze({"q1": "a"}, None, REPORT_DATE)
        above_result = AnalysisEngine([above], ["x"]).analyze({"q1": "a"}, None, REPORT_DATE)

        self.assertEqual(at_result.ranked_conditions[0].probability, 85)
        self.assertEqual(above_result.ranked_conditions[0].probability, 95)
        self.assertIn("EMERGENCY ASSESSMENT", above_result.summary)

    def test_severity_alone_does_not_short_circuit(self):
        cond = _condition("x", TriageStatus.EMERGENCY, Trigger("q1", "a", 150))
        result = AnalysisEngine([cond], emergency_ids=()).analyze({"q1": "a"}, None, REPORT_DATE)
        self.assertEqual(result.triage_status, TriageStatus.EMERGENCY)
        self.assertEqual(result.ranked_conditions[0].probability, 85)
        self.assertNotIn("EMERGENCY ASSESSMENT", result.summary)

    def test_generic_message_when_no_own_red_flag(self):
        cond = _condition(
            "x",
            TriageStatus.EMERGENCY,
            Trigger("q1", "a", 150),
            red_flags=(RedFlag("q2", "b", "own flag", RedFlagLevel.EMERGENCY),),
        )
        engine = AnalysisEngine([cond], ["x"])
        self.assertEqual(
            engine.analyze({"q1": "a"}, None, REPORT_DATE).red_flag_messages,
            (GENERIC_EMERGENCY_MESSAGE,),
        )
        self.assertEqual(
            engine.analyze({"q1": "a", "q2": "b"}, None, REPORT_DATE).red_flag_messages,
            ("own flag",),
        )

    def test_only_own_red_flags_on_short_circuit(self):
        emergency = _condition("x", TriageStatus.EMERGENCY, Trigger("q1", "a", 150))
        other = _condition(
            "y",
            TriageStatus.ROUTINE,
            Trigger("q1", "a", 10),
            red_flags=(RedFlag("q1", "a", "other flag"),),
        )
        result = AnalysisEngine([emergency, other], ["x"]).analyze({"q1": "a"}, None, REPORT_DATE)
        self.assertEqual(result.red_flag_messages, (GENERIC_EMERGENCY_MESSAGE,))
        self.assertEqual(len(result.ranked_conditions), 1)

    def test_allow_list_order_decides_winner(self):
        first = _condition("first", TriageStatus.EMERGENCY, Trigger("q1", "a", 150))
        second = _condition("second", TriageStatus.EMERGENCY, Trigger("q1", "a", 200))
        result = AnalysisEngine([first, second], ["second", "first"]).analyze(
            {"q1": "a"}, None, REPORT_DATE
        )
        self.assertEqual(result.ranked_conditions[0].condition.id, "second")

    def test_report_date_passed_through(self):
        cond = _condition("x", TriageStatus.EMERGENCY, Trigger("q1", "a", 150))
        result = AnalysisEngine([cond], ["x"]).analyze({"q1": "a"}, None, "March 3rd")
        self.assertEqual(result.report_date, "March 3rd")


class TestTriageDecision(unittest.TestCase):
    """First-match triage rules."""

    def test_no_conditions_is_routine(self):
        self.assertEqual(
            determine_triage_status([], [_hit(RedFlagLevel.EMERGENCY)]), TriageStatus.ROUTINE
        )

    def test_top_severity_emergency(self):
        self.assertEqual(determine_triage_status(_ranked(TriageStatus.EMERGENCY), []), TriageStatus.EMERGENCY)

    def test_top_severity_urgent_checked_before_red_flags(self):
        self.assertEqual(
            determine_triage_status(_ranked(TriageStatus.URGENT), [_hit(RedFlagLevel.EMERGENCY)]),
            TriageStatus.URGENT,
        )

    def test_red_flag_levels(self):
        ranked = _ranked(TriageStatus.ROUTINE)
        self.assertEqual(
            determine_triage_status(ranked, [_hit(RedFlagLevel.ADVISORY), _hit(RedFlagLevel.EMERGENCY)]),
            TriageStatus.EMERGENCY,
        )
        self.assertEqual(determine_triage_status(ranked, [_hit(RedFlagLevel.URGENT)]), TriageStatus.URGENT)
        self.assertEqual(
            determine_triage_status(_ranked(TriageStatus.SELF_CARE), [_hit(RedFlagLevel.ADVISORY)]),
            TriageStatus.SOON,
        )

    def test_urgent_second_rank_escalates_to_soon(self):
        self.assertEqual(
            determine_triage_status(_ranked(TriageStatus.ROUTINE, TriageStatus.URGENT), []),
            TriageStatus.SOON,
        )

    def test_mirrors_top_severity(self):
        self.assertEqual(determine_triage_status(_ranked(TriageStatus.SOON), []), TriageStatus.SOON)
        self.assertEqual(determine_triage_status(_ranked(TriageStatus.ROUTINE), []), TriageStatus.ROUTINE)
        self.assertEqual(determine_triage_status(_ranked(TriageStatus.SELF_CARE), []), TriageStatus.SELF_CARE)


class TestSummary(unittest.TestCase):

    def test_empty_ranking(self):
        self.assertEqual(generate_summary([], TriageStatus.ROUTINE), NO_FINDINGS_SUMMARY)

    def test_soon_names_second_condition(self):
        ranked = _ranked(TriageStatus.SOON, TriageStatus.ROUTINE)
        summary = generate_summary(ranked, TriageStatus.SOON)
        self.assertIn("C0 (50% match)", summary)
        self.assertIn("Other possibilities include C1", summary)

    def test_routine_lists_two_considerations(self):
        ranked = _ranked(TriageStatus.ROUTINE, TriageStatus.ROUTINE, TriageStatus.ROUTINE, TriageStatus.ROUTINE)
        summary = generate_summary(ranked, TriageStatus.ROUTINE)
        self.assertIn("Other considerations: C1, C2.", summary)
        self.assertNotIn("C3", summary)

    def test_estimated_age_noted(self):
        summary = generate_summary(_ranked(TriageStatus.SOON), TriageStatus.SOON, age_is_estimated=True)
        self.assertIn(f"assumed {DEFAULT_AGE}", summary)


class TestResultShape(unittest.TestCase):

    def test_deterministic(self):
        answers = {
            "menstrual_flow": "Very heavy (flooding or large clots)",
            "pelvic_symptoms_current": ["Severe menstrual cramps", "Pelvic pressure or bulging"],
            "number_of_births": "2",
        }
        engine = AnalysisEngine()
        self.assertEqual(
            engine.analyze(answers, None, REPORT_DATE),
            engine.analyze(answers, None, REPORT_DATE),
        )

    def test_duplicate_red_flag_messages_collapse(self):
        result = AnalysisEngine().analyze(
            {"menstrual_flow": "Very heavy (flooding or large clots)"}, None, REPORT_DATE
        )
        self.assertEqual(len(result.red_flag_messages), 1)
        self.assertIn("anemia", result.red_flag_messages[0])
        self.assertEqual(result.triage_status, TriageStatus.SOON)
        self.assertEqual(result.ranked_conditions[0].condition.id, "uterine_fibroids")

    def test_red_flag_dedup_keeps_first_seen_order(self):
        first = _condition(
            "first",
            TriageStatus.ROUTINE,
            Trigger("q1", "a", 40),
            red_flags=(RedFlag("q1", "a", "see a provider"), RedFlag("q2", "b", "check for anemia")),
        )
        second = _condition(
            "second",
            TriageStatus.ROUTINE,
            Trigger("q1", "a", 20),
            red_flags=(RedFlag("q1", "a", "see a provider"),),
        )
        engine = AnalysisEngine([first, second], emergency_ids=())
        answers = {"q1": "a", "q2": "b"}

        hits = engine.check_red_flags(answers)
        self.assertEqual(
            [hit.message for hit in hits], ["see a provider", "check for anemia", "see a provider"]
        )
        self.assertEqual(engine.check_red_flags(answers), hits)

        result = engine.analyze(answers, None, REPORT_DATE)
        self.assertEqual(result.red_flag_messages, ("see a provider", "check for anemia"))
        self.assertEqual(engine.analyze(answers, None, REPORT_DATE).red_flag_messages, result.red_flag_messages)

    def test_to_dict_is_plain(self):
        result = AnalysisEngine().analyze({"family_history_pcos": "Yes"}, None, REPORT_DATE)
        data = result.to_dict()
        self.assertEqual(data["triage_status"], "Routine")
        self.assertEqual(data["ranked_conditions"][0]["condition"]["id"], "pcos_wise")
        self.assertEqual(data["ranked_conditions"][0]["condition"]["severity"], "Routine")
        self.assertTrue(data["age_is_estimated"])

    def test_profile_from_dict(self):
        profile = Profile.from_dict(
            {"age": "41", "live_births": 2, "known_conditions": "Type 2 Diabetes"}
        )
        self.assertEqual(profile, Profile(age=41, live_births="2", known_conditions=("Type 2 Diabetes",)))
        self.assertEqual(Profile.from_dict(None), Profile())


if __name__ == "__main__":
    unittest.main(verbosity=2)
