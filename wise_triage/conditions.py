"""
Condition Catalog Module
========================
Static, clinician-authored catalog of the conditions the analysis engine
can rank. Each condition carries a severity tier, weighted triggers that
add evidence when a survey answer matches, and optional red-flag rules
that raise safety alerts independently of scoring.

The catalog is built once at import time from tuples and frozen
dataclasses and is never mutated afterwards, so it can be shared by any
number of concurrent analyses.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional, Union

logger = logging.getLogger(__name__)


class TriageStatus(str, Enum):
    """Routing priority of an assessment, also used as a condition's severity tier."""

    EMERGENCY = "Emergency"
    URGENT = "Urgent"
    SOON = "Soon"
    ROUTINE = "Routine"
    SELF_CARE = "Self-care"


class RedFlagLevel(str, Enum):
    """How far a matched red flag escalates triage."""

    EMERGENCY = "Emergency"
    URGENT = "Urgent"
    ADVISORY = "Advisory"


TRIAGE_COLORS = {
    TriageStatus.EMERGENCY: "🔴",
    TriageStatus.URGENT: "🟠",
    TriageStatus.SOON: "🟡",
    TriageStatus.ROUTINE: "🟢",
    TriageStatus.SELF_CARE: "🔵",
}

TRIAGE_DESCRIPTIONS = {
    TriageStatus.EMERGENCY: "Go to the emergency room or call 911 now",
    TriageStatus.URGENT: "Seek medical care today",
    TriageStatus.SOON: "Book an appointment within 1-2 weeks",
    TriageStatus.ROUTINE: "Discuss at your next routine visit",
    TriageStatus.SELF_CARE: "Self-care with follow-up if symptoms persist",
}

# Conditions allowed to short-circuit the analysis. Explicit list, not derived
# from severity.
EMERGENCY_CONDITION_IDS: tuple[str, ...] = (
    "ectopic_pregnancy",
    "ovarian_torsion",
    "pelvic_inflammatory_disease",
    "severe_hemorrhage",
)

AnswerValue = Union[str, tuple[str, ...]]


@dataclass(frozen=True)
class Trigger:
    """One piece of evidence: a question, its accepted answer(s) and a signed weight."""

    question_id: str
    answer_value: AnswerValue
    weight: float

    def describe(self) -> str:
        if isinstance(self.answer_value, tuple):
            return f"{self.question_id}: {' or '.join(self.answer_value)}"
        return f"{self.question_id}: {self.answer_value}"


@dataclass(frozen=True)
class RedFlag:
    """A named safety rule. Matching adds ``message``; ``level`` drives escalation."""

    question_id: str
    answer_value: AnswerValue
    message: str
    level: RedFlagLevel = RedFlagLevel.ADVISORY


@dataclass(frozen=True)
class Condition:
    """Catalog entry for one candidate condition."""

    id: str
    name: str
    description: str
    severity: TriageStatus
    triggers: tuple[Trigger, ...]
    red_flags: tuple[RedFlag, ...] = ()
    next_steps: tuple[str, ...] = ()
    provider_questions: tuple[str, ...] = ()
    relevant_tests: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        out = asdict(self)
        out["severity"] = self.severity.value
        out["red_flags"] = [
            {**flag, "level": flag["level"].value} for flag in out["red_flags"]
        ]
        return out


# ---------------------------------------------------------------------------
# Shared red-flag wording
# ---------------------------------------------------------------------------
_ANEMIA_WORKUP = (
    "Very heavy bleeding can lead to anemia. Ask your provider about a blood "
    "count (CBC) and iron studies."
)

_SEVERE_PAIN = ("7–10: severe pain",)
_MODERATE_OR_SEVERE_PAIN = ("7–10: severe pain", "4–6: moderate pain")
_HEAVY_FLOW = (
    "Heavy (changing products every 1-2 hours)",
    "Very heavy (flooding or large clots)",
)


CONDITIONS_DB: tuple[Condition, ...] = (
    # ------------------------------------------------------------------
    # Emergency-capable conditions
    # ------------------------------------------------------------------
    Condition(
        id="ectopic_pregnancy",
        name="Ectopic Pregnancy",
        description=(
            "A pregnancy implanted outside the uterus, most often in a fallopian "
            "tube. Rupture can cause life-threatening internal bleeding."
        ),
        severity=TriageStatus.EMERGENCY,
        triggers=(
            Trigger("pregnancy_test_recent", "Positive", 50),
            Trigger("pregnancy_test_recent", "Negative", -80),
            Trigger("pain_location", "One-sided lower abdomen (right or left)", 25),
            Trigger("pain_location", "Shoulder pain", 20),
            Trigger("systemic_symptoms", ("Lightheadedness/dizziness", "Fainting or near-fainting"), 20),
            Trigger("pain_onset", "Sudden (within minutes to hours)", 10),
            Trigger("pain_scale_0_10", _SEVERE_PAIN, 10),
            Trigger("number_of_ectopics", ("1", "2", "3+"), 15),
        ),
        red_flags=(
            RedFlag(
                "pain_location",
                "Shoulder pain",
                "🚨 EMERGENCY: Shoulder-tip pain together with lower abdominal pain can "
                "signal internal bleeding. Call 911 or go to the nearest emergency room now.",
                RedFlagLevel.EMERGENCY,
            ),
            RedFlag(
                "systemic_symptoms",
                "Fainting or near-fainting",
                "🚨 EMERGENCY: Fainting or near-fainting with pelvic pain may mean "
                "internal bleeding. Call 911 now.",
                RedFlagLevel.EMERGENCY,
            ),
        ),
        next_steps=(
            "Go to the emergency department immediately.",
            "Do not eat or drink in case surgery is needed.",
        ),
        provider_questions=(
            "Has the pregnancy location been confirmed on ultrasound?",
            "Do my hCG levels fit a normal intrauterine pregnancy?",
        ),
        relevant_tests=("Quantitative hCG", "Transvaginal Ultrasound", "Complete Blood Count"),
    ),
    Condition(
        id="ovarian_torsion",
        name="Ovarian Torsion",
        description=(
            "Twisting of the ovary on its supporting ligaments, cutting off blood "
            "supply. It is a surgical emergency."
        ),
        severity=TriageStatus.EMERGENCY,
        triggers=(
            Trigger("pain_onset", "Sudden (within minutes to hours)", 35),
            Trigger("pain_location", "One-sided lower abdomen (right or left)", 30),
            Trigger("systemic_symptoms", "Nausea or vomiting", 25),
            Trigger("pain_scale_0_10", _SEVERE_PAIN, 15),
            Trigger("gyn_surgeries_list", "Ovarian Cystectomy (removal of cyst)", 10),
        ),
        red_flags=(
            RedFlag(
                "pain_onset",
                "Sudden (within minutes to hours)",
                "⚠️ URGENT: Sudden, severe pelvic pain needs same-day evaluation to rule "
                "out ovarian torsion.",
                RedFlagLevel.URGENT,
            ),
        ),
        next_steps=(
            "Seek emergency evaluation with pelvic Doppler ultrasound.",
        ),
        provider_questions=(
            "Is blood flow to my ovary normal on Doppler ultrasound?",
        ),
        relevant_tests=("Pelvic Doppler Ultrasound", "Pregnancy Test"),
    ),
    Condition(
        id="pelvic_inflammatory_disease",
        name="Pelvic Inflammatory Disease (PID)",
        description=(
            "Infection of the upper reproductive tract, usually from a sexually "
            "transmitted infection. Untreated PID can cause abscesses and infertility."
        ),
        severity=TriageStatus.URGENT,
        triggers=(
            Trigger("fever_temp", "Above 102°F (high)", 30),
            Trigger("fever_temp", "100.4–102°F (moderate)", 15),
            Trigger("pelvic_symptoms_current", "Lower abdominal pain (both sides)", 25),
            Trigger("pelvic_symptoms_current", ("Abnormal vaginal discharge", "Pain during intercourse"), 20),
            Trigger("new_sexual_partners", "Yes (within last 6 months)", 15),
            Trigger("pain_scale_0_10", _SEVERE_PAIN, 5),
            Trigger("systemic_symptoms", ("Nausea or vomiting", "Chills or shaking"), 15),
        ),
        red_flags=(
            RedFlag(
                "fever_temp",
                "Above 102°F (high)",
                "⚠️ URGENT: A fever above 102°F with pelvic pain needs same-day "
                "evaluation for a pelvic infection.",
                RedFlagLevel.URGENT,
            ),
        ),
        next_steps=(
            "Get seen today for a pelvic exam and STI testing.",
            "Start antibiotics promptly if PID is confirmed; partners need treatment too.",
        ),
        provider_questions=(
            "Do I need IV antibiotics or can this be treated at home?",
            "Should my partner be tested and treated?",
        ),
        relevant_tests=("Gonorrhea/Chlamydia NAAT", "Pelvic Exam", "Pelvic Ultrasound"),
    ),
    Condition(
        id="severe_hemorrhage",
        name="Severe Uterine Bleeding",
        description=(
            "Bleeding heavy enough to cause low blood pressure or anemia symptoms. "
            "It needs emergency assessment and stabilization."
        ),
        severity=TriageStatus.EMERGENCY,
        triggers=(
            Trigger("pad_changes_hourly", "Yes - soaking through in less than 1 hour", 40),
            Trigger("clot_size", ("Larger than golf ball", "Golf ball size"), 25),
            Trigger("menstrual_flow", "Very heavy (flooding or large clots)", 20),
            Trigger(
                "systemic_symptoms",
                ("Lightheadedness/dizziness", "Fainting or near-fainting", "Severe weakness"),
                20,
            ),
            Trigger("heart_racing", "Yes - rapid heart rate or palpitations", 15),
        ),
        red_flags=(
            RedFlag(
                "pad_changes_hourly",
                "Yes - soaking through in less than 1 hour",
                "🚨 EMERGENCY: Soaking through a pad or tampon in less than an hour is "
                "heavy bleeding that needs emergency care. Call 911 or go to the ER.",
                RedFlagLevel.EMERGENCY,
            ),
            RedFlag(
                "systemic_symptoms",
                "Fainting or near-fainting",
                "🚨 EMERGENCY: Fainting during heavy bleeding can mean significant blood "
                "loss. Call 911 now.",
                RedFlagLevel.EMERGENCY,
            ),
        ),
        next_steps=(
            "Go to the emergency department now.",
        ),
        provider_questions=(
            "Is my hemoglobin low enough to need a transfusion or iron infusion?",
        ),
        relevant_tests=("Complete Blood Count", "Coagulation Panel", "Pregnancy Test"),
    ),
    # ------------------------------------------------------------------
    # Non-emergency conditions
    # ------------------------------------------------------------------
    Condition(
        id="endometriosis_wise",
        name="Endometriosis",
        description=(
            "Growth of uterine-like tissue outside the uterus, causing progressive "
            "cyclical or chronic pain, dyspareunia, and potential fertility challenges."
        ),
        severity=TriageStatus.SOON,
        triggers=(
            Trigger("primary_concerns", ("Endometriosis symptoms", "Painful periods", "Difficulty conceiving"), 40),
            Trigger(
                "pelvic_symptoms_current",
                (
                    "Severe menstrual cramps",
                    "Pain during intercourse",
                    "Pain with bowel movements",
                    "Pelvic pain (not during period)",
                ),
                35,
            ),
            Trigger("pain_scale_0_10", _MODERATE_OR_SEVERE_PAIN, 25),
            Trigger("number_of_births", "0", 10),
        ),
        next_steps=(
            "Discuss diagnostic imaging (MRI or TVUS with endo protocol).",
            "Consider consultation with a Minimally Invasive Gynecologic Surgeon (MIGS).",
            "Track GI symptoms specifically relative to menses.",
        ),
        provider_questions=(
            "Could my cyclical bowel pain be linked to endometriosis?",
            "Is my pain level consistent with deep infiltrating endometriosis?",
            "Should we explore a diagnostic laparoscopy?",
        ),
        relevant_tests=("Specialized Pelvic MRI", "TVUS (Endometriosis Protocol)", "Laparoscopy"),
    ),
    Condition(
        id="adenomyosis_wise",
        name="Adenomyosis",
        description=(
            "Uterine lining tissue grows into the muscular wall of the uterus, often "
            "leading to a bulky uterus, heavy bleeding, and intense cramping."
        ),
        severity=TriageStatus.SOON,
        triggers=(
            Trigger("menstrual_flow", _HEAVY_FLOW, 50),
            Trigger("pelvic_symptoms_current", ("Severe menstrual cramps", "Lower back pain"), 30),
            Trigger("number_of_births", ("2", "3", "4", "5+"), 15),
        ),
        red_flags=(
            RedFlag("menstrual_flow", "Very heavy (flooding or large clots)", _ANEMIA_WORKUP),
        ),
        next_steps=(
            "Pelvic ultrasound to assess uterine size and texture.",
            "Discussion of hormonal management or surgical options.",
        ),
        provider_questions=(
            "Is my uterus enlarged on exam or imaging?",
            "Could adenomyosis be the cause of my heavy flow and intense cramping?",
        ),
        relevant_tests=("Transvaginal Ultrasound", "Pelvic MRI"),
    ),
    Condition(
        id="pcos_wise",
        name="Polycystic Ovary Syndrome (PCOS)",
        description=(
            "A hormonal imbalance causing irregular cycles, excess androgen levels "
            "(acne/hirsutism), and metabolic shifts."
        ),
        severity=TriageStatus.ROUTINE,
        triggers=(
            Trigger("cycle_length", ("More than 40 days", "Varies significantly"), 60),
            Trigger(
                "pelvic_symptoms_current",
                (
                    "Excessive hair growth (face, abdomen)",
                    "Moderate to severe acne",
                    "Unexplained weight changes",
                ),
                40,
            ),
            Trigger("primary_concerns", ("PCOS symptoms", "Irregular or absent periods"), 30),
            Trigger("family_history_pcos", "Yes", 15),
        ),
        next_steps=(
            "Hormonal blood panel (Androgens, TSH, Prolactin).",
            "Glucose/Insulin screening.",
            "Evaluation for Rotterdam criteria.",
        ),
        provider_questions=(
            "Do I meet the clinical criteria for PCOS diagnosis?",
            "How can we manage my cycle irregularity and androgen symptoms?",
        ),
        relevant_tests=("Total & Free Testosterone", "Fasting Glucose/HbA1c", "Pelvic Ultrasound"),
    ),
    Condition(
        id="uterine_fibroids",
        name="Uterine Fibroids",
        description=(
            "Non-cancerous growths of the uterine muscle that can cause heavy or "
            "prolonged bleeding, pelvic pressure, and frequent urination."
        ),
        severity=TriageStatus.SOON,
        triggers=(
            Trigger("menstrual_flow", _HEAVY_FLOW, 45),
            Trigger("pelvic_symptoms_current", ("Pelvic pressure or bulging", "Frequent urination"), 30),
            Trigger("clot_size", ("Quarter size", "Golf ball size", "Larger than golf ball"), 15),
            Trigger("primary_concerns", "Heavy periods", 20),
        ),
        red_flags=(
            RedFlag("menstrual_flow", "Very heavy (flooding or large clots)", _ANEMIA_WORKUP),
        ),
        next_steps=(
            "Pelvic ultrasound to map fibroid size and location.",
            "Check for anemia if bleeding is heavy.",
        ),
        provider_questions=(
            "Where are my fibroids and could they affect fertility?",
            "What are my options besides hysterectomy?",
        ),
        relevant_tests=("Pelvic Ultrasound", "Complete Blood Count", "Saline Sonohysterogram"),
    ),
    Condition(
        id="premature_ovarian_insufficiency",
        name="Premature Ovarian Insufficiency (POI)",
        description=(
            "Loss of normal ovarian function before age 40, causing irregular or "
            "absent periods and menopausal symptoms."
        ),
        severity=TriageStatus.SOON,
        triggers=(
            Trigger("period_typicality", "Previous had cycles but they have stopped", 40),
            Trigger("cycle_length", ("More than 40 days", "Varies significantly"), 30),
            Trigger("pelvic_symptoms_current", ("Hot flashes", "Night sweats"), 30),
        ),
        red_flags=(
            RedFlag(
                "period_typicality",
                "Previous had cycles but they have stopped",
                "Periods that have stopped for 3 months or more should be evaluated by a "
                "provider, especially before age 40.",
            ),
        ),
        next_steps=(
            "Repeat FSH and estradiol testing four weeks apart.",
            "Discuss bone and heart health with hormone therapy.",
        ),
        provider_questions=(
            "Do my FSH levels meet the criteria for POI?",
            "What are my fertility options?",
        ),
        relevant_tests=("FSH", "Estradiol", "AMH", "Thyroid (TSH)"),
    ),
    Condition(
        id="primary_dysmenorrhea",
        name="Primary Dysmenorrhea",
        description=(
            "Painful menstrual cramps without an underlying pelvic disease, most "
            "common in the teens and twenties."
        ),
        severity=TriageStatus.SELF_CARE,
        triggers=(
            Trigger("pelvic_symptoms_current", "Severe menstrual cramps", 40),
            Trigger("primary_concerns", "Painful periods", 25),
            Trigger("pain_scale_0_10", _MODERATE_OR_SEVERE_PAIN, 20),
        ),
        next_steps=(
            "Try scheduled NSAIDs starting a day before your period.",
            "Heat therapy and regular exercise can reduce cramping.",
        ),
        provider_questions=(
            "Would hormonal birth control help my cramps?",
        ),
        relevant_tests=("Pelvic Exam",),
    ),
    Condition(
        id="pelvic_organ_prolapse",
        name="Pelvic Organ Prolapse",
        description=(
            "Weakening of the pelvic floor that lets the bladder, uterus, or rectum "
            "drop into the vaginal canal, causing pressure or bulging."
        ),
        severity=TriageStatus.ROUTINE,
        triggers=(
            Trigger("pelvic_symptoms_current", "Pelvic pressure or bulging", 50),
            Trigger("pelvic_symptoms_current", "Urinary leakage", 25),
            Trigger("period_typicality", ("Menopausal/Postmenopausal", "Postpartum"), 15),
        ),
        next_steps=(
            "Pelvic floor physical therapy.",
            "Discuss pessary or surgical options for bothersome symptoms.",
        ),
        provider_questions=(
            "What stage is my prolapse?",
            "Would a pessary work for me?",
        ),
        relevant_tests=("Pelvic Exam (POP-Q)",),
    ),
    Condition(
        id="endometrial_hyperplasia",
        name="Endometrial Hyperplasia",
        description=(
            "Thickening of the uterine lining from unopposed estrogen. Some forms can "
            "progress to endometrial cancer."
        ),
        severity=TriageStatus.SOON,
        triggers=(
            Trigger("postmenopausal_bleeding", "Yes", 50),
            Trigger("pelvic_symptoms_current", "Bleeding between periods", 30),
            Trigger("menstrual_flow", _HEAVY_FLOW, 25),
            Trigger("cycle_length", ("More than 40 days", "Varies significantly"), 20),
        ),
        red_flags=(
            RedFlag(
                "postmenopausal_bleeding",
                "Yes",
                "Any bleeding after menopause should be evaluated promptly with an "
                "ultrasound or endometrial biopsy.",
            ),
        ),
        next_steps=(
            "Transvaginal ultrasound to measure endometrial thickness.",
            "Endometrial biopsy if the lining is thickened or bleeding persists.",
        ),
        provider_questions=(
            "Is my endometrial lining thickened?",
            "Do I need a biopsy?",
        ),
        relevant_tests=("Transvaginal Ultrasound", "Endometrial Biopsy"),
    ),
    Condition(
        id="vulvovaginal_candidiasis",
        name="Vaginal Yeast Infection",
        description=(
            "Overgrowth of Candida causing itching, burning, and thick white "
            "discharge. Common after antibiotics or with diabetes."
        ),
        severity=TriageStatus.SELF_CARE,
        triggers=(
            Trigger("pelvic_symptoms_current", "Vaginal itching or burning", 40),
            Trigger("pelvic_symptoms_current", "Thick white discharge", 35),
            Trigger("pelvic_symptoms_current", "Abnormal vaginal discharge", 15),
        ),
        next_steps=(
            "Over-the-counter antifungal treatment is appropriate for a first episode.",
            "See a provider if symptoms return four or more times a year.",
        ),
        provider_questions=(
            "Should we confirm this is yeast before treating?",
        ),
        relevant_tests=("Vaginal Wet Mount", "Vaginal Culture"),
    ),
    Condition(
        id="bacterial_vaginosis",
        name="Bacterial Vaginosis",
        description=(
            "An imbalance of normal vaginal bacteria causing thin grey discharge and "
            "a fishy odor."
        ),
        severity=TriageStatus.ROUTINE,
        triggers=(
            Trigger("pelvic_symptoms_current", "Fishy vaginal odor", 40),
            Trigger("pelvic_symptoms_current", "Abnormal vaginal discharge", 30),
            Trigger("new_sexual_partners", "Yes (within last 6 months)", 10),
        ),
        next_steps=(
            "Prescription antibiotics (metronidazole or clindamycin) are needed.",
        ),
        provider_questions=(
            "Could this keep coming back, and how do I prevent it?",
        ),
        relevant_tests=("Vaginal pH", "Wet Mount / Amsel Criteria"),
    ),
)


def get_condition_by_id(condition_id: str) -> Optional[Condition]:
    """Return the catalog entry for ``condition_id`` or None."""
    condition = next((c for c in CONDITIONS_DB if c.id == condition_id), None)
    if condition is None:
        logger.debug("Unknown condition id requested: %s", condition_id)
    return condition


def get_emergency_conditions() -> list[Condition]:
    """Return every catalog entry whose declared severity is Emergency."""
    return [c for c in CONDITIONS_DB if c.severity == TriageStatus.EMERGENCY]
