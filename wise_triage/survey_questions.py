"""
Survey Question Catalog
=======================
Question definitions for the reproductive-health survey. The analysis
engine only ever sees the answers keyed by these ids; the catalog itself
is used by the survey front end and by the test suite to check that every
trigger and red flag in the condition catalog points at a real question.

Options starting with ``HEADER:`` are section labels for display and are
never valid answers.
"""

from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)

HEADER_PREFIX = "HEADER:"

_PAIN_SCALE = [
    "0: no pain",
    "1–3: mild pain",
    "4–6: moderate pain",
    "7–10: severe pain",
]

SURVEY_QUESTIONS: list[dict] = [
    # ── About You ─────────────────────────────────────────────────────────
    {
        "id": "user_persona",
        "text": "Who is using WISE today?",
        "type": "single",
        "section": "About You",
        "category": "Demographics",
        "options": [
            "I am using this for myself (Age 15+)",
            "I am a parent/guardian using this for my child (Ages 12-14)",
        ],
    },
    {
        "id": "age_selection",
        "text": "How old are you?",
        "type": "dropdown",
        "section": "About You",
        "category": "Demographics",
        "options": [str(age) for age in range(12, 101)],
    },
    {
        "id": "gender_identity",
        "text": "How do you identify?",
        "type": "single",
        "section": "About You",
        "category": "Demographics",
        "options": [
            "Female",
            "Male",
            "Transfemale",
            "Transmale",
            "Non-binary",
            "Prefer to self-describe",
            "Prefer not to say",
        ],
    },
    {
        "id": "born_with_uterus",
        "text": "Were you born with a uterus?",
        "type": "single",
        "section": "About You",
        "category": "Demographics",
        "options": ["Yes", "No"],
    },
    {
        "id": "primary_concerns",
        "text": "What health or wellness areas would you like to explore today?",
        "type": "multiple",
        "section": "About You",
        "category": "Intake",
        "options": [
            "HEADER:Menstrual Concerns",
            "Irregular or absent periods",
            "Heavy periods",
            "Painful periods",
            "Difficulty conceiving",
            "Desire to conceive",
            "Preparing for pregnancy",
            "HEADER:Other Areas",
            "PCOS symptoms",
            "Endometriosis symptoms",
            "Perimenopause/menopause symptoms",
            "Birth control decision",
            "General reproductive wellness",
            "Other",
        ],
    },
    {
        "id": "primary_concerns_teen",
        "text": "What health or wellness areas would you like to explore today?",
        "type": "multiple",
        "section": "About You",
        "category": "Intake",
        "options": [
            "Irregular or absent periods",
            "Heavy periods",
            "Painful periods",
            "Understanding the cycle better",
            "PCOS symptoms",
            "Endometriosis symptoms",
            "Other",
        ],
    },
    # ── Medical History ───────────────────────────────────────────────────
    {
        "id": "chronic_conditions",
        "text": "Have you ever been diagnosed with any of the following conditions?",
        "type": "multiple",
        "section": "Medical History",
        "category": "Systemic Health",
        "options": [
            "HEADER:Metabolic & Endocrine",
            "Type 2 Diabetes",
            "Gestational Diabetes (history of)",
            "Thyroid Disorder",
            "Hypertension (High Blood Pressure)",
            "HEADER:Autoimmune & Inflammatory",
            "Lupus (SLE)",
            "Celiac Disease",
            "Inflammatory Bowel Disease (Crohn's/Colitis)",
            "HEADER:Other",
            "None of the above",
        ],
    },
    {
        "id": "diabetes_status",
        "text": "Do you currently have diabetes?",
        "type": "single",
        "section": "Medical History",
        "category": "Systemic Health",
        "options": ["No diabetes", "Prediabetes", "Type 1 diabetes", "Type 2 diabetes"],
    },
    {
        "id": "obesity_status",
        "text": "Which best describes your current weight?",
        "type": "single",
        "section": "Medical History",
        "category": "Systemic Health",
        "options": [
            "Underweight (BMI <18.5)",
            "Healthy weight (BMI 18.5-24.9)",
            "Overweight (BMI 25-29.9)",
            "Obese (BMI >30)",
            "Not sure",
        ],
    },
    {
        "id": "family_history_pcos",
        "text": "Has a mother or sister been diagnosed with PCOS?",
        "type": "single",
        "section": "Medical History",
        "category": "Family History",
        "options": ["Yes", "No", "Not sure"],
    },
    {
        "id": "recent_antibiotics",
        "text": "Have you taken antibiotics in the last month?",
        "type": "single",
        "section": "Medical History",
        "category": "Medications",
        "options": ["Yes", "No", "Not sure"],
    },
    {
        "id": "ever_pregnant",
        "text": "Have you ever been pregnant?",
        "type": "single",
        "section": "Medical History",
        "category": "Pregnancy History",
        "options": ["Yes", "No"],
    },
    {
        "id": "number_of_pregnancies",
        "text": "How many times have you been pregnant in total?",
        "type": "dropdown",
        "section": "Medical History",
        "category": "Pregnancy History",
        "options": ["1", "2", "3", "4", "5", "6", "7", "8", "9", "10+"],
    },
    {
        "id": "number_of_births",
        "text": "Of those, how many were live births?",
        "type": "dropdown",
        "section": "Medical History",
        "category": "Pregnancy History",
        "options": ["0", "1", "2", "3", "4", "5+"],
    },
    {
        "id": "number_of_ectopics",
        "text": "How many were ectopic (tubal) pregnancies?",
        "type": "dropdown",
        "section": "Medical History",
        "category": "Pregnancy History",
        "options": ["0", "1", "2", "3+"],
    },
    {
        "id": "pregnancy_test_recent",
        "text": "Have you taken a pregnancy test in the last two weeks?",
        "type": "single",
        "section": "Medical History",
        "category": "Pregnancy History",
        "options": ["Positive", "Negative", "Not taken"],
    },
    {
        "id": "ever_had_gyn_surgery",
        "text": "Have you ever had any gynecologic surgeries or procedures?",
        "type": "single",
        "section": "Medical History",
        "category": "Gynecologic History",
        "options": ["Yes", "No"],
    },
    {
        "id": "gyn_surgeries_list",
        "text": "Which procedures have you had?",
        "type": "multiple",
        "section": "Medical History",
        "category": "Gynecologic History",
        "options": [
            "HEADER:Minor or Diagnostic",
            "Laparoscopy",
            "Hysteroscopy",
            "D&C (Dilation and Curettage)",
            "HEADER:Major or Therapeutic",
            "Hysterectomy (removal of uterus)",
            "Myomectomy (removal of fibroids)",
            "Ovarian Cystectomy (removal of cyst)",
            "Tubal Ligation or Salpingectomy",
            "Endometrial Ablation",
            "HEADER:Other",
            "Other",
        ],
    },
    {
        "id": "sexual_activity_status",
        "text": "Are you currently sexually active?",
        "type": "single",
        "section": "Medical History",
        "category": "Sexual Health",
        "options": ["Sexually active", "Not currently sexually active", "Prefer not to say"],
    },
    {
        "id": "new_sexual_partners",
        "text": "Have you had a new sexual partner recently?",
        "type": "single",
        "section": "Medical History",
        "category": "Sexual Health",
        "options": ["Yes (within last 6 months)", "No", "Prefer not to say"],
    },
    # ── Menstrual History ─────────────────────────────────────────────────
    {
        "id": "period_typicality",
        "text": "What best describes your current menstrual status?",
        "type": "dropdown",
        "section": "Menstrual History",
        "category": "Cycle",
        "options": [
            "Having menstrual cycles",
            "Previous had cycles but they have stopped",
            "Perimenopausal",
            "Menopausal/Postmenopausal",
            "Pregnant",
            "Postpartum",
            "Breastfeeding",
        ],
    },
    {
        "id": "cycle_length",
        "text": "How long is your typical menstrual cycle?",
        "type": "dropdown",
        "section": "Menstrual History",
        "category": "Cycle",
        "options": [
            "Less than 21 days",
            "21-24 days",
            "25-30 days",
            "31-35 days",
            "36-40 days",
            "More than 40 days",
            "Varies significantly",
            "Not sure",
        ],
    },
    {
        "id": "menstrual_flow",
        "text": "How would you describe your menstrual flow?",
        "type": "dropdown",
        "section": "Menstrual History",
        "category": "Cycle",
        "options": [
            "Very light",
            "Light",
            "Moderate",
            "Heavy (changing products every 1-2 hours)",
            "Very heavy (flooding or large clots)",
            "Not applicable",
        ],
    },
    {
        "id": "pad_changes_hourly",
        "text": "During your heaviest bleeding, are you soaking through a pad or tampon every hour?",
        "type": "single",
        "section": "Menstrual History",
        "category": "Bleeding",
        "options": [
            "Yes - soaking through in less than 1 hour",
            "Every 1-2 hours",
            "Less often than every 2 hours",
        ],
    },
    {
        "id": "clot_size",
        "text": "What is the largest clot you have passed?",
        "type": "single",
        "section": "Menstrual History",
        "category": "Bleeding",
        "options": [
            "No clots",
            "Smaller than a quarter",
            "Quarter size",
            "Golf ball size",
            "Larger than golf ball",
        ],
    },
    {
        "id": "postmenopausal_bleeding",
        "text": "Have you had any bleeding or spotting after menopause?",
        "type": "single",
        "section": "Menstrual History",
        "category": "Bleeding",
        "options": ["Yes", "No", "Not applicable"],
    },
    # ── Associated Symptoms ───────────────────────────────────────────────
    {
        "id": "pelvic_symptoms_current",
        "text": "Select all symptoms you are currently experiencing:",
        "type": "multiple",
        "section": "Associated Symptoms",
        "category": "Symptoms",
        "options": [
            "HEADER:Pelvic & Reproductive",
            "Severe menstrual cramps",
            "Pelvic pain (not during period)",
            "Lower abdominal pain (both sides)",
            "Lower back pain",
            "Pain during intercourse",
            "Pain with bowel movements",
            "Pain with urination",
            "Pelvic pressure or bulging",
            "Frequent urination",
            "Urinary leakage",
            "Bleeding between periods",
            "HEADER:Vaginal",
            "Abnormal vaginal discharge",
            "Thick white discharge",
            "Fishy vaginal odor",
            "Vaginal itching or burning",
            "HEADER:Hormonal & Endocrine",
            "Excessive hair growth (face, abdomen)",
            "Moderate to severe acne",
            "Fatigue or low energy",
            "Unexplained weight changes",
            "Hot flashes",
            "Night sweats",
            "HEADER:Other",
            "None of these",
        ],
    },
    {
        "id": "pain_scale_0_10",
        "text": "On a scale from 0 to 10, how bad is the pain on the worst day?",
        "type": "single",
        "section": "Associated Symptoms",
        "category": "Pain Assessment",
        "options": _PAIN_SCALE,
    },
    {
        "id": "pain_onset",
        "text": "How did the pain start?",
        "type": "single",
        "section": "Associated Symptoms",
        "category": "Pain Assessment",
        "options": [
            "Sudden (within minutes to hours)",
            "Gradually over days",
            "Has been present for weeks or longer",
        ],
    },
    {
        "id": "pain_location",
        "text": "Where do you feel the pain?",
        "type": "multiple",
        "section": "Associated Symptoms",
        "category": "Pain Assessment",
        "options": [
            "One-sided lower abdomen (right or left)",
            "Both sides of the lower abdomen",
            "Central pelvis",
            "Lower back",
            "Shoulder pain",
        ],
    },
    {
        "id": "systemic_symptoms",
        "text": "Are you experiencing any of these right now?",
        "type": "multiple",
        "section": "Associated Symptoms",
        "category": "Systemic",
        "options": [
            "Lightheadedness/dizziness",
            "Fainting or near-fainting",
            "Severe weakness",
            "Nausea or vomiting",
            "Chills or shaking",
            "None of these",
        ],
    },
    {
        "id": "heart_racing",
        "text": "Is your heart racing or pounding?",
        "type": "single",
        "section": "Associated Symptoms",
        "category": "Systemic",
        "options": ["Yes - rapid heart rate or palpitations", "No"],
    },
    {
        "id": "fever_present",
        "text": "Do you have a fever?",
        "type": "single",
        "section": "Associated Symptoms",
        "category": "Systemic",
        "options": ["Yes", "No", "Not sure"],
    },
    {
        "id": "fever_temp",
        "text": "What is your highest measured temperature?",
        "type": "single",
        "section": "Associated Symptoms",
        "category": "Systemic",
        "options": [
            "Below 100.4°F (normal)",
            "100.4–102°F (moderate)",
            "Above 102°F (high)",
            "Not measured",
        ],
    },
    # ── Support ───────────────────────────────────────────────────────────
    {
        "id": "educational_interests",
        "text": "What health or wellness topics would you like to learn more about?",
        "type": "multiple",
        "section": "Support",
        "category": "Education",
        "options": [
            "Understanding the menstrual cycle",
            "PCOS and metabolic health",
            "Endometriosis and chronic pelvic pain",
            "Fertility and family planning",
            "Perimenopause and menopause transition",
            "Other",
        ],
    },
]


def question_ids() -> set[str]:
    """Return the ids of every question in the catalog."""
    return {q["id"] for q in SURVEY_QUESTIONS}


def get_question(question_id: str) -> Optional[dict]:
    """Return the question definition for ``question_id`` or None."""
    return next((q for q in SURVEY_QUESTIONS if q["id"] == question_id), None)


def answer_options(question_id: str) -> list[str]:
    """Selectable options for a question, with display headers removed."""
    question = get_question(question_id)
    if question is None:
        logger.debug("Unknown question id requested: %s", question_id)
        return []
    return [opt for opt in question.get("options", []) if not opt.startswith(HEADER_PREFIX)]
