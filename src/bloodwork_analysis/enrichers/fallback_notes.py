# ============================================================================
# src/bloodwork_analysis/enrichers/fallback_notes.py
# ============================================================================
"""
Rule-based notes used when the text generation service gave nothing usable.

Lookup is by test-name keyword, then by status. Critical rows always get
the generic critical sentence so a friendly template never softens an
urgent value.
"""

from typing import Dict, List, Tuple

from ..core.enums import RowStatus

GENERIC_NOTES: Dict[RowStatus, str] = {
    RowStatus.HIGH: "This value is elevated - discuss with your healthcare provider.",
    RowStatus.LOW: "This value is below normal - consider follow-up with your doctor.",
    RowStatus.CRITICAL: "This result needs immediate attention - contact your healthcare provider.",
    RowStatus.NORMAL: "This test result is within normal range.",
}

# (keywords, {status: note}); "default" covers statuses not listed. First match wins.
KEYWORD_NOTES: List[Tuple[Tuple[str, ...], Dict[str, str]]] = [
    (("hdl",), {
        RowStatus.HIGH: 'Excellent HDL cholesterol! This "good" cholesterol helps protect your heart.',
        RowStatus.LOW: "HDL cholesterol could be higher - consider exercise and healthy fats.",
        "default": "Good HDL cholesterol levels support cardiovascular health.",
    }),
    (("ldl",), {
        RowStatus.HIGH: "LDL cholesterol is elevated - consider dietary changes and exercise.",
        "default": "LDL cholesterol levels look good for heart health.",
    }),
    (("cholesterol",), {
        RowStatus.HIGH: "Total cholesterol is elevated - focus on heart-healthy lifestyle choices.",
        "default": "Cholesterol levels support good cardiovascular health.",
    }),
    (("glucose", "sugar"), {
        RowStatus.HIGH: "Blood sugar is elevated - monitor carbs and stay active.",
        RowStatus.LOW: "Blood sugar is low - ensure regular, balanced meals.",
        "default": "Blood sugar levels are well-controlled.",
    }),
    (("vitamin d",), {
        RowStatus.LOW: "Vitamin D is low - consider supplements and safe sun exposure.",
        "default": "Vitamin D levels support bone and immune health.",
    }),
    (("hemoglobin", "haemoglobin", "hgb"), {
        RowStatus.LOW: "Hemoglobin is low - ensure iron-rich foods and consult your doctor.",
        RowStatus.HIGH: "Hemoglobin is elevated - stay hydrated and follow up if needed.",
        "default": "Hemoglobin levels support healthy oxygen transport.",
    }),
    (("testosterone",), {
        RowStatus.LOW: "Testosterone is below range - sleep, exercise and a clinician follow-up can help.",
        RowStatus.HIGH: "Testosterone is above range - worth reviewing with your healthcare provider.",
        "default": "Testosterone is within the expected range.",
    }),
    (("shbg",), {
        RowStatus.LOW: "SHBG is below range - discuss it alongside your hormone results with your doctor.",
        RowStatus.HIGH: "SHBG is above range - your clinician can explain how it affects hormone levels.",
        "default": "SHBG is within the expected range.",
    }),
    (("igg", "iga", "igm", "immunoglobulin"), {
        RowStatus.LOW: "This antibody level is below range - mention it to your doctor at your next visit.",
        RowStatus.HIGH: "This antibody level is above range - a follow-up with your clinician is a good idea.",
        "default": "Your antibody level is within the expected range.",
    }),
]


def get_fallback_note(test_name: str, status: RowStatus) -> str:
    """Deterministic note for a row. Same input, same sentence."""
    status = RowStatus(status)
    if status == RowStatus.CRITICAL:
        return GENERIC_NOTES[RowStatus.CRITICAL]

    name = test_name.lower()
    for keywords, notes in KEYWORD_NOTES:
        if any(keyword in name for keyword in keywords):
            return notes.get(status, notes["default"])

    return GENERIC_NOTES[status]
