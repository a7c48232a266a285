# ============================================================================
# src/bloodwork_analysis/classifiers/panel_classifier.py
# ============================================================================
"""
Panel type classification.

Looks at the test names recognized in a document and picks a coarse panel
label. Families are checked in priority order, so a report carrying both
testosterone and IgG is labelled a Hormone Panel.
"""

from typing import Iterable, List, Tuple

DEFAULT_PANEL = "Laboratory Results"

# (label, keywords), highest priority first
PANEL_FAMILIES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Hormone Panel", ("testosterone", "shbg")),
    ("Metabolic Panel", ("cholesterol", "glucose")),
    ("Complete Blood Count", ("hemoglobin", "wbc")),
    ("Immunology Panel", ("igg", "iga", "igm")),
]


def determine_panel_type(test_names: Iterable[str]) -> str:
    """Return the panel label for a set of recognized test names."""
    names = [name.lower() for name in test_names]
    if not names:
        return DEFAULT_PANEL

    for label, keywords in PANEL_FAMILIES:
        if any(keyword in name for name in names for keyword in keywords):
            return label

    return DEFAULT_PANEL
