# ============================================================================
# tests/unit/test_field_extractor.py
# ============================================================================
"""
Tests for the pattern-driven field extractor.
"""

import re
from datetime import datetime, timezone

import pytest

from bloodwork_analysis.core.enums import RowStatus
from bloodwork_analysis.extractors import (
    FieldExtractor,
    FieldPattern,
    default_registry,
    extract_fields,
    extract_patient_name,
    extract_report_date,
)
from bloodwork_analysis.extractors.parsing import parse_value_line


# ============================================================================
# Window scan
# ============================================================================

def test_igg_fixture(igg_report_text):
    result = extract_fields(igg_report_text)

    assert len(result.rows) == 1
    row = result.rows[0]
    assert row.id == "1"
    assert row.test_name == "IgG"
    assert row.value == 1000
    assert row.unit == "mg/dL"
    assert row.reference_range.min == 540
    assert row.reference_range.max == 1822
    assert row.status == RowStatus.NORMAL
    assert row.extraction_method == "window"
    assert result.panel_type == "Immunology Panel"


def test_minimal_igg_report():
    result = extract_fields("IgG\n(540 - 1822 mg/dL)\n1493")

    assert len(result.rows) == 1
    row = result.rows[0]
    assert row.test_name == "IgG"
    assert row.value == 1493
    assert row.unit == "mg/dL"
    assert (row.reference_range.min, row.reference_range.max) == (540, 1822)
    assert row.status == RowStatus.NORMAL


def test_multiple_rows_get_sequential_ids(hormone_report_text):
    result = extract_fields(hormone_report_text)

    assert [r.id for r in result.rows] == ["1", "2", "3"]
    assert [r.test_name for r in result.rows] == ["IgG", "SHBG", "Testosterone"]
    assert [r.unit for r in result.rows] == ["mg/dL", "nmol/L", "nmol/L"]
    assert all(r.status == RowStatus.NORMAL for r in result.rows)
    assert result.panel_type == "Hormone Panel"
    assert not result.used_section_fallback


def test_free_testosterone_index_is_not_plain_testosterone():
    text = "\n".join([
        "Free Testosterone Index",
        "(Male: 24.5 - 113.3)",
        "40.1",
    ])
    rows = extract_fields(text).rows

    assert len(rows) == 1
    assert rows[0].test_name == "Free Testosterone Index"
    assert rows[0].unit == "%"
    assert rows[0].reference_range.min == 24.5


def test_value_line_must_be_a_bare_number():
    text = "IgG\n(540 - 1822 mg/dL)\n1000 H\n"
    assert extract_fields(text).rows == []


def test_whitespace_and_blank_lines_are_ignored():
    text = "\n\n   IgG   \n\n  (540-1822 mg/dL)  \n\n 1000 \n"
    rows = extract_fields(text).rows
    assert len(rows) == 1
    assert rows[0].value == 1000


def test_classifies_abnormal_rows():
    text = "IgG\n(540 - 1822 mg/dL)\n269\nTestosterone\n8.6 - 29.0 nmol/L\n31\n"
    rows = extract_fields(text).rows

    assert rows[0].status == RowStatus.CRITICAL
    assert rows[1].status == RowStatus.HIGH


def test_inverted_range_is_skipped():
    text = "SHBG\n54.1 - 18.3 nmol/L\n35\n"
    assert extract_fields(text).rows == []


def test_no_match_is_empty_not_an_error():
    result = extract_fields("Nothing to see here\nat all\n")
    assert result.rows == []
    assert result.panel_type == "Laboratory Results"


# ============================================================================
# Section scan
# ============================================================================

def test_reference_values_section_fallback(section_report_text):
    result = extract_fields(section_report_text)

    assert result.used_section_fallback
    assert len(result.rows) == 1
    row = result.rows[0]
    assert row.test_name == "IgG"
    assert row.value == 1150
    assert row.reference_range.min == 700
    assert row.reference_range.max == 1600
    assert row.extraction_method == "section"


def test_section_scan_skipped_when_window_scan_found_rows(igg_report_text):
    text = igg_report_text + "\nREFERENCE VALUES\nIgA (70 - 400 mg/dL) 120\n"
    result = extract_fields(text)

    assert not result.used_section_fallback
    assert [r.test_name for r in result.rows] == ["IgG"]


def test_section_marker_without_match():
    assert extract_fields("REFERENCE VALUES\nsee attached\n").rows == []


# ============================================================================
# Registry
# ============================================================================

def test_registering_a_new_pattern():
    registry = default_registry()
    registry.register(FieldPattern(
        key="ferritin",
        display_name="Ferritin",
        unit="ng/mL",
        name_pattern=re.compile(r'^Ferritin$', re.IGNORECASE),
        range_pattern=re.compile(r'(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)\s*ng/mL'),
    ))

    rows = FieldExtractor(registry).extract("Ferritin\n30 - 400 ng/mL\n120\n").rows
    assert [r.test_name for r in rows] == ["Ferritin"]

    # A fresh default registry is untouched
    assert default_registry().get("ferritin") is None


def test_duplicate_pattern_key_rejected():
    registry = default_registry()
    with pytest.raises(ValueError):
        registry.register(registry.get("igg"))


# ============================================================================
# Dates
# ============================================================================

@pytest.mark.parametrize("text, expected", [
    ("Collected 31/07/2025", datetime(2025, 7, 31, tzinfo=timezone.utc)),
    ("Collected 31-07-2025", datetime(2025, 7, 31, tzinfo=timezone.utc)),
    ("Collected 2025-07-31", datetime(2025, 7, 31, tzinfo=timezone.utc)),
    ("Reported 17:58:00 1/8/2025", datetime(2025, 8, 1, tzinfo=timezone.utc)),
])
def test_report_date_formats(text, expected):
    parsed, found = extract_report_date(text)
    assert found
    assert parsed == expected


def test_invalid_date_falls_through_to_next_pattern():
    parsed, found = extract_report_date("Printed 45/13/2025, collected 2025-02-03")
    assert found
    assert parsed == datetime(2025, 2, 3, tzinfo=timezone.utc)


def test_missing_date_uses_now():
    before = datetime.now(timezone.utc)
    parsed, found = extract_report_date("no dates in here")
    assert not found
    assert parsed >= before


def test_extraction_result_carries_report_date(igg_report_text):
    result = extract_fields(igg_report_text)
    assert result.report_date_found
    assert result.report_date == datetime(2025, 7, 31, tzinfo=timezone.utc)


# ============================================================================
# Patient name
# ============================================================================

@pytest.mark.parametrize("text,expected", [
    ("Patient Name: JOHN DOE\nIgG", "JOHN DOE"),
    ("PatientName JANE SMITH", "JANE SMITH"),
    ("Name: Maria O'Neil     Age: 45", "Maria O'Neil"),
])
def test_patient_name(text, expected):
    assert extract_patient_name(text) == expected


@pytest.mark.parametrize("text", [
    "IgG\n(540 - 1822 mg/dL)\n1493",
    "Test Name\nIgG",
])
def test_patient_name_missing(text):
    assert extract_patient_name(text) is None


def test_extraction_result_carries_patient_name(igg_report_text):
    result = extract_fields("Patient Name: JOHN DOE\n" + igg_report_text)

    assert result.patient_name == "JOHN DOE"
    assert len(result.rows) == 1


# ============================================================================
# Parsing helpers
# ============================================================================

@pytest.mark.parametrize("line, expected", [
    ("14", 14.0),
    ("0.85", 0.85),
    (" 35.2 ", 35.2),
    ("< 0.5", None),
    ("14.2 H", None),
    ("", None),
    ("1.2.3", None),
])
def test_parse_value_line(line, expected):
    assert parse_value_line(line) == expected
