# ============================================================================
# tests/unit/test_aggregation.py
# ============================================================================
"""
Tests for result statistics, summary text and the result store.
"""

from datetime import datetime, timezone

import pytest

from bloodwork_analysis.core.enums import OverallStatus, RowStatus
from bloodwork_analysis.core.models import EnrichmentNote, ExtractedRow, ReferenceRange
from bloodwork_analysis.results import ResultStore, build_result, build_summary, compute_statistics
from bloodwork_analysis.utils.exceptions import NotFoundError


def row(row_id, status, name="IgG"):
    return ExtractedRow(
        id=row_id,
        test_name=name,
        value=1000,
        unit="mg/dL",
        reference_range=ReferenceRange(min=540, max=1822),
        status=status,
        note=EnrichmentNote(
            text="Your level looks healthy.",
            confidence=0.8,
            source="openai:gpt-4o-mini",
            provenance="openai:gpt-4o-mini:p1",
        ),
    )


REPORT_DATE = datetime(2025, 7, 31, tzinfo=timezone.utc)


# ============================================================================
# Statistics
# ============================================================================

def test_all_normal():
    stats = compute_statistics([row("1", RowStatus.NORMAL), row("2", RowStatus.NORMAL)])

    assert stats.total_tests == 2
    assert stats.normal_count == 2
    assert stats.overall_status == OverallStatus.NORMAL


def test_high_and_low_count_as_abnormal():
    stats = compute_statistics([
        row("1", RowStatus.HIGH),
        row("2", RowStatus.LOW),
        row("3", RowStatus.NORMAL),
    ])

    assert stats.abnormal_count == 2
    assert stats.critical_count == 0
    assert stats.overall_status == OverallStatus.ABNORMAL


def test_critical_dominates():
    stats = compute_statistics([row("1", RowStatus.HIGH), row("2", RowStatus.CRITICAL)])

    assert stats.critical_count == 1
    assert stats.overall_status == OverallStatus.CRITICAL
    assert stats.total_tests == stats.normal_count + stats.abnormal_count + stats.critical_count


def test_empty_rows():
    stats = compute_statistics([])
    assert stats.total_tests == 0
    assert stats.overall_status == OverallStatus.NORMAL


# ============================================================================
# Summary
# ============================================================================

def test_summary_texts():
    normal = compute_statistics([row("1", RowStatus.NORMAL)])
    assert build_summary("Immunology Panel", normal) == (
        "Analysis complete for Immunology Panel: 1 test, all within normal range. "
        "Please discuss these results with your healthcare provider."
    )

    mixed = compute_statistics([row("1", RowStatus.LOW), row("2", RowStatus.CRITICAL)])
    summary = build_summary("Hormone Panel", mixed)
    assert "2 tests" in summary
    assert "1 outside normal range" in summary
    assert "1 needing prompt attention" in summary

    assert build_summary("Laboratory Results", compute_statistics([])) == (
        "No recognizable test results were found in this document."
    )


def test_build_result_highlights_rows():
    result = build_result(
        job_id="job-1",
        user_ref="alice",
        panel_type="Immunology Panel",
        report_date=REPORT_DATE,
        rows=[row("1", RowStatus.NORMAL), row("2", RowStatus.CRITICAL), row("3", RowStatus.LOW)],
        doctor_notes="Repeat in 3 months",
    )

    assert result.id
    assert [r.id for r in result.critical_rows] == ["2"]
    assert [r.id for r in result.abnormal_rows] == ["3"]

    data = result.to_dict()
    assert data["critical_rows"] == ["2"]
    assert data["abnormal_rows"] == ["3"]
    assert data["doctor_notes"] == "Repeat in 3 months"


# ============================================================================
# Result store
# ============================================================================

@pytest.fixture
def store(tmp_path):
    return ResultStore(tmp_path / "results.db")


def test_save_and_load(store):
    saved = store.save(build_result(
        "job-1", "alice", "Immunology Panel", REPORT_DATE, [row("1", RowStatus.HIGH)]
    ))

    loaded = store.get(saved.id, "alice")
    assert loaded.job_id == "job-1"
    assert loaded.report_date == REPORT_DATE
    assert loaded.statistics.to_dict() == saved.statistics.to_dict()
    assert loaded.rows[0].status == RowStatus.HIGH
    assert loaded.rows[0].note.provenance == "openai:gpt-4o-mini:p1"
    assert loaded.rows[0].reference_range == ReferenceRange(min=540, max=1822)


def test_get_is_owner_scoped(store):
    saved = store.save(build_result("job-1", "alice", "Immunology Panel", REPORT_DATE, []))

    with pytest.raises(NotFoundError):
        store.get(saved.id, "bob")
    with pytest.raises(NotFoundError):
        store.get("no-such-result")


def test_saving_again_keeps_one_result_per_job(store):
    first = store.save(build_result("job-1", "alice", "Immunology Panel", REPORT_DATE, []))
    second = store.save(build_result(
        "job-1", "alice", "Immunology Panel", REPORT_DATE, [row("1", RowStatus.NORMAL)]
    ))

    assert second.id == first.id
    assert store.get_by_job("job-1").statistics.total_tests == 1


def test_delete_by_job(store):
    store.save(build_result("job-1", "alice", "Immunology Panel", REPORT_DATE, []))

    assert store.delete_by_job("job-1")
    assert not store.delete_by_job("job-1")
    assert store.get_by_job("job-1") is None
