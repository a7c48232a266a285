# ============================================================================
# src/bloodwork_analysis/results/aggregation.py
# ============================================================================
"""
Result aggregation: counts, overall status and summary text.
"""

import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from ..core.enums import OverallStatus, RowStatus
from ..core.models import AnalysisResult, ExtractedRow, ResultStatistics


def compute_statistics(rows: Iterable[ExtractedRow]) -> ResultStatistics:
    """Count rows by status. High and low both count as abnormal."""
    stats = ResultStatistics()
    for row in rows:
        stats.total_tests += 1
        if row.status == RowStatus.NORMAL:
            stats.normal_count += 1
        elif row.status in (RowStatus.HIGH, RowStatus.LOW):
            stats.abnormal_count += 1
        elif row.status == RowStatus.CRITICAL:
            stats.critical_count += 1

    if stats.critical_count:
        stats.overall_status = OverallStatus.CRITICAL
    elif stats.abnormal_count:
        stats.overall_status = OverallStatus.ABNORMAL
    else:
        stats.overall_status = OverallStatus.NORMAL
    return stats


def build_summary(panel_type: str, stats: ResultStatistics) -> str:
    if stats.total_tests == 0:
        return "No recognizable test results were found in this document."

    tests = "test" if stats.total_tests == 1 else "tests"
    parts = [f"Analysis complete for {panel_type}: {stats.total_tests} {tests}"]

    if stats.overall_status == OverallStatus.NORMAL:
        parts.append("all within normal range")
    else:
        if stats.abnormal_count:
            parts.append(f"{stats.abnormal_count} outside normal range")
        if stats.critical_count:
            parts.append(f"{stats.critical_count} needing prompt attention")

    return ", ".join(parts) + ". Please discuss these results with your healthcare provider."


def build_result(
    job_id: str,
    user_ref: str,
    panel_type: str,
    report_date: datetime,
    rows: List[ExtractedRow],
    doctor_notes: Optional[str] = None,
    result_id: Optional[str] = None,
) -> AnalysisResult:
    """Assemble the reportable result for a job from its enriched rows."""
    stats = compute_statistics(rows)
    return AnalysisResult(
        id=result_id or str(uuid.uuid4()),
        job_id=job_id,
        user_ref=user_ref,
        panel_type=panel_type,
        report_date=report_date,
        rows=list(rows),
        summary=build_summary(panel_type, stats),
        statistics=stats,
        doctor_notes=doctor_notes,
    )
