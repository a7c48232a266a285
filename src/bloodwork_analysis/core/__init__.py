# ============================================================================
# src/bloodwork_analysis/core/__init__.py
# ============================================================================
"""
Core pipeline: job lifecycle, queue, stores and orchestration.
"""

from .enums import JobStatus, OverallStatus, RowStatus
from .models import (
    AnalysisResult,
    EnrichmentNote,
    ExtractedRow,
    ExtractionResult,
    Job,
    ReferenceRange,
    ResultStatistics,
)

__all__ = [
    "AnalysisResult",
    "EnrichmentNote",
    "ExtractedRow",
    "ExtractionResult",
    "Job",
    "JobStatus",
    "OverallStatus",
    "ReferenceRange",
    "ResultStatistics",
    "RowStatus",
]
