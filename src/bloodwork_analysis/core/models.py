# ============================================================================
# src/bloodwork_analysis/core/models.py
# ============================================================================
"""
Data model shared by the pipeline stages.

Job -> ExtractedRow[] (extractor + classifier) -> EnrichmentNote per row
-> AnalysisResult (aggregation) -> Result Store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .enums import JobStatus, OverallStatus, RowStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Job:
    """One analysis request for one document."""
    id: str
    document_ref: str
    user_ref: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result_id: Optional[str] = None
    error_message: Optional[str] = None

    # Resolved at creation so queued work survives a restart
    document_location: Optional[str] = None
    original_name: Optional[str] = None
    doctor_notes: Optional[str] = None

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.id,
            "document_ref": self.document_ref,
            "status": self.status.value,
            "progress": self.progress,
            "result_id": self.result_id,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class ReferenceRange:
    min: float
    max: float

    def __post_init__(self):
        if self.min > self.max:
            raise ValueError(f"Reference range min {self.min} exceeds max {self.max}")

    def to_dict(self) -> Dict[str, float]:
        return {"min": self.min, "max": self.max}


@dataclass
class EnrichmentNote:
    """Short explanatory sentence attached to one row."""
    text: str
    confidence: float
    source: str       # "<backend>:<model>" or "fallback:rules"
    provenance: str   # "<source>:<prompt version>"
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_fallback(self) -> bool:
        return self.source.startswith("fallback:")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "source": self.source,
            "provenance": self.provenance,
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnrichmentNote":
        return cls(
            text=data["text"],
            confidence=data["confidence"],
            source=data["source"],
            provenance=data["provenance"],
            created_at=_parse_iso(data.get("created_at")) or utc_now(),
        )


@dataclass
class ExtractedRow:
    """One recognized test value from the document."""
    id: str
    test_name: str
    value: float
    unit: str
    reference_range: ReferenceRange
    status: RowStatus
    extraction_method: str = "window"  # "window" or "section" (lower confidence)
    note: Optional[EnrichmentNote] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "test_name": self.test_name,
            "value": self.value,
            "unit": self.unit,
            "reference_range": self.reference_range.to_dict(),
            "status": self.status.value,
            "extraction_method": self.extraction_method,
            "note": self.note.to_dict() if self.note else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedRow":
        note = data.get("note")
        return cls(
            id=data["id"],
            test_name=data["test_name"],
            value=data["value"],
            unit=data["unit"],
            reference_range=ReferenceRange(**data["reference_range"]),
            status=RowStatus(data["status"]),
            extraction_method=data.get("extraction_method", "window"),
            note=EnrichmentNote.from_dict(note) if note else None,
        )


@dataclass
class ExtractionResult:
    """Output of the field extractor for one document."""
    rows: List[ExtractedRow] = field(default_factory=list)
    report_date: Optional[datetime] = None
    report_date_found: bool = False
    panel_type: str = "Laboratory Results"
    used_section_fallback: bool = False
    patient_name: Optional[str] = None


@dataclass
class ResultStatistics:
    total_tests: int = 0
    normal_count: int = 0
    abnormal_count: int = 0  # high + low
    critical_count: int = 0
    overall_status: OverallStatus = OverallStatus.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tests": self.total_tests,
            "normal_count": self.normal_count,
            "abnormal_count": self.abnormal_count,
            "critical_count": self.critical_count,
            "overall_status": self.overall_status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResultStatistics":
        return cls(
            total_tests=data["total_tests"],
            normal_count=data["normal_count"],
            abnormal_count=data["abnormal_count"],
            critical_count=data["critical_count"],
            overall_status=OverallStatus(data["overall_status"]),
        )


@dataclass
class AnalysisResult:
    """Persisted outcome of a completed job. Immutable once saved."""
    id: str
    job_id: str
    user_ref: str
    panel_type: str
    report_date: datetime
    rows: List[ExtractedRow]
    summary: str
    statistics: ResultStatistics
    doctor_notes: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def critical_rows(self) -> List[ExtractedRow]:
        return [r for r in self.rows if r.status == RowStatus.CRITICAL]

    @property
    def abnormal_rows(self) -> List[ExtractedRow]:
        return [r for r in self.rows if r.status in (RowStatus.HIGH, RowStatus.LOW)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result_id": self.id,
            "job_id": self.job_id,
            "panel_type": self.panel_type,
            "report_date": _iso(self.report_date),
            "rows": [r.to_dict() for r in self.rows],
            "summary": self.summary,
            "doctor_notes": self.doctor_notes,
            "statistics": self.statistics.to_dict(),
            "critical_rows": [r.id for r in self.critical_rows],
            "abnormal_rows": [r.id for r in self.abnormal_rows],
            "created_at": _iso(self.created_at),
        }
