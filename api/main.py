# ============================================================================
# api/main.py
# ============================================================================
"""
FastAPI Backend for the Bloodwork Analysis Engine

Thin HTTP surface over the job manager and result store. Caller identity
arrives in the X-User-Id header; authenticating it is the gateway's job.

Run:
    uvicorn api.main:app --port 8000
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bloodwork_analysis.config import base_settings, logging_settings
from bloodwork_analysis.core.models import AnalysisResult, ExtractedRow, Job
from bloodwork_analysis.core.services import AnalysisServices, build_services
from bloodwork_analysis.utils.exceptions import ConflictError, InvalidStateError, NotFoundError
from bloodwork_analysis.utils.logging import setup_logging

logger = logging.getLogger(__name__)


# ============================================================================
# Models
# ============================================================================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateAnalysisRequest(CamelModel):
    document_ref: str = Field(min_length=1)
    doctor_notes: Optional[str] = None


class CreateAnalysisResponse(CamelModel):
    job_id: str
    status: str


class JobStatusResponse(CamelModel):
    job_id: str
    status: str
    progress: int
    result_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            status=job.status.value,
            progress=job.progress,
            result_id=job.result_id,
            error_message=job.error_message,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class NoteResponse(CamelModel):
    text: str
    confidence: float
    source: str
    provenance: str


class RowResponse(CamelModel):
    id: str
    test_name: str
    value: float
    unit: str
    reference_range: Dict[str, float]
    status: str
    extraction_method: str
    note: Optional[NoteResponse] = None

    @classmethod
    def from_row(cls, row: ExtractedRow) -> "RowResponse":
        note = None
        if row.note is not None:
            note = NoteResponse(
                text=row.note.text,
                confidence=row.note.confidence,
                source=row.note.source,
                provenance=row.note.provenance,
            )
        return cls(
            id=row.id,
            test_name=row.test_name,
            value=row.value,
            unit=row.unit,
            reference_range=row.reference_range.to_dict(),
            status=row.status.value,
            extraction_method=row.extraction_method,
            note=note,
        )


class StatisticsResponse(CamelModel):
    total_tests: int
    normal_count: int
    abnormal_count: int
    critical_count: int
    overall_status: str


class ResultResponse(CamelModel):
    result_id: str
    job_id: str
    panel_type: str
    report_date: datetime
    summary: str
    doctor_notes: Optional[str] = None
    statistics: StatisticsResponse
    results: List[RowResponse]
    critical_tests: List[RowResponse]
    abnormal_tests: List[RowResponse]
    created_at: datetime

    @classmethod
    def from_result(cls, result: AnalysisResult) -> "ResultResponse":
        return cls(
            result_id=result.id,
            job_id=result.job_id,
            panel_type=result.panel_type,
            report_date=result.report_date,
            summary=result.summary,
            doctor_notes=result.doctor_notes,
            statistics=StatisticsResponse(**result.statistics.to_dict()),
            results=[RowResponse.from_row(r) for r in result.rows],
            critical_tests=[RowResponse.from_row(r) for r in result.critical_rows],
            abnormal_tests=[RowResponse.from_row(r) for r in result.abnormal_rows],
            created_at=result.created_at,
        )


class UploadResponse(CamelModel):
    document_ref: str
    original_name: str


# ============================================================================
# App factory
# ============================================================================

def create_app(services: Optional[AnalysisServices] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Pre-built service container. Built from settings at
            startup when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=logging_settings.LOG_LEVEL,
            log_file=logging_settings.LOG_FILE,
            format_json=logging_settings.LOG_JSON,
        )
        if getattr(app.state, "services", None) is None:
            base_settings.create_directories()
            app.state.services = build_services()

        await app.state.services.start()
        logger.info("Bloodwork analysis API started")
        try:
            yield
        finally:
            await app.state.services.stop()
            logger.info("Bloodwork analysis API stopped")

    app = FastAPI(
        title="Bloodwork Analysis Engine API",
        description="Lab report analysis jobs: extraction, classification and notes",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:8081"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI):

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "existingJobId": exc.existing_job_id},
        )

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})


def get_services(request: Request) -> AnalysisServices:
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=503, detail="Service not started")
    return services


def get_user_ref(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing caller identity")
    return x_user_id.strip()


# ============================================================================
# Endpoints
# ============================================================================

def _register_routes(app: FastAPI):

    @app.get("/api/health")
    async def health(services: AnalysisServices = Depends(get_services)) -> Dict[str, Any]:
        """Job counts per status and queue depth."""
        queue = services.job_manager.queue_health()
        return {
            "status": "healthy" if services.orchestrator.running else "degraded",
            "jobs": queue["jobs"],
            "queueDepth": queue["queue_depth"],
            "inFlight": queue["in_flight"],
        }

    @app.post("/api/upload", response_model=UploadResponse, status_code=201)
    async def upload_document(
        file: UploadFile = File(...),
        user_ref: str = Depends(get_user_ref),
        services: AnalysisServices = Depends(get_services),
    ):
        """Store a lab report and return the reference to analyze it with."""
        content = await file.read()
        if not content:
            raise HTTPException(status_code=400, detail="Empty file")
        original_name = file.filename or "report.pdf"
        document_ref = services.documents.save(content, original_name)
        logger.info(f"User {user_ref} uploaded {original_name} as {document_ref}")
        return UploadResponse(document_ref=document_ref, original_name=original_name)

    @app.post("/api/analysis", response_model=CreateAnalysisResponse, status_code=202)
    async def start_analysis(
        body: CreateAnalysisRequest,
        user_ref: str = Depends(get_user_ref),
        services: AnalysisServices = Depends(get_services),
    ):
        """Queue an analysis job for an uploaded document."""
        job = services.job_manager.create_job(
            body.document_ref, user_ref, doctor_notes=body.doctor_notes
        )
        return CreateAnalysisResponse(job_id=job.id, status=job.status.value)

    @app.get("/api/analysis/{job_id}", response_model=JobStatusResponse)
    async def get_analysis_status(
        job_id: str,
        user_ref: str = Depends(get_user_ref),
        services: AnalysisServices = Depends(get_services),
    ):
        """Poll a job's status and progress."""
        job = services.job_manager.get_job_status(job_id, user_ref)
        return JobStatusResponse.from_job(job)

    @app.delete("/api/analysis/{job_id}", status_code=204)
    async def cancel_analysis(
        job_id: str,
        user_ref: str = Depends(get_user_ref),
        services: AnalysisServices = Depends(get_services),
    ):
        """Cancel a queued or running job."""
        services.job_manager.cancel_job(job_id, user_ref)
        return Response(status_code=204)

    @app.get("/api/results/{result_id}", response_model=ResultResponse)
    async def get_result(
        result_id: str,
        user_ref: str = Depends(get_user_ref),
        services: AnalysisServices = Depends(get_services),
    ):
        """Completed analysis with statistics and highlighted rows."""
        result = services.result_store.get(result_id, user_ref)
        return ResultResponse.from_result(result)


app = create_app()
