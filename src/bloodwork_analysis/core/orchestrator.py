# ============================================================================
# src/bloodwork_analysis/core/orchestrator.py
# ============================================================================
"""
Pipeline Orchestrator

Consumes the work queue and drives each job through the pipeline.

Flow (progress checkpoint after each step):
1. Initialize: status -> running                          5
2. Read document text                                     15 -> 35
3. Recognize rows (field extractor + classifier)          65
4. Enrich rows, one checkpoint per batch                  65 -> 95
5. Persist result, status -> completed                    100

Failure policy:
- Steps 2-3 fail the job immediately, no redelivery
- Step 4 never fails the job; rows fall back to rule-based notes
- Step 5 raises PersistenceError and the queue redelivers
- A rejected checkpoint means the job was cancelled: stop quietly
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from ..config.queue_config import queue_settings
from ..enrichers.note_enricher import NoteEnricher
from ..extractors.field_extractor import FieldExtractor
from ..extractors.text_extractor import TextExtractor
from ..results.aggregation import build_result
from ..results.result_store import ResultStore
from ..utils.exceptions import (
    ExtractionError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
)
from ..utils.logging import LogAdapter
from .enums import JobStatus
from .job_manager import JobManager, describe_error
from .models import AnalysisResult, ExtractionResult, Job
from .work_queue import WorkItem, WorkQueue

logger = logging.getLogger(__name__)

# Progress checkpoints
PROGRESS_STARTED = 5
PROGRESS_READING = 15
PROGRESS_TEXT_READ = 35
PROGRESS_ROWS_RECOGNIZED = 65
PROGRESS_ENRICHED = 95


class PipelineOrchestrator:
    """
    Worker pool plus the per-job pipeline.

    In-flight job ids and worker tasks are instance state; two
    orchestrators never share them.
    """

    def __init__(
        self,
        job_manager: JobManager,
        queue: WorkQueue,
        result_store: ResultStore,
        enricher: NoteEnricher,
        text_extractor: Optional[TextExtractor] = None,
        field_extractor: Optional[FieldExtractor] = None,
        config: Optional[Dict[str, Any]] = None
    ):
        self.config = config or {}
        self.job_manager = job_manager
        self.queue = queue
        self.result_store = result_store
        self.enricher = enricher
        self.text_extractor = text_extractor or TextExtractor()
        self.field_extractor = field_extractor or FieldExtractor()

        self.concurrency = max(1, self.config.get('worker_concurrency', queue_settings.WORKER_CONCURRENCY))

        self._workers: List[asyncio.Task] = []
        self._active_jobs: Set[str] = set()

    # ========================================================================
    # WORKER POOL
    # ========================================================================

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    @property
    def active_jobs(self) -> Set[str]:
        return set(self._active_jobs)

    async def start(self, recover: bool = True):
        """Spawn workers. With recover=True, unfinished jobs are enqueued again first."""
        if self.running:
            return

        if recover:
            self.recover()

        self._workers = [
            asyncio.create_task(
                self.queue.consume(self.process, self._on_exhausted),
                name=f"pipeline-worker-{i}",
            )
            for i in range(self.concurrency)
        ]
        logger.info(f"Started {self.concurrency} pipeline worker(s)")

    async def stop(self):
        """Cancel workers. Interrupted jobs stay running and are recovered on next start."""
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Pipeline workers stopped")

    def recover(self) -> int:
        """Re-enqueue queued and running jobs found in the job store."""
        recovered = 0
        for job in self.job_manager.list_unfinished():
            if self.queue.enqueue(job.id, self.job_manager.work_payload(job)) is not None:
                recovered += 1
        if recovered:
            logger.info(f"Recovered {recovered} unfinished job(s)")
        return recovered

    async def _on_exhausted(self, item: WorkItem, error: BaseException):
        """Last delivery failed: record the failure on the job."""
        try:
            self.job_manager.update_job(item.job_id, status=JobStatus.FAILED, error_message=describe_error(error))
        except (InvalidStateError, NotFoundError) as e:
            logger.info(f"Job {item.job_id} not marked failed: {e}")

    # ========================================================================
    # PIPELINE
    # ========================================================================

    async def process(self, item: WorkItem) -> Optional[AnalysisResult]:
        """
        Run one delivery of a work item.

        Returns:
            The persisted result, or None when the job was dropped, cancelled
            or failed during extraction.
        """
        job_id = item.job_id
        log = LogAdapter(logger, {"job_id": job_id, "attempt": item.attempts})

        try:
            job = self.job_manager.get_job(job_id)
        except NotFoundError:
            log.warning("Job no longer exists, dropping work item")
            return None

        if job.is_terminal:
            log.info(f"Job already {job.status.value}, acknowledging redelivery")
            return None

        if job_id in self._active_jobs:
            log.warning("Job is already being processed by another worker, skipping")
            return None

        self._active_jobs.add(job_id)
        try:
            return await self._run(job, item, log)
        except InvalidStateError as e:
            log.info(f"Stopping: {e}")
            return None
        finally:
            self._active_jobs.discard(job_id)

    async def _run(self, job: Job, item: WorkItem, log: LogAdapter) -> Optional[AnalysisResult]:
        job_id = job.id

        # ================================================================
        # STEP 1: Initialize
        # ================================================================
        self._checkpoint(job_id, PROGRESS_STARTED, status=JobStatus.RUNNING)
        log.info(f"Processing {job.original_name or job.document_ref}")

        # ================================================================
        # STEP 2-3: Read text and recognize rows
        # ================================================================
        try:
            extraction = await self._extract(job, item)
        except InvalidStateError:
            raise
        except Exception as e:
            error = e if isinstance(e, ExtractionError) else ExtractionError(describe_error(e))
            log.error(f"Extraction failed: {error}")
            self.job_manager.update_job(job_id, status=JobStatus.FAILED, error_message=describe_error(error))
            return None

        self._checkpoint(job_id, PROGRESS_ROWS_RECOGNIZED)

        if not extraction.rows:
            log.warning("No rows recognized; completing with an empty result")

        # ================================================================
        # STEP 4: Enrich rows
        # ================================================================
        rows = extraction.rows

        async def on_batch(done: int, total: int):
            span = PROGRESS_ENRICHED - PROGRESS_ROWS_RECOGNIZED
            self._checkpoint(job_id, PROGRESS_ROWS_RECOGNIZED + (span * done) // total)

        try:
            outcome = await self.enricher.enrich(rows, progress_callback=on_batch)
            log.info(
                f"Enrichment: {outcome.service_notes} service notes, "
                f"{outcome.fallback_notes} fallback notes"
            )
        except (InvalidStateError, asyncio.CancelledError):
            raise
        except Exception as e:
            log.warning(f"Enrichment failed, using fallback notes: {e}")
            self.enricher.attach_fallback_notes(rows)

        self._checkpoint(job_id, PROGRESS_ENRICHED)

        # ================================================================
        # STEP 5: Persist result and complete
        # ================================================================
        result = build_result(
            job_id=job_id,
            user_ref=job.user_ref,
            panel_type=extraction.panel_type,
            report_date=extraction.report_date,
            rows=rows,
            doctor_notes=item.payload.get("doctor_notes", job.doctor_notes),
        )
        saved = self.result_store.save(result)

        try:
            self.job_manager.update_job(job_id, status=JobStatus.COMPLETED, result_id=saved.id)
        except InvalidStateError:
            # Cancelled while persisting; never leave an orphaned result
            self.result_store.delete_by_job(job_id)
            raise
        except Exception as e:
            self.result_store.delete_by_job(job_id)
            raise PersistenceError(f"Failed to complete job {job_id}: {e}") from e

        log.info(
            f"Completed: {saved.statistics.total_tests} tests, "
            f"overall {saved.statistics.overall_status.value}"
        )
        return saved

    async def _extract(self, job: Job, item: WorkItem) -> ExtractionResult:
        location = item.payload.get("location") or job.document_location
        if not location:
            raise ExtractionError(f"No stored document for job {job.id}")

        self._checkpoint(job.id, PROGRESS_READING)
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self.text_extractor.extract_text, location)
        self._checkpoint(job.id, PROGRESS_TEXT_READ)

        return self.field_extractor.extract(text)

    def _checkpoint(self, job_id: str, progress: int, status: Optional[JobStatus] = None):
        """Write progress; raises InvalidStateError once the job is terminal."""
        self.job_manager.update_job(job_id, status=status, progress=progress)
