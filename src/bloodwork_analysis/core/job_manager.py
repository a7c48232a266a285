# ============================================================================
# src/bloodwork_analysis/core/job_manager.py
# ============================================================================
"""
Job Manager

The only component that writes job records:
- create_job: validate, persist as queued, enqueue exactly once
- get_job_status: owner-scoped read
- update_job: orchestrator write path, enforces the state machine
- cancel_job: user-initiated move to failed

State machine:

    queued -> running -> completed
       \\          \\
        -> failed   -> failed

Terminal states are sticky. Progress never decreases and reaches 100
only together with completed.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from ..utils.exceptions import ConflictError, InvalidStateError, NotFoundError
from .document_store import FileDocumentStore
from .enums import JOB_TRANSITIONS, JobStatus
from .job_store import JobStore
from .models import Job
from .work_queue import WorkQueue

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Job cancelled by user"
MAX_ERROR_LENGTH = 300


def shorten_error(message: str) -> str:
    """First meaningful line of an error, capped in length. Never a traceback."""
    lines = [line.strip() for line in str(message).splitlines() if line.strip()]
    text = lines[0] if lines else "Unknown error"
    if len(text) > MAX_ERROR_LENGTH:
        text = text[:MAX_ERROR_LENGTH - 3].rstrip() + "..."
    return text


def describe_error(error: BaseException) -> str:
    """Error text for a failed job; falls back to the exception type when the message is empty."""
    return str(error).strip() or type(error).__name__


class JobManager:
    """Owns job creation, status reads and every state transition."""

    def __init__(self, job_store: JobStore, queue: WorkQueue, documents: FileDocumentStore):
        self.job_store = job_store
        self.queue = queue
        self.documents = documents

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def create_job(self, document_ref: str, user_ref: str, doctor_notes: Optional[str] = None) -> Job:
        """
        Create a queued job for a document and enqueue it.

        Raises:
            NotFoundError: the document reference cannot be resolved
            ConflictError: a queued or running job already exists for it
        """
        resolved = self.documents.resolve(document_ref)
        if not resolved.exists:
            raise NotFoundError(f"Document {document_ref} not found")

        active = self.job_store.find_active(document_ref, user_ref)
        if active is not None:
            raise ConflictError(
                f"An analysis is already in progress for document {document_ref}",
                existing_job_id=active.id,
            )

        job = Job(
            id=str(uuid.uuid4()),
            document_ref=document_ref,
            user_ref=user_ref,
            status=JobStatus.QUEUED,
            progress=0,
            document_location=resolved.location,
            original_name=resolved.original_name,
            doctor_notes=doctor_notes,
        )
        self.job_store.insert(job)
        self.queue.enqueue(job.id, self.work_payload(job))

        logger.info(f"Created job {job.id} for document {document_ref}")
        return job

    @staticmethod
    def work_payload(job: Job) -> Dict[str, Any]:
        return {
            "job_id": job.id,
            "user_ref": job.user_ref,
            "document_ref": job.document_ref,
            "location": job.document_location,
            "original_name": job.original_name,
            "doctor_notes": job.doctor_notes,
        }

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def get_job(self, job_id: str) -> Job:
        job = self.job_store.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def get_job_status(self, job_id: str, user_ref: str) -> Job:
        """Job owned by user_ref. Someone else's job reads as not found."""
        job = self.job_store.get(job_id)
        if job is None or job.user_ref != user_ref:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def list_unfinished(self) -> List[Job]:
        return self.job_store.list_unfinished()

    def get_progress_history(self, job_id: str) -> List[int]:
        """Progress values in the order they were written."""
        return [event["progress"] for event in self.job_store.get_events(job_id)]

    def queue_health(self) -> Dict[str, Any]:
        return {
            "jobs": self.job_store.count_by_status(),
            "queue_depth": self.queue.depth,
            "in_flight": self.queue.in_flight,
        }

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------
    def update_job(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        progress: Optional[int] = None,
        result_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Job:
        """
        Apply a state transition and/or progress checkpoint.

        Raises:
            NotFoundError: no such job
            InvalidStateError: job is terminal, or the transition is illegal
        """
        job = self.get_job(job_id)
        if job.is_terminal:
            raise InvalidStateError(
                f"Job {job_id} is already {job.status.value}", current_status=job.status.value
            )

        new_status = JobStatus(status) if status is not None else job.status
        if status is not None and new_status not in JOB_TRANSITIONS[job.status]:
            raise InvalidStateError(
                f"Illegal transition {job.status.value} -> {new_status.value} for job {job_id}",
                current_status=job.status.value,
            )

        fields: Dict[str, Any] = {"status": new_status}
        detail = None

        if new_status == JobStatus.COMPLETED:
            if not result_id:
                raise InvalidStateError("Completing a job requires a result id", current_status=job.status.value)
            fields["result_id"] = result_id
            fields["progress"] = 100
            detail = f"result {result_id}"
        elif new_status == JobStatus.FAILED:
            if error_message is None:
                raise InvalidStateError("Failing a job requires an error message", current_status=job.status.value)
            fields["error_message"] = shorten_error(error_message)
            detail = fields["error_message"]
        elif result_id or error_message:
            raise InvalidStateError(
                f"result_id and error_message are only set on terminal states (job {job_id})",
                current_status=job.status.value,
            )

        if progress is not None and new_status != JobStatus.COMPLETED:
            fields["progress"] = min(max(int(progress), 0), 99)

        if not self.job_store.update(job_id, expected_status=job.status, fields=fields, detail=detail):
            # Someone else moved the job between our read and write
            current = self.get_job(job_id)
            raise InvalidStateError(
                f"Job {job_id} changed to {current.status.value} during update",
                current_status=current.status.value,
            )

        updated = self.get_job(job_id)
        if new_status != job.status:
            logger.info(f"Job {job_id}: {job.status.value} -> {new_status.value} ({updated.progress}%)")
        return updated

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------
    def cancel_job(self, job_id: str, user_ref: Optional[str] = None) -> Job:
        """
        Cancel a queued or running job by failing it.

        A queued job is also removed from the queue (best effort). A running
        job is not interrupted; its next checkpoint is rejected.

        Raises:
            NotFoundError: no such job (for this user)
            InvalidStateError: job already completed or failed
        """
        job = self.get_job_status(job_id, user_ref) if user_ref is not None else self.get_job(job_id)
        if job.is_terminal:
            raise InvalidStateError(
                f"Cannot cancel a {job.status.value} job", current_status=job.status.value
            )

        if job.status == JobStatus.QUEUED and self.queue.remove(job_id):
            logger.debug(f"Job {job_id} removed from queue before pickup")

        cancelled = self.update_job(job_id, status=JobStatus.FAILED, error_message=CANCELLED_MESSAGE)
        logger.info(f"Cancelled job {job_id}")
        return cancelled
