# ============================================================================
# src/bloodwork_analysis/core/job_store.py
# ============================================================================
"""
Job Store

Durable job records plus an append-only event trail (every status and
progress write), kept in SQLite. Raw sqlite3, one connection per call.

Two guarantees are enforced by the database itself:
- At most one queued/running job per (document_ref, user_ref): partial
  unique index.
- Terminal status is sticky: updates are conditional on the status the
  writer last observed, so the first terminal write wins.
"""

import sqlite3
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config.base_config import base_settings
from ..utils.exceptions import ConflictError, PersistenceError
from .enums import JobStatus
from .models import Job, utc_now

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = {"status", "progress", "result_id", "error_message"}


class JobStore:
    """SQLite-backed job persistence."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or base_settings.DATABASE_PATH)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------
    def _init_database(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id                 TEXT PRIMARY KEY,
                    document_ref       TEXT NOT NULL,
                    user_ref           TEXT NOT NULL,
                    status             TEXT NOT NULL,
                    progress           INTEGER NOT NULL DEFAULT 0,
                    result_id          TEXT,
                    error_message      TEXT,
                    document_location  TEXT,
                    original_name      TEXT,
                    doctor_notes       TEXT,
                    created_at         TEXT NOT NULL,
                    updated_at         TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_active_document
                ON jobs (document_ref, user_ref)
                WHERE status IN ('queued', 'running')
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON jobs (status)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_events (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id      TEXT NOT NULL,
                    timestamp   TEXT NOT NULL,
                    status      TEXT NOT NULL,
                    progress    INTEGER NOT NULL,
                    detail      TEXT,
                    FOREIGN KEY (job_id) REFERENCES jobs (id)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_job_events_job
                ON job_events (job_id, id)
            """)
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Job store initialized: {self.db_path}")

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------
    def insert(self, job: Job) -> Job:
        """
        Persist a new job.

        Raises:
            ConflictError: an active job already exists for the same document and user
            PersistenceError: any other database failure
        """
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute("""
                        INSERT INTO jobs
                            (id, document_ref, user_ref, status, progress, result_id,
                             error_message, document_location, original_name,
                             doctor_notes, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        job.id,
                        job.document_ref,
                        job.user_ref,
                        job.status.value,
                        job.progress,
                        job.result_id,
                        job.error_message,
                        job.document_location,
                        job.original_name,
                        job.doctor_notes,
                        job.created_at.isoformat(),
                        job.updated_at.isoformat(),
                    ))
                    self._record_event(conn, job.id, job.status.value, job.progress, "created", job.created_at)
            finally:
                conn.close()
        except sqlite3.IntegrityError as e:
            existing = self.find_active(job.document_ref, job.user_ref)
            raise ConflictError(
                f"An analysis is already in progress for document {job.document_ref}",
                existing_job_id=existing.id if existing else None,
            ) from e
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to insert job {job.id}: {e}") from e

        return job

    def update(
        self,
        job_id: str,
        expected_status: JobStatus,
        fields: Dict[str, Any],
        detail: Optional[str] = None
    ) -> bool:
        """
        Conditionally update a job.

        Applies only while the stored status still equals expected_status.
        Progress never decreases. Appends an event on success.

        Returns:
            True if the row was updated
        """
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update job columns: {sorted(unknown)}")

        assignments = []
        params: List[Any] = []
        for column, value in fields.items():
            if column == "progress":
                assignments.append("progress = MAX(progress, ?)")
            else:
                assignments.append(f"{column} = ?")
            params.append(value.value if isinstance(value, JobStatus) else value)

        now = utc_now()
        assignments.append("updated_at = ?")
        params.append(now.isoformat())
        params.extend([job_id, expected_status.value])

        try:
            conn = self._connect()
            try:
                with conn:
                    cur = conn.execute(
                        f"UPDATE jobs SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                        params,
                    )
                    if cur.rowcount == 0:
                        return False

                    row = conn.execute(
                        "SELECT status, progress FROM jobs WHERE id = ?", (job_id,)
                    ).fetchone()
                    self._record_event(conn, job_id, row["status"], row["progress"], detail, now)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to update job {job_id}: {e}") from e

        return True

    @staticmethod
    def _record_event(
        conn: sqlite3.Connection,
        job_id: str,
        status: str,
        progress: int,
        detail: Optional[str],
        timestamp: datetime
    ):
        conn.execute("""
            INSERT INTO job_events (job_id, timestamp, status, progress, detail)
            VALUES (?, ?, ?, ?, ?)
        """, (job_id, timestamp.isoformat(), status, progress, detail))

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def get(self, job_id: str) -> Optional[Job]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        finally:
            conn.close()
        return self._row_to_job(row) if row else None

    def find_active(self, document_ref: str, user_ref: str) -> Optional[Job]:
        """The queued or running job for a document and user, if any."""
        conn = self._connect()
        try:
            row = conn.execute("""
                SELECT * FROM jobs
                WHERE document_ref = ? AND user_ref = ? AND status IN ('queued', 'running')
            """, (document_ref, user_ref)).fetchone()
        finally:
            conn.close()
        return self._row_to_job(row) if row else None

    def list_unfinished(self) -> List[Job]:
        """Queued and running jobs, oldest first."""
        conn = self._connect()
        try:
            rows = conn.execute("""
                SELECT * FROM jobs
                WHERE status IN ('queued', 'running')
                ORDER BY created_at ASC
            """).fetchall()
        finally:
            conn.close()
        return [self._row_to_job(row) for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        conn = self._connect()
        try:
            for row in conn.execute("SELECT status, COUNT(*) AS n FROM jobs GROUP BY status"):
                counts[row["status"]] = row["n"]
        finally:
            conn.close()
        return counts

    def get_events(self, job_id: str) -> List[Dict[str, Any]]:
        """Event trail of a job in write order."""
        conn = self._connect()
        try:
            rows = conn.execute("""
                SELECT timestamp, status, progress, detail FROM job_events
                WHERE job_id = ? ORDER BY id ASC
            """, (job_id,)).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            document_ref=row["document_ref"],
            user_ref=row["user_ref"],
            status=JobStatus(row["status"]),
            progress=row["progress"],
            result_id=row["result_id"],
            error_message=row["error_message"],
            document_location=row["document_location"],
            original_name=row["original_name"],
            doctor_notes=row["doctor_notes"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
