# ============================================================================
# src/bloodwork_analysis/results/result_store.py
# ============================================================================
"""
Result Store

Persists analysis results to SQLite. One result per job: saving again for
the same job overwrites the stored result and keeps its id, so a
redelivered job never produces a duplicate.
"""

import sqlite3
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config.base_config import base_settings
from ..core.models import AnalysisResult, ExtractedRow, ResultStatistics
from ..utils.exceptions import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)


class ResultStore:
    """SQLite-backed store for AnalysisResult records."""

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
                CREATE TABLE IF NOT EXISTS results (
                    id            TEXT PRIMARY KEY,
                    job_id        TEXT NOT NULL UNIQUE,
                    user_ref      TEXT NOT NULL,
                    panel_type    TEXT NOT NULL,
                    report_date   TEXT NOT NULL,
                    summary       TEXT NOT NULL,
                    doctor_notes  TEXT,
                    statistics    TEXT NOT NULL,
                    row_data      TEXT NOT NULL,
                    created_at    TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_results_user
                ON results (user_ref, created_at DESC)
            """)
            conn.commit()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------
    def save(self, result: AnalysisResult) -> AnalysisResult:
        """
        Persist a result atomically.

        Returns:
            The stored result. Its id is the previously stored id when the
            job already had a result.

        Raises:
            PersistenceError: the write failed
        """
        try:
            conn = self._connect()
            try:
                with conn:
                    existing = conn.execute(
                        "SELECT id FROM results WHERE job_id = ?", (result.job_id,)
                    ).fetchone()
                    if existing and existing["id"] != result.id:
                        logger.info(f"Overwriting result {existing['id']} for job {result.job_id}")
                        result.id = existing["id"]

                    conn.execute("""
                        INSERT OR REPLACE INTO results
                            (id, job_id, user_ref, panel_type, report_date, summary,
                             doctor_notes, statistics, row_data, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        result.id,
                        result.job_id,
                        result.user_ref,
                        result.panel_type,
                        result.report_date.isoformat(),
                        result.summary,
                        result.doctor_notes,
                        json.dumps(result.statistics.to_dict()),
                        json.dumps([row.to_dict() for row in result.rows]),
                        result.created_at.isoformat(),
                    ))
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save result for job {result.job_id}: {e}") from e

        logger.info(f"Saved result {result.id} for job {result.job_id} ({len(result.rows)} rows)")
        return result

    def delete_by_job(self, job_id: str) -> bool:
        """Remove the result of a job. Returns True if one was deleted."""
        try:
            conn = self._connect()
            try:
                with conn:
                    cur = conn.execute("DELETE FROM results WHERE job_id = ?", (job_id,))
                    deleted = cur.rowcount > 0
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete result for job {job_id}: {e}") from e

        if deleted:
            logger.info(f"Deleted result for job {job_id}")
        return deleted

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------
    def get(self, result_id: str, user_ref: Optional[str] = None) -> AnalysisResult:
        """
        Retrieve a result by id, optionally scoped to its owner.

        Raises:
            NotFoundError: no such result (or owned by someone else)
        """
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM results WHERE id = ?", (result_id,)).fetchone()
        finally:
            conn.close()

        if row is None or (user_ref is not None and row["user_ref"] != user_ref):
            raise NotFoundError(f"Result {result_id} not found")
        return self._row_to_result(row)

    def get_by_job(self, job_id: str) -> Optional[AnalysisResult]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM results WHERE job_id = ?", (job_id,)).fetchone()
        finally:
            conn.close()
        return self._row_to_result(row) if row else None

    @staticmethod
    def _row_to_result(row: sqlite3.Row) -> AnalysisResult:
        return AnalysisResult(
            id=row["id"],
            job_id=row["job_id"],
            user_ref=row["user_ref"],
            panel_type=row["panel_type"],
            report_date=datetime.fromisoformat(row["report_date"]),
            rows=[ExtractedRow.from_dict(r) for r in json.loads(row["row_data"])],
            summary=row["summary"],
            doctor_notes=row["doctor_notes"],
            statistics=ResultStatistics.from_dict(json.loads(row["statistics"])),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
