"""Ingestion job tracking in `processing_jobs`.

Stateless: every call is one durable write on its own pooled connection.
"""

from __future__ import annotations

import logging
from typing import Optional

import psycopg
from psycopg_pool import PoolTimeout
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from threatfeed.errors import TrackerWriteError
from threatfeed.ingestion.record_types import IngestionJob, JobStatus
from threatfeed.storage.postgres_schema import PROCESSING_JOBS_DDL


logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)
MAX_FILE_NAME_LEN = 255


def _is_transient(exc: BaseException) -> bool:
    # A pool timeout already waited; retrying it only multiplies the delay.
    return isinstance(exc, psycopg.OperationalError) and not isinstance(exc, PoolTimeout)


def _is_ddl_race(exc: BaseException) -> bool:
    # Concurrent CREATE TABLE IF NOT EXISTS can collide on pg_type; the loser just retries.
    return _is_transient(exc) or isinstance(
        exc, (psycopg.errors.UniqueViolation, psycopg.errors.DuplicateTable, psycopg.errors.DuplicateObject)
    )


_retry_transient = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, max=2),
    reraise=True,
)

_retry_ddl = retry(
    retry=retry_if_exception(_is_ddl_race),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, max=2),
    reraise=True,
)


def _check_counts(processed: int, skipped: int, failed: int) -> None:
    if min(processed, skipped, failed) < 0:
        raise ValueError("job counts must be >= 0")


class PostgresJobTracker:
    def __init__(self, store):
        self.store = store

    def create_job(self, file_name: str) -> int:
        """Insert a `processing` job row and return its id (creates the table if needed)."""
        try:
            self._ensure_jobs_table()
            return self._insert_job(file_name)
        except psycopg.Error as e:
            raise TrackerWriteError(f"Failed to create job for {file_name!r}: {e}") from e

    def update_progress(self, job_id: int, percent: int, processed: int, skipped: int, failed: int) -> None:
        if not isinstance(percent, int) or isinstance(percent, bool) or not 0 <= percent <= 100:
            raise ValueError(f"progress must be an integer in [0, 100], got {percent!r}")
        _check_counts(processed, skipped, failed)
        try:
            self._write(
                """
                UPDATE processing_jobs
                SET progress = GREATEST(COALESCE(progress, 0), %s),
                    processed = %s, skipped = %s, failed = %s, updated_at = now()
                WHERE id = %s
                """,
                (percent, processed, skipped, failed, job_id),
            )
        except psycopg.Error as e:
            raise TrackerWriteError(f"Failed to update progress for job {job_id}: {e}") from e

    def finalize(self, job_id: int, status, processed: int, skipped: int, failed: int) -> None:
        """Terminal transition: status completed/failed, progress forced to 100."""
        status = JobStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"finalize needs a terminal status, got {status.value!r}")
        _check_counts(processed, skipped, failed)
        try:
            self._write(
                """
                UPDATE processing_jobs
                SET status = %s, progress = 100,
                    processed = %s, skipped = %s, failed = %s, updated_at = now()
                WHERE id = %s
                """,
                (status.value, processed, skipped, failed, job_id),
            )
        except psycopg.Error as e:
            raise TrackerWriteError(f"Failed to finalize job {job_id} as {status.value}: {e}") from e
        logger.info(f"Job {job_id} finalized as {status.value}")

    def get_job(self, job_id: int) -> Optional[IngestionJob]:
        with self.store.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, file_name, status, progress, processed, skipped, failed, created_at, updated_at
                    FROM processing_jobs
                    WHERE id = %s
                    """,
                    (job_id,),
                )
                row = cur.fetchone()
        if row is None:
            return None
        (jid, file_name, status, progress, processed, skipped, failed, created_at, updated_at) = row
        return IngestionJob(
            id=int(jid),
            file_name=file_name,
            status=JobStatus(status),
            progress=int(progress or 0),
            processed=int(processed or 0),
            skipped=int(skipped or 0),
            failed=int(failed or 0),
            created_at=created_at,
            updated_at=updated_at,
        )

    @_retry_ddl
    def _ensure_jobs_table(self) -> None:
        with self.store.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(PROCESSING_JOBS_DDL)

    def _insert_job(self, file_name: str) -> int:
        # Not retried: a commit that failed on the client side may still have created the row.
        with self.store.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO processing_jobs (file_name, status) VALUES (%s, %s) RETURNING id",
                    ((file_name or "")[:MAX_FILE_NAME_LEN], JobStatus.PROCESSING.value),
                )
                return int(cur.fetchone()[0])

    @_retry_transient
    def _write(self, sql: str, params: tuple) -> None:
        with self.store.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
