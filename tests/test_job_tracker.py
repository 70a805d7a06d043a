import unittest

import psycopg

from threatfeed.errors import TrackerWriteError
from threatfeed.ingestion.record_types import JobStatus
from threatfeed.storage.postgres_jobs import PostgresJobTracker
from threatfeed.storage.postgres_schema import SCHEMA_STATEMENTS, ensure_postgres_schema

from fakes import FakeStore


class TestPostgresJobTracker(unittest.TestCase):
    def setUp(self):
        self.store = FakeStore()
        self.tracker = PostgresJobTracker(self.store)

    def test_create_job_creates_table_and_processing_row(self):
        self.assertFalse(self.store.db.jobs_table_created)
        job_id = self.tracker.create_job("feeds/2025-03-01.xml")
        self.assertTrue(self.store.db.jobs_table_created)
        job = self.store.db.job(job_id)
        self.assertEqual(job["status"], "processing")
        self.assertEqual((job["progress"], job["processed"], job["skipped"], job["failed"]), (0, 0, 0, 0))

    def test_job_ids_are_distinct(self):
        a = self.tracker.create_job("a.xml")
        b = self.tracker.create_job("b.xml")
        self.assertNotEqual(a, b)

    def test_update_progress_overwrites_counts(self):
        job_id = self.tracker.create_job("a.xml")
        self.tracker.update_progress(job_id, 40, 30, 5, 5)
        self.tracker.update_progress(job_id, 80, 60, 10, 10)
        job = self.store.db.job(job_id)
        self.assertEqual((job["progress"], job["processed"], job["skipped"], job["failed"]), (80, 60, 10, 10))

    def test_stored_progress_never_decreases(self):
        job_id = self.tracker.create_job("a.xml")
        self.tracker.update_progress(job_id, 60, 1, 0, 0)
        self.tracker.update_progress(job_id, 20, 2, 0, 0)
        self.assertEqual(self.store.db.job(job_id)["progress"], 60)

    def test_update_progress_rejects_out_of_range(self):
        job_id = self.tracker.create_job("a.xml")
        for bad in (-1, 101, 50.5, True):
            with self.assertRaises(ValueError):
                self.tracker.update_progress(job_id, bad, 0, 0, 0)

    def test_finalize_forces_progress_100(self):
        job_id = self.tracker.create_job("a.xml")
        self.tracker.update_progress(job_id, 33, 10, 0, 0)
        self.tracker.finalize(job_id, JobStatus.COMPLETED, 30, 0, 0)
        job = self.store.db.job(job_id)
        self.assertEqual((job["status"], job["progress"], job["processed"]), ("completed", 100, 30))

    def test_finalize_accepts_status_strings(self):
        job_id = self.tracker.create_job("a.xml")
        self.tracker.finalize(job_id, "failed", 0, 0, 0)
        self.assertEqual(self.store.db.job(job_id)["status"], "failed")

    def test_finalize_rejects_non_terminal_status(self):
        job_id = self.tracker.create_job("a.xml")
        with self.assertRaises(ValueError):
            self.tracker.finalize(job_id, JobStatus.PROCESSING, 0, 0, 0)

    def test_get_job_reads_persisted_state(self):
        job_id = self.tracker.create_job("a.xml")
        self.tracker.finalize(job_id, JobStatus.COMPLETED, 7, 2, 1)
        job = PostgresJobTracker(self.store).get_job(job_id)
        self.assertEqual(job.status, JobStatus.COMPLETED)
        self.assertEqual((job.progress, job.processed, job.skipped, job.failed), (100, 7, 2, 1))
        self.assertIsNone(self.tracker.get_job(9999))

    def test_transient_write_failure_is_retried(self):
        job_id = self.tracker.create_job("a.xml")
        self.store.db.failing_job_writes = 1
        self.tracker.update_progress(job_id, 50, 5, 0, 0)
        self.assertEqual(self.store.db.job(job_id)["progress"], 50)

    def test_persistent_write_failure_raises_tracker_error(self):
        job_id = self.tracker.create_job("a.xml")
        self.store.db.failing_job_writes = 10
        with self.assertRaises(TrackerWriteError):
            self.tracker.update_progress(job_id, 50, 5, 0, 0)

    def test_concurrent_table_creation_race_is_retried(self):
        self.store.db.failing_ddl = [
            psycopg.errors.UniqueViolation('duplicate key value violates unique constraint "pg_type_typname_nsp_index"'),
            psycopg.errors.DuplicateTable('relation "processing_jobs" already exists'),
        ]
        job_id = self.tracker.create_job("a.xml")
        self.assertEqual(self.store.db.job(job_id)["status"], "processing")
        self.assertEqual(self.store.db.failing_ddl, [])

    def test_job_insert_is_not_retried(self):
        self.store.db.failing_job_writes = 1
        with self.assertRaises(TrackerWriteError):
            self.tracker.create_job("a.xml")
        inserts = [q for q in self.store.db.executed if q.startswith("INSERT INTO processing_jobs")]
        self.assertEqual(len(inserts), 1)
        self.assertEqual(self.store.db.jobs, {})

    def test_store_unavailable_on_create_raises_tracker_error(self):
        self.store.db.unavailable = True
        with self.assertRaises(TrackerWriteError):
            self.tracker.create_job("a.xml")


class TestEnsureSchema(unittest.TestCase):
    def test_creates_both_tables(self):
        store = FakeStore()
        ensure_postgres_schema(store)
        self.assertTrue(store.db.jobs_table_created)
        self.assertTrue(any(q.startswith("CREATE TABLE IF NOT EXISTS darkweb_mentions") for q in store.db.executed))
        self.assertEqual(len(store.db.executed), len(SCHEMA_STATEMENTS))

    def test_is_idempotent(self):
        store = FakeStore()
        ensure_postgres_schema(store)
        job_id = PostgresJobTracker(store).create_job("a.xml")
        ensure_postgres_schema(store)
        self.assertIn(job_id, store.db.jobs)


if __name__ == "__main__":
    unittest.main()
