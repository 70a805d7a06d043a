import unittest
from datetime import datetime, timezone

import psycopg
from psycopg_pool import PoolTimeout

from threatfeed.errors import ChunkTransactionError, RecordError
from threatfeed.ingestion.record_types import CanonicalRecord, ChunkResult
from threatfeed.storage.postgres_mentions import MentionBatchCommitter, iter_chunks

from fakes import FakeStore


TS = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _rec(uuid: str) -> CanonicalRecord:
    return CanonicalRecord(
        uuid=uuid,
        message=f"message {uuid}",
        category="leak",
        network="tor",
        timestamp=TS,
        metadata='{"uuid": "%s"}' % uuid,
    )


class TestIterChunks(unittest.TestCase):
    def test_short_final_chunk(self):
        sizes = [len(c) for c in iter_chunks(list(range(250)), 100)]
        self.assertEqual(sizes, [100, 100, 50])

    def test_order_preserved(self):
        chunks = list(iter_chunks([1, 2, 3, 4, 5], 2))
        self.assertEqual(chunks, [[1, 2], [3, 4], [5]])

    def test_rejects_non_positive_size(self):
        with self.assertRaises(ValueError):
            list(iter_chunks([1], 0))


class TestMentionBatchCommitter(unittest.TestCase):
    def setUp(self):
        self.store = FakeStore()
        self.committer = MentionBatchCommitter(self.store)

    def test_inserts_all_new_records(self):
        result = self.committer.commit_chunk([_rec("a"), _rec("b"), _rec("c")])
        self.assertEqual(result, ChunkResult(success=3, skipped=0, failed=0))
        self.assertEqual(set(self.store.db.mentions), {"a", "b", "c"})
        self.assertEqual(self.store.db.committed_transactions, 1)

    def test_existing_uuid_counts_as_skipped(self):
        self.committer.commit_chunk([_rec("a")])
        result = self.committer.commit_chunk([_rec("a"), _rec("b")])
        self.assertEqual(result, ChunkResult(success=1, skipped=1, failed=0))

    def test_duplicate_within_chunk_counts_as_skipped(self):
        result = self.committer.commit_chunk([_rec("a"), _rec("a")])
        self.assertEqual(result, ChunkResult(success=1, skipped=1, failed=0))

    def test_record_error_does_not_abort_chunk(self):
        self.store.db.rejected_uuids.add("b")
        result = self.committer.commit_chunk([_rec("a"), _rec("b"), _rec("c")])
        self.assertEqual(result, ChunkResult(success=2, skipped=0, failed=1))
        self.assertEqual(set(self.store.db.mentions), {"a", "c"})

    def test_commit_failure_rolls_back_whole_chunk(self):
        self.store.db.failing_commits = 1
        records = [_rec(f"r{i}") for i in range(10)]
        result = self.committer.commit_chunk(records)
        self.assertEqual(result, ChunkResult(success=0, skipped=0, failed=10))
        self.assertEqual(self.store.db.mentions, {})

    def test_connection_lost_mid_chunk_rolls_back_whole_chunk(self):
        self.store.db.broken_uuids.add("r3")
        records = [_rec(f"r{i}") for i in range(6)]
        result = self.committer.commit_chunk(records)
        self.assertEqual(result.failed, 6)
        self.assertEqual(self.store.db.mentions, {})

    def test_retry_after_failed_chunk_is_idempotent(self):
        records = [_rec(f"r{i}") for i in range(5)]
        self.committer.commit_chunk(records[:3])
        result = self.committer.commit_chunk(records)
        self.assertEqual(result, ChunkResult(success=2, skipped=3, failed=0))
        self.assertEqual(len(self.store.db.mentions), 5)

    def test_record_errors_are_kept_on_result(self):
        self.store.db.rejected_uuids.add("b")
        result = self.committer.commit_chunk([_rec("a"), _rec("b")])
        (err,) = result.errors
        self.assertIsInstance(err, RecordError)
        self.assertEqual(err.uuid, "b")

    def test_chunk_error_is_kept_on_result(self):
        self.store.db.failing_commits = 1
        result = self.committer.commit_chunk([_rec("a"), _rec("b")])
        (err,) = result.errors
        self.assertIsInstance(err, ChunkTransactionError)
        self.assertIsInstance(err.__cause__, psycopg.OperationalError)

    def test_counts_always_sum_to_chunk_length(self):
        self.committer.commit_chunk([_rec("dup")])
        self.store.db.rejected_uuids.add("bad")
        records = [_rec("dup"), _rec("bad"), _rec("ok1"), _rec("ok2")]
        result = self.committer.commit_chunk(records)
        self.assertEqual(result.total, len(records))

    def test_empty_chunk_skips_store(self):
        self.assertEqual(self.committer.commit_chunk([]), ChunkResult())
        self.assertEqual(self.store.connections_borrowed, 0)

    def test_store_unavailable_propagates(self):
        self.store.db.unavailable = True
        with self.assertRaises(PoolTimeout):
            self.committer.commit_chunk([_rec("a")])


if __name__ == "__main__":
    unittest.main()
