"""Chunked, deduplicating writes into `darkweb_mentions`.

One transaction per chunk, one savepoint per record. A record-level data error
only rolls back its savepoint; anything else rolls back the whole chunk.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Sequence, TypeVar

import psycopg
from psycopg_pool import PoolTimeout

from threatfeed.errors import ChunkTransactionError, RecordError
from threatfeed.ingestion.record_types import CanonicalRecord, ChunkResult


logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100

T = TypeVar("T")

INSERT_MENTION_SQL = """
INSERT INTO darkweb_mentions (uuid, message, category, network, timestamp, metadata)
VALUES (%s, %s, %s, %s, %s, %s::jsonb)
ON CONFLICT (uuid) DO NOTHING
RETURNING uuid
"""

# Errors that belong to one row; the chunk transaction survives them.
RECORD_LEVEL_ERRORS = (psycopg.DataError, psycopg.IntegrityError)


def iter_chunks(items: Sequence[T], size: int = DEFAULT_CHUNK_SIZE) -> Iterator[List[T]]:
    """Yield contiguous slices of `items` in order; the last one may be short."""
    if size <= 0:
        raise ValueError("chunk size must be > 0")
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


class MentionBatchCommitter:
    def __init__(self, store):
        self.store = store

    def commit_chunk(self, records: Sequence[CanonicalRecord]) -> ChunkResult:
        """Insert one chunk atomically.

        Returns counts that always add up to len(records). psycopg_pool.PoolTimeout
        (store unreachable) is not handled here and propagates to the caller.
        """
        if not records:
            return ChunkResult()

        success = skipped = 0
        errors: List[RecordError] = []
        try:
            with self.store.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        for rec in records:
                            try:
                                with conn.transaction():
                                    cur.execute(
                                        INSERT_MENTION_SQL,
                                        (
                                            rec.uuid,
                                            rec.message,
                                            rec.category,
                                            rec.network,
                                            rec.timestamp,
                                            rec.metadata,
                                        ),
                                    )
                                    inserted = cur.fetchone() is not None
                            except RECORD_LEVEL_ERRORS as e:
                                err = RecordError(rec.uuid, str(e))
                                logger.warning(f"Skipping record after insert error: {err}")
                                errors.append(err)
                                continue
                            if inserted:
                                success += 1
                            else:
                                skipped += 1
        except PoolTimeout:
            raise
        except psycopg.Error as e:
            err = ChunkTransactionError(f"chunk of {len(records)} rolled back: {e}")
            err.__cause__ = e
            logger.error(str(err), exc_info=True)
            return ChunkResult(success=0, skipped=0, failed=len(records), errors=(err,))

        return ChunkResult(success=success, skipped=skipped, failed=len(errors), errors=tuple(errors))
