"""Feed file ingestion orchestrator.

One run per uploaded file:

    create job -> fetch -> parse -> (normalize + commit + progress) per chunk -> finalize

Chunks are committed strictly in order, one at a time. Record and chunk failures
are counted, not raised; fetch/parse errors and store unavailability abort the run
after a best-effort `failed` finalization.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from threatfeed.errors import TrackerWriteError
from threatfeed.ingestion.blob_fetch import BlobLocation
from threatfeed.ingestion.feed_parser import parse_feed
from threatfeed.ingestion.normalizer import normalize_record
from threatfeed.ingestion.record_types import ChunkResult, IngestSummary, JobStatus, RawFeedRecord
from threatfeed.storage.postgres_mentions import DEFAULT_CHUNK_SIZE, iter_chunks


logger = logging.getLogger(__name__)


MAX_REPORTED_ERRORS = 100


@dataclass
class _RunningTotals:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def add(self, result: ChunkResult) -> None:
        self.processed += result.success
        self.skipped += result.skipped
        self.failed += result.failed
        room = MAX_REPORTED_ERRORS - len(self.errors)
        if room > 0:
            self.errors.extend(str(e) for e in result.errors[:room])

    @property
    def handled(self) -> int:
        return self.processed + self.skipped + self.failed


class IngestionPipeline:
    def __init__(
        self,
        tracker,
        committer,
        *,
        fetcher=None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        parser: Callable[[bytes], List[RawFeedRecord]] = parse_feed,
        normalizer=normalize_record,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self.tracker = tracker
        self.committer = committer
        self.fetcher = fetcher
        self.chunk_size = chunk_size
        self.parser = parser
        self.normalizer = normalizer

    def process_file(self, location: BlobLocation) -> IngestSummary:
        """Create a job for `location`, download it and ingest it."""
        if self.fetcher is None:
            raise ValueError("process_file needs a blob fetcher")
        logger.info(f"Processing file: {location.name} from bucket: {location.bucket}")
        job_id = self.tracker.create_job(location.name)
        return self._run(job_id, location.name, lambda: self.fetcher.fetch(location))

    def ingest_document(self, file_name: str, document: bytes) -> IngestSummary:
        """Ingest an already-downloaded feed document under a new job."""
        job_id = self.tracker.create_job(file_name)
        return self._run(job_id, file_name, lambda: document)

    def _run(self, job_id: int, file_name: str, load: Callable[[], bytes]) -> IngestSummary:
        totals = _RunningTotals()
        try:
            document = load()
            logger.info(f"Job {job_id}: file size {len(document) / 1024 / 1024:.2f} MB")
            raws = self.parser(document)
            logger.info(f"Job {job_id}: found {len(raws)} messages to process")
            self._commit_all(job_id, raws, totals)
            self._finalize_completed(job_id, totals)
        except Exception as exc:
            logger.error(f"Job {job_id} ({file_name}) failed: {exc}", exc_info=True)
            self._finalize_failed(job_id, totals, exc)
            raise

        logger.info(
            f"Job {job_id} complete: processed={totals.processed} skipped={totals.skipped} failed={totals.failed}"
        )
        return IngestSummary(
            success=True,
            processed=totals.processed,
            skipped=totals.skipped,
            failed=totals.failed,
            job_id=job_id,
            file_name=file_name,
            errors=list(totals.errors),
        )

    def _commit_all(self, job_id: int, raws: List[RawFeedRecord], totals: _RunningTotals) -> None:
        total = len(raws)
        last_percent = 0
        for chunk in iter_chunks(raws, self.chunk_size):
            records = [self.normalizer(raw) for raw in chunk]
            totals.add(self.committer.commit_chunk(records))

            percent = max(last_percent, (totals.handled * 100) // total)
            last_percent = percent
            try:
                self.tracker.update_progress(job_id, percent, totals.processed, totals.skipped, totals.failed)
            except TrackerWriteError as e:
                logger.warning(f"Job {job_id}: progress update lost: {e}")
            logger.info(
                f"Job {job_id} progress: {percent}% "
                f"({totals.processed} processed, {totals.skipped} skipped, {totals.failed} failed)"
            )

    def _finalize_completed(self, job_id: int, totals: _RunningTotals) -> None:
        try:
            self.tracker.finalize(job_id, JobStatus.COMPLETED, totals.processed, totals.skipped, totals.failed)
        except TrackerWriteError as e:
            # Records are already durable; only the job row is stale.
            logger.error(f"Job {job_id}: could not mark completed: {e}")

    def _finalize_failed(self, job_id: int, totals: _RunningTotals, exc: Exception) -> None:
        try:
            self.tracker.finalize(job_id, JobStatus.FAILED, totals.processed, totals.skipped, totals.failed)
        except Exception as fin_err:
            logger.error(f"Job {job_id}: could not mark failed: {fin_err}")
            exc.add_note(f"job {job_id} could not be marked failed: {fin_err!r}")
